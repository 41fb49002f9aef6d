"""Inline keyboards and their callback data.

Callback data is ``action`` or ``action:payload``. Telegram caps it at 64
bytes, so clarification options travel as their index, not their text.
"""

import math
from typing import Optional

from crmrelay.models import COMPANY_LINKED_INTENTS, Intent, SearchResult, WorkspaceMember

ASSIGNEE_PAGE_SIZE = 5
MAX_CLARIFICATION_OPTIONS = 5
MAX_NOTE_PARENT_RESULTS = 5

# object slug -> button label
NOTE_PARENT_TYPES = {
    "companies": "🏢 Company",
    "people": "👤 Person",
    "deals": "💰 Deal",
}


class CallbackAction:
    CONFIRM = "confirm"
    CLARIFY = "clarify"
    EDIT = "edit"
    CANCEL = "cancel"
    NOOP = "noop"

    EDIT_FIELD = "edit_field"
    EDIT_DONE = "edit_done"

    CLARIFY_OPTION = "clarify_option"
    CLARIFY_TYPE = "clarify_type"
    CLARIFY_SKIP = "clarify_skip"

    ASSIGNEE = "assignee"
    ASSIGNEE_PREV = "assignee_prev"
    ASSIGNEE_NEXT = "assignee_next"
    ASSIGNEE_TYPE = "assignee_type"
    ASSIGNEE_SKIP = "assignee_skip"

    NOTE_PARENT_TYPE = "note_parent_type"
    NOTE_PARENT_SELECT = "note_parent"
    NOTE_PARENT_SEARCH = "note_parent_search"


def callback_data(action: str, payload: Optional[str] = None) -> str:
    return f"{action}:{payload}" if payload is not None else action


def parse_callback_data(data: str) -> tuple[str, str]:
    """Split "edit_field:email" into ("edit_field", "email")."""
    action, _, payload = (data or "").partition(":")
    return action, payload


def button(text: str, action: str, payload: Optional[str] = None) -> dict:
    return {"text": text, "callback_data": callback_data(action, payload)}


def confirmation_keyboard(has_clarifications: bool, intent: str = "") -> list:
    if has_clarifications:
        rows = [[button("✅ Create anyway", CallbackAction.CONFIRM), button("💬 Answer questions", CallbackAction.CLARIFY)]]
    else:
        rows = [[button("✅ Create", CallbackAction.CONFIRM), button("✏️ Edit", CallbackAction.EDIT)]]

    if intent in {i.value for i in COMPANY_LINKED_INTENTS}:
        rows.append([button("🏢 Change company", CallbackAction.EDIT_FIELD, "company")])
    if intent == Intent.CREATE_TASK.value:
        rows.append([button("👤 Change assignee", CallbackAction.EDIT_FIELD, "assignee")])
    rows.append([button("❌ Cancel", CallbackAction.CANCEL)])
    return rows


def clarification_keyboard(options: Optional[list[str]] = None, field: str = "") -> list:
    """Option buttons carry "<index>:<field>" so a stale tap can't answer the next question."""
    rows = [
        [button(option, CallbackAction.CLARIFY_OPTION, f"{index}:{field}")]
        for index, option in enumerate((options or [])[:MAX_CLARIFICATION_OPTIONS])
    ]
    rows.append([button("⌨️ Type answer", CallbackAction.CLARIFY_TYPE), button("⏭️ Skip", CallbackAction.CLARIFY_SKIP, field)])
    rows.append([button("❌ Cancel", CallbackAction.CANCEL)])
    return rows


def edit_fields_keyboard(fields: list[str], labels: Optional[dict] = None) -> list:
    """Two fields per row, then Done editing / Cancel."""
    labels = labels or {}
    rows = []
    for i in range(0, len(fields), 2):
        rows.append([button(labels.get(f, f), CallbackAction.EDIT_FIELD, f) for f in fields[i:i + 2]])
    rows.append([button("✅ Done editing", CallbackAction.EDIT_DONE), button("❌ Cancel", CallbackAction.CANCEL)])
    return rows


def assignee_page_count(members: list[WorkspaceMember], page_size: int = ASSIGNEE_PAGE_SIZE) -> int:
    return max(1, math.ceil(len(members) / page_size))


def assignee_keyboard(members: list[WorkspaceMember], page: int = 0, page_size: int = ASSIGNEE_PAGE_SIZE) -> list:
    total_pages = assignee_page_count(members, page_size)
    page = min(max(page, 0), total_pages - 1)
    start = page * page_size

    rows = [
        [button(f"👤 {m.full_name}", CallbackAction.ASSIGNEE, m.id)]
        for m in members[start:start + page_size]
    ]
    if total_pages > 1:
        nav = []
        if page > 0:
            nav.append(button("◀️ Prev", CallbackAction.ASSIGNEE_PREV))
        nav.append(button(f"{page + 1}/{total_pages}", CallbackAction.NOOP))
        if page < total_pages - 1:
            nav.append(button("Next ▶️", CallbackAction.ASSIGNEE_NEXT))
        rows.append(nav)
    rows.append([button("✏️ Type name", CallbackAction.ASSIGNEE_TYPE)])
    rows.append([button("⏭️ Skip", CallbackAction.ASSIGNEE_SKIP), button("❌ Cancel", CallbackAction.CANCEL)])
    return rows


def note_parent_type_keyboard() -> list:
    rows = [[button(label, CallbackAction.NOTE_PARENT_TYPE, slug)] for slug, label in NOTE_PARENT_TYPES.items()]
    rows.append([button("❌ Cancel", CallbackAction.CANCEL)])
    return rows


def note_parent_results_keyboard(results: list[SearchResult]) -> list:
    """One button per hit (record id as payload), then Search again / Cancel."""
    rows = []
    for result in results[:MAX_NOTE_PARENT_RESULTS]:
        label = f"{result.name} ({result.extra})" if result.extra else result.name
        rows.append([button(label, CallbackAction.NOTE_PARENT_SELECT, result.id)])
    rows.append([button("🔍 Search again", CallbackAction.NOTE_PARENT_SEARCH), button("❌ Cancel", CallbackAction.CANCEL)])
    return rows
