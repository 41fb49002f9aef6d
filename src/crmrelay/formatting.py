"""User-facing text: suggestion previews, execution results, note bodies."""

import re
from datetime import datetime, timezone
from typing import Any, Optional

from crmrelay.models import ActionResult, Intent, SuggestedAction, is_known_intent
from crmrelay.session import ForwardedMessage

ERROR_PREVIEW_LENGTH = 200

# key: (label, display priority)
FIELD_CONFIG = {
    "name": ("Name", 1),
    "content": ("Task", 1),
    "title": ("Title", 1),
    "email_addresses": ("Email", 2),
    "email": ("Email", 2),
    "value": ("Value", 2),
    "assignee": ("Assignee", 2),
    "phone_numbers": ("Phone", 3),
    "phone": ("Phone", 3),
    "deadline_at": ("Due", 3),
    "deadline": ("Due", 3),
    "due_date": ("Due", 3),
    "company": ("Company", 4),
    "associated_company": ("Company", 4),
    "person": ("Person", 4),
    "deal": ("Deal", 4),
    "list": ("List", 4),
    "domains": ("Domain", 5),
    "job_title": ("Job title", 5),
    "primary_location": ("Location", 6),
    "description": ("Description", 10),
}

SKIP_FIELDS = {
    "noteTitle", "linked_record_id", "linked_record_object", "assignee_email",
    "assignee_id", "stage", "owner", "ownerEmail", "owner_email", "record_id",
    "parent_object", "parent_record_id", "list_id", "search_results", "target_type",
    "original_target",
}

DATE_FIELDS = {"deadline_at", "deadline", "due_date", "date"}

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")

HELP_TEXT = """🤖 CRM assistant

✨ What I can do:
• Create contacts, companies and deals
• Add records to lists
• Create tasks with assignees and due dates
• Add notes to any record

📦 How to use:
1️⃣ Forward messages from any conversation
2️⃣ /done create a contact
3️⃣ Review and confirm

Commands:
/done <instruction> - Process queued messages
/clear - Clear message queue
/cancel - Cancel the current operation
/session - Show session status
/help - Show this help message"""

WELCOME_TEXT = f"👋 Welcome!\n\n{HELP_TEXT}"


def truncate(text: str, limit: int = ERROR_PREVIEW_LENGTH) -> str:
    return text if len(text) <= limit else text[:limit]


def intent_label(intent: str) -> str:
    if is_known_intent(intent):
        member = Intent(intent)
        return f"{member.emoji} {member.label}"
    return intent


def field_label(key: str) -> str:
    return FIELD_CONFIG.get(key, (key.replace("_", " "), 99))[0]


def format_value(key: str, value: Any) -> Optional[str]:
    if value is None or value == "" or value == [] or value == {}:
        return None
    if isinstance(value, dict):
        if value.get("amount") is not None:
            try:
                return f"${float(value['amount']):,.0f} {value.get('currency') or 'USD'}"
            except (TypeError, ValueError):
                return str(value["amount"])
        return ", ".join(f"{k}: {v}" for k, v in value.items())
    if isinstance(value, list):
        parts = [format_value(key, v) for v in value]
        return ", ".join(p for p in parts if p) or None

    text = str(value)
    if key in DATE_FIELDS and _ISO_DATE_RE.match(text):
        try:
            moment = datetime.fromisoformat(text[:10])
            return f"{moment:%a, %b} {moment.day}, {moment:%Y}"
        except ValueError:
            pass
    if text.lower() in ("undefined", "null", "none"):
        return None
    return text


def display_fields(action: SuggestedAction) -> list[tuple[str, str, str]]:
    """(key, label, value) for every showable field, by priority."""
    fields = []
    for index, (key, value) in enumerate(action.extracted_data.items()):
        if key in SKIP_FIELDS:
            continue
        shown = format_value(key, value)
        if not shown:
            continue
        label, priority = FIELD_CONFIG.get(key, (key.replace("_", " "), 99))
        fields.append((priority, index, key, label, shown))
    fields.sort()
    return [(key, label, shown) for _, _, key, label, shown in fields]


def editable_fields(action: SuggestedAction) -> list[str]:
    return [key for key, _, _ in display_fields(action)]


def format_suggested_action(action: SuggestedAction) -> str:
    lines = [intent_label(action.intent), ""]
    for _, label, shown in display_fields(action):
        lines.append(f"{label}: {shown}")

    if action.prerequisite_actions:
        lines.extend(["", "📦 Will also create:"])
        for prereq in action.prerequisite_actions:
            name = prereq.extracted_data.get("name") or "item"
            lines.append(f"{Intent(prereq.intent).emoji} {name}")

    if action.note_title:
        lines.extend(["", f"📎 {action.note_title}"])

    if action.clarifications_needed:
        lines.extend(["", "⚠️ Need info:"])
        for clarification in action.clarifications_needed:
            lines.append(f"• {clarification.question}")
    return "\n".join(lines)


def format_clarification(action: SuggestedAction) -> str:
    head = action.head_clarification
    remaining = len(action.clarifications_needed)
    if head is None:
        return "No open questions."
    text = f"❓ {head.question}"
    if remaining > 1:
        text += f"\n\n({remaining - 1} more after this)"
    return text


def format_result(result: ActionResult) -> str:
    if not result.success:
        return f"❌ Failed: {truncate(result.error or 'Unknown error')}"

    lines = ["✅ Created successfully!"]
    if result.record_url:
        lines.extend(["", f"🔗 [View in Attio]({result.record_url})"])
    if result.created_prerequisites:
        lines.extend(["", "📦 Also created:"])
        for prereq in result.created_prerequisites:
            emoji = "👤" if prereq.kind == "person" else "🏢"
            entry = f"[{prereq.name}]({prereq.url})" if prereq.url else prereq.name
            lines.append(f"{emoji} {entry}")
    if result.note_error:
        lines.extend(["", f"⚠️ Note not attached: {truncate(result.note_error)}"])
    return "\n".join(lines)


def format_messages_for_note(
    messages: list[ForwardedMessage],
    now: Optional[datetime] = None,
) -> tuple[str, str]:
    """(title, markdown content) for the note that carries the forwarded chat."""
    now = now or datetime.now(timezone.utc)
    chat_name = messages[0].chat_name if messages else "Unknown"
    title = f"Telegram conversation with {chat_name} - {now:%b} {now.day}, {now:%Y %H:%M}"

    blocks = []
    for message in messages:
        sent = datetime.fromtimestamp(message.date, timezone.utc) if message.date else now
        body = message.text
        if not body:
            body = f"*[sent a {message.media_type}]*" if message.media_type else "*[empty message]*"
        blocks.append(f"**[{sent:%H:%M}] {message.sender}:**\n{body}")
    return title, "\n\n".join(blocks)
