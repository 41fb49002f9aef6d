"""Safety net for "add to <name>" instructions.

The classifier sometimes answers "add to Acme" by creating a record called
Acme. Such suggestions become an add_note that first asks whether Acme is a
list, company or person; the answer is resolved by searching that record type
and offering the hits as a follow-up question.
"""

import logging
import re
from typing import Optional

from crmrelay.matching import filter_relevant
from crmrelay.models import Clarification, Intent, ListDefinition, SearchResult, SuggestedAction

logger = logging.getLogger(__name__)

ADD_TO_RE = re.compile(r"^add\s+to\s+(\S+)", re.IGNORECASE)

CREATION_INTENTS = {Intent.CREATE_COMPANY.value, Intent.CREATE_PERSON.value, Intent.CREATE_DEAL.value}

TARGET_TYPE_FIELD = "target_type"
TARGET_TYPE_OPTIONS = ["List", "Company", "Person"]

# answer -> object slug searched for it
TARGET_OBJECTS = {"company": "companies", "person": "people", "list": "lists"}

# selection field -> (extracted data key for the name, parent object or "" for lists)
SELECTION_FIELDS = {
    "company_selection": ("company", "companies"),
    "person_selection": ("person", "people"),
    "list_selection": ("list", ""),
}

MAX_OPTIONS = 5


def extract_target_name(instruction: Optional[str]) -> Optional[str]:
    match = ADD_TO_RE.match((instruction or "").strip())
    return match.group(1) if match else None


def is_target_type(answer: str) -> bool:
    return (answer or "").strip().lower() in TARGET_OBJECTS


def _without(action: SuggestedAction, field: str) -> list[Clarification]:
    return [c for c in action.clarifications_needed if c.field != field]


def enforce_add_to_pattern(action: SuggestedAction, instruction: Optional[str]) -> SuggestedAction:
    """Turn a create intent for "add to <name>" into a target_type question.

    Suggestions that already ask for the target type are forced to add_note;
    anything else passes through unchanged.
    """
    target = extract_target_name(instruction)
    if target is None:
        return action

    if any(c.field == TARGET_TYPE_FIELD for c in action.clarifications_needed):
        if action.intent != Intent.ADD_NOTE.value:
            action.intent = Intent.ADD_NOTE.value
        return action

    if action.intent in CREATION_INTENTS:
        logger.info("'add to %s' classified as %s, asking for the target type", target, action.intent)
        action.intent = Intent.ADD_NOTE.value
        action.clarifications_needed.insert(0, Clarification(
            field=TARGET_TYPE_FIELD,
            question=f"Is '{target}' a list, company, or person?",
            options=list(TARGET_TYPE_OPTIONS),
            reason="ambiguous",
        ))
    return action


async def _search(resolver, object_slug: str, name: str, lists: list[ListDefinition]) -> list[SearchResult]:
    if object_slug == "lists":
        candidates = [SearchResult(id=item.api_slug, name=item.name or item.api_slug) for item in lists]
        return filter_relevant(name, candidates)
    return await resolver.search(object_slug, name)


async def resolve_target_type(
    action: SuggestedAction,
    target_type: str,
    instruction: Optional[str],
    resolver,
    lists: list[ListDefinition],
) -> SuggestedAction:
    """Apply the answer to "Is 'X' a list, company, or person?".

    Hits become a ``<type>_selection`` question listing up to five names;
    no hits become a ``<type>_name`` question asking for the full name.
    Workspace lists are matched locally; records go through ``resolver``.
    """
    kind = target_type.strip().lower()
    object_slug = TARGET_OBJECTS.get(kind)
    if object_slug is None:
        return action

    remaining = _without(action, TARGET_TYPE_FIELD)
    action.extracted_data[TARGET_TYPE_FIELD] = kind
    action.intent = Intent.ADD_TO_LIST.value if kind == "list" else Intent.ADD_NOTE.value
    if kind != "list":
        action.target_object = object_slug

    target = extract_target_name(instruction)
    if target is None:
        action.clarifications_needed = remaining
        return action

    results = await _search(resolver, object_slug, target, lists)
    if results:
        shown = results[:MAX_OPTIONS]
        action.extracted_data["search_results"] = [{"id": r.id, "name": r.name} for r in shown]
        question = Clarification(
            field=f"{kind}_selection",
            question=f'Which {kind} is "{target}"?',
            options=[r.name for r in shown],
            reason="multiple_matches",
        )
    else:
        action.extracted_data["original_target"] = target
        question = Clarification(
            field=f"{kind}_name",
            question=f'No {kind} found matching "{target}". What is the full {kind} name?',
            reason="not_found",
        )
    logger.info("Target %r as %s: %d match(es)", target, kind, len(results))
    action.clarifications_needed = [question] + remaining
    return action


def resolve_selection(action: SuggestedAction, field: str, selected_name: str) -> SuggestedAction:
    """Map a picked search hit onto the fields the executor reads."""
    name_key, parent_object = SELECTION_FIELDS[field]
    hits = action.extracted_data.pop("search_results", None) or []
    chosen = next((h for h in hits if h["name"].lower() == selected_name.strip().lower()), None)

    action.extracted_data[name_key] = selected_name
    if chosen is not None:
        if parent_object:
            action.extracted_data["parent_record_id"] = chosen["id"]
            action.extracted_data["parent_object"] = parent_object
        else:
            action.extracted_data["list_id"] = chosen["id"]
    action.clarifications_needed = _without(action, field)
    return action
