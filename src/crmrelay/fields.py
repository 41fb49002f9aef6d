"""Field lookup over classifier-extracted data.

The classifier names the same field several ways ("deadline_at", "due_date",
"due", ...). Each logical field maps to its synonym keys in priority order;
``lookup`` returns the first non-empty value.
"""

from typing import Any

FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "name": ("name", "full_name"),
    "email": ("email_addresses", "email"),
    "phone": ("phone_numbers", "phone"),
    "company": ("associated_company", "company"),
    "person": ("person", "associated_person"),
    "job_title": ("job_title",),
    "description": ("description",),
    "domain": ("domains", "domain"),
    "location": ("primary_location", "location"),
    "value": ("value", "amount"),
    "owner": ("owner", "owner_email", "ownerEmail"),
    "deadline": ("deadline_at", "due_date", "deadline", "due date", "due", "date"),
    "task_content": ("content", "title", "task"),
    "assignee": ("assignee", "assignee_email"),
    "assignee_email": ("assignee_email", "assignee"),
    "assignee_id": ("assignee_id",),
    "linked_record_id": ("linked_record_id",),
    "linked_record_object": ("linked_record_object",),
    "record_id": ("record_id",),
    "list": ("list_id", "list_slug", "list"),
}

_EMPTY_STRINGS = {"", "undefined", "null", "none"}


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() in _EMPTY_STRINGS
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def lookup(data: dict, name: str) -> Any:
    """First non-empty value among the synonyms of ``name``, else None."""
    for key in FIELD_SYNONYMS.get(name, (name,)):
        value = data.get(key)
        if not _is_empty(value):
            return value
    return None


def lookup_text(data: dict, name: str) -> str:
    """Like ``lookup`` but flattened to a stripped string ("" when absent).

    Lists collapse to their first element; dicts keep their most
    descriptive scalar (email_address, phone_number, domain, value).
    """
    value = lookup(data, name)
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        value = value[0]
    if isinstance(value, dict):
        for key in ("email_address", "phone_number", "domain", "full_name", "value", "name"):
            if not _is_empty(value.get(key)):
                value = value[key]
                break
        else:
            return ""
    return str(value).strip()
