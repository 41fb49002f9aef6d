"""CRM attribute-value payloads built from extracted data.

Each builder returns the ``values`` map the record-create endpoint expects,
leaving out anything empty so the CRM keeps its own defaults.
"""

import re
from typing import Any, Optional

_FROM_RE = re.compile(r"^(.+?)\s+from\s+(\S+\.\S+)$", re.IGNORECASE)
_PAREN_RE = re.compile(r"^(.+?)\s*\((\S+\.\S+)\)$")
_DOMAIN_RE = re.compile(r"^(?:https?://)?(?:www\.)?([a-z0-9-]+\.[a-z.]+)$", re.IGNORECASE)
_MONEY_RE = re.compile(r"^\$?\s*([\d,]+(?:\.\d+)?)\s*([km])?$", re.IGNORECASE)


def parse_company_input(text: str) -> tuple[str, str]:
    """Split a company mention into (name, domain).

    Understands "Acme from acme.io", "Acme (acme.io)" and a bare domain
    ("acme.io" -> "Acme"). Domain is "" when none was given.
    """
    trimmed = text.strip()
    match = _FROM_RE.match(trimmed) or _PAREN_RE.match(trimmed)
    if match:
        return match.group(1).strip(), match.group(2).lower()
    match = _DOMAIN_RE.match(trimmed)
    if match:
        domain = match.group(1).lower()
        label = domain.split(".")[0]
        return label[:1].upper() + label[1:], domain
    return trimmed, ""


def parse_money(value: Any) -> Optional[float]:
    """Amount from ``{amount, currency}``, a number, or text like "$50k"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        return parse_money(value.get("amount"))
    if isinstance(value, (int, float)):
        return float(value)
    match = _MONEY_RE.match(str(value).strip())
    if not match:
        return None
    amount = float(match.group(1).replace(",", ""))
    multiplier = {"k": 1_000, "m": 1_000_000}.get((match.group(2) or "").lower(), 1)
    return amount * multiplier


def record_reference(object_slug: str, record_id: str) -> dict:
    return {"target_object": object_slug, "target_record_id": record_id}


def person_values(
    name: str,
    email: str = "",
    phone: str = "",
    company_id: str = "",
    job_title: str = "",
    description: str = "",
) -> dict:
    values: dict[str, Any] = {}
    if name:
        first, _, last = name.strip().partition(" ")
        values["name"] = {"first_name": first, "last_name": last.strip(), "full_name": name.strip()}
    if email:
        values["email_addresses"] = [{"email_address": email}]
    if phone:
        values["phone_numbers"] = [{"phone_number": phone}]
    if company_id:
        values["company"] = [record_reference("companies", company_id)]
    if job_title:
        values["job_title"] = job_title
    if description:
        values["description"] = description
    return values


def company_values(name: str, domain: str = "", location: str = "", description: str = "") -> dict:
    values: dict[str, Any] = {"name": name}
    if domain:
        values["domains"] = [domain]
    if location:
        values["primary_location"] = location
    if description:
        values["description"] = description
    return values


def deal_values(
    name: str,
    value: Optional[float] = None,
    stage: str = "",
    company_id: str = "",
    owner: str = "",
) -> dict:
    values: dict[str, Any] = {"name": name}
    if value is not None:
        values["value"] = value
    if stage:
        values["stage"] = stage
    if company_id:
        values["associated_company"] = record_reference("companies", company_id)
    if owner:
        values["owner"] = owner
    return values


def task_payload(
    content: str,
    deadline_at: Optional[str] = None,
    linked_object: str = "",
    linked_record_id: str = "",
    assignee_id: str = "",
) -> dict:
    """Body ``data`` for the task-create endpoint."""
    return {
        "content": content,
        "format": "plaintext",
        "is_completed": False,
        "deadline_at": deadline_at,
        "linked_records": (
            [record_reference(linked_object, linked_record_id)]
            if linked_object and linked_record_id else []
        ),
        "assignees": (
            [{"referenced_actor_type": "workspace-member", "referenced_actor_id": assignee_id}]
            if assignee_id else []
        ),
    }
