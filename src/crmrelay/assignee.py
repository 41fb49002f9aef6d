"""Match a free-text assignee ("me", "anna", "bob@acme.io") to a workspace member."""

import logging
from dataclasses import dataclass
from typing import Optional

from crmrelay.matching import RELEVANCE_THRESHOLD, word_match_score
from crmrelay.models import WorkspaceMember
from crmrelay.session import CallerInfo

logger = logging.getLogger(__name__)

SELF_REFERENCES = {"me", "myself", "i", "self"}


@dataclass
class ResolvedAssignee:
    id: str
    name: str
    email: str = ""

    @classmethod
    def from_member(cls, member: WorkspaceMember) -> "ResolvedAssignee":
        return cls(id=member.id, name=member.full_name, email=member.email)


def caller_member(caller: Optional[CallerInfo], members: list[WorkspaceMember]) -> Optional[WorkspaceMember]:
    """The member the Telegram caller is, matched by first name (and last name to disambiguate)."""
    if caller is None:
        return None
    first = caller.first_name.strip().lower()
    last = caller.last_name.strip().lower()
    if not first:
        return None
    same_first = [m for m in members if m.first_name.strip().lower() == first]
    for member in same_first:
        if last and member.last_name.strip().lower() == last:
            return member
    return same_first[0] if len(same_first) == 1 else None


def resolve_assignee(
    name: Optional[str],
    caller: Optional[CallerInfo],
    members: list[WorkspaceMember],
    default_to_caller: bool = True,
) -> Optional[ResolvedAssignee]:
    """Best member for ``name``, or None.

    "me" always means the caller. An empty name means the caller only when
    ``default_to_caller`` is set. Otherwise: exact email, exact full name,
    exact first name, then the single best fuzzy word match.
    """
    text = (name or "").strip().lower()
    if text in SELF_REFERENCES or (not text and default_to_caller):
        member = caller_member(caller, members)
        if member is None:
            logger.info("Caller %s is not a workspace member", caller.display_name if caller else "?")
            return None
        return ResolvedAssignee.from_member(member)
    if not text:
        return None

    for member in members:
        if member.email and member.email.lower() == text:
            return ResolvedAssignee.from_member(member)
    for member in members:
        if member.full_name.lower() == text:
            return ResolvedAssignee.from_member(member)
    first_names = [m for m in members if m.first_name.lower() == text]
    if len(first_names) == 1:
        return ResolvedAssignee.from_member(first_names[0])

    scored = sorted(
        ((word_match_score(text, f"{m.full_name} {m.email.split('@')[0]}"), i, m) for i, m in enumerate(members)),
        key=lambda item: (-item[0], item[1]),
    )
    if not scored or scored[0][0] < RELEVANCE_THRESHOLD:
        logger.info("No workspace member matches %r", name)
        return None
    if len(scored) > 1 and scored[1][0] == scored[0][0]:
        logger.info("Assignee %r is ambiguous", name)
        return None
    return ResolvedAssignee.from_member(scored[0][2])
