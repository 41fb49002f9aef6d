"""Suggested actions, execution results and workspace schema types.

``SuggestedAction.from_dict`` is the single validation point for anything the
classifier returns: unknown intents are rejected and confidence is clamped to
[0, 1]. The same dict shape is what the session store persists.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Intent(str, Enum):
    CREATE_PERSON = "create_person"
    CREATE_COMPANY = "create_company"
    CREATE_DEAL = "create_deal"
    CREATE_TASK = "create_task"
    ADD_NOTE = "add_note"
    ADD_TO_LIST = "add_to_list"

    @property
    def label(self) -> str:
        return INTENT_LABELS[self]

    @property
    def emoji(self) -> str:
        return INTENT_EMOJIS[self]


INTENT_LABELS = {
    Intent.CREATE_PERSON: "Create Person",
    Intent.CREATE_COMPANY: "Create Company",
    Intent.CREATE_DEAL: "Create Deal",
    Intent.CREATE_TASK: "Create Task",
    Intent.ADD_NOTE: "Add Note",
    Intent.ADD_TO_LIST: "Add to List",
}

INTENT_EMOJIS = {
    Intent.CREATE_PERSON: "👤",
    Intent.CREATE_COMPANY: "🏢",
    Intent.CREATE_DEAL: "💰",
    Intent.CREATE_TASK: "📋",
    Intent.ADD_NOTE: "📝",
    Intent.ADD_TO_LIST: "📋",
}

# Intents whose records get linked to a company ("Change company" button).
COMPANY_LINKED_INTENTS = {Intent.CREATE_PERSON, Intent.CREATE_DEAL, Intent.CREATE_TASK}

PREREQUISITE_INTENTS = {Intent.CREATE_COMPANY, Intent.CREATE_PERSON}

CLARIFICATION_REASONS = {"missing", "ambiguous", "multiple_matches", "not_found"}


def is_known_intent(value: str) -> bool:
    return value in {i.value for i in Intent}


@dataclass
class Clarification:
    field: str
    question: str
    options: list[str] = field(default_factory=list)
    reason: str = "missing"

    @classmethod
    def from_dict(cls, data: dict) -> "Clarification":
        reason = data.get("reason") or "missing"
        if reason not in CLARIFICATION_REASONS:
            reason = "ambiguous"
        return cls(
            field=str(data.get("field", "")),
            question=str(data.get("question", "")),
            options=[str(o) for o in (data.get("options") or [])],
            reason=reason,
        )

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "question": self.question,
            "options": list(self.options),
            "reason": self.reason,
        }


@dataclass
class PrerequisiteAction:
    intent: str
    extracted_data: dict = field(default_factory=dict)
    reason: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "PrerequisiteAction":
        intent = str(data.get("intent", ""))
        if intent not in {i.value for i in PREREQUISITE_INTENTS}:
            raise ValueError(f"Prerequisite intent not allowed: {intent}")
        return cls(
            intent=intent,
            extracted_data=dict(data.get("extractedData") or data.get("extracted_data") or {}),
            reason=str(data.get("reason", "")),
        )

    def to_dict(self) -> dict:
        return {"intent": self.intent, "extractedData": dict(self.extracted_data), "reason": self.reason}


@dataclass
class SuggestedAction:
    intent: str
    confidence: float = 0.0
    target_object: str = ""
    target_list: str = ""
    extracted_data: dict = field(default_factory=dict)
    missing_required: list[str] = field(default_factory=list)
    clarifications_needed: list[Clarification] = field(default_factory=list)
    prerequisite_actions: list[PrerequisiteAction] = field(default_factory=list)
    note_title: str = ""
    reasoning: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "SuggestedAction":
        """Build from the camelCase payload the classifier returns.

        Raises ValueError on an intent outside the closed set.
        """
        intent = str(data.get("intent", ""))
        if not is_known_intent(intent):
            raise ValueError(f"Unknown intent: {intent!r}")
        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        return cls(
            intent=intent,
            confidence=min(1.0, max(0.0, confidence)),
            target_object=str(data.get("targetObject") or ""),
            target_list=str(data.get("targetList") or ""),
            extracted_data=dict(data.get("extractedData") or {}),
            missing_required=[str(f) for f in (data.get("missingRequired") or [])],
            clarifications_needed=[
                Clarification.from_dict(c) for c in (data.get("clarificationsNeeded") or [])
            ],
            prerequisite_actions=[
                PrerequisiteAction.from_dict(p) for p in (data.get("prerequisiteActions") or [])
            ],
            note_title=str(data.get("noteTitle") or ""),
            reasoning=str(data.get("reasoning") or ""),
        )

    def to_dict(self) -> dict:
        return {
            "intent": self.intent,
            "confidence": self.confidence,
            "targetObject": self.target_object,
            "targetList": self.target_list,
            "extractedData": dict(self.extracted_data),
            "missingRequired": list(self.missing_required),
            "clarificationsNeeded": [c.to_dict() for c in self.clarifications_needed],
            "prerequisiteActions": [p.to_dict() for p in self.prerequisite_actions],
            "noteTitle": self.note_title,
            "reasoning": self.reasoning,
        }

    @property
    def head_clarification(self) -> Optional[Clarification]:
        return self.clarifications_needed[0] if self.clarifications_needed else None

    def answer_head(self, value: Any = None) -> Optional[Clarification]:
        """Pop the head clarification, writing ``value`` into extracted data.

        Returns the answered clarification, or None when nothing was pending.
        """
        if not self.clarifications_needed:
            return None
        clarification = self.clarifications_needed.pop(0)
        if value is not None:
            self.extracted_data[clarification.field] = value
        return clarification


@dataclass
class SearchResult:
    id: str
    name: str
    extra: str = ""


@dataclass
class CreatedRecord:
    id: str
    url: str = ""


@dataclass
class CreatedPrerequisite:
    name: str
    url: str = ""
    kind: str = "company"


@dataclass
class ActionResult:
    success: bool
    record_id: str = ""
    record_url: str = ""
    note_id: str = ""
    error: str = ""
    note_error: str = ""
    created_prerequisites: list[CreatedPrerequisite] = field(default_factory=list)


# ── Workspace schema ──


@dataclass
class Attribute:
    api_slug: str
    title: str
    type: str
    is_required: bool = False
    is_writable: bool = True
    is_archived: bool = False
    description: str = ""


@dataclass
class ObjectDefinition:
    api_slug: str
    singular_noun: str
    plural_noun: str = ""
    attributes: list[Attribute] = field(default_factory=list)


@dataclass
class ListDefinition:
    api_slug: str
    name: str
    parent_object: str = ""


@dataclass
class WorkspaceMember:
    id: str
    first_name: str
    last_name: str
    email: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class WorkspaceSchema:
    objects: list[ObjectDefinition] = field(default_factory=list)
    lists: list[ListDefinition] = field(default_factory=list)
    members: list[WorkspaceMember] = field(default_factory=list)

    def member(self, member_id: str) -> Optional[WorkspaceMember]:
        for m in self.members:
            if m.id == member_id:
                return m
        return None
