import time
from dataclasses import dataclass, field
from typing import Optional

from crmrelay.models import SearchResult, SuggestedAction
from crmrelay.states import State


@dataclass
class CallerInfo:
    first_name: str = ""
    last_name: str = ""
    username: str = ""

    @property
    def display_name(self) -> str:
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or self.username


@dataclass
class ForwardedMessage:
    text: str
    chat_name: str = "Unknown"
    date: int = 0
    message_id: int = 0
    sender_username: str = ""
    sender_first_name: str = ""
    sender_last_name: str = ""
    media_type: str = ""

    @property
    def sender(self) -> str:
        if self.sender_username:
            return f"@{self.sender_username}"
        full = " ".join(p for p in (self.sender_first_name, self.sender_last_name) if p)
        return full or "Unknown"


@dataclass
class ConversationSession:
    chat_id: int
    user_id: int
    state: State = State.IDLE

    # Collected input
    message_queue: list = field(default_factory=list)
    current_instruction: str = ""
    caller_info: Optional[CallerInfo] = None

    # Classification
    current_action: Optional[SuggestedAction] = None
    editing_field: str = ""
    assignee_page: int = 0

    # Note parent picker
    note_parent_object: str = ""
    note_parent_results: list = field(default_factory=list)

    # Transport
    last_message_id: Optional[int] = None

    # Metadata
    started_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    terminated: bool = False

    def reset(self):
        """Back to idle, dropping queued messages and the current suggestion."""
        self.state = State.IDLE
        self.message_queue = []
        self.current_action = None
        self.current_instruction = ""
        self.editing_field = ""
        self.assignee_page = 0
        self.note_parent_object = ""
        self.note_parent_results = []

    def to_dict(self) -> dict:
        return {
            "chat_id": self.chat_id,
            "user_id": self.user_id,
            "state": self.state.value,
            "message_queue": [vars(m).copy() for m in self.message_queue],
            "current_instruction": self.current_instruction,
            "caller_info": vars(self.caller_info).copy() if self.caller_info else None,
            "current_action": self.current_action.to_dict() if self.current_action else None,
            "editing_field": self.editing_field,
            "assignee_page": self.assignee_page,
            "note_parent_object": self.note_parent_object,
            "note_parent_results": [vars(r).copy() for r in self.note_parent_results],
            "last_message_id": self.last_message_id,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationSession":
        action = data.get("current_action")
        caller = data.get("caller_info")
        return cls(
            chat_id=data["chat_id"],
            user_id=data["user_id"],
            state=State(data.get("state", "idle")),
            message_queue=[ForwardedMessage(**m) for m in data.get("message_queue", [])],
            current_instruction=data.get("current_instruction", ""),
            caller_info=CallerInfo(**caller) if caller else None,
            current_action=SuggestedAction.from_dict(action) if action else None,
            editing_field=data.get("editing_field", ""),
            assignee_page=data.get("assignee_page", 0),
            note_parent_object=data.get("note_parent_object", ""),
            note_parent_results=[SearchResult(**r) for r in data.get("note_parent_results", [])],
            last_message_id=data.get("last_message_id"),
            started_at=data.get("started_at", time.time()),
            updated_at=data.get("updated_at", time.time()),
        )
