"""Inbound events and Telegram ``Update`` parsing.

Each event type carries a ``kind`` that the state machine uses to pick its
handler (``_handle_<state>_<kind>``).
"""

from dataclasses import dataclass
from typing import ClassVar, Optional

from crmrelay.session import CallerInfo, ForwardedMessage

MEDIA_TYPES = ("photo", "video", "document", "audio", "voice", "video_note")


@dataclass
class ForwardedMessageEvent:
    kind: ClassVar[str] = "forwarded_message"
    message: ForwardedMessage
    caller: Optional[CallerInfo] = None


@dataclass
class CommandEvent:
    kind: ClassVar[str] = "command"
    name: str
    argument: str = ""
    caller: Optional[CallerInfo] = None
    message_id: int = 0


@dataclass
class TextMessageEvent:
    kind: ClassVar[str] = "text"
    text: str
    caller: Optional[CallerInfo] = None
    message_id: int = 0


@dataclass
class CallbackQueryEvent:
    kind: ClassVar[str] = "callback"
    data: str
    callback_id: str = ""
    message_id: Optional[int] = None
    caller: Optional[CallerInfo] = None


@dataclass
class TerminateEvent:
    """Internal: a newer session replaced this one."""

    kind: ClassVar[str] = "terminate"
    reason: str = "superseded"


def _caller(user: Optional[dict]) -> Optional[CallerInfo]:
    if not user:
        return None
    return CallerInfo(
        first_name=user.get("first_name", ""),
        last_name=user.get("last_name", ""),
        username=user.get("username", ""),
    )


def _forwarded_message(message: dict) -> ForwardedMessage:
    origin = message.get("forward_origin") or {}
    origin_type = origin.get("type")
    username = first_name = last_name = ""
    chat_name = "Unknown"

    if origin_type == "user" and origin.get("sender_user"):
        user = origin["sender_user"]
        username = user.get("username", "")
        first_name = user.get("first_name", "")
        last_name = user.get("last_name", "")
        chat_name = " ".join(p for p in (first_name, last_name) if p) or "Unknown"
    elif origin_type == "chat" and origin.get("sender_chat"):
        chat_name = origin["sender_chat"].get("title") or "Unknown Chat"
    elif origin_type == "channel" and origin.get("chat"):
        chat_name = origin["chat"].get("title") or "Unknown Channel"
    elif origin_type == "hidden_user":
        chat_name = origin.get("sender_user_name") or "Hidden User"

    media_type = next((m for m in MEDIA_TYPES if message.get(m)), "")
    return ForwardedMessage(
        text=message.get("text") or message.get("caption") or "",
        chat_name=chat_name,
        date=message.get("date", 0),
        message_id=message.get("message_id", 0),
        sender_username=username,
        sender_first_name=first_name,
        sender_last_name=last_name,
        media_type=media_type,
    )


def parse_command(text: str) -> tuple[str, str]:
    """"/done@my_bot create task" -> ("done", "create task")."""
    head, _, rest = text.strip().partition(" ")
    name = head[1:].split("@", 1)[0].lower()
    return name, rest.strip()


def parse_update(update: dict) -> Optional[tuple[int, int, object]]:
    """(chat_id, user_id, event) for updates the bot acts on, else None."""
    callback = update.get("callback_query")
    if callback:
        message = callback.get("message") or {}
        chat = message.get("chat") or {}
        user = callback.get("from") or {}
        if "id" not in chat or "id" not in user:
            return None
        return chat["id"], user["id"], CallbackQueryEvent(
            data=callback.get("data", ""),
            callback_id=str(callback.get("id", "")),
            message_id=message.get("message_id"),
            caller=_caller(user),
        )

    message = update.get("message")
    if not message:
        return None
    chat = message.get("chat") or {}
    user = message.get("from") or {}
    if "id" not in chat or "id" not in user:
        return None
    chat_id, user_id, caller = chat["id"], user["id"], _caller(user)

    if message.get("forward_origin"):
        return chat_id, user_id, ForwardedMessageEvent(message=_forwarded_message(message), caller=caller)

    text = (message.get("text") or "").strip()
    if not text:
        return None
    if text.startswith("/"):
        name, argument = parse_command(text)
        return chat_id, user_id, CommandEvent(
            name=name, argument=argument, caller=caller, message_id=message.get("message_id", 0)
        )
    return chat_id, user_id, TextMessageEvent(text=text, caller=caller, message_id=message.get("message_id", 0))
