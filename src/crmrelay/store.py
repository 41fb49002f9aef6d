import logging
import time
from typing import Callable, Optional

from crmrelay.session import ConversationSession

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TTL = 3600.0


class SessionStore:
    """In-memory key-value store of session dicts, keyed by (chat, user).

    Sessions are stored in their ``to_dict`` form, the same shape a remote
    store would hold, and expire after ``idle_ttl`` seconds without a save.
    Expired entries are dropped on load and swept on every save.
    """

    def __init__(self, idle_ttl: float = DEFAULT_IDLE_TTL, clock: Callable[[], float] = time.monotonic):
        self.idle_ttl = idle_ttl
        self.clock = clock
        self._data: dict[tuple[int, int], tuple[dict, float]] = {}

    async def load(self, chat_id: int, user_id: int) -> Optional[ConversationSession]:
        entry = self._data.get((chat_id, user_id))
        if entry is None:
            return None
        data, expires_at = entry
        if self.clock() >= expires_at:
            logger.info("Session %s/%s expired after %.0fs idle", chat_id, user_id, self.idle_ttl)
            del self._data[(chat_id, user_id)]
            return None
        try:
            return ConversationSession.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.error("Discarding unreadable session %s/%s: %s", chat_id, user_id, e)
            del self._data[(chat_id, user_id)]
            return None

    async def save(self, session: ConversationSession) -> None:
        now = self.clock()
        self._sweep(now)
        self._data[(session.chat_id, session.user_id)] = (session.to_dict(), now + self.idle_ttl)

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._data.items() if now >= expires_at]
        for key in expired:
            del self._data[key]
        if expired:
            logger.debug("Swept %d expired session(s)", len(expired))
