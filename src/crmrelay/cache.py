"""Process-wide TTL cache for slow-changing CRM metadata.

Shared by every session for the workspace schema and deal stages. Entries are
never invalidated on write; they simply age out. The clock is injectable so
tests can move time forward.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

@dataclass
class TTLCache:
    default_ttl: float = 300.0
    clock: Callable[[], float] = time.monotonic

    _entries: dict = field(default_factory=dict, init=False, repr=False)

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self.clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        self._entries[key] = (value, self.clock() + ttl)

    async def get_or_refresh(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
    ) -> Any:
        """Cached value for ``key``, or await ``loader()`` and cache its result.

        Loader exceptions propagate and nothing is cached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        logger.debug("Cache miss for %s, refreshing", key)
        value = await loader()
        self.set(key, value, ttl)
        return value
