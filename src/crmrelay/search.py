"""Fuzzy record search on top of the CRM's strict full-text search.

The CRM only matches whole tokens, so short or domain-like mentions ("p2p")
come back empty or noisy. Each stage widens the query and every stage's hits
go through the same relevance filter; the first stage with relevant hits wins.
"""

import logging
import re

from crmrelay.matching import filter_relevant, match_confidence, strip_company_suffixes
from crmrelay.models import SearchResult

logger = logging.getLogger(__name__)

DOMAIN_SUFFIXES = (".com", ".org", ".io", ".xyz", ".co")

_DOMAIN_LIKE_RE = re.compile(r"^[a-z0-9]{2,10}$")
_SHORT_NAME_RE = re.compile(r"^[a-z0-9]{2,6}$")


class EntityResolver:
    """Maps free-text mentions to existing records.

    ``store`` needs one coroutine: ``search(object_slug, query) -> list[SearchResult]``.
    """

    def __init__(self, store):
        self.store = store

    async def search(self, object_slug: str, query: str) -> list[SearchResult]:
        query = (query or "").strip()
        if not query:
            return []

        # 1. Query as given
        results = filter_relevant(query, await self.store.search(object_slug, query))
        if results:
            return self._log_hit(object_slug, query, "exact", results)

        # 2. Without legal suffixes
        stripped = strip_company_suffixes(query)
        if stripped and stripped != query.lower():
            results = filter_relevant(query, await self.store.search(object_slug, stripped))
            if results:
                return self._log_hit(object_slug, query, "stripped", results)

        # 3. Short names are often domains: p2p -> p2p.io
        if _DOMAIN_LIKE_RE.match(stripped):
            merged = []
            for suffix in DOMAIN_SUFFIXES:
                merged.extend(await self.store.search(object_slug, f"{stripped}{suffix}"))
            results = filter_relevant(query, merged)
            if results:
                return self._log_hit(object_slug, query, "domain", results)

        # 4. Very short names: broad prefix query, filtered hard
        if _SHORT_NAME_RE.match(stripped):
            prefix = stripped[:3] if len(stripped) >= 3 else stripped[:2]
            results = filter_relevant(query, await self.store.search(object_slug, prefix))
            if results:
                return self._log_hit(object_slug, query, "prefix", results)

        logger.info("No %s match for %r", object_slug, query)
        return []

    async def find_one(self, object_slug: str, query: str):
        """Best match or None."""
        results = await self.search(object_slug, query)
        return results[0] if results else None

    def _log_hit(self, object_slug, query, stage, results):
        confidence, reason = match_confidence(query, results)
        logger.info(
            "Resolved %s %r -> %r via %s search (%s: %s)",
            object_slug, query, results[0].name, stage, confidence, reason,
        )
        return results
