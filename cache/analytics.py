"""
Analytics result cache.

Analytics results are expensive to compute and depend on the user's profile,
so each result is cached per ``(user, analytics type)`` with a short TTL and
tagged with the profile version it was computed from. Reading with a newer
profile version misses and recomputes; a profile, skills or record change
signal evicts every analytics key of the user outright.
"""

import logging
from typing import Any, Awaitable, Callable, List, Optional

from cache.keys import CacheKeys
from cache.store import CacheEntry, CacheStore

logger = logging.getLogger(__name__)

DEFAULT_ANALYTICS_TTL_MS = 5 * 60 * 1000


class AnalyticsCache:
    """TTL + version cache for analytics results."""

    def __init__(self, store: CacheStore, ttl_ms: float = DEFAULT_ANALYTICS_TTL_MS):
        self.store = store
        self.ttl_ms = ttl_ms

    async def get(
        self,
        user_id: str,
        analytics_type: str,
        version: Optional[str],
        compute: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Return the cached result or compute, cache and return it.

        Args:
            user_id: Owner of the result
            analytics_type: Result family, e.g. "salary" or "skills-gap"
            version: Profile version the result must be computed from,
                or None to accept any cached version
            compute: Async producer called on a miss

        Returns:
            The analytics result
        """
        key = CacheKeys.analytics(user_id, analytics_type)
        return await self.store.fetch_through(key, compute, ttl_ms=self.ttl_ms, version=version)

    def entry(self, user_id: str, analytics_type: str) -> Optional[CacheEntry]:
        """Raw cached entry (with its version tag), without validity checks."""
        return self.store.peek(CacheKeys.analytics(user_id, analytics_type))

    def cached_types(self, user_id: str) -> List[str]:
        prefix = CacheKeys.analytics_prefix(user_id)
        return sorted(key[len(prefix):] for key in self.store.keys() if key.startswith(prefix))

    def invalidate(self, user_id: str, analytics_type: Optional[str] = None) -> int:
        """Evict one result type, or every result of the user. Returns count removed."""
        if analytics_type is not None:
            return int(self.store.invalidate(CacheKeys.analytics(user_id, analytics_type)))
        removed = self.store.invalidate_all(CacheKeys.analytics_prefix(user_id))
        logger.debug("Evicted %d analytics results for %s", removed, user_id)
        return removed
