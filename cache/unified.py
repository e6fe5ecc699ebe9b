"""
Unified domain cache: one fetch, one cache entry, many selectors.

A domain (user profile, for example) is fetched as one snapshot per scope and
stored under a single ``CacheStore`` key. Consumers that need only part of the
domain go through named selectors, which are pure functions over the
snapshot. Every selector therefore shares the same entry and the same
invalidation: evicting the one key refreshes all of them.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from cache.store import MISS, CacheStore
from models.errors import create_validation_error

logger = logging.getLogger(__name__)

Selector = Callable[[Any], Any]


class UnifiedDomainCache:
    """
    Read-through cache for a whole domain snapshot plus named projections.

    Usage:
        cache = UnifiedDomainCache(store, "profile", fetch_all, ttl_ms, selectors)
        header = await cache.select(user_id, "header")
    """

    def __init__(
        self,
        store: CacheStore,
        name: str,
        fetch_all: Callable[[str], Awaitable[Any]],
        ttl_ms: Optional[float] = None,
        selectors: Optional[Mapping[str, Selector]] = None,
        key_for: Optional[Callable[[str], str]] = None,
    ):
        self.store = store
        self.name = name
        self.fetch_all = fetch_all
        self.ttl_ms = ttl_ms
        self.selectors: Dict[str, Selector] = dict(selectors or {})
        self._key_for = key_for or (lambda scope: f"{name}:{scope}:unified")

    def key(self, scope_key: str) -> str:
        return self._key_for(scope_key)

    def selector_names(self) -> List[str]:
        return sorted(self.selectors)

    async def fetch_unified(self, scope_key: str) -> Any:
        """Return the cached snapshot for ``scope_key``, fetching it on a miss."""
        return await self.store.fetch_through(
            self.key(scope_key),
            lambda: self.fetch_all(scope_key),
            ttl_ms=self.ttl_ms,
        )

    async def select(self, scope_key: str, name: str) -> Any:
        """Fetch (or reuse) the snapshot and apply the named selector."""
        selector = self._selector(name)
        snapshot = await self.fetch_unified(scope_key)
        return selector(snapshot)

    def project(self, snapshot: Any, name: str) -> Any:
        """Apply a named selector to a snapshot already in hand. No I/O."""
        return self._selector(name)(snapshot)

    def cached(self, scope_key: str) -> Optional[Any]:
        """The cached snapshot, or None. Never fetches."""
        data = self.store.get(self.key(scope_key))
        return None if data is MISS else data

    def update(self, scope_key: str, updater: Callable[[Optional[Any]], Optional[Any]]) -> Optional[Any]:
        """
        Optimistically replace the cached snapshot.

        ``updater`` receives the current snapshot (or None) and returns the new
        one. Returning None drops the entry so the next read refetches.

        Returns:
            The snapshot now cached, or None
        """
        key = self.key(scope_key)
        updated = updater(self.cached(scope_key))
        if updated is None:
            self.store.invalidate(key)
            return None
        self.store.set(key, updated, ttl_ms=self.ttl_ms)
        return updated

    def invalidate(self, scope_key: str) -> bool:
        return self.store.invalidate(self.key(scope_key))

    def _selector(self, name: str) -> Selector:
        selector = self.selectors.get(name)
        if selector is None:
            known = ", ".join(self.selector_names()) or "none"
            raise create_validation_error(
                f"Unknown {self.name} selector: '{name}'. Known selectors: {known}"
            )
        return selector
