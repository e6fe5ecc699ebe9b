"""
In-memory TTL + version cache.

``CacheStore`` maps string keys to immutable ``CacheEntry`` objects. An entry
is served while it is younger than its TTL and, when the caller supplies a
current version tag, while its stored version matches. Expired or
version-mismatched entries are dropped lazily on access; there is no
background sweep.

A miss is a control-flow signal (the ``MISS`` sentinel), never an error.
``fetch_through`` turns a miss into a fetch so that callers never see it.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 60 * 60 * 1000
DEFAULT_MAX_KEYS = 10_000


class _Miss:
    """Sentinel returned by ``CacheStore.get`` when no valid entry exists."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()


class CacheEntry(BaseModel):
    """Cached value with its write time (ms), TTL (ms) and optional version tag."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    data: Any
    timestamp: float
    ttl_ms: float
    version: Optional[str] = None

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_expired(self, now: float) -> bool:
        return self.age(now) >= self.ttl_ms

    def is_valid(self, now: float, current_version: Optional[str] = None) -> bool:
        """Valid iff younger than the TTL and, if a version is required, tagged with it."""
        if self.is_expired(now):
            return False
        if current_version is not None and self.version != current_version:
            return False
        return True


class CacheStats(BaseModel):
    """Counters for monitoring cache effectiveness."""

    total_keys: int
    hits: int
    misses: int
    evictions: int
    hit_rate: float


def _wall_clock_ms() -> float:
    return time.time() * 1000


class CacheStore:
    """
    Key -> CacheEntry mapping with TTL expiry, version tags and LRU bound.

    Usage:
        store = CacheStore(default_ttl_ms=300_000)
        store.set("analytics:u1:salary", result, version="v3")
        value = store.get("analytics:u1:salary", version="v3")
        if value is MISS:
            ...  # go fetch
    """

    def __init__(
        self,
        default_ttl_ms: float = DEFAULT_TTL_MS,
        max_keys: int = DEFAULT_MAX_KEYS,
        clock: Optional[Callable[[], float]] = None,
    ):
        if default_ttl_ms <= 0:
            raise ValueError("default_ttl_ms must be positive")
        if max_keys < 1:
            raise ValueError("max_keys must be at least 1")
        self.default_ttl_ms = default_ttl_ms
        self.max_keys = max_keys
        self._clock = clock or _wall_clock_ms
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        # In-flight fetches keyed by (key, version); stale ones were invalidated mid-flight.
        self._inflight: Dict[Tuple[str, Optional[str]], "asyncio.Task[Any]"] = {}
        self._stale_flights: Set["asyncio.Task[Any]"] = set()

    def now(self) -> float:
        return self._clock()

    def get(self, key: str, version: Optional[str] = None) -> Any:
        """
        Return the cached data for ``key`` or ``MISS``.

        Args:
            key: Cache key
            version: Current version the entry must carry, or None for no check

        Returns:
            The cached data, or MISS when absent, expired or version-mismatched
        """
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            logger.debug("cache miss (absent): %s", key)
            return MISS

        if not entry.is_valid(self.now(), version):
            # Lazy expiry: stale entries are dropped on access.
            del self._entries[key]
            self._misses += 1
            logger.debug("cache miss (stale): %s", key)
            return MISS

        self._hits += 1
        self._entries.move_to_end(key)
        return entry.data

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the raw entry without validity checks or stats updates."""
        return self._entries.get(key)

    def set(
        self,
        key: str,
        data: Any,
        ttl_ms: Optional[float] = None,
        version: Optional[str] = None,
    ) -> CacheEntry:
        """Store ``data`` under ``key``, replacing any existing entry."""
        entry = CacheEntry(
            data=data,
            timestamp=self.now(),
            ttl_ms=ttl_ms if ttl_ms is not None else self.default_ttl_ms,
            version=version,
        )
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_keys:
            evicted_key, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("cache eviction (lru): %s", evicted_key)
        self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> bool:
        """
        Remove ``key``. Invalidating an absent key is a no-op.

        Returns:
            True if an entry was removed
        """
        self._mark_inflight_stale(lambda k: k == key)
        return self._entries.pop(key, None) is not None

    def invalidate_all(self, prefix: Optional[str] = None) -> int:
        """
        Remove every entry, or every entry whose key starts with ``prefix``.

        Returns:
            Number of entries removed
        """
        if prefix is None:
            self._mark_inflight_stale(lambda k: True)
            removed = len(self._entries)
            self._entries.clear()
            return removed

        self._mark_inflight_stale(lambda k: k.startswith(prefix))
        doomed = [k for k in self._entries if k.startswith(prefix)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def clear_expired(self) -> int:
        """Drop every expired entry now. Returns the number dropped."""
        now = self.now()
        expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def clear(self) -> None:
        """Drop all entries and reset statistics."""
        self.invalidate_all()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def stats(self) -> CacheStats:
        total = self._hits + self._misses
        return CacheStats(
            total_keys=len(self._entries),
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            hit_rate=self._hits / total if total else 0.0,
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self.now())

    async def fetch_through(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        ttl_ms: Optional[float] = None,
        version: Optional[str] = None,
    ) -> Any:
        """
        Return the cached value for ``key`` or fetch, store and return it.

        Concurrent misses for the same key and version share a single fetch.
        The fetch runs in its own task, so a cancelled caller does not cancel
        it for the others. When the key is invalidated while the fetch is in
        flight, the result is returned to its waiters but not cached, and any
        read that starts after the invalidation begins a new fetch. Fetch
        errors propagate and nothing is cached.
        """
        cached = self.get(key, version=version)
        if cached is not MISS:
            return cached

        flight_key = (key, version)
        task = self._inflight.get(flight_key)
        if task is None or task in self._stale_flights:
            task = asyncio.ensure_future(self._run_fetch(flight_key, fetch, ttl_ms))
            task.add_done_callback(_consume_exception)
            self._inflight[flight_key] = task
        return await asyncio.shield(task)

    async def _run_fetch(
        self,
        flight_key: Tuple[str, Optional[str]],
        fetch: Callable[[], Awaitable[Any]],
        ttl_ms: Optional[float],
    ) -> Any:
        key, version = flight_key
        task = asyncio.current_task()
        try:
            data = await fetch()
        finally:
            if self._inflight.get(flight_key) is task:
                del self._inflight[flight_key]
            stale = task in self._stale_flights
            self._stale_flights.discard(task)

        if stale:
            logger.debug("fetch for %s invalidated in flight, not caching", key)
        else:
            self.set(key, data, ttl_ms=ttl_ms, version=version)
        return data

    def _mark_inflight_stale(self, matches: Callable[[str], bool]) -> None:
        for flight_key, task in self._inflight.items():
            if matches(flight_key[0]):
                self._stale_flights.add(task)


def _consume_exception(task: "asyncio.Future") -> None:
    # Every caller may have gone away; retrieve the error so it is not reported as unhandled.
    if not task.cancelled():
        task.exception()
