"""
Per-user pipeline session.

A session owns exactly one instance of every engine component for one
signed-in user and wires them together:

    CacheStore <- InvalidationBus <- TransactionCoordinator -> StageStore
                       ^                                         |
                       |                                    statistics
    ChangeNotificationAdapter, ScheduleService

Components are constructed here and passed to each other explicitly; there
are no module-level singletons, so two sessions never share state.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from cache.analytics import AnalyticsCache
from cache.bus import ChangeNotificationAdapter, InvalidationBus
from cache.keys import CacheKeys
from cache.profile import ProfileSource, create_profile_cache, profile_version
from cache.store import CacheStore
from cache.unified import UnifiedDomainCache
from config import Config
from db.protocols import KeyValueStore, RecordPersistence
from db.schedule_store import MemoryKeyValueStore, ScheduleService
from models.record import Record
from models.signals import Signal, SignalKind
from models.stage import Stage
from pipeline.calendar import CalendarFeed
from pipeline.coordinator import MutationResult, TransactionCoordinator
from pipeline.stage_store import StageStore
from pipeline.statistics import PipelineStats
from utils.validation import utc_now, validate_user_id

logger = logging.getLogger(__name__)


class PipelineSession:
    """
    All pipeline state for one user.

    Usage:
        session = PipelineSession("u1", repository, get_config())
        await session.start()
        await session.move_record(42, "Interview")
        session.stats().interview
        await session.close()
    """

    def __init__(
        self,
        user_id: str,
        persistence: RecordPersistence,
        config: Config,
        profile_source: Optional[ProfileSource] = None,
        kv_store: Optional[KeyValueStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.user_id = validate_user_id(user_id)
        self.persistence = persistence
        self.config = config
        self._clock = clock or utc_now

        self.cache = CacheStore(
            default_ttl_ms=config.cache_ttl_ms,
            max_keys=config.cache_max_keys,
            clock=lambda: self._clock().timestamp() * 1000,
        )
        self.bus = InvalidationBus(self.cache)
        self.notifications = ChangeNotificationAdapter(self.bus, default_user_id=self.user_id)
        self.stage_store = StageStore(clock=self._clock)
        self.coordinator = TransactionCoordinator(
            self.stage_store,
            persistence,
            self.bus,
            self.user_id,
            remote_timeout_seconds=config.remote_timeout_seconds,
            max_batch_size=config.max_batch_size,
        )
        self.analytics = AnalyticsCache(self.cache, ttl_ms=config.analytics_ttl_ms)
        self.profile: Optional[UnifiedDomainCache] = None
        if profile_source is not None:
            self.profile = create_profile_cache(
                self.cache, profile_source, ttl_ms=config.profile_ttl_ms, clock=self._clock
            )
        self.schedule = ScheduleService(kv_store or MemoryKeyValueStore(), self.bus, self.user_id)
        self.calendar = CalendarFeed(
            self.cache, persistence, self.schedule, self.user_id, ttl_ms=config.cache_ttl_ms
        )

        self.started = False
        self.closed = False
        # Set when another writer changed records; cleared by refresh().
        self.needs_refresh = False
        self._unsubscribers = [
            self.bus.subscribe(SignalKind.RECORDS_CHANGED, self._on_records_changed),
        ]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load the user's records into the stage store."""
        await self._load()
        self.started = True
        logger.info("Session started for %s with %d records", self.user_id, len(self.stage_store))

    async def refresh(self) -> None:
        """
        Re-list records and resynchronize.

        Wins over any mutation still in flight: its rollback, if it fails,
        is skipped.
        """
        await self._load()
        self.bus.publish(Signal(kind=SignalKind.RECORDS_CHANGED, user_id=self.user_id))
        self.needs_refresh = False

    async def close(self) -> None:
        """Wait for in-flight mutations, detach listeners and drop cached data."""
        if self.closed:
            return
        await self.coordinator.drain()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        for prefix in CacheKeys.user_prefixes(self.user_id):
            self.cache.invalidate_all(prefix)
        self.closed = True
        logger.info("Session closed for %s", self.user_id)

    async def _load(self) -> None:
        records = await self.persistence.list()
        self.stage_store.replace_all(records)

    def _on_records_changed(self, signal: Signal) -> None:
        self.needs_refresh = True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def board(self) -> Dict[Stage, List[Record]]:
        return self.stage_store.board()

    def stats(self) -> PipelineStats:
        return self.stage_store.stats()

    async def profile_version(self) -> Optional[str]:
        """Fingerprint of the current profile snapshot, or None without a profile source."""
        if self.profile is None:
            return None
        return profile_version(await self.profile.fetch_unified(self.user_id))

    async def analytics_result(self, analytics_type: str, compute: Callable[[], Awaitable[Any]]) -> Any:
        """Cached analytics result, recomputed when the profile version changes."""
        version = await self.profile_version()
        return await self.analytics.get(self.user_id, analytics_type, version, compute)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def move_record(self, record_id: int, stage) -> MutationResult:
        return await self.coordinator.move_record(record_id, stage)

    async def bulk_move(self, record_ids, stage) -> MutationResult:
        return await self.coordinator.bulk_move(record_ids, stage)

    async def delete_records(self, record_ids) -> MutationResult:
        return await self.coordinator.delete_records(record_ids)


class SessionRegistry:
    """Hands out one started session per user."""

    def __init__(
        self,
        config: Config,
        persistence_factory: Callable[[str], RecordPersistence],
        profile_source_factory: Optional[Callable[[str], Optional[ProfileSource]]] = None,
        kv_store: Optional[KeyValueStore] = None,
    ):
        self.config = config
        self.persistence_factory = persistence_factory
        self.profile_source_factory = profile_source_factory
        self.kv_store = kv_store or MemoryKeyValueStore()
        self._sessions: Dict[str, PipelineSession] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: Optional[str] = None) -> PipelineSession:
        """Return the user's session, creating and starting it on first use."""
        user_id = validate_user_id(user_id if user_id is not None else self.config.user_id)
        async with self._lock:
            session = self._sessions.get(user_id)
            if session is None:
                profile_source = (
                    self.profile_source_factory(user_id) if self.profile_source_factory else None
                )
                session = PipelineSession(
                    user_id,
                    self.persistence_factory(user_id),
                    self.config,
                    profile_source=profile_source,
                    kv_store=self.kv_store,
                )
                await session.start()
                self._sessions[user_id] = session
            return session

    def users(self) -> List[str]:
        return sorted(self._sessions)

    async def close(self, user_id: str) -> bool:
        session = self._sessions.pop(user_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def close_all(self) -> None:
        for user_id in list(self._sessions):
            await self.close(user_id)
