"""
Invalidation bus: routes domain change signals to cache evictions and listeners.

Every signal, whatever its origin (a confirmed local mutation, the realtime
change feed, another tab writing shared storage), enters through
``InvalidationBus.publish``. The bus:

1. Resolves the signal against a static signal-kind -> cache-key table and
   evicts every resolved key or key prefix from the ``CacheStore``.
2. Re-emits the signal to subscribers of its kind and to wildcard
   subscribers, for consumers that refresh state outside the cache.

Signals published while another signal is being dispatched (for example from
a handler) are queued and dispatched afterwards, so processing order always
equals publish order.
"""

import logging
from collections import deque
from typing import Callable, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from cache.keys import CacheKeys
from cache.store import CacheStore
from models.signals import ChangeEvent, Signal, SignalKind

logger = logging.getLogger(__name__)

Handler = Callable[[Signal], None]
Unsubscribe = Callable[[], None]


class KeyRule:
    """One cache target for a signal: an exact key or a key prefix."""

    def __init__(self, build: Callable[[Signal], str], prefix: bool = False):
        self.build = build
        self.prefix = prefix

    def __repr__(self) -> str:
        kind = "prefix" if self.prefix else "key"
        return f"KeyRule({kind})"


def _exact(build: Callable[[Signal], str]) -> KeyRule:
    return KeyRule(build, prefix=False)


def _prefix(build: Callable[[Signal], str]) -> KeyRule:
    return KeyRule(build, prefix=True)


_JOB_VIEWS = (
    _prefix(lambda s: CacheKeys.jobs_prefix(s.user_id)),
    _exact(lambda s: CacheKeys.calendar(s.user_id)),
    _prefix(lambda s: CacheKeys.analytics_prefix(s.user_id)),
)

# Signal kind -> cache targets evicted when it is published.
DEFAULT_SIGNAL_TABLE: Dict[SignalKind, Tuple[KeyRule, ...]] = {
    SignalKind.RECORDS_CHANGED: _JOB_VIEWS,
    SignalKind.RECORD_MOVED: _JOB_VIEWS,
    SignalKind.RECORDS_DELETED: _JOB_VIEWS,
    SignalKind.SKILLS_CHANGED: (
        _exact(lambda s: CacheKeys.skills(s.user_id)),
        _prefix(lambda s: CacheKeys.profile_prefix(s.user_id)),
        _prefix(lambda s: CacheKeys.analytics_prefix(s.user_id)),
    ),
    SignalKind.PROFILE_CHANGED: (
        _prefix(lambda s: CacheKeys.profile_prefix(s.user_id)),
        _exact(lambda s: CacheKeys.skills(s.user_id)),
        _prefix(lambda s: CacheKeys.analytics_prefix(s.user_id)),
    ),
    SignalKind.INTERVIEWS_CHANGED: (
        _exact(lambda s: CacheKeys.interviews(s.user_id)),
        _exact(lambda s: CacheKeys.calendar(s.user_id)),
    ),
    SignalKind.ANALYTICS_CHANGED: (
        _prefix(lambda s: CacheKeys.analytics_prefix(s.user_id)),
    ),
}


def _record_keys(signal: Signal) -> List[str]:
    return [CacheKeys.job(record_id) for record_id in signal.record_ids]


class InvalidationBus:
    """Publish/subscribe router from change signals to cache evictions."""

    def __init__(
        self,
        store: CacheStore,
        table: Optional[Mapping[SignalKind, Sequence[KeyRule]]] = None,
    ):
        self.store = store
        self.table = dict(DEFAULT_SIGNAL_TABLE if table is None else table)
        self._handlers: Dict[SignalKind, List[Handler]] = {}
        self._wildcard: List[Handler] = []
        self._queue: Deque[Signal] = deque()
        self._dispatching = False

    def resolve(self, signal: Signal) -> Tuple[List[str], List[str]]:
        """
        Resolve a signal to the cache keys and prefixes it invalidates.

        Returns:
            Tuple of (exact_keys, prefixes)
        """
        keys: List[str] = []
        prefixes: List[str] = []
        for rule in self.table.get(signal.kind, ()):
            target = rule.build(signal)
            (prefixes if rule.prefix else keys).append(target)
        if signal.kind in (SignalKind.RECORD_MOVED, SignalKind.RECORDS_DELETED, SignalKind.RECORDS_CHANGED):
            keys.extend(_record_keys(signal))
        return keys, prefixes

    def publish(self, signal: Signal) -> None:
        """Invalidate the signal's cache targets, then notify listeners."""
        self._queue.append(signal)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._queue:
                self._dispatch(self._queue.popleft())
        finally:
            self._dispatching = False

    def subscribe(self, kind: SignalKind, handler: Handler) -> Unsubscribe:
        """Register ``handler`` for one signal kind. Returns an unsubscribe callable."""
        handlers = self._handlers.setdefault(kind, [])
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscribe_all(self, handler: Handler) -> Unsubscribe:
        """Register ``handler`` for every signal kind."""
        self._wildcard.append(handler)

        def unsubscribe() -> None:
            if handler in self._wildcard:
                self._wildcard.remove(handler)

        return unsubscribe

    def listener_count(self, kind: Optional[SignalKind] = None) -> int:
        if kind is None:
            return len(self._wildcard) + sum(len(h) for h in self._handlers.values())
        return len(self._handlers.get(kind, ())) + len(self._wildcard)

    def _dispatch(self, signal: Signal) -> None:
        keys, prefixes = self.resolve(signal)
        for key in keys:
            self.store.invalidate(key)
        for prefix in prefixes:
            self.store.invalidate_all(prefix)
        logger.debug(
            "signal %s for %s invalidated keys=%s prefixes=%s",
            signal.kind.value, signal.user_id, keys, prefixes,
        )

        # Copy so handlers may unsubscribe while being notified.
        for handler in list(self._handlers.get(signal.kind, ())) + list(self._wildcard):
            try:
                handler(signal)
            except Exception:
                logger.exception("Invalidation handler failed for signal %s", signal.kind.value)


# Realtime table name -> signal kind.
TABLE_SIGNALS: Dict[str, SignalKind] = {
    "jobs": SignalKind.RECORDS_CHANGED,
    "skills": SignalKind.SKILLS_CHANGED,
    "profiles": SignalKind.PROFILE_CHANGED,
    "employment": SignalKind.PROFILE_CHANGED,
    "education": SignalKind.PROFILE_CHANGED,
    "projects": SignalKind.PROFILE_CHANGED,
    "certifications": SignalKind.PROFILE_CHANGED,
    "analytics_cache": SignalKind.ANALYTICS_CHANGED,
}

# Cross-tab storage key -> signal kind.
STORAGE_SIGNALS: Dict[str, SignalKind] = {
    "sgt:interviews": SignalKind.INTERVIEWS_CHANGED,
}


class ChangeNotificationAdapter:
    """
    Translate transport-specific notifications into bus signals.

    The realtime feed delivers ``{table, eventType, recordId}`` row events;
    other tabs announce writes to shared storage by key. Both become typed
    ``Signal`` objects published on the same bus as local signals.
    """

    def __init__(self, bus: InvalidationBus, default_user_id: Optional[str] = None):
        self.bus = bus
        self.default_user_id = default_user_id

    def handle(self, event) -> Optional[Signal]:
        """
        Publish the signal for a row change event.

        Args:
            event: ChangeEvent or a raw dict from the transport

        Returns:
            The published Signal, or None when the event was ignored
        """
        if not isinstance(event, ChangeEvent):
            try:
                event = ChangeEvent.model_validate(event)
            except ValidationError as e:
                logger.warning("Ignoring malformed change event: %s", e.errors()[0].get("msg"))
                return None

        kind = TABLE_SIGNALS.get(event.table)
        if kind is None:
            logger.debug("Ignoring change event for unmapped table %s", event.table)
            return None

        user_id = event.user_id or self.default_user_id
        if not user_id:
            logger.debug("Ignoring change event without user for table %s", event.table)
            return None

        record_ids = (event.record_id,) if event.record_id is not None else ()
        signal = Signal(kind=kind, user_id=user_id, record_ids=record_ids)
        self.bus.publish(signal)
        return signal

    def handle_storage_key(self, key: str, user_id: Optional[str] = None) -> Optional[Signal]:
        """Publish the signal for a cross-tab storage write, if the key is mapped."""
        kind = STORAGE_SIGNALS.get(key)
        user_id = user_id or self.default_user_id
        if kind is None or not user_id:
            return None
        signal = Signal(kind=kind, user_id=user_id)
        self.bus.publish(signal)
        return signal
