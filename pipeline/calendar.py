"""
Calendar feed: application deadlines plus scheduled interviews.

Jobs are read from the persistence collaborator through the cache under
``calendar:{user}``. Record moves and deletes, and interview writes, evict
that key on the invalidation bus, so the next read rebuilds the feed.
"""

import logging
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from cache.keys import CacheKeys
from cache.store import CacheStore
from db.protocols import RecordPersistence
from db.schedule_store import ScheduleService
from models.record import Record
from models.stage import TERMINAL_STAGES, Stage

logger = logging.getLogger(__name__)

DEFAULT_UPCOMING_LIMIT = 5


class EventKind(str, Enum):
    DEADLINE = "deadline"
    INTERVIEW = "interview"


class CalendarEvent(BaseModel):
    """One dated item on the calendar."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: EventKind
    title: str
    at: datetime
    record_id: Optional[int] = None
    company: Optional[str] = None
    stage: Optional[Stage] = None

    @property
    def day(self) -> date:
        return self.at.date()


def _deadline_event(record: Record) -> CalendarEvent:
    return CalendarEvent(
        id=f"job-{record.id}",
        kind=EventKind.DEADLINE,
        title=record.title or f"Job {record.id}",
        at=datetime.combine(record.application_deadline, time.min, tzinfo=timezone.utc),
        record_id=record.id,
        company=record.company,
        stage=record.stage,
    )


class CalendarFeed:
    """Merged, cached view of deadlines and interviews for one user."""

    def __init__(
        self,
        store: CacheStore,
        jobs_source: RecordPersistence,
        schedule: ScheduleService,
        user_id: str,
        ttl_ms: Optional[float] = None,
    ):
        self.store = store
        self.jobs_source = jobs_source
        self.schedule = schedule
        self.user_id = user_id
        self.ttl_ms = ttl_ms

    @property
    def key(self) -> str:
        return CacheKeys.calendar(self.user_id)

    async def events(self) -> List[CalendarEvent]:
        """All events, soonest first."""
        return await self.store.fetch_through(self.key, self._build, ttl_ms=self.ttl_ms)

    async def upcoming(
        self, limit: int = DEFAULT_UPCOMING_LIMIT, after: Optional[datetime] = None
    ) -> List[CalendarEvent]:
        """The next ``limit`` events, optionally only those at or after ``after``."""
        events = await self.events()
        if after is not None:
            events = [event for event in events if event.at >= after]
        return events[:limit]

    async def events_by_date(self) -> Dict[date, List[CalendarEvent]]:
        grouped: Dict[date, List[CalendarEvent]] = {}
        for event in await self.events():
            grouped.setdefault(event.day, []).append(event)
        return grouped

    async def _build(self) -> List[CalendarEvent]:
        records = await self.jobs_source.list()
        events = [
            _deadline_event(record)
            for record in records
            if record.application_deadline is not None and record.stage not in TERMINAL_STAGES
        ]
        for interview in self.schedule.list_interviews(include_cancelled=False):
            events.append(
                CalendarEvent(
                    id=f"interview-{interview.id}",
                    kind=EventKind.INTERVIEW,
                    title=interview.title,
                    at=interview.start,
                    record_id=interview.linked_job,
                )
            )
        events.sort(key=lambda event: event.at)
        logger.debug("Built calendar for %s with %d events", self.user_id, len(events))
        return events
