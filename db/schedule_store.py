"""
Local durable storage for interview schedules and submission history.

``JsonFileKeyValueStore`` is a small JSON-file key-value store (no TTL, every
write atomic). ``ScheduleService`` keeps scheduled interviews and application
submissions in it, per user, and publishes ``interviews_changed`` on the
invalidation bus after every write so the calendar refetches.
"""

import logging
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cache.bus import InvalidationBus
from db.protocols import KeyValueStore
from models.errors import create_db_error, create_validation_error
from models.record import ensure_utc
from models.signals import Signal, SignalKind
from utils.file_ops import atomic_write_json, read_json
from utils.pydantic_error_mapper import map_pydantic_validation_error

logger = logging.getLogger(__name__)

INTERVIEWS_KEY = "sgt:interviews"
SUBMISSIONS_KEY = "sgt:submissions"


class JsonFileKeyValueStore:
    """
    Key-value store persisted as one JSON object in a file.

    The file is re-read on every access so writes from another process are
    picked up.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        try:
            data = read_json(self.path, default={})
        except ValueError as e:
            raise create_db_error(f"Key-value store is not valid JSON: {e}", original_error=e) from e
        except OSError as e:
            raise create_db_error(str(e), retryable=True, original_error=e) from e
        if not isinstance(data, dict):
            raise create_db_error("Key-value store root must be a JSON object")
        return data

    def get(self, key: str) -> Any:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        try:
            atomic_write_json(self.path, data)
        except OSError as e:
            raise create_db_error(str(e), retryable=True, original_error=e) from e

    def delete(self, key: str) -> bool:
        data = self._load()
        if key not in data:
            return False
        del data[key]
        atomic_write_json(self.path, data)
        return True

    def keys(self) -> List[str]:
        return sorted(self._load().keys())


class InterviewStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class InterviewEntry(BaseModel):
    """One scheduled interview."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    title: str = Field(min_length=1)
    start: datetime
    linked_job: Optional[int] = None
    status: InterviewStatus = InterviewStatus.SCHEDULED
    notes: Optional[str] = None

    @field_validator("start")
    @classmethod
    def start_to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class SubmissionEntry(BaseModel):
    """One application submission event."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    job_id: int = Field(gt=0)
    submitted_at: datetime
    channel: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("submitted_at")
    @classmethod
    def submitted_to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


def _parse(model, entry):
    if isinstance(entry, model):
        return entry
    try:
        return model.model_validate(entry)
    except ValidationError as e:
        raise map_pydantic_validation_error(e) from e


class ScheduleService:
    """
    Interview schedule and submission history for one user.

    Values are stored as ``{user_id: [entry, ...]}`` under fixed keys, so
    several users can share one store file.
    """

    def __init__(self, kv: KeyValueStore, bus: InvalidationBus, user_id: str):
        self.kv = kv
        self.bus = bus
        self.user_id = user_id

    def list_interviews(self, include_cancelled: bool = False) -> List[InterviewEntry]:
        entries = [InterviewEntry.model_validate(raw) for raw in self._read(INTERVIEWS_KEY)]
        if not include_cancelled:
            entries = [e for e in entries if e.status != InterviewStatus.CANCELLED]
        return sorted(entries, key=lambda e: e.start)

    def save_interview(self, entry: Union[InterviewEntry, Dict[str, Any]]) -> InterviewEntry:
        """Insert or replace (by id) an interview."""
        interview = _parse(InterviewEntry, entry)
        rows = [raw for raw in self._read(INTERVIEWS_KEY) if raw.get("id") != interview.id]
        rows.append(interview.model_dump(mode="json"))
        self._write(INTERVIEWS_KEY, rows)
        self._announce()
        return interview

    def cancel_interview(self, interview_id: str) -> InterviewEntry:
        """
        Mark an interview cancelled.

        Raises:
            PipelineError: VALIDATION_ERROR if no interview has that id
        """
        rows = self._read(INTERVIEWS_KEY)
        for index, raw in enumerate(rows):
            if raw.get("id") == interview_id:
                cancelled = InterviewEntry.model_validate(raw).model_copy(
                    update={"status": InterviewStatus.CANCELLED}
                )
                rows[index] = cancelled.model_dump(mode="json")
                self._write(INTERVIEWS_KEY, rows)
                self._announce()
                return cancelled
        raise create_validation_error(f"Unknown interview id: '{interview_id}'")

    def list_submissions(self) -> List[SubmissionEntry]:
        entries = [SubmissionEntry.model_validate(raw) for raw in self._read(SUBMISSIONS_KEY)]
        return sorted(entries, key=lambda e: e.submitted_at, reverse=True)

    def record_submission(self, entry: Union[SubmissionEntry, Dict[str, Any]]) -> SubmissionEntry:
        submission = _parse(SubmissionEntry, entry)
        rows = self._read(SUBMISSIONS_KEY)
        rows.append(submission.model_dump(mode="json"))
        self._write(SUBMISSIONS_KEY, rows)
        self._announce()
        return submission

    def _read(self, key: str) -> List[Dict[str, Any]]:
        by_user = self.kv.get(key) or {}
        return list(by_user.get(self.user_id, []))

    def _write(self, key: str, rows: List[Dict[str, Any]]) -> None:
        by_user = self.kv.get(key) or {}
        by_user[self.user_id] = rows
        self.kv.set(key, by_user)

    def _announce(self) -> None:
        self.bus.publish(Signal(kind=SignalKind.INTERVIEWS_CHANGED, user_id=self.user_id))


class MemoryKeyValueStore:
    """In-process ``KeyValueStore`` used when no schedule file is configured."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
