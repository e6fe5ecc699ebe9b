"""
Tests for the JSON key-value store and the interview schedule service.
"""

from datetime import datetime, timedelta, timezone

import pytest

from cache.bus import InvalidationBus
from cache.store import CacheStore
from db.protocols import KeyValueStore
from db.schedule_store import (
    INTERVIEWS_KEY,
    InterviewEntry,
    InterviewStatus,
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
    ScheduleService,
)
from fakes import MsClock
from models.errors import ErrorCode, PipelineError
from models.signals import SignalKind


@pytest.fixture
def kv(tmp_path):
    return JsonFileKeyValueStore(tmp_path / "schedule.json")


@pytest.fixture
def bus():
    return InvalidationBus(CacheStore(clock=MsClock()))


class TestJsonFileKeyValueStore:
    """Tests for the file-backed key-value store."""

    def test_satisfies_protocol(self, kv):
        assert isinstance(kv, KeyValueStore)

    def test_missing_file_reads_as_empty(self, kv):
        assert kv.get("anything") is None
        assert kv.keys() == []

    def test_set_get_persist(self, kv, tmp_path):
        kv.set("sgt:interviews", {"u1": []})
        reopened = JsonFileKeyValueStore(tmp_path / "schedule.json")
        assert reopened.get("sgt:interviews") == {"u1": []}

    def test_delete(self, kv):
        kv.set("a", 1)
        assert kv.delete("a") is True
        assert kv.delete("a") is False

    def test_corrupt_file(self, kv, tmp_path):
        (tmp_path / "schedule.json").write_text("{oops", encoding="utf-8")
        with pytest.raises(PipelineError) as exc_info:
            kv.get("a")
        assert exc_info.value.code == ErrorCode.DB_ERROR

    def test_non_object_root(self, kv, tmp_path):
        (tmp_path / "schedule.json").write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(PipelineError):
            kv.keys()


class TestScheduleService:
    """Tests for interview and submission bookkeeping."""

    START = datetime(2025, 3, 4, 15, 0, tzinfo=timezone.utc)

    def test_save_and_list_sorted(self, kv, bus):
        service = ScheduleService(kv, bus, "u1")
        service.save_interview({"title": "Onsite", "start": self.START + timedelta(days=2)})
        service.save_interview({"title": "Phone", "start": self.START, "linked_job": 2})

        interviews = service.list_interviews()

        assert [i.title for i in interviews] == ["Phone", "Onsite"]
        assert interviews[0].linked_job == 2

    def test_start_normalized_to_utc(self, kv, bus):
        service = ScheduleService(kv, bus, "u1")
        plus_two = timezone(timedelta(hours=2))
        saved = service.save_interview({"title": "Call", "start": datetime(2025, 3, 4, 17, 0, tzinfo=plus_two)})
        assert saved.start == self.START
        assert saved.start.tzinfo == timezone.utc

    def test_save_replaces_by_id(self, kv, bus):
        service = ScheduleService(kv, bus, "u1")
        entry = service.save_interview(InterviewEntry(title="Call", start=self.START))
        service.save_interview(entry.model_copy(update={"title": "Video call"}))

        assert [i.title for i in service.list_interviews()] == ["Video call"]

    def test_cancel_hides_from_default_listing(self, kv, bus):
        service = ScheduleService(kv, bus, "u1")
        entry = service.save_interview({"title": "Call", "start": self.START})

        cancelled = service.cancel_interview(entry.id)

        assert cancelled.status == InterviewStatus.CANCELLED
        assert service.list_interviews() == []
        assert len(service.list_interviews(include_cancelled=True)) == 1

    def test_cancel_unknown(self, kv, bus):
        with pytest.raises(PipelineError) as exc_info:
            ScheduleService(kv, bus, "u1").cancel_interview("nope")
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR

    def test_invalid_entry(self, kv, bus):
        with pytest.raises(PipelineError) as exc_info:
            ScheduleService(kv, bus, "u1").save_interview({"title": "", "start": self.START})
        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert "title" in exc_info.value.message

    def test_users_kept_apart(self, kv, bus):
        ScheduleService(kv, bus, "u1").save_interview({"title": "Mine", "start": self.START})
        assert ScheduleService(kv, bus, "u2").list_interviews() == []
        assert set(kv.get(INTERVIEWS_KEY)) == {"u1"}

    def test_writes_publish_interviews_changed(self, kv, bus):
        seen = []
        bus.subscribe(SignalKind.INTERVIEWS_CHANGED, lambda signal: seen.append(signal.user_id))
        service = ScheduleService(kv, bus, "u1")

        entry = service.save_interview({"title": "Call", "start": self.START})
        service.cancel_interview(entry.id)
        service.record_submission({"job_id": 2, "submitted_at": self.START})

        assert seen == ["u1", "u1", "u1"]

    def test_submissions_newest_first(self, bus):
        service = ScheduleService(MemoryKeyValueStore(), bus, "u1")
        service.record_submission({"job_id": 1, "submitted_at": self.START})
        service.record_submission({"job_id": 2, "submitted_at": self.START + timedelta(hours=1), "channel": "email"})

        assert [s.job_id for s in service.list_submissions()] == [2, 1]

    def test_submission_requires_positive_job(self, bus):
        with pytest.raises(PipelineError):
            ScheduleService(MemoryKeyValueStore(), bus, "u1").record_submission(
                {"job_id": 0, "submitted_at": self.START}
            )
