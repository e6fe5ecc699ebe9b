"""
In-memory collaborators shared by the async engine tests.

``FakePersistence`` implements ``RecordPersistence`` over a dict and can be
told to fail, to report per-item failures or to wait on a gate so a test can
observe the applying state. ``FakeClock`` is a settable UTC clock.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from db.protocols import DeleteResult, UpdateResult
from models.record import Record, record_from_row
from models.stage import Stage

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable returning a controllable aware datetime."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, ms: float = 0) -> None:
        self.now = self.now + timedelta(seconds=seconds, milliseconds=ms)


class MsClock:
    """Millisecond clock for CacheStore tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


def make_record(record_id: int, stage: Stage = Stage.INTERESTED, **fields: Any) -> Record:
    fields.setdefault("title", f"Job {record_id}")
    fields.setdefault("company", f"Company {record_id}")
    fields.setdefault("user_id", "u1")
    return Record(id=record_id, stage=stage, **fields)


class FakePersistence:
    """Dict-backed ``RecordPersistence`` with failure injection."""

    def __init__(self, records=()):
        self.rows: Dict[int, Record] = {record.id: record for record in records}
        self.calls: List[tuple] = []
        self.fail_with: Optional[Exception] = None
        self.bulk_failures: Dict[int, str] = {}
        self.delete_result: Optional[DeleteResult] = None
        self.gate: Optional[asyncio.Event] = None

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()

    async def list(self, filter=None) -> List[Record]:
        self.calls.append(("list", filter))
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.rows.values())

    async def update(self, record_id: int, patch: Dict[str, Any]) -> Record:
        self.calls.append(("update", record_id, dict(patch)))
        await self._wait()
        if self.fail_with is not None:
            raise self.fail_with
        updated = record_from_row({**self.rows[record_id].to_row(), **patch})
        self.rows[record_id] = updated
        return updated

    async def bulk_update(self, record_ids: List[int], patch: Dict[str, Any]) -> List[UpdateResult]:
        self.calls.append(("bulk_update", list(record_ids), dict(patch)))
        await self._wait()
        if self.fail_with is not None:
            raise self.fail_with
        if self.bulk_failures:
            return [
                UpdateResult(id=i, success=i not in self.bulk_failures, error=self.bulk_failures.get(i))
                for i in record_ids
            ]
        for record_id in record_ids:
            self.rows[record_id] = record_from_row({**self.rows[record_id].to_row(), **patch})
        return [UpdateResult(id=i, success=True) for i in record_ids]

    async def delete(self, record_ids: List[int]) -> DeleteResult:
        self.calls.append(("delete", list(record_ids)))
        await self._wait()
        if self.fail_with is not None:
            raise self.fail_with
        if self.delete_result is not None:
            return self.delete_result
        deleted = 0
        for record_id in record_ids:
            if self.rows.pop(record_id, None) is not None:
                deleted += 1
        return DeleteResult(success=True, deleted_count=deleted)

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


class FakeProfileSource:
    """ProfileSource over static rows that counts section reads."""

    def __init__(self):
        self.reads = 0
        self.profile = {"full_name": "Ada Lovelace King", "email": "ada@example.com"}
        self.skills = [
            {"id": 1, "name": "Python", "category": "Languages"},
            {"id": 2, "name": "SQL", "category": "Languages"},
            {"id": 3, "name": "Docker", "category": None},
        ]
        self.employment = [
            {"id": 10, "company_name": "Acme", "job_title": "Engineer", "start_date": "2019-05-01", "end_date": "2022-01-31"},
            {"id": 11, "company_name": "Initech", "job_title": "Senior Engineer", "start_date": "2022-02-01"},
        ]
        self.education = [{"id": 20, "institution": "MIT", "degree": "BSc", "start_date": "2012-09-01"}]
        self.projects = [{"id": 30, "project_name": "Pipeline"}]
        self.certifications = []

    async def get_profile(self, user_id):
        self.reads += 1
        return self.profile

    async def list_skills(self, user_id):
        return self.skills

    async def list_employment(self, user_id):
        return self.employment

    async def list_education(self, user_id):
        return self.education

    async def list_projects(self, user_id):
        return self.projects

    async def list_certifications(self, user_id):
        return self.certifications
