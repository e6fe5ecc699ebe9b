"""
Collaborator contracts consumed by the pipeline core.

The remote persistence service is outside this codebase; the coordinator and
session only depend on the ``RecordPersistence`` protocol below.
``db.records_repository.SqliteRecordRepository`` is the bundled adapter.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from models.record import Record


class UpdateResult(BaseModel):
    """Per-record outcome of a bulk update."""

    model_config = ConfigDict(extra="forbid")

    id: int
    success: bool
    error: Optional[str] = None


class DeleteResult(BaseModel):
    """Outcome of a delete call."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    deleted_count: int = 0
    error: Optional[str] = None


@runtime_checkable
class RecordPersistence(Protocol):
    """Remote create/read/update/delete over job-application records."""

    async def list(self, filter: Optional[Dict[str, Any]] = None) -> List[Record]:
        ...

    async def update(self, record_id: int, patch: Dict[str, Any]) -> Record:
        ...

    async def bulk_update(self, record_ids: List[int], patch: Dict[str, Any]) -> List[UpdateResult]:
        ...

    async def delete(self, record_ids: List[int]) -> DeleteResult:
        ...


@runtime_checkable
class KeyValueStore(Protocol):
    """Local durable key-value store: JSON values, no TTL."""

    def get(self, key: str) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...
