"""Pydantic schemas for the pipeline tools."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import Field, model_validator

from schemas.common import StrictIgnoreRequest, StrictResponse, UserIdMixin, validate_optional_non_empty_str


class ReadPipelineRequest(UserIdMixin, StrictIgnoreRequest):
    """Request schema for read_pipeline."""

    stage: Optional[str] = None
    include_stats: bool = True
    include_calendar: bool = False
    upcoming_limit: int = Field(default=5, ge=1, le=50)
    refresh: bool = False


class MoveRecordsRequest(UserIdMixin, StrictIgnoreRequest):
    """Request schema for move_records."""

    record_ids: list[int] = Field(min_length=1)
    stage: str


class DeleteRecordsRequest(UserIdMixin, StrictIgnoreRequest):
    """Request schema for delete_records."""

    record_ids: list[int] = Field(min_length=1)


class PublishChangeRequest(UserIdMixin, StrictIgnoreRequest):
    """
    Request schema for publish_change.

    Either a row change (``table`` with optional ``event_type`` and
    ``record_id``) or a shared-storage write (``storage_key``).
    """

    table: Optional[str] = None
    event_type: str = "UPDATE"
    record_id: Optional[int] = None
    storage_key: Optional[str] = None

    @model_validator(mode="after")
    def exactly_one_source(self) -> "PublishChangeRequest":
        validate_optional_non_empty_str(self.table, "table")
        validate_optional_non_empty_str(self.storage_key, "storage_key")
        if (self.table is None) == (self.storage_key is None):
            raise ValueError("Provide exactly one of 'table' or 'storage_key'")
        return self


class BoardColumn(StrictResponse):
    """One stage column of the board."""

    stage: str
    count: int
    records: list[dict[str, Any]]


class ReadPipelineResponse(StrictResponse):
    """Response schema for read_pipeline."""

    user_id: str
    total: int
    columns: list[BoardColumn]
    stats: Optional[dict[str, Any]] = None
    upcoming: Optional[list[dict[str, Any]]] = None
    in_flight: list[int]
    needs_refresh: bool


class PublishChangeResponse(StrictResponse):
    """Response schema for publish_change."""

    published: bool
    kind: Optional[str] = None
    invalidated_keys: list[str] = Field(default_factory=list)
    invalidated_prefixes: list[str] = Field(default_factory=list)
