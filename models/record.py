"""
Job-application record model.

``Record`` is the unit the stage store partitions by stage. It accepts raw
``jobs`` table rows (``job_status`` / ``status_changed_at`` / ``job_title`` /
``company_name`` column names) as well as its own field names, ignores extra
columns and is immutable: a stage change produces a new instance via
``with_stage``.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.stage import Stage, normalize_stage


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as ISO 8601 UTC with millisecond precision and Z suffix."""
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class Record(BaseModel):
    """A job application tracked on the pipeline board."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: int = Field(gt=0)
    stage: Stage = Field(default=Stage.INTERESTED, validation_alias="job_status")
    stage_changed_at: Optional[datetime] = Field(default=None, validation_alias="status_changed_at")
    created_at: Optional[datetime] = None
    title: Optional[str] = Field(default=None, validation_alias="job_title")
    company: Optional[str] = Field(default=None, validation_alias="company_name")
    application_deadline: Optional[date] = None
    user_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def empty_strings_to_none(cls, data: Any) -> Any:
        """Convert empty-string column values to None."""
        if isinstance(data, dict):
            return {k: (None if v == "" else v) for k, v in data.items()}
        return data

    @field_validator("stage", mode="before")
    @classmethod
    def coerce_stage(cls, value: Any) -> Stage:
        # Unknown or missing stages land in Interested.
        return normalize_stage(value)

    @field_validator("application_deadline", mode="before")
    @classmethod
    def coerce_deadline(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return value.split("T", 1)[0]
        return value

    @field_validator("stage_changed_at", "created_at")
    @classmethod
    def to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    def with_stage(self, stage: Stage, changed_at: datetime) -> "Record":
        """
        Return a copy moved to ``stage``.

        ``stage_changed_at`` never moves backwards: when the supplied time is
        earlier than the stored one (clock skew), the stored one is kept.
        """
        changed_at = ensure_utc(changed_at)
        if self.stage_changed_at is not None and changed_at < self.stage_changed_at:
            changed_at = self.stage_changed_at
        return self.model_copy(update={"stage": stage, "stage_changed_at": changed_at})

    def to_row(self) -> Dict[str, Any]:
        """Serialize to ``jobs`` table column names."""
        return {
            "id": self.id,
            "job_status": self.stage.value,
            "status_changed_at": format_timestamp(self.stage_changed_at) if self.stage_changed_at else None,
            "created_at": format_timestamp(self.created_at) if self.created_at else None,
            "job_title": self.title,
            "company_name": self.company,
            "application_deadline": self.application_deadline.isoformat() if self.application_deadline else None,
            "user_id": self.user_id,
        }

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view using field names."""
        return self.model_dump(mode="json")


def record_from_row(row: Dict[str, Any]) -> Record:
    """Build a Record from a database row or API payload."""
    return Record.model_validate(row)
