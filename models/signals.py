"""
Invalidation signal and change-notification models.

A ``Signal`` names a domain change ("record 42 moved for user U"). Local code,
the realtime change feed and cross-tab storage notifications all end up as
Signals published on the invalidation bus.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SignalKind(str, Enum):
    """Domain change notifications routed by the invalidation bus."""

    RECORDS_CHANGED = "records_changed"
    RECORD_MOVED = "record_moved"
    RECORDS_DELETED = "records_deleted"
    SKILLS_CHANGED = "skills_changed"
    PROFILE_CHANGED = "profile_changed"
    INTERVIEWS_CHANGED = "interviews_changed"
    ANALYTICS_CHANGED = "analytics_changed"


class Signal(BaseModel):
    """A single invalidation signal."""

    model_config = ConfigDict(frozen=True)

    kind: SignalKind
    user_id: str
    record_ids: Tuple[int, ...] = ()

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Invalid user_id: cannot be empty")
        return value


class ChangeEventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """Row change delivered by the realtime transport.

    Accepts the transport's camelCase keys (``eventType``, ``recordId``,
    ``userId``) as well as snake_case.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    table: str
    event_type: ChangeEventType = Field(validation_alias="eventType")
    record_id: Optional[int] = Field(default=None, validation_alias="recordId")
    user_id: Optional[str] = Field(default=None, validation_alias="userId")

    @field_validator("event_type", mode="before")
    @classmethod
    def upper_event_type(cls, value):
        if isinstance(value, str):
            return value.upper()
        return value
