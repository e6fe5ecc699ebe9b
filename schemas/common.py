"""Shared schema primitives for MCP tool request/response models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


def validate_optional_non_empty_str(value: Optional[str], field_name: str) -> Optional[str]:
    """Validate optional string fields that cannot be empty/whitespace."""
    if value is None:
        return None
    if not value.strip():
        raise ValueError(f"Invalid {field_name}: cannot be empty")
    return value


class StrictIgnoreRequest(BaseModel):
    """Request base with strict typing and ignored unknown fields."""

    model_config = ConfigDict(extra="ignore", strict=True)


class StrictResponse(BaseModel):
    """Response/result base with strict typing and forbidden unknown fields."""

    model_config = ConfigDict(extra="forbid")


class UserIdMixin(BaseModel):
    """Reusable user_id field validation; None means the configured default user."""

    user_id: Optional[str] = None

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, value: Optional[str]) -> Optional[str]:
        return validate_optional_non_empty_str(value, "user_id")
