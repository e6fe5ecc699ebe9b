"""
Input validation utilities for pipeline mutations.

Validates record IDs, target stages, batch sizes and user identifiers. Every
validator raises ``PipelineError`` with ``VALIDATION_ERROR`` before any state
is touched.
"""

from datetime import datetime, timezone
from typing import Any, List

from models.errors import create_validation_error
from models.stage import STAGE_ORDER, Stage, parse_stage

# Constants for validation
MAX_BATCH_SIZE = 100


def validate_record_id(record_id: Any) -> int:
    """
    Validate a single record ID.

    Args:
        record_id: The record ID value to validate

    Returns:
        Validated record ID as integer

    Raises:
        PipelineError: If record_id is invalid
    """
    # Check for null/None
    if record_id is None:
        raise create_validation_error("Invalid record ID: cannot be null")

    # Check type (bool is a subclass of int in Python, reject explicitly)
    if isinstance(record_id, bool) or not isinstance(record_id, int):
        raise create_validation_error(
            f"Invalid record ID type: expected integer, got {type(record_id).__name__}"
        )

    # Check for positive integer (>= 1)
    if record_id < 1:
        raise create_validation_error(
            f"Invalid record ID: {record_id} must be a positive integer (>= 1)"
        )

    return record_id


def validate_batch_size(items: list, max_size: int = MAX_BATCH_SIZE) -> None:
    """
    Validate the batch size for bulk operations.

    Empty batches are valid. Batches larger than ``max_size`` are rejected.

    Raises:
        PipelineError: If batch size exceeds the maximum
    """
    if not items:
        return

    if len(items) > max_size:
        raise create_validation_error(
            f"Batch size too large: {len(items)} records exceeds maximum of {max_size}"
        )


def validate_unique_record_ids(record_ids: List[int]) -> None:
    """
    Validate that all record IDs in the batch are unique.

    Raises:
        PipelineError: If duplicate record IDs are found
    """
    seen = set()
    duplicates = set()
    for record_id in record_ids:
        if record_id in seen:
            duplicates.add(record_id)
        else:
            seen.add(record_id)

    if duplicates:
        duplicate_list = ", ".join(sorted(str(dup_id) for dup_id in duplicates))
        raise create_validation_error(f"Duplicate record IDs found in batch: {duplicate_list}")


def validate_record_ids(record_ids: Any, max_size: int = MAX_BATCH_SIZE) -> List[int]:
    """
    Validate a batch of record IDs: list type, size, each ID, uniqueness.

    Returns:
        The validated IDs in input order

    Raises:
        PipelineError: On the first violation found
    """
    if not isinstance(record_ids, (list, tuple)):
        raise create_validation_error(
            f"Invalid record IDs type: expected list, got {type(record_ids).__name__}"
        )

    validate_batch_size(list(record_ids), max_size)
    validated = [validate_record_id(record_id) for record_id in record_ids]
    validate_unique_record_ids(validated)
    return validated


def validate_stage(stage: Any) -> Stage:
    """
    Validate a caller-supplied target stage.

    Unlike reading stored records (where unknown stages fall back to
    Interested), a mutation target must name a real stage.

    Args:
        stage: The stage value to validate

    Returns:
        The resolved Stage

    Raises:
        PipelineError: If stage is invalid
    """
    if stage is None:
        raise create_validation_error("Invalid stage: cannot be null")

    if isinstance(stage, Stage):
        return stage

    if not isinstance(stage, str):
        raise create_validation_error(
            f"Invalid stage type: expected string, got {type(stage).__name__}"
        )

    if not stage:
        raise create_validation_error("Invalid stage: cannot be empty")

    if stage != stage.strip():
        raise create_validation_error(
            f"Invalid stage: '{stage}' contains leading or trailing whitespace"
        )

    try:
        return parse_stage(stage)
    except ValueError:
        allowed = ", ".join(s.value for s in STAGE_ORDER)
        raise create_validation_error(
            f"Invalid stage value: '{stage}'. Allowed values are: {allowed}"
        )


def validate_user_id(user_id: Any) -> str:
    """
    Validate a user identifier used to scope a session.

    Raises:
        PipelineError: If user_id is missing, not a string or blank
    """
    if user_id is None:
        raise create_validation_error("Invalid user_id: cannot be null")
    if not isinstance(user_id, str):
        raise create_validation_error(
            f"Invalid user_id type: expected string, got {type(user_id).__name__}"
        )
    if not user_id.strip():
        raise create_validation_error("Invalid user_id: cannot be empty")
    return user_id


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
