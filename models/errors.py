"""
Error model for the pipeline state engine.

Provides structured error codes and sanitized error messages shared by the
stage store, the transaction coordinator, the persistence adapters and the
tool surface.
"""

import os
import re
from enum import Enum
from typing import Iterable, Optional


class ErrorCode(str, Enum):
    """Structured error codes for pipeline operations."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    REMOTE_FAILURE = "REMOTE_FAILURE"
    BUSY = "BUSY"
    DB_NOT_FOUND = "DB_NOT_FOUND"
    DB_ERROR = "DB_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PipelineError(Exception):
    """Base exception for pipeline errors with structured error information."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        retryable: bool = False,
        original_error: Optional[Exception] = None
    ):
        """
        Initialize a pipeline error.

        Args:
            code: The error code
            message: Human-readable error message
            retryable: Whether the operation can be retried
            original_error: The original exception if this wraps another error
        """
        self.code = code
        self.message = message
        self.retryable = retryable
        self.original_error = original_error
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert error to dictionary format for tool responses."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "retryable": self.retryable
            }
        }


def sanitize_path(path: str) -> str:
    """
    Sanitize file paths to avoid exposing sensitive system details.

    Returns only the basename for absolute paths, keeps relative paths.
    """
    if os.path.isabs(path):
        return os.path.basename(path)
    return path


def sanitize_sql_error(error_msg: str) -> str:
    """
    Sanitize SQL error messages to remove sensitive details.

    Removes SQL fragments and absolute paths, keeps only actionable information.
    """
    sanitized = re.sub(r'SQL:.*', '', error_msg, flags=re.IGNORECASE)
    sanitized = re.sub(r'\b(SELECT|INSERT|UPDATE|DELETE)\b.*', '[SQL query]', sanitized, flags=re.IGNORECASE)
    sanitized = re.sub(r'/[^\s]+/', '[path]/', sanitized)
    return sanitized.strip()


def sanitize_stack_trace(error_msg: str) -> str:
    """Keep only the first line of an error message."""
    lines = error_msg.split('\n')
    if lines:
        return lines[0].strip()
    return error_msg


def _format_ids(record_ids: Iterable[int]) -> str:
    return ", ".join(str(record_id) for record_id in sorted(record_ids))


def create_validation_error(message: str) -> PipelineError:
    """
    Create a validation error.

    Args:
        message: Description of the validation failure

    Returns:
        PipelineError with VALIDATION_ERROR code
    """
    return PipelineError(
        code=ErrorCode.VALIDATION_ERROR,
        message=message,
        retryable=False
    )


def create_not_found_error(record_ids: Iterable[int]) -> PipelineError:
    """
    Create an error for mutation targets that are absent from the stage store.

    Args:
        record_ids: The record IDs that could not be found

    Returns:
        PipelineError with NOT_FOUND code
    """
    ids = list(record_ids)
    noun = "Record" if len(ids) == 1 else "Records"
    return PipelineError(
        code=ErrorCode.NOT_FOUND,
        message=f"{noun} not found: {_format_ids(ids)}",
        retryable=False
    )


def create_busy_error(record_ids: Iterable[int]) -> PipelineError:
    """
    Create an error for a mutation that targets records already being applied.

    Busy is retryable: the caller may resubmit once the pending mutation settles.
    """
    return PipelineError(
        code=ErrorCode.BUSY,
        message=f"Mutation already in progress for records: {_format_ids(record_ids)}",
        retryable=True
    )


def create_remote_failure_error(
    message: str, original_error: Optional[Exception] = None
) -> PipelineError:
    """
    Create an error for a rejected or timed-out persistence call.

    The local optimistic change has already been rolled back when this is raised.

    Args:
        message: Description of the remote failure
        original_error: The original exception

    Returns:
        PipelineError with REMOTE_FAILURE code
    """
    sanitized_message = sanitize_stack_trace(message)
    return PipelineError(
        code=ErrorCode.REMOTE_FAILURE,
        message=f"Remote update failed: {sanitized_message}",
        retryable=True,
        original_error=original_error
    )


def create_db_not_found_error(db_path: str) -> PipelineError:
    """Create a database not found error with a sanitized path."""
    sanitized_path = sanitize_path(db_path)
    return PipelineError(
        code=ErrorCode.DB_NOT_FOUND,
        message=f"Database not found: {sanitized_path}",
        retryable=False
    )


def create_db_error(message: str, retryable: bool = False, original_error: Optional[Exception] = None) -> PipelineError:
    """
    Create a database error.

    Args:
        message: Description of the database error
        retryable: Whether the operation can be retried
        original_error: The original exception

    Returns:
        PipelineError with DB_ERROR code
    """
    sanitized_message = sanitize_sql_error(message)
    sanitized_message = sanitize_stack_trace(sanitized_message)

    return PipelineError(
        code=ErrorCode.DB_ERROR,
        message=f"Database error: {sanitized_message}",
        retryable=retryable,
        original_error=original_error
    )


def create_internal_error(message: str, original_error: Optional[Exception] = None) -> PipelineError:
    """
    Create an internal error for unexpected exceptions.

    Args:
        message: Description of the internal error
        original_error: The original exception

    Returns:
        PipelineError with INTERNAL_ERROR code
    """
    sanitized_message = sanitize_stack_trace(message)

    return PipelineError(
        code=ErrorCode.INTERNAL_ERROR,
        message=f"Internal error: {sanitized_message}",
        retryable=True,
        original_error=original_error
    )
