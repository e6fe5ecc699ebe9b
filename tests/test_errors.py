"""
Unit tests for the error model and sanitization functions.

Tests error codes, error structure, retryability and message sanitization.
"""

from models.errors import (
    ErrorCode,
    PipelineError,
    create_busy_error,
    create_db_error,
    create_db_not_found_error,
    create_internal_error,
    create_not_found_error,
    create_remote_failure_error,
    create_validation_error,
    sanitize_path,
    sanitize_sql_error,
    sanitize_stack_trace,
)


class TestErrorCode:
    """Tests for ErrorCode enum."""

    def test_all_error_codes_exist(self):
        """Test that all required error codes are defined."""
        assert ErrorCode.VALIDATION_ERROR == "VALIDATION_ERROR"
        assert ErrorCode.NOT_FOUND == "NOT_FOUND"
        assert ErrorCode.REMOTE_FAILURE == "REMOTE_FAILURE"
        assert ErrorCode.BUSY == "BUSY"
        assert ErrorCode.DB_NOT_FOUND == "DB_NOT_FOUND"
        assert ErrorCode.DB_ERROR == "DB_ERROR"
        assert ErrorCode.INTERNAL_ERROR == "INTERNAL_ERROR"

    def test_error_codes_are_strings(self):
        """Test that error codes are string values."""
        for code in ErrorCode:
            assert isinstance(code.value, str)


class TestPipelineError:
    """Tests for PipelineError exception class."""

    def test_creation(self):
        """Test creating a PipelineError with all fields."""
        error = PipelineError(code=ErrorCode.VALIDATION_ERROR, message="Test error")

        assert error.code == ErrorCode.VALIDATION_ERROR
        assert error.message == "Test error"
        assert error.retryable is False
        assert error.original_error is None
        assert str(error) == "Test error"

    def test_wraps_original_exception(self):
        """Test creating a PipelineError wrapping another exception."""
        original = ValueError("boom")
        error = PipelineError(ErrorCode.INTERNAL_ERROR, "Wrapped", True, original)

        assert error.original_error is original

    def test_to_dict(self):
        """Test the tool response error envelope."""
        error = PipelineError(ErrorCode.BUSY, "Busy", retryable=True)

        assert error.to_dict() == {
            "error": {"code": "BUSY", "message": "Busy", "retryable": True}
        }


class TestSanitization:
    """Tests for message sanitization helpers."""

    def test_sanitize_absolute_path(self):
        assert sanitize_path("/home/user/data/jobs.db") == "jobs.db"

    def test_sanitize_relative_path_kept(self):
        assert sanitize_path("data/jobs.db") == "data/jobs.db"

    def test_sanitize_sql_error_removes_query(self):
        """SQL fragments are replaced with a placeholder."""
        result = sanitize_sql_error("near syntax: SELECT * FROM jobs WHERE id = 1")
        assert "SELECT" not in result
        assert "[SQL query]" in result

    def test_sanitize_sql_error_removes_paths(self):
        result = sanitize_sql_error("unable to open /var/lib/app/jobs.db")
        assert "/var/lib/app/" not in result
        assert "[path]/" in result

    def test_sanitize_stack_trace_keeps_first_line(self):
        assert sanitize_stack_trace("Top line\n  File x.py, line 3\n") == "Top line"


class TestErrorFactories:
    """Tests for create_* error factories."""

    def test_validation_error(self):
        error = create_validation_error("Invalid stage")
        assert error.code == ErrorCode.VALIDATION_ERROR
        assert error.retryable is False

    def test_not_found_single(self):
        """A single missing record uses the singular noun."""
        error = create_not_found_error([42])
        assert error.code == ErrorCode.NOT_FOUND
        assert error.message == "Record not found: 42"
        assert error.retryable is False

    def test_not_found_many_sorted(self):
        error = create_not_found_error([9, 3])
        assert error.message == "Records not found: 3, 9"

    def test_busy_is_retryable(self):
        error = create_busy_error([7, 2])
        assert error.code == ErrorCode.BUSY
        assert error.retryable is True
        assert "2, 7" in error.message

    def test_remote_failure(self):
        """Remote failures are retryable and keep only the first message line."""
        original = RuntimeError("503")
        error = create_remote_failure_error("service unavailable\ntrace", original_error=original)

        assert error.code == ErrorCode.REMOTE_FAILURE
        assert error.retryable is True
        assert error.message == "Remote update failed: service unavailable"
        assert error.original_error is original

    def test_db_not_found_sanitizes_path(self):
        error = create_db_not_found_error("/secret/dir/jobs.db")
        assert error.code == ErrorCode.DB_NOT_FOUND
        assert error.message == "Database not found: jobs.db"

    def test_db_error(self):
        error = create_db_error("disk I/O error", retryable=True)
        assert error.code == ErrorCode.DB_ERROR
        assert error.retryable is True
        assert error.message == "Database error: disk I/O error"

    def test_internal_error(self):
        error = create_internal_error("unexpected\nmore")
        assert error.code == ErrorCode.INTERNAL_ERROR
        assert error.retryable is True
        assert error.message == "Internal error: unexpected"
