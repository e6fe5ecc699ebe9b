"""
SQLite-backed persistence for job-application records.

Implements the ``RecordPersistence`` protocol over a ``jobs`` table. Every
write runs inside ``RecordsWriter``, a transaction context manager that rolls
back on any exception, and the blocking sqlite calls are pushed to a worker
thread with ``asyncio.to_thread`` so the event loop never blocks.
"""

import asyncio
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from db.protocols import DeleteResult, UpdateResult
from models.errors import (
    create_db_error,
    create_db_not_found_error,
    create_validation_error,
)
from models.record import Record, record_from_row
from models.stage import parse_stage

logger = logging.getLogger(__name__)

# Default database path relative to the project root
DEFAULT_DB_PATH = "data/jobs.db"

JOBS_SCHEMA = """
    CREATE TABLE IF NOT EXISTS jobs (
        id INTEGER PRIMARY KEY,
        job_title TEXT,
        company_name TEXT,
        job_status TEXT NOT NULL DEFAULT 'Interested',
        status_changed_at TEXT,
        created_at TEXT,
        application_deadline TEXT,
        user_id TEXT
    )
"""

RECORD_COLUMNS = (
    "id",
    "job_title",
    "company_name",
    "job_status",
    "status_changed_at",
    "created_at",
    "application_deadline",
    "user_id",
)

# Columns a patch may write; id and ownership never change.
PATCHABLE_COLUMNS = frozenset(
    {"job_title", "company_name", "job_status", "status_changed_at", "application_deadline"}
)

# Filter key -> column
FILTER_COLUMNS = {
    "stage": "job_status",
    "job_status": "job_status",
    "company": "company_name",
    "company_name": "company_name",
}


def resolve_db_path(db_path: Optional[str] = None) -> Path:
    """
    Resolve the database path.

    Resolution order:
    1. Provided db_path parameter
    2. JOBPIPELINE_DB environment variable
    3. Default path: data/jobs.db under the project root

    Relative paths are resolved from the project root.
    """
    path_str = db_path or os.getenv("JOBPIPELINE_DB") or DEFAULT_DB_PATH
    path = Path(path_str)
    if not path.is_absolute():
        project_root = Path(__file__).resolve().parents[1]
        path = project_root / path
    return path


def initialize_schema(db_path: Optional[str] = None) -> Path:
    """Create the database file and ``jobs`` table if they do not exist."""
    resolved = resolve_db_path(db_path)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    try:
        conn = sqlite3.connect(str(resolved))
        try:
            conn.execute(JOBS_SCHEMA)
            conn.commit()
        finally:
            conn.close()
    except sqlite3.Error as e:
        raise create_db_error(str(e), retryable=False, original_error=e) from e
    return resolved


class RecordsWriter:
    """
    Context manager for transactional access to the ``jobs`` table.

    Rolls back on exceptions and always closes the connection.

    Usage:
        with RecordsWriter(db_path) as writer:
            missing = writer.missing_ids([1, 2, 3])
            if not missing:
                writer.update_columns(1, {"job_status": "Applied"})
                writer.commit()
    """

    def __init__(self, db_path: Optional[str] = None, user_id: Optional[str] = None):
        self.db_path = db_path
        self.user_id = user_id
        self.resolved_path: Optional[Path] = None
        self.conn: Optional[sqlite3.Connection] = None
        self._in_transaction = False

    def __enter__(self):
        self.resolved_path = resolve_db_path(self.db_path)
        if not self.resolved_path.is_file():
            raise create_db_not_found_error(str(self.resolved_path))

        try:
            self.conn = sqlite3.connect(str(self.resolved_path))
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("BEGIN")
            self._in_transaction = True
            return self
        except sqlite3.OperationalError as e:
            if "unable to open database" in str(e).lower():
                raise create_db_not_found_error(str(self.resolved_path)) from e
            raise create_db_error(str(e), retryable=True, original_error=e) from e
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None and self._in_transaction:
                self.rollback()
        finally:
            if self.conn is not None:
                self.conn.close()
                self.conn = None
        return False

    def _scope(self) -> tuple:
        """Extra WHERE clause and params restricting rows to the owning user."""
        if self.user_id is None:
            return "", []
        return " AND user_id = ?", [self.user_id]

    def _execute(self, query: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        if self.conn is None:
            raise create_db_error("Connection not established", retryable=False)
        try:
            return self.conn.execute(query, params)
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

    def select(self, filters: Optional[Dict[str, Any]] = None, ids: Optional[List[int]] = None) -> List[Dict[str, Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        for column, value in (filters or {}).items():
            clauses.append(f"{column} = ?")
            params.append(value)
        if ids is not None:
            if not ids:
                return []
            clauses.append(f"id IN ({','.join('?' * len(ids))})")
            params.extend(ids)
        scope_sql, scope_params = self._scope()
        where = " AND ".join(clauses) if clauses else "1 = 1"
        query = f"SELECT {', '.join(RECORD_COLUMNS)} FROM jobs WHERE {where}{scope_sql} ORDER BY id ASC"
        rows = self._execute(query, params + scope_params).fetchall()
        return [dict(row) for row in rows]

    def missing_ids(self, record_ids: List[int]) -> List[int]:
        """Return the IDs from ``record_ids`` with no row, in input order."""
        if not record_ids:
            return []
        existing = {row["id"] for row in self.select(ids=list(record_ids))}
        return [record_id for record_id in record_ids if record_id not in existing]

    def update_columns(self, record_id: int, patch: Dict[str, Any]) -> int:
        """UPDATE one row. Returns the affected row count."""
        assignments = ", ".join(f"{column} = ?" for column in patch)
        scope_sql, scope_params = self._scope()
        query = f"UPDATE jobs SET {assignments} WHERE id = ?{scope_sql}"
        cursor = self._execute(query, list(patch.values()) + [record_id] + scope_params)
        return cursor.rowcount

    def delete_ids(self, record_ids: List[int]) -> int:
        """DELETE rows by ID. Returns the deleted row count."""
        if not record_ids:
            return 0
        scope_sql, scope_params = self._scope()
        query = f"DELETE FROM jobs WHERE id IN ({','.join('?' * len(record_ids))}){scope_sql}"
        cursor = self._execute(query, list(record_ids) + scope_params)
        return cursor.rowcount

    def commit(self) -> None:
        if self.conn is None:
            raise create_db_error("Connection not established", retryable=False)
        if not self._in_transaction:
            return
        try:
            self.conn.commit()
            self.conn.execute("BEGIN")
        except sqlite3.Error as e:
            raise create_db_error(
                f"Failed to commit transaction: {str(e)}", retryable=True, original_error=e
            ) from e

    def rollback(self) -> None:
        """Roll back the open transaction. Never raises."""
        if self.conn is None or not self._in_transaction:
            return
        try:
            self.conn.rollback()
            self._in_transaction = False
        except sqlite3.Error as e:
            logger.warning("Rollback failed: %s", e)


def _validate_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
    if not patch:
        raise create_validation_error("Patch cannot be empty")
    unknown = sorted(set(patch) - PATCHABLE_COLUMNS)
    if unknown:
        raise create_validation_error(f"Patch contains unsupported columns: {', '.join(unknown)}")
    if "job_status" in patch:
        try:
            patch = {**patch, "job_status": parse_stage(patch["job_status"]).value}
        except ValueError as e:
            raise create_validation_error(str(e)) from e
    return patch


def _filter_columns(filter: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    columns: Dict[str, Any] = {}
    for key, value in (filter or {}).items():
        column = FILTER_COLUMNS.get(key)
        if column is None:
            allowed = ", ".join(sorted(FILTER_COLUMNS))
            raise create_validation_error(f"Unsupported filter '{key}'. Allowed filters: {allowed}")
        if column == "job_status":
            try:
                value = parse_stage(value).value
            except ValueError as e:
                raise create_validation_error(str(e)) from e
        columns[column] = value
    return columns


class SqliteRecordRepository:
    """
    ``RecordPersistence`` over a local SQLite ``jobs`` table.

    Bulk updates are all-or-nothing: if any ID is missing, nothing is written
    and every item reports failure.
    """

    def __init__(self, db_path: Optional[str] = None, user_id: Optional[str] = None):
        self.db_path = db_path
        self.user_id = user_id

    def _writer(self) -> RecordsWriter:
        return RecordsWriter(self.db_path, user_id=self.user_id)

    async def list(self, filter: Optional[Dict[str, Any]] = None) -> List[Record]:
        return await asyncio.to_thread(self._list_sync, filter)

    async def update(self, record_id: int, patch: Dict[str, Any]) -> Record:
        return await asyncio.to_thread(self._update_sync, record_id, patch)

    async def bulk_update(self, record_ids: List[int], patch: Dict[str, Any]) -> List[UpdateResult]:
        return await asyncio.to_thread(self._bulk_update_sync, list(record_ids), patch)

    async def delete(self, record_ids: List[int]) -> DeleteResult:
        return await asyncio.to_thread(self._delete_sync, list(record_ids))

    # ------------------------------------------------------------------
    # Blocking implementations (run in a worker thread)
    # ------------------------------------------------------------------

    def _list_sync(self, filter: Optional[Dict[str, Any]]) -> List[Record]:
        columns = _filter_columns(filter)
        with self._writer() as writer:
            rows = writer.select(columns)
        return [record_from_row(row) for row in rows]

    def _update_sync(self, record_id: int, patch: Dict[str, Any]) -> Record:
        patch = _validate_patch(patch)
        with self._writer() as writer:
            if writer.update_columns(record_id, patch) == 0:
                raise create_db_error(f"No record found with id {record_id}", retryable=False)
            writer.commit()
            rows = writer.select(ids=[record_id])
        return record_from_row(rows[0])

    def _bulk_update_sync(self, record_ids: List[int], patch: Dict[str, Any]) -> List[UpdateResult]:
        patch = _validate_patch(patch)
        with self._writer() as writer:
            missing = set(writer.missing_ids(record_ids))
            if missing:
                logger.info("Bulk update rejected, missing records: %s", sorted(missing))
                return [
                    UpdateResult(
                        id=record_id,
                        success=False,
                        error="Record not found" if record_id in missing else "Not applied: batch rejected",
                    )
                    for record_id in record_ids
                ]
            for record_id in record_ids:
                writer.update_columns(record_id, patch)
            writer.commit()
        return [UpdateResult(id=record_id, success=True) for record_id in record_ids]

    def _delete_sync(self, record_ids: List[int]) -> DeleteResult:
        with self._writer() as writer:
            deleted = writer.delete_ids(record_ids)
            writer.commit()
        return DeleteResult(success=True, deleted_count=deleted)
