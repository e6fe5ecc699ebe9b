"""
Integration tests for the MCP tool handlers.

Handlers run against a SessionRegistry backed by a temporary SQLite
database, so every call goes through validation, the session, the
coordinator and the repository.
"""

import asyncio
import os
import sqlite3
from unittest.mock import patch

import pytest

from config import Config
from db.records_repository import SqliteRecordRepository
from pipeline.session import SessionRegistry
from tools.delete_records import delete_records
from tools.move_records import move_records
from tools.publish_change import publish_change
from tools.read_pipeline import read_pipeline


@pytest.fixture
def registry(temp_db):
    with patch.dict(os.environ, {"JOBPIPELINE_USER_ID": "u1"}, clear=True):
        config = Config()
    return SessionRegistry(config, lambda user_id: SqliteRecordRepository(temp_db, user_id=user_id))


def run(handler, args, registry):
    return asyncio.run(handler(args, registry))


def column(response, stage):
    return next(c for c in response["columns"] if c["stage"] == stage)


def db_status(path, record_id):
    conn = sqlite3.connect(path)
    try:
        row = conn.execute("SELECT job_status FROM jobs WHERE id = ?", (record_id,)).fetchone()
    finally:
        conn.close()
    return row[0] if row else None


class TestReadPipeline:
    """Tests for read_pipeline."""

    def test_board_and_stats(self, registry):
        response = run(read_pipeline, {}, registry)

        assert response["user_id"] == "u1"
        assert response["total"] == 4
        assert [c["stage"] for c in response["columns"]] == [
            "Interested", "Applied", "Phone Screen", "Interview", "Offer", "Rejected",
        ]
        assert column(response, "Applied")["count"] == 1
        assert response["stats"]["applied"] == 2
        assert response["stats"]["rejected"] == 1
        assert response["in_flight"] == []
        assert response["needs_refresh"] is False
        assert "upcoming" not in response

    def test_stage_filter(self, registry):
        response = run(read_pipeline, {"stage": "interview", "include_stats": False}, registry)

        assert [c["stage"] for c in response["columns"]] == ["Interview"]
        assert response["columns"][0]["records"][0]["id"] == 3
        assert "stats" not in response

    def test_calendar(self, registry):
        response = run(read_pipeline, {"include_calendar": True, "upcoming_limit": 1}, registry)

        assert len(response["upcoming"]) == 1
        assert response["upcoming"][0]["id"] == "job-2"
        assert response["upcoming"][0]["kind"] == "deadline"

    def test_other_user(self, registry):
        response = run(read_pipeline, {"user_id": "u2"}, registry)
        assert response["total"] == 1

    @pytest.mark.parametrize(
        "args",
        [{"stage": "Archived"}, {"upcoming_limit": 0}, {"upcoming_limit": "5"}, {"user_id": " "}],
    )
    def test_invalid_arguments(self, registry, args):
        response = run(read_pipeline, args, registry)
        assert response["error"]["code"] == "VALIDATION_ERROR"

    def test_refresh_picks_up_external_writes(self, registry, temp_db):
        async def scenario():
            await read_pipeline({}, registry)
            conn = sqlite3.connect(temp_db)
            conn.execute("UPDATE jobs SET job_status = 'Offer' WHERE id = 1")
            conn.commit()
            conn.close()
            stale = await read_pipeline({}, registry)
            fresh = await read_pipeline({"refresh": True}, registry)
            return stale, fresh

        stale, fresh = asyncio.run(scenario())

        assert column(stale, "Offer")["count"] == 0
        assert column(fresh, "Offer")["count"] == 1

    def test_database_missing(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            config = Config()
        registry = SessionRegistry(config, lambda user_id: SqliteRecordRepository(str(tmp_path / "none.db")))

        response = run(read_pipeline, {}, registry)

        assert response["error"]["code"] == "DB_NOT_FOUND"


class TestMoveRecords:
    """Tests for move_records."""

    def test_single_move(self, registry, temp_db):
        response = run(move_records, {"record_ids": [2], "stage": "Interview"}, registry)

        assert response["state"] == "confirmed"
        assert response["kind"] == "move"
        assert response["stage"] == "Interview"
        assert db_status(temp_db, 2) == "Interview"

    def test_bulk_move(self, registry, temp_db):
        response = run(move_records, {"record_ids": [1, 2], "stage": "phone_screen"}, registry)

        assert response["kind"] == "bulk_move"
        assert response["record_ids"] == [1, 2]
        assert db_status(temp_db, 1) == db_status(temp_db, 2) == "Phone Screen"

    def test_board_reflects_move(self, registry):
        async def scenario():
            await move_records({"record_ids": [1], "stage": "Applied"}, registry)
            return await read_pipeline({}, registry)

        response = asyncio.run(scenario())

        applied = column(response, "Applied")
        assert [r["id"] for r in applied["records"]] == [1, 2]

    def test_noop(self, registry):
        response = run(move_records, {"record_ids": [2], "stage": "Applied"}, registry)
        assert response["noop"] is True

    def test_not_found(self, registry):
        response = run(move_records, {"record_ids": [5], "stage": "Offer"}, registry)

        assert response["error"]["code"] == "NOT_FOUND"
        assert response["error"]["retryable"] is False

    def test_remote_failure_rolls_back(self, registry, temp_db):
        """A row deleted behind the session's back makes the update fail."""

        async def scenario():
            await read_pipeline({}, registry)
            conn = sqlite3.connect(temp_db)
            conn.execute("DELETE FROM jobs WHERE id = 2")
            conn.commit()
            conn.close()
            result = await move_records({"record_ids": [2], "stage": "Offer"}, registry)
            board = await read_pipeline({}, registry)
            return result, board

        result, board = asyncio.run(scenario())

        assert result["error"]["code"] == "REMOTE_FAILURE"
        assert result["error"]["retryable"] is True
        assert [r["id"] for r in column(board, "Applied")["records"]] == [2]
        assert column(board, "Offer")["count"] == 0

    @pytest.mark.parametrize(
        "args",
        [
            {"record_ids": [], "stage": "Offer"},
            {"record_ids": ["1"], "stage": "Offer"},
            {"record_ids": [1, 1], "stage": "Offer"},
            {"record_ids": [1], "stage": "Archived"},
            {"record_ids": [1]},
        ],
    )
    def test_invalid_arguments(self, registry, args):
        response = run(move_records, args, registry)
        assert response["error"]["code"] == "VALIDATION_ERROR"


class TestDeleteRecords:
    """Tests for delete_records."""

    def test_delete(self, registry, temp_db):
        response = run(delete_records, {"record_ids": [1, 4]}, registry)

        assert response["kind"] == "delete"
        assert response["state"] == "confirmed"
        assert db_status(temp_db, 1) is None
        assert db_status(temp_db, 4) is None

    def test_delete_not_found(self, registry):
        response = run(delete_records, {"record_ids": [99]}, registry)
        assert response["error"]["code"] == "NOT_FOUND"

    def test_empty_list_rejected(self, registry):
        response = run(delete_records, {"record_ids": []}, registry)
        assert response["error"]["code"] == "VALIDATION_ERROR"


class TestPublishChange:
    """Tests for publish_change."""

    def test_jobs_change_flags_refresh(self, registry):
        async def scenario():
            published = await publish_change({"table": "jobs", "event_type": "update", "record_id": 3}, registry)
            board = await read_pipeline({}, registry)
            return published, board

        published, board = asyncio.run(scenario())

        assert published["published"] is True
        assert published["kind"] == "records_changed"
        assert published["invalidated_keys"] == ["calendar:u1", "job:3"]
        assert published["invalidated_prefixes"] == ["jobs:u1:", "analytics:u1:"]
        assert board["needs_refresh"] is True

    def test_storage_key(self, registry):
        response = run(publish_change, {"storage_key": "sgt:interviews"}, registry)

        assert response["kind"] == "interviews_changed"
        assert response["invalidated_keys"] == ["interviews:u1", "calendar:u1"]

    def test_unmapped_table(self, registry):
        response = run(publish_change, {"table": "audit_log"}, registry)
        assert response == {"published": False, "invalidated_keys": [], "invalidated_prefixes": []}

    @pytest.mark.parametrize("args", [{}, {"table": "jobs", "storage_key": "sgt:interviews"}, {"table": " "}])
    def test_invalid_arguments(self, registry, args):
        response = run(publish_change, args, registry)
        assert response["error"]["code"] == "VALIDATION_ERROR"
