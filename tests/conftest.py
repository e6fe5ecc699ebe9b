"""Shared fixtures for database-backed tests."""

import os
import sqlite3
import tempfile

import pytest

from db.records_repository import JOBS_SCHEMA


@pytest.fixture
def temp_db():
    """Create a temporary database with a seeded jobs table for testing."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    conn = sqlite3.connect(path)
    conn.execute(JOBS_SCHEMA)
    conn.execute("""
        INSERT INTO jobs (id, job_title, company_name, job_status, status_changed_at, created_at, application_deadline, user_id)
        VALUES
            (1, 'Backend Engineer', 'Acme', 'Interested', NULL, '2025-02-01T00:00:00.000Z', '2025-03-10', 'u1'),
            (2, 'Data Engineer', 'Initech', 'Applied', '2025-02-10T09:00:00.000Z', '2025-02-02T00:00:00.000Z', '2025-03-05', 'u1'),
            (3, 'Platform Engineer', 'Globex', 'Interview', '2025-02-20T09:00:00.000Z', '2025-02-03T00:00:00.000Z', NULL, 'u1'),
            (4, 'SRE', 'Umbrella', 'Rejected', '2025-02-21T09:00:00.000Z', '2025-02-04T00:00:00.000Z', '2025-03-01', 'u1'),
            (5, 'Other User Job', 'Hooli', 'Applied', NULL, '2025-02-05T00:00:00.000Z', '2025-03-02', 'u2')
    """)
    conn.commit()
    conn.close()

    yield path

    try:
        os.unlink(path)
    except OSError:
        pass
