#!/usr/bin/env python3
"""
MCP Server entry point for the jobpipeline tools.

Exposes the job-application pipeline (kanban board, cumulative statistics,
optimistic stage moves with rollback, and change notifications) to LLM
agents via the Model Context Protocol.

Usage:
    python server.py

The server runs in stdio mode, the standard transport for MCP servers that
are invoked by LLM agents.
"""

import logging

from mcp.server.fastmcp import FastMCP

from config import get_config
from db.records_repository import SqliteRecordRepository, initialize_schema
from db.schedule_store import JsonFileKeyValueStore
from pipeline.session import SessionRegistry
from tools.delete_records import delete_records
from tools.move_records import move_records
from tools.publish_change import publish_change
from tools.read_pipeline import read_pipeline

config = get_config()


def build_registry() -> SessionRegistry:
    """One session per user over the configured SQLite database and schedule file."""
    db_path = config.get_db_path_str()
    return SessionRegistry(
        config,
        persistence_factory=lambda user_id: SqliteRecordRepository(db_path, user_id=user_id),
        kv_store=JsonFileKeyValueStore(config.schedule_store_path),
    )


registry = build_registry()

mcp = FastMCP(
    name=config.server_name,
    instructions=(
        "This server tracks job applications on a kanban pipeline "
        "(Interested, Applied, Phone Screen, Interview, Offer, Rejected). "
        "\n\n"
        "Use read_pipeline to get the board, cumulative statistics and upcoming deadlines. "
        "Use move_records to move applications between stages; moves apply immediately "
        "and are rolled back if saving fails. "
        "Use delete_records to remove applications. "
        "Use publish_change to report that data changed elsewhere so cached views refresh."
    ),
)


@mcp.tool(
    name="read_pipeline",
    description=(
        "Read the job-application board grouped by stage, with cumulative statistics "
        "and optionally the next calendar events (deadlines and interviews)."
    ),
)
async def read_pipeline_tool(
    user_id: str | None = None,
    stage: str | None = None,
    include_stats: bool | None = None,
    include_calendar: bool | None = None,
    upcoming_limit: int | None = None,
    refresh: bool | None = None,
) -> dict:
    """
    Read the pipeline board.

    Args:
        user_id: Session owner (default: JOBPIPELINE_USER_ID)
        stage: Only return this stage's column
        include_stats: Include cumulative statistics (default true)
        include_calendar: Include upcoming calendar events (default false)
        upcoming_limit: Number of upcoming events (1-50, default 5)
        refresh: Resynchronize from the database first

    Returns:
        Board, statistics and calendar, or {"error": {code, message, retryable}}
    """
    args = {}
    if user_id is not None:
        args["user_id"] = user_id
    if stage is not None:
        args["stage"] = stage
    if include_stats is not None:
        args["include_stats"] = include_stats
    if include_calendar is not None:
        args["include_calendar"] = include_calendar
    if upcoming_limit is not None:
        args["upcoming_limit"] = upcoming_limit
    if refresh is not None:
        args["refresh"] = refresh

    return await read_pipeline(args, registry)


@mcp.tool(
    name="move_records",
    description=(
        "Move one or more job applications to a pipeline stage. "
        "The move is visible immediately and rolled back if the database update fails."
    ),
)
async def move_records_tool(record_ids: list[int], stage: str, user_id: str | None = None) -> dict:
    """
    Move applications to a stage.

    Args:
        record_ids: Application IDs (1-100, unique)
        stage: Target stage name
        user_id: Session owner

    Returns:
        Mutation result, or {"error": {code, message, retryable}}
    """
    args = {"record_ids": record_ids, "stage": stage}
    if user_id is not None:
        args["user_id"] = user_id
    return await move_records(args, registry)


@mcp.tool(
    name="delete_records",
    description="Delete job applications from the pipeline; restored if the database delete fails.",
)
async def delete_records_tool(record_ids: list[int], user_id: str | None = None) -> dict:
    """Delete applications by ID."""
    args = {"record_ids": record_ids}
    if user_id is not None:
        args["user_id"] = user_id
    return await delete_records(args, registry)


@mcp.tool(
    name="publish_change",
    description=(
        "Report a data change made outside this server (a table row or a shared-storage key) "
        "so that cached views derived from it are refreshed."
    ),
)
async def publish_change_tool(
    table: str | None = None,
    event_type: str | None = None,
    record_id: int | None = None,
    storage_key: str | None = None,
    user_id: str | None = None,
) -> dict:
    """
    Publish a change notification.

    Args:
        table: Changed table (jobs, skills, profiles, employment, ...)
        event_type: INSERT, UPDATE or DELETE
        record_id: Changed row ID
        storage_key: Shared-storage key, e.g. sgt:interviews
        user_id: Session owner

    Returns:
        Whether a signal was published and which cache keys it evicted
    """
    args = {}
    for name, value in (
        ("table", table),
        ("event_type", event_type),
        ("record_id", record_id),
        ("storage_key", storage_key),
        ("user_id", user_id),
    ):
        if value is not None:
            args[name] = value
    return await publish_change(args, registry)


def main():
    """
    Main entry point for the MCP server.

    Runs the server in stdio mode.
    """
    config.setup_logging()

    logger = logging.getLogger(__name__)
    logger.info("Starting jobpipeline MCP Server")
    logger.info(f"Server name: {config.server_name}")
    logger.info(f"Database path: {config.db_path}")

    warnings = config.validate()
    for warning in warnings:
        logger.warning(warning)

    initialize_schema(config.get_db_path_str())

    logger.info("Server starting in stdio mode")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
