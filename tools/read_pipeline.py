"""
MCP tool handler for read_pipeline.

Returns the kanban board (records grouped by stage, most recently moved
first), cumulative statistics and, optionally, the next calendar events for
one user's session.
"""

from typing import Any, Dict

from pydantic import ValidationError

from models.errors import PipelineError, create_internal_error
from pipeline.session import SessionRegistry
from schemas.pipeline import BoardColumn, ReadPipelineRequest, ReadPipelineResponse
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import validate_stage


async def read_pipeline(args: Dict[str, Any], registry: SessionRegistry) -> Dict[str, Any]:
    """
    Read the current pipeline state.

    Args:
        args: Dictionary containing parameters:
            - user_id (str, optional): Session owner (default: configured user)
            - stage (str, optional): Only return this stage's column
            - include_stats (bool, optional): Include statistics (default True)
            - include_calendar (bool, optional): Include upcoming events (default False)
            - upcoming_limit (int, optional): Number of upcoming events (1-50, default 5)
            - refresh (bool, optional): Resynchronize from persistence first
        registry: Session registry

    Returns:
        Dictionary with user_id, total, columns, stats, upcoming, in_flight and
        needs_refresh; or {"error": {...}} on failure
    """
    try:
        request = ReadPipelineRequest.model_validate(args)
        only_stage = validate_stage(request.stage) if request.stage is not None else None

        session = await registry.get(request.user_id)
        if request.refresh:
            await session.refresh()

        columns = [
            BoardColumn(
                stage=stage.value,
                count=len(records),
                records=[record.to_dict() for record in records],
            )
            for stage, records in session.board().items()
            if only_stage is None or stage == only_stage
        ]

        upcoming = None
        if request.include_calendar:
            events = await session.calendar.upcoming(limit=request.upcoming_limit)
            upcoming = [event.model_dump(mode="json") for event in events]

        return ReadPipelineResponse(
            user_id=session.user_id,
            total=len(session.stage_store),
            columns=columns,
            stats=session.stats().to_dict() if request.include_stats else None,
            upcoming=upcoming,
            in_flight=session.coordinator.in_flight(),
            needs_refresh=session.needs_refresh,
        ).model_dump(exclude_none=True)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except PipelineError as e:
        return e.to_dict()

    except Exception as e:
        return create_internal_error(message=str(e), original_error=e).to_dict()
