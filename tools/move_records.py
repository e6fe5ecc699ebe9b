"""
MCP tool handler for move_records.

Moves one or more records to a target stage through the session's
transaction coordinator: the board changes immediately, the persistence
layer is updated, and the move is rolled back if that update fails.
"""

from typing import Any, Dict

from pydantic import ValidationError

from models.errors import PipelineError, create_internal_error
from pipeline.session import SessionRegistry
from schemas.pipeline import MoveRecordsRequest
from utils.pydantic_error_mapper import map_pydantic_validation_error


async def move_records(args: Dict[str, Any], registry: SessionRegistry) -> Dict[str, Any]:
    """
    Move records to a stage.

    A single ID is sent as one update; several IDs are sent as one batch and
    confirmed or rolled back together.

    Args:
        args: Dictionary containing parameters:
            - record_ids (list[int]): Records to move (1-100, unique)
            - stage (str): Target stage
            - user_id (str, optional): Session owner
        registry: Session registry

    Returns:
        Mutation result (mutation_id, kind, state, record_ids, stage, noop),
        or {"error": {...}} with VALIDATION_ERROR, NOT_FOUND, BUSY,
        REMOTE_FAILURE or INTERNAL_ERROR
    """
    try:
        request = MoveRecordsRequest.model_validate(args)
        session = await registry.get(request.user_id)

        if len(request.record_ids) == 1:
            result = await session.move_record(request.record_ids[0], request.stage)
        else:
            result = await session.bulk_move(request.record_ids, request.stage)
        return result.to_dict()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except PipelineError as e:
        return e.to_dict()

    except Exception as e:
        return create_internal_error(message=str(e), original_error=e).to_dict()
