"""MCP tool handler for delete_records."""

from typing import Any, Dict

from pydantic import ValidationError

from models.errors import PipelineError, create_internal_error
from pipeline.session import SessionRegistry
from schemas.pipeline import DeleteRecordsRequest
from utils.pydantic_error_mapper import map_pydantic_validation_error


async def delete_records(args: Dict[str, Any], registry: SessionRegistry) -> Dict[str, Any]:
    """
    Delete records optimistically; restored on the board if the delete fails.

    Args:
        args: Dictionary containing record_ids (list[int]) and optional user_id
        registry: Session registry

    Returns:
        Mutation result, or {"error": {...}}
    """
    try:
        request = DeleteRecordsRequest.model_validate(args)
        session = await registry.get(request.user_id)
        result = await session.delete_records(request.record_ids)
        return result.to_dict()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except PipelineError as e:
        return e.to_dict()

    except Exception as e:
        return create_internal_error(message=str(e), original_error=e).to_dict()
