"""
MCP tool handler for publish_change.

Feeds an external change notification into a session's invalidation bus, the
same way the realtime feed or another tab would. Cached views derived from
the changed data are evicted and refetch on the next read.
"""

from typing import Any, Dict

from pydantic import ValidationError

from models.errors import PipelineError, create_internal_error
from pipeline.session import SessionRegistry
from schemas.pipeline import PublishChangeRequest, PublishChangeResponse
from utils.pydantic_error_mapper import map_pydantic_validation_error


async def publish_change(args: Dict[str, Any], registry: SessionRegistry) -> Dict[str, Any]:
    """
    Publish a change notification.

    Args:
        args: Dictionary containing parameters:
            - table (str, optional): Changed table, e.g. "jobs" or "skills"
            - event_type (str, optional): INSERT, UPDATE or DELETE (default UPDATE)
            - record_id (int, optional): Changed row
            - storage_key (str, optional): Shared-storage key, e.g. "sgt:interviews"
            - user_id (str, optional): Session owner
            Exactly one of table / storage_key is required.
        registry: Session registry

    Returns:
        Dictionary with published, kind, invalidated_keys and
        invalidated_prefixes; published is false for unmapped tables or keys
    """
    try:
        request = PublishChangeRequest.model_validate(args)
        session = await registry.get(request.user_id)

        if request.table is not None:
            signal = session.notifications.handle(
                {
                    "table": request.table,
                    "eventType": request.event_type,
                    "recordId": request.record_id,
                    "userId": session.user_id,
                }
            )
        else:
            signal = session.notifications.handle_storage_key(request.storage_key, session.user_id)

        if signal is None:
            return PublishChangeResponse(published=False).model_dump(exclude_none=True)

        keys, prefixes = session.bus.resolve(signal)
        return PublishChangeResponse(
            published=True,
            kind=signal.kind.value,
            invalidated_keys=keys,
            invalidated_prefixes=prefixes,
        ).model_dump(exclude_none=True)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except PipelineError as e:
        return e.to_dict()

    except Exception as e:
        return create_internal_error(message=str(e), original_error=e).to_dict()
