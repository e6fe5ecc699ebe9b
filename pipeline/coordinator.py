"""
Optimistic mutation coordinator.

Every stage move or delete runs through a small state machine::

    idle -> applying -> confirmed
                     -> rolled_back

1. Request: IDs and stage are validated; NOT_FOUND and BUSY are raised
   before anything changes.
2. Applying: the touched records are snapshotted and the change is applied
   to the StageStore, so the very next read sees it.
3. The persistence collaborator is called (with a timeout).
4. Confirmed: the snapshot is dropped and a signal is published on the
   invalidation bus so dependent caches refetch.
5. Rolled back: the snapshot is restored exactly, nothing is published and
   REMOTE_FAILURE is raised to the caller.

Re-entrancy policy: a mutation touching any record that is already applying
is rejected with BUSY. Mutations over disjoint records may be in flight
together; each restores only its own records.

The collaborator call and the terminal transition run in an inner task that
is shielded from the caller. If the caller stops waiting (cancelled), the
mutation still resolves and the snapshot is still released.
"""

import asyncio
import logging
import uuid
from collections import OrderedDict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import BaseModel

from cache.bus import InvalidationBus
from db.protocols import DeleteResult, RecordPersistence, UpdateResult
from models.errors import (
    PipelineError,
    create_busy_error,
    create_not_found_error,
    create_remote_failure_error,
)
from models.record import Record, format_timestamp
from models.signals import Signal, SignalKind
from models.stage import Stage
from pipeline.stage_store import StageSnapshot, StageStore
from utils.validation import (
    MAX_BATCH_SIZE,
    validate_record_id,
    validate_record_ids,
    validate_stage,
)

logger = logging.getLogger(__name__)

DEFAULT_REMOTE_TIMEOUT_SECONDS = 30.0
DEFAULT_HISTORY_SIZE = 200


class MutationState(str, Enum):
    IDLE = "idle"
    APPLYING = "applying"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


class MutationKind(str, Enum):
    MOVE = "move"
    BULK_MOVE = "bulk_move"
    DELETE = "delete"


class MutationResult(BaseModel):
    """Terminal outcome of a successful mutation request."""

    mutation_id: str
    kind: MutationKind
    state: MutationState
    record_ids: List[int]
    stage: Optional[Stage] = None
    noop: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class RemoteRejectedError(Exception):
    """The collaborator answered, but reported the write as failed."""


class Mutation:
    """One in-flight optimistic mutation and its rollback slot."""

    def __init__(
        self,
        kind: MutationKind,
        record_ids: List[int],
        stage: Optional[Stage],
        snapshot: Optional[StageSnapshot],
    ):
        self.id = uuid.uuid4().hex[:12]
        self.kind = kind
        self.record_ids = record_ids
        self.stage = stage
        self.snapshot = snapshot
        self.state = MutationState.IDLE

    def result(self, noop: bool = False) -> MutationResult:
        return MutationResult(
            mutation_id=self.id,
            kind=self.kind,
            state=self.state,
            record_ids=list(self.record_ids),
            stage=self.stage,
            noop=noop,
        )


class TransactionCoordinator:
    """
    Applies stage mutations optimistically and confirms or rolls them back.

    Only the coordinator mutates the StageStore during normal operation.
    """

    def __init__(
        self,
        store: StageStore,
        persistence: RecordPersistence,
        bus: InvalidationBus,
        user_id: str,
        remote_timeout_seconds: float = DEFAULT_REMOTE_TIMEOUT_SECONDS,
        max_batch_size: int = MAX_BATCH_SIZE,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ):
        self.store = store
        self.persistence = persistence
        self.bus = bus
        self.user_id = user_id
        self.remote_timeout_seconds = remote_timeout_seconds
        self.max_batch_size = max_batch_size
        self._history_size = history_size
        self._history: "OrderedDict[str, MutationState]" = OrderedDict()
        self._applying: Set[int] = set()
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def move_record(self, record_id: int, new_stage) -> MutationResult:
        """Move one record to ``new_stage`` optimistically."""
        record_id = validate_record_id(record_id)
        stage = validate_stage(new_stage)
        self._check_available([record_id])

        if self.store.stage_of(record_id) == stage:
            return self._noop(MutationKind.MOVE, [record_id], stage)

        mutation = self._begin(MutationKind.MOVE, [record_id], stage)
        moved = self.store.move_record(record_id, stage)
        patch = self._stage_patch(moved)

        def verify(result: Any) -> None:
            if isinstance(result, Exception):
                raise result
            if isinstance(result, Record) and result.stage != stage:
                raise RemoteRejectedError(
                    f"record {record_id} stored as {result.stage.value}, expected {stage.value}"
                )

        return await self._settle(
            mutation, lambda: self.persistence.update(record_id, patch), verify
        )

    async def bulk_move(self, record_ids, new_stage) -> MutationResult:
        """Move several records to ``new_stage`` as one optimistic step."""
        ids = validate_record_ids(record_ids, self.max_batch_size)
        stage = validate_stage(new_stage)
        self._check_available(ids)

        moving = [record_id for record_id in ids if self.store.stage_of(record_id) != stage]
        if not moving:
            return self._noop(MutationKind.BULK_MOVE, ids, stage)

        mutation = self._begin(MutationKind.BULK_MOVE, moving, stage)
        moved = self.store.bulk_move(moving, stage)
        patch = self._stage_patch(moved[0])

        def verify(results: Any) -> None:
            self._verify_bulk(moving, results)

        return await self._settle(
            mutation, lambda: self.persistence.bulk_update(list(moving), patch), verify
        )

    async def delete_records(self, record_ids) -> MutationResult:
        """Delete records optimistically."""
        ids = validate_record_ids(record_ids, self.max_batch_size)
        self._check_available(ids)
        if not ids:
            return self._noop(MutationKind.DELETE, [], None)

        mutation = self._begin(MutationKind.DELETE, ids, None)
        self.store.delete_records(ids)

        def verify(result: Any) -> None:
            if isinstance(result, Exception):
                raise result
            if isinstance(result, dict):
                result = DeleteResult.model_validate(result)
            if isinstance(result, DeleteResult) and not result.success:
                raise RemoteRejectedError(result.error or "delete rejected")

        return await self._settle(mutation, lambda: self.persistence.delete(list(ids)), verify)

    def in_flight(self) -> List[int]:
        """Record IDs currently applying."""
        return sorted(self._applying)

    def state_of(self, mutation_id: str) -> Optional[MutationState]:
        """State of a recent mutation, or None if unknown or aged out of history."""
        return self._history.get(mutation_id)

    async def drain(self) -> None:
        """Wait for every in-flight mutation to reach a terminal state."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _check_available(self, record_ids: List[int]) -> None:
        missing = self.store.missing(record_ids)
        if missing:
            raise create_not_found_error(missing)
        busy = [record_id for record_id in record_ids if record_id in self._applying]
        if busy:
            raise create_busy_error(busy)

    def _noop(self, kind: MutationKind, record_ids: List[int], stage: Optional[Stage]) -> MutationResult:
        mutation = Mutation(kind, record_ids, stage, snapshot=None)
        mutation.state = MutationState.CONFIRMED
        self._remember(mutation)
        return mutation.result(noop=True)

    def _begin(self, kind: MutationKind, record_ids: List[int], stage: Optional[Stage]) -> Mutation:
        snapshot = self.store.snapshot(record_ids)
        mutation = Mutation(kind, record_ids, stage, snapshot)
        mutation.state = MutationState.APPLYING
        self._applying.update(record_ids)
        self._remember(mutation)
        return mutation

    async def _settle(
        self,
        mutation: Mutation,
        call: Callable[[], Awaitable[Any]],
        verify: Callable[[Any], None],
    ) -> MutationResult:
        task = asyncio.ensure_future(self._complete(mutation, call, verify))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return await asyncio.shield(task)

    async def _complete(
        self,
        mutation: Mutation,
        call: Callable[[], Awaitable[Any]],
        verify: Callable[[Any], None],
    ) -> MutationResult:
        try:
            result = await asyncio.wait_for(call(), timeout=self.remote_timeout_seconds)
            verify(result)
        except asyncio.TimeoutError as e:
            self._roll_back(mutation)
            raise create_remote_failure_error(
                f"no response within {self.remote_timeout_seconds:g}s", original_error=e
            ) from e
        except PipelineError as e:
            self._roll_back(mutation)
            raise create_remote_failure_error(e.message, original_error=e) from e
        except Exception as e:
            self._roll_back(mutation)
            raise create_remote_failure_error(str(e) or type(e).__name__, original_error=e) from e
        except BaseException:
            self._roll_back(mutation)
            raise
        finally:
            self._release(mutation)

        self._confirm(mutation)
        return mutation.result()

    def _confirm(self, mutation: Mutation) -> None:
        mutation.snapshot = None
        mutation.state = MutationState.CONFIRMED
        self._remember(mutation)
        kind = SignalKind.RECORDS_DELETED if mutation.kind == MutationKind.DELETE else SignalKind.RECORD_MOVED
        logger.info(
            "Mutation %s confirmed: %s %s", mutation.id, mutation.kind.value, mutation.record_ids
        )
        self.bus.publish(Signal(kind=kind, user_id=self.user_id, record_ids=tuple(mutation.record_ids)))

    def _roll_back(self, mutation: Mutation) -> None:
        if mutation.snapshot is not None:
            self.store.restore(mutation.snapshot)
        mutation.snapshot = None
        mutation.state = MutationState.ROLLED_BACK
        self._remember(mutation)
        logger.info(
            "Mutation %s rolled back: %s %s", mutation.id, mutation.kind.value, mutation.record_ids
        )

    def _release(self, mutation: Mutation) -> None:
        self._applying.difference_update(mutation.record_ids)

    def _remember(self, mutation: Mutation) -> None:
        self._history[mutation.id] = mutation.state
        self._history.move_to_end(mutation.id)
        while len(self._history) > self._history_size:
            self._history.popitem(last=False)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _stage_patch(record: Record) -> Dict[str, Any]:
        return {
            "job_status": record.stage.value,
            "status_changed_at": format_timestamp(record.stage_changed_at),
        }

    @staticmethod
    def _verify_bulk(record_ids: List[int], results: Any) -> None:
        if isinstance(results, Exception):
            raise results
        parsed = [
            r if isinstance(r, UpdateResult) else UpdateResult.model_validate(r)
            for r in (results or [])
        ]
        failed = {r.id: r.error or "update rejected" for r in parsed if not r.success}
        reported = {r.id for r in parsed}
        for record_id in record_ids:
            if record_id not in reported:
                failed.setdefault(record_id, "no result reported")
        if failed:
            details = "; ".join(f"{record_id}: {error}" for record_id, error in sorted(failed.items()))
            raise RemoteRejectedError(f"{len(failed)} of {len(record_ids)} updates failed ({details})")
