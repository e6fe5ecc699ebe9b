"""
Authoritative in-memory partition of job-application records by stage.

The store keeps three structures in lock step:

- ``_records``: id -> immutable Record (current stage and timestamps)
- ``_order``: the full record set in load order
- ``_partitions``: stage -> ordered id list (front = most recently moved in)

Invariant: the union of all partitions equals the full record set with no
duplicates and no omissions after every public method returns. All methods
are synchronous, so readers never observe a half-applied batch.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from models.errors import create_not_found_error
from models.record import Record
from models.stage import STAGE_ORDER, Stage
from pipeline.statistics import PipelineStats, compute_stats
from utils.validation import utc_now, validate_record_ids, validate_stage

logger = logging.getLogger(__name__)


class StageSnapshot:
    """
    Pre-mutation copy of the records a mutation touches.

    For each touched record it keeps the record itself, its stage, its index
    within that stage's partition and its index within the full ordering, so
    a restore puts every record back exactly where it was.
    """

    def __init__(self, generation: int, entries: Dict[int, Tuple[Record, Stage, int, int]]):
        self.generation = generation
        self.entries = entries

    @property
    def record_ids(self) -> List[int]:
        return list(self.entries.keys())

    def __len__(self) -> int:
        return len(self.entries)


class StageStore:
    """
    Records grouped into ordered per-stage lists.

    Usage:
        store = StageStore(records)
        store.move_record(42, Stage.INTERVIEW)
        store.board()[Stage.INTERVIEW][0].id  # 42
    """

    def __init__(
        self,
        records: Iterable[Record] = (),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._clock = clock or utc_now
        self._records: Dict[int, Record] = {}
        self._order: List[int] = []
        self._partitions: Dict[Stage, List[int]] = {stage: [] for stage in STAGE_ORDER}
        # generation changes only on full resync; revision on every mutation.
        self.generation = 0
        self.revision = 0
        self._load(records)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def get(self, record_id: int) -> Optional[Record]:
        return self._records.get(record_id)

    def require(self, record_id: int) -> Record:
        """Return the record or raise NOT_FOUND."""
        record = self._records.get(record_id)
        if record is None:
            raise create_not_found_error([record_id])
        return record

    def stage_of(self, record_id: int) -> Optional[Stage]:
        record = self._records.get(record_id)
        return record.stage if record is not None else None

    def missing(self, record_ids: Iterable[int]) -> List[int]:
        """IDs from ``record_ids`` that are not in the store, in input order."""
        return [record_id for record_id in record_ids if record_id not in self._records]

    def ids_in(self, stage: Stage) -> List[int]:
        return list(self._partitions[stage])

    def records_in(self, stage: Stage) -> List[Record]:
        return [self._records[record_id] for record_id in self._partitions[stage]]

    def board(self) -> Dict[Stage, List[Record]]:
        """Every stage column, in stage order."""
        return {stage: self.records_in(stage) for stage in STAGE_ORDER}

    def all_records(self) -> List[Record]:
        return [self._records[record_id] for record_id in self._order]

    def stats(self) -> PipelineStats:
        return compute_stats(self._records.values())

    def verify_partitions(self) -> bool:
        """Check the partition invariant: every record in exactly one matching column."""
        seen: Dict[int, Stage] = {}
        for stage, ids in self._partitions.items():
            for record_id in ids:
                if record_id in seen:
                    return False
                record = self._records.get(record_id)
                if record is None or record.stage != stage:
                    return False
                seen[record_id] = stage
        return set(seen) == set(self._records) and len(self._order) == len(self._records)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def move_record(self, record_id: int, new_stage) -> Record:
        """
        Move one record to the front of ``new_stage``.

        Moving a record to the stage it is already in is a successful no-op.

        Raises:
            PipelineError: NOT_FOUND if the record is absent,
                VALIDATION_ERROR if the stage is invalid
        """
        stage = validate_stage(new_stage)
        record = self.require(record_id)
        if record.stage == stage:
            return record

        moved = record.with_stage(stage, self._clock())
        self._partitions[record.stage].remove(record_id)
        self._partitions[stage].insert(0, record_id)
        self._records[record_id] = moved
        self.revision += 1
        return moved

    def bulk_move(self, record_ids, new_stage) -> List[Record]:
        """
        Move several records to ``new_stage`` in one step.

        All IDs are checked before anything changes. Records that move are
        placed at the front of the target column in the given order and share
        one ``stage_changed_at``; records already in the target stage keep
        their position.

        Returns:
            The records after the move, in input order

        Raises:
            PipelineError: NOT_FOUND if any record is absent,
                VALIDATION_ERROR for invalid IDs or stage
        """
        stage = validate_stage(new_stage)
        ids = validate_record_ids(record_ids)
        missing = self.missing(ids)
        if missing:
            raise create_not_found_error(missing)

        moving = [record_id for record_id in ids if self._records[record_id].stage != stage]
        if moving:
            changed_at = self._clock()
            for record_id in moving:
                record = self._records[record_id]
                self._partitions[record.stage].remove(record_id)
                self._records[record_id] = record.with_stage(stage, changed_at)
            self._partitions[stage][:0] = moving
            self.revision += 1

        return [self._records[record_id] for record_id in ids]

    def delete_records(self, record_ids) -> List[int]:
        """
        Remove records from their columns and from the full set.

        Absent IDs are ignored.

        Returns:
            IDs actually removed, in input order
        """
        ids = validate_record_ids(record_ids)
        removed = [record_id for record_id in ids if record_id in self._records]
        if not removed:
            return []

        for record_id in removed:
            record = self._records.pop(record_id)
            self._partitions[record.stage].remove(record_id)
        doomed = set(removed)
        self._order = [record_id for record_id in self._order if record_id not in doomed]
        self.revision += 1
        return removed

    def replace_all(self, records: Iterable[Record]) -> None:
        """
        Resynchronize from a fresh fetch.

        Discards any optimistic state not yet confirmed and bumps
        ``generation`` so that pending rollbacks taken before the resync are
        skipped.
        """
        self._records = {}
        self._order = []
        self._partitions = {stage: [] for stage in STAGE_ORDER}
        self._load(records)
        self.generation += 1
        self.revision += 1
        logger.info("Stage store resynchronized with %d records", len(self._records))

    # ------------------------------------------------------------------
    # Snapshot / restore
    # ------------------------------------------------------------------

    def snapshot(self, record_ids: Iterable[int]) -> StageSnapshot:
        """Capture the touched records and their positions before a mutation."""
        order_index = {record_id: index for index, record_id in enumerate(self._order)}
        entries: Dict[int, Tuple[Record, Stage, int, int]] = {}
        for record_id in record_ids:
            record = self._records.get(record_id)
            if record is None or record_id in entries:
                continue
            stage_index = self._partitions[record.stage].index(record_id)
            entries[record_id] = (record, record.stage, stage_index, order_index[record_id])
        return StageSnapshot(self.generation, entries)

    def restore(self, snapshot: StageSnapshot) -> bool:
        """
        Put every snapshotted record back exactly as it was.

        Skipped when a full resync happened after the snapshot was taken: the
        refreshed data is newer than anything the snapshot holds.

        Returns:
            True if restored, False if skipped
        """
        if snapshot.generation != self.generation:
            logger.warning(
                "Skipping rollback of %d records: store was resynchronized", len(snapshot)
            )
            return False

        touched = set(snapshot.entries)
        for record_id in touched:
            current = self._records.get(record_id)
            if current is not None:
                self._partitions[current.stage].remove(record_id)
        self._order = [record_id for record_id in self._order if record_id not in touched]

        # Ascending original index reproduces the original positions.
        by_stage = sorted(snapshot.entries.items(), key=lambda item: item[1][2])
        for record_id, (record, stage, stage_index, _) in by_stage:
            self._partitions[stage].insert(stage_index, record_id)
            self._records[record_id] = record
        by_order = sorted(snapshot.entries.items(), key=lambda item: item[1][3])
        for record_id, (_, _, _, order_index) in by_order:
            self._order.insert(order_index, record_id)

        self.revision += 1
        return True

    def _load(self, records: Iterable[Record]) -> None:
        for record in records:
            if record.id in self._records:
                logger.warning("Duplicate record %s in load, keeping first", record.id)
                continue
            self._records[record.id] = record
            self._order.append(record.id)
            self._partitions[record.stage].append(record.id)
