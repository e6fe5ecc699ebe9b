"""
Cumulative pipeline statistics.

Statistics are derived fresh from the current record set on every read; there
is no incremental counter state that a stage transition could leave out of
sync.

Cumulative counts credit a record to every stage in its progression set, so a
record moved from Applied to Interview still counts as applied. Rejected is
terminal and only counts its own records. ``current_by_stage`` is the plain
column size used for kanban rendering.
"""

from typing import Dict, Iterable

from pydantic import BaseModel

from models.record import Record
from models.stage import STAGE_ORDER, Stage, normalize_stage, progression_for


class PipelineStats(BaseModel):
    """Cumulative and current per-stage counts."""

    total: int
    interested: int
    applied: int
    phone_screen: int
    interview: int
    offer: int
    rejected: int
    cumulative: Dict[Stage, int]
    current_by_stage: Dict[Stage, int]

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


def _zero_counts() -> Dict[Stage, int]:
    return {stage: 0 for stage in STAGE_ORDER}


def compute_stats(records: Iterable[Record]) -> PipelineStats:
    """
    Derive cumulative and current statistics from a record set.

    Args:
        records: The authoritative record set (order does not matter)

    Returns:
        PipelineStats

    Examples:
        One record each in Interview, Applied and Rejected gives
        interested=2, applied=2, phone_screen=1, interview=1, offer=0,
        rejected=1.
    """
    cumulative = _zero_counts()
    current = _zero_counts()
    total = 0

    for record in records:
        total += 1
        stage = normalize_stage(record.stage)
        current[stage] += 1
        for reached in progression_for(stage):
            cumulative[reached] += 1

    return PipelineStats(
        total=total,
        interested=cumulative[Stage.INTERESTED],
        applied=cumulative[Stage.APPLIED],
        phone_screen=cumulative[Stage.PHONE_SCREEN],
        interview=cumulative[Stage.INTERVIEW],
        offer=cumulative[Stage.OFFER],
        rejected=cumulative[Stage.REJECTED],
        cumulative=cumulative,
        current_by_stage=current,
    )


def conversion_rate(stats: PipelineStats, from_stage: Stage, to_stage: Stage) -> float:
    """
    Share of records that reached ``from_stage`` and went on to ``to_stage``.

    Because progression sets are prefix-closed, every record counted at a
    later stage was also counted at every earlier one, so the ratio of the
    two cumulative counts is the conversion rate.

    Returns:
        A value in [0.0, 1.0]; 0.0 when nothing reached ``from_stage``

    Raises:
        ValueError: If reaching ``to_stage`` does not imply reaching ``from_stage``
    """
    if from_stage not in progression_for(to_stage):
        raise ValueError(f"{to_stage.value} does not follow {from_stage.value} in the pipeline")
    denominator = stats.cumulative[from_stage]
    if denominator == 0:
        return 0.0
    return stats.cumulative[to_stage] / denominator
