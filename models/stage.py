"""
Centralized, type-safe pipeline stage definitions.

This module is the single source of truth for the kanban stages a job
application moves through and for the progression sets used by cumulative
statistics.

``Stage`` inherits from ``(str, Enum)`` so that members compare equal to the
plain strings stored in the ``jobs`` table (``job_status`` column) and
serialize naturally to JSON at API boundaries.
"""

from enum import Enum
from typing import Any, Dict, Tuple


class Stage(str, Enum):
    """Ordered pipeline stages.

    Declaration order is pipeline order. ``REJECTED`` is terminal and sits
    outside the progression chain.
    """

    INTERESTED = "Interested"
    APPLIED = "Applied"
    PHONE_SCREEN = "Phone Screen"
    INTERVIEW = "Interview"
    OFFER = "Offer"
    REJECTED = "Rejected"


STAGE_ORDER: Tuple[Stage, ...] = tuple(Stage)

TERMINAL_STAGES = frozenset({Stage.REJECTED})

# Non-terminal stages in order; progression sets are prefixes of this tuple.
PROGRESSION_CHAIN: Tuple[Stage, ...] = tuple(s for s in STAGE_ORDER if s not in TERMINAL_STAGES)

DEFAULT_STAGE = Stage.INTERESTED


def _build_progression() -> Dict[Stage, Tuple[Stage, ...]]:
    progression: Dict[Stage, Tuple[Stage, ...]] = {}
    for index, stage in enumerate(PROGRESSION_CHAIN):
        progression[stage] = PROGRESSION_CHAIN[: index + 1]
    for stage in TERMINAL_STAGES:
        progression[stage] = (stage,)
    return progression


# Stage -> stages a record is considered to have passed through to reach it.
# Example: Interview -> (Interested, Applied, Phone Screen, Interview)
STAGE_PROGRESSION: Dict[Stage, Tuple[Stage, ...]] = _build_progression()


def _lookup_key(value: str) -> str:
    return "".join(ch for ch in value.lower() if ch.isalnum())


_STAGE_LOOKUP: Dict[str, Stage] = {}
for _stage in Stage:
    _STAGE_LOOKUP[_lookup_key(_stage.value)] = _stage
    _STAGE_LOOKUP[_lookup_key(_stage.name)] = _stage


def parse_stage(value: Any) -> Stage:
    """
    Resolve a stage value leniently.

    Accepts enum members and strings in any case, with spaces, underscores or
    hyphens ("Phone Screen", "phone_screen", "PhoneScreen").

    Raises:
        ValueError: If the value does not name a known stage
    """
    if isinstance(value, Stage):
        return value
    if isinstance(value, str):
        stage = _STAGE_LOOKUP.get(_lookup_key(value))
        if stage is not None:
            return stage
    raise ValueError(f"Unknown stage: {value!r}")


def normalize_stage(value: Any) -> Stage:
    """
    Resolve a stored stage value, treating anything unrecognized as Interested.

    Used when reading records: a null, empty or unknown ``job_status`` places
    the record in the Interested column for both board and statistics.

    Examples:
        >>> normalize_stage("interview")
        <Stage.INTERVIEW: 'Interview'>
        >>> normalize_stage(None)
        <Stage.INTERESTED: 'Interested'>
        >>> normalize_stage("archived")
        <Stage.INTERESTED: 'Interested'>
    """
    try:
        return parse_stage(value)
    except ValueError:
        return DEFAULT_STAGE


def progression_for(stage: Any) -> Tuple[Stage, ...]:
    """Return the progression set for a (possibly unnormalized) stage value."""
    return STAGE_PROGRESSION[normalize_stage(stage)]


def is_terminal(stage: Stage) -> bool:
    return stage in TERMINAL_STAGES
