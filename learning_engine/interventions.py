"""Intervention workflow: status transitions and candidate suppression."""

import enum
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from learning_engine.risk import RiskSignal


class InterventionStatus(str, enum.Enum):
    """Lifecycle of a staff follow-up on a flagged learner."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


TERMINAL_STATUSES = {InterventionStatus.RESOLVED, InterventionStatus.DISMISSED}

ALLOWED_TRANSITIONS = {
    InterventionStatus.OPEN: {
        InterventionStatus.IN_PROGRESS,
        InterventionStatus.RESOLVED,
        InterventionStatus.DISMISSED,
    },
    InterventionStatus.IN_PROGRESS: {
        InterventionStatus.RESOLVED,
        InterventionStatus.DISMISSED,
    },
    InterventionStatus.RESOLVED: set(),
    InterventionStatus.DISMISSED: set(),
}


class InvalidTransitionError(ValueError):
    def __init__(self, current: InterventionStatus, target: InterventionStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move intervention from '{current.value}' to '{target.value}'")


def is_active(status: Any) -> bool:
    """True for open and in-progress interventions."""
    return InterventionStatus(status) not in TERMINAL_STATUSES


def check_transition(current: Optional[Any], target: Any) -> InterventionStatus:
    """Validate a status change and return the target status.

    ``current`` is None for a new intervention, which may start in any
    status. Saving without changing status is always allowed.

    Raises:
        InvalidTransitionError: If the workflow does not allow the change
    """
    target = InterventionStatus(target)
    if current is None:
        return target
    current = InterventionStatus(current)
    if current == target or target in ALLOWED_TRANSITIONS[current]:
        return target
    raise InvalidTransitionError(current, target)


def resolved_at_for(
    previous: Optional[Any],
    target: Any,
    current_resolved_at: Optional[datetime],
    now: datetime,
) -> Optional[datetime]:
    """``resolved_at`` after a save: stamped on entering resolved, unset otherwise."""
    target = InterventionStatus(target)
    if target != InterventionStatus.RESOLVED:
        return None
    if previous is not None and InterventionStatus(previous) == InterventionStatus.RESOLVED:
        return current_resolved_at or now
    return now


def pair_key(user_id: Any, course_id: Any) -> Tuple[str, str]:
    return (str(user_id), "" if course_id is None else str(course_id))


def index_active_interventions(interventions: Iterable[Any]) -> Dict[Tuple[str, str], Any]:
    """Map (user, course) to its active intervention.

    ``interventions`` must be ordered newest first; the first active record
    per pair wins. Records only need ``user_id``, ``course_id`` and ``status``.
    """
    active: Dict[Tuple[str, str], Any] = {}
    for intervention in interventions:
        if not is_active(intervention.status):
            continue
        active.setdefault(pair_key(intervention.user_id, intervention.course_id), intervention)
    return active


def _as_dict(intervention: Any) -> Dict[str, Any]:
    if hasattr(intervention, "model_dump"):
        return intervention.model_dump()
    return dict(vars(intervention))


class RiskCandidate(BaseModel):
    """A risk signal with the intervention already tracking it, if any."""

    signal: RiskSignal
    intervention: Optional[Dict[str, Any]] = None

    @property
    def is_new(self) -> bool:
        return self.intervention is None


def link_candidates(
    signals: Iterable[RiskSignal],
    interventions: Iterable[Any],
    serialize=None,
) -> List[RiskCandidate]:
    """Attach each signal's active intervention so it is not flagged twice."""
    serialize = serialize or _as_dict
    active = index_active_interventions(interventions)
    candidates = []
    for signal in signals:
        linked = active.get(pair_key(signal.user_id, signal.course_id))
        candidates.append(
            RiskCandidate(signal=signal, intervention=serialize(linked) if linked is not None else None)
        )
    return candidates


def new_candidates(candidates: Iterable[RiskCandidate]) -> List[RiskCandidate]:
    """Candidates with no open or in-progress intervention."""
    return [candidate for candidate in candidates if candidate.is_new]
