"""Learner risk scoring over plain in-memory activity rows.

``build_lms_risk_signals`` performs no I/O. The intervention service feeds it
rows loaded from the database; tests feed it hand-built rows.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from learning_engine.config import Settings, get_settings
from learning_engine.utils import Timestamp, days_between, percent, to_utc, utcnow

logger = logging.getLogger(__name__)

RISK_LEVELS = ("low", "medium", "high")
SUBMITTED_STATUSES = {"submitted", "graded", "returned"}
DEFAULT_REASON = "engagement risk detected"
MAX_REASONS = 3


# ===================== INPUT ROWS =====================


class RiskUser(BaseModel):
    id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class RiskCourse(BaseModel):
    id: str
    title: str = ""


class RiskModule(BaseModel):
    id: str
    course_id: str


class RiskProgressRow(BaseModel):
    user_id: str
    module_id: str
    completed: bool = False
    last_watched_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class RiskAssignmentRow(BaseModel):
    id: str
    course_id: str
    due_at: Optional[datetime] = None
    passing_percent: int = 0
    is_published: bool = True


class RiskSubmissionRow(BaseModel):
    assignment_id: str
    user_id: str
    status: str = "draft"  # draft | submitted | returned | graded
    score_percent: Optional[float] = None
    submitted_at: Optional[datetime] = None
    graded_at: Optional[datetime] = None


class RiskInputs(BaseModel):
    users: List[RiskUser] = Field(default_factory=list)
    courses: List[RiskCourse] = Field(default_factory=list)
    modules: List[RiskModule] = Field(default_factory=list)
    progress_rows: List[RiskProgressRow] = Field(default_factory=list)
    assignments: List[RiskAssignmentRow] = Field(default_factory=list)
    submissions: List[RiskSubmissionRow] = Field(default_factory=list)


# ===================== POLICY =====================


class RiskPolicy(BaseModel):
    """Weights and bands for the risk score.

    Every weight is non-negative so a worse signal never lowers the score.
    """

    low_completion_percent: int = 35
    low_completion_weight: int = Field(default=35, ge=0)
    partial_completion_percent: int = 55
    partial_completion_weight: int = Field(default=20, ge=0)

    stale_days: int = 30
    stale_weight: int = Field(default=45, ge=0)
    idle_days: int = 14
    idle_weight: int = Field(default=30, ge=0)
    no_activity_weight: int = Field(default=30, ge=0)

    overdue_weight: int = Field(default=15, ge=0)
    overdue_cap: int = Field(default=30, ge=0)
    low_score_weight: int = Field(default=10, ge=0)
    low_score_cap: int = Field(default=20, ge=0)
    untouched_overdue_bonus: int = Field(default=10, ge=0)

    high_threshold: int = 70
    medium_threshold: int = 45

    @model_validator(mode="after")
    def _check_bands(self) -> "RiskPolicy":
        if self.low_completion_percent > self.partial_completion_percent:
            raise ValueError("low_completion_percent must not exceed partial_completion_percent")
        if self.low_completion_weight < self.partial_completion_weight:
            raise ValueError("low_completion_weight must be at least partial_completion_weight")
        if self.idle_days > self.stale_days:
            raise ValueError("idle_days must not exceed stale_days")
        if self.idle_weight > self.stale_weight:
            raise ValueError("idle_weight must not exceed stale_weight")
        if self.no_activity_weight > self.stale_weight:
            raise ValueError("no_activity_weight must not exceed stale_weight")
        if self.medium_threshold > self.high_threshold:
            raise ValueError("medium_threshold must not exceed high_threshold")
        return self

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RiskPolicy":
        settings = settings or get_settings()
        prefix = "risk_"
        values = {
            name: getattr(settings, prefix + name)
            for name in cls.model_fields
            if hasattr(settings, prefix + name)
        }
        return cls(**values)

    def level_for(self, score: int) -> str:
        if score >= self.high_threshold:
            return "high"
        if score >= self.medium_threshold:
            return "medium"
        return "low"


# ===================== OUTPUT =====================


class RiskSignal(BaseModel):
    key: str
    user_id: str
    user_name: str
    user_email: str
    course_id: str
    course_title: str
    risk_score: int
    risk_level: str
    reason: str
    completion_percent: int
    overdue_assignments: int
    low_score_assignments: int
    last_active_at: Optional[datetime] = None
    inactive_days: Optional[int] = None

    @field_validator("risk_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value not in RISK_LEVELS:
            raise ValueError(f"Unknown risk level {value!r}")
        return value


# ===================== SCORING =====================


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


def score_learner(
    policy: RiskPolicy,
    completion_percent: int,
    overdue_assignments: int,
    low_score_assignments: int,
    inactive_days: Optional[int],
) -> Tuple[int, str]:
    """Return ``(risk_score, reason)`` for one learner on one course.

    ``inactive_days`` is None when the learner has no recorded activity.
    """
    # (weight, text) in a fixed order; the reason lists the heaviest first
    factors: List[Tuple[int, str]] = []

    if completion_percent < policy.low_completion_percent:
        factors.append((policy.low_completion_weight, f"{completion_percent}% complete"))
    elif completion_percent < policy.partial_completion_percent:
        factors.append((policy.partial_completion_weight, f"{completion_percent}% complete"))

    if inactive_days is None:
        factors.append((policy.no_activity_weight, "no activity recorded"))
    elif inactive_days >= policy.stale_days:
        factors.append((policy.stale_weight, f"inactive {inactive_days} days"))
    elif inactive_days >= policy.idle_days:
        factors.append((policy.idle_weight, f"inactive {inactive_days} days"))

    if overdue_assignments > 0:
        factors.append(
            (
                min(policy.overdue_cap, overdue_assignments * policy.overdue_weight),
                _plural(overdue_assignments, "overdue assignment"),
            )
        )

    if low_score_assignments > 0:
        factors.append(
            (
                min(policy.low_score_cap, low_score_assignments * policy.low_score_weight),
                _plural(low_score_assignments, "low-score assignment"),
            )
        )

    score = sum(weight for weight, _ in factors)
    if completion_percent == 0 and overdue_assignments > 0:
        score += policy.untouched_overdue_bonus
    score = min(100, score)

    ranked = sorted(
        (factor for factor in factors if factor[0] > 0), key=lambda factor: -factor[0]
    )
    reason = ", ".join(text for _, text in ranked[:MAX_REASONS]) or DEFAULT_REASON
    return score, reason


def _latest(current: Optional[datetime], candidate: Timestamp) -> Optional[datetime]:
    candidate = to_utc(candidate)
    if candidate is None:
        return current
    if current is None or candidate > current:
        return candidate
    return current


def build_lms_risk_signals(
    inputs: RiskInputs,
    policy: Optional[RiskPolicy] = None,
    now: Optional[datetime] = None,
    include_low: bool = False,
) -> List[RiskSignal]:
    """Compute risk signals for every started (user, course) pair.

    A pair is considered when the user has progress on one of the course's
    modules or the course has a published assignment. Only medium and high
    signals are returned unless ``include_low`` is set.
    """
    policy = policy or RiskPolicy.from_settings()
    now = to_utc(now) or utcnow()

    modules_by_course: Dict[str, set] = defaultdict(set)
    module_to_course: Dict[str, str] = {}
    for module in inputs.modules:
        modules_by_course[module.course_id].add(module.id)
        module_to_course[module.id] = module.course_id

    progress_by_user_course: Dict[Tuple[str, str], List[RiskProgressRow]] = defaultdict(list)
    for row in inputs.progress_rows:
        course_id = module_to_course.get(row.module_id)
        if course_id is None:
            continue
        progress_by_user_course[(row.user_id, course_id)].append(row)

    assignments_by_course: Dict[str, List[RiskAssignmentRow]] = defaultdict(list)
    for assignment in inputs.assignments:
        if assignment.is_published:
            assignments_by_course[assignment.course_id].append(assignment)

    submissions: Dict[Tuple[str, str], RiskSubmissionRow] = {}
    for submission in inputs.submissions:
        submissions[(submission.assignment_id, submission.user_id)] = submission

    signals: List[RiskSignal] = []
    for user in inputs.users:
        for course in inputs.courses:
            course_assignments = assignments_by_course.get(course.id, [])
            course_progress = progress_by_user_course.get((user.id, course.id), [])
            if not course_progress and not course_assignments:
                continue

            completed_modules = len({row.module_id for row in course_progress if row.completed})
            completion = percent(completed_modules, len(modules_by_course.get(course.id, ())))

            last_active_at: Optional[datetime] = None
            for row in course_progress:
                last_active_at = _latest(last_active_at, row.completed_at)
                last_active_at = _latest(last_active_at, row.last_watched_at)

            overdue = 0
            low_score = 0
            for assignment in course_assignments:
                submission = submissions.get((assignment.id, user.id))
                due_at = to_utc(assignment.due_at)
                handed_in = submission is not None and submission.status in SUBMITTED_STATUSES
                if due_at is not None and due_at < now and not handed_in:
                    overdue += 1
                if submission is None:
                    continue
                if submission.score_percent is not None and submission.score_percent < assignment.passing_percent:
                    low_score += 1
                last_active_at = _latest(last_active_at, submission.submitted_at)
                last_active_at = _latest(last_active_at, submission.graded_at)

            inactive_days = None
            if last_active_at is not None:
                inactive_days = max(0, days_between(now, last_active_at))

            score, reason = score_learner(policy, completion, overdue, low_score, inactive_days)
            level = policy.level_for(score)
            if level == "low" and not include_low:
                continue

            signals.append(
                RiskSignal(
                    key=f"{user.id}:{course.id}",
                    user_id=user.id,
                    user_name=user.display_name,
                    user_email=user.email,
                    course_id=course.id,
                    course_title=course.title,
                    risk_score=score,
                    risk_level=level,
                    reason=reason,
                    completion_percent=completion,
                    overdue_assignments=overdue,
                    low_score_assignments=low_score,
                    last_active_at=last_active_at,
                    inactive_days=inactive_days,
                )
            )

    logger.debug("Computed %d risk signals for %d users", len(signals), len(inputs.users))
    return sorted(signals, key=lambda signal: (-signal.risk_score, signal.user_name))
