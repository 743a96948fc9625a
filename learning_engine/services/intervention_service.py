"""Risk candidate loading and intervention upserts."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from learning_engine.interventions import (
    InterventionStatus,
    RiskCandidate,
    check_transition,
    index_active_interventions,
    link_candidates,
    resolved_at_for,
)
from learning_engine.models import (
    AssignmentSubmission,
    Course,
    CourseAssignment,
    CourseModule,
    LearnerUser,
    LmsIntervention,
    ModuleProgress,
)
from learning_engine.risk import (
    RiskAssignmentRow,
    RiskCourse,
    RiskInputs,
    RiskModule,
    RiskPolicy,
    RiskProgressRow,
    RiskSubmissionRow,
    RiskUser,
    build_lms_risk_signals,
)
from learning_engine.services import NotFoundError
from learning_engine.utils import clamp, sanitize_plain_text, to_utc, utcnow

logger = logging.getLogger(__name__)

INTERVENTION_RISK_LEVELS = {"medium", "high"}
ACTIVE_PAIR_RETRIES = 2


class InterventionValidationError(ValueError):
    """Required intervention fields are missing or invalid."""


class InterventionUpsert(BaseModel):
    id: Optional[int] = None
    user_id: Optional[int] = None
    course_id: Optional[int] = None
    learning_path_id: Optional[int] = None
    risk_level: Optional[str] = None
    risk_score: Optional[float] = None
    reason: Optional[str] = None
    assigned_to: Optional[int] = None
    status: Optional[InterventionStatus] = None
    action_plan: Optional[str] = None
    due_at: Optional[datetime] = None
    last_contacted_at: Optional[datetime] = None


def intervention_to_dict(intervention: LmsIntervention) -> Dict[str, Any]:
    return {
        "id": intervention.id,
        "user_id": intervention.user_id,
        "course_id": intervention.course_id,
        "learning_path_id": intervention.learning_path_id,
        "risk_level": intervention.risk_level,
        "risk_score": intervention.risk_score,
        "reason": intervention.reason,
        "assigned_to": intervention.assigned_to,
        "status": intervention.status,
        "action_plan": intervention.action_plan,
        "last_contacted_at": intervention.last_contacted_at,
        "due_at": intervention.due_at,
        "resolved_at": intervention.resolved_at,
        "metadata": intervention.intervention_metadata or {},
        "created_at": intervention.created_at,
        "updated_at": intervention.updated_at,
    }


# ===================== RISK FEEDS =====================


def load_risk_inputs(session: Session) -> RiskInputs:
    """Read the activity tables into plain rows for the risk engine."""
    users = session.exec(select(LearnerUser)).all()
    courses = session.exec(select(Course)).all()
    modules = session.exec(select(CourseModule)).all()
    progress = session.exec(select(ModuleProgress)).all()
    assignments = session.exec(select(CourseAssignment)).all()
    submissions = session.exec(select(AssignmentSubmission)).all()

    return RiskInputs(
        users=[
            RiskUser(id=str(u.id), first_name=u.first_name, last_name=u.last_name, email=u.email)
            for u in users
        ],
        courses=[RiskCourse(id=str(c.id), title=c.title) for c in courses],
        modules=[RiskModule(id=str(m.id), course_id=str(m.course_id)) for m in modules],
        progress_rows=[
            RiskProgressRow(
                user_id=str(p.user_id),
                module_id=str(p.module_id),
                completed=p.completed,
                last_watched_at=p.last_watched_at,
                completed_at=p.completed_at,
            )
            for p in progress
        ],
        assignments=[
            RiskAssignmentRow(
                id=str(a.id),
                course_id=str(a.course_id),
                due_at=a.due_at,
                passing_percent=a.passing_percent,
                is_published=a.is_published,
            )
            for a in assignments
        ],
        submissions=[
            RiskSubmissionRow(
                assignment_id=str(s.assignment_id),
                user_id=str(s.user_id),
                status=s.status,
                score_percent=s.score_percent,
                submitted_at=s.submitted_at,
                graded_at=s.graded_at,
            )
            for s in submissions
        ],
    )


def list_interventions(session: Session) -> List[LmsIntervention]:
    """All interventions, newest first."""
    stmt = select(LmsIntervention).order_by(
        LmsIntervention.created_at.desc(), LmsIntervention.id.desc()
    )
    return session.exec(stmt).all()


def list_risk_candidates(
    session: Session,
    now: Optional[datetime] = None,
    policy: Optional[RiskPolicy] = None,
    include_low: bool = False,
) -> Dict[str, Any]:
    """Current risk candidates, each linked to the intervention already tracking it."""
    signals = build_lms_risk_signals(
        load_risk_inputs(session), policy=policy, now=now, include_low=include_low
    )
    interventions = list_interventions(session)
    candidates: List[RiskCandidate] = link_candidates(
        signals, interventions, serialize=intervention_to_dict
    )
    return {"candidates": candidates, "interventions": interventions}


# ===================== UPSERT =====================


def _validate(payload: InterventionUpsert) -> str:
    if payload.user_id is None:
        raise InterventionValidationError("user_id is required")
    if payload.risk_level not in INTERVENTION_RISK_LEVELS:
        raise InterventionValidationError("risk_level must be 'medium' or 'high'")
    if payload.risk_score is None:
        raise InterventionValidationError("risk_score is required")
    reason = sanitize_plain_text(payload.reason)
    if not reason:
        raise InterventionValidationError("reason is required")
    return reason


def _find_target(session: Session, payload: InterventionUpsert) -> Optional[LmsIntervention]:
    if payload.id is not None:
        existing = session.get(LmsIntervention, payload.id)
        if not existing:
            raise NotFoundError(f"Intervention with id={payload.id} does not exist")
        if existing.user_id != payload.user_id:
            raise InterventionValidationError("user_id does not match the intervention")
        return existing

    stmt = (
        select(LmsIntervention)
        .where(
            (LmsIntervention.user_id == payload.user_id)
            & (LmsIntervention.course_id == payload.course_id)
        )
        .order_by(LmsIntervention.created_at.desc(), LmsIntervention.id.desc())
    )
    active = index_active_interventions(session.exec(stmt).all())
    return next(iter(active.values()), None)


def save_intervention(
    session: Session,
    payload: InterventionUpsert,
    actor_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> LmsIntervention:
    """Create or update an intervention.

    Updates target ``payload.id`` when given, otherwise the active
    intervention for the same learner and course, so a learner is never
    tracked twice. A new record is inserted only when neither exists. If a
    concurrent save inserts the active record first, the insert is retried
    as an update of that record.

    Raises:
        InterventionValidationError: If required fields are missing
        NotFoundError: If ``payload.id`` doesn't exist
        InvalidTransitionError: If the status change is not allowed
    """
    reason = _validate(payload)
    now = to_utc(now) or utcnow()

    for retry in range(ACTIVE_PAIR_RETRIES):
        existing = _find_target(session, payload)
        intervention = _apply_payload(session, existing, payload, reason, actor_id, now)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            if existing is not None:
                raise
            # Another save opened an intervention for this pair; update it instead
            logger.warning(
                "Active intervention clash for user %s course %s (retry %d)",
                payload.user_id,
                payload.course_id,
                retry + 1,
            )
            continue
        session.refresh(intervention)

        logger.info(
            "%s intervention=%s user=%s course=%s status=%s risk=%s actor=%s",
            "lms.intervention.update" if existing else "lms.intervention.create",
            intervention.id,
            intervention.user_id,
            intervention.course_id,
            intervention.status,
            intervention.risk_level,
            actor_id,
        )
        return intervention

    raise RuntimeError(
        f"Could not save intervention for user {payload.user_id} course {payload.course_id}"
    )


def _apply_payload(
    session: Session,
    existing: Optional[LmsIntervention],
    payload: InterventionUpsert,
    reason: str,
    actor_id: Optional[int],
    now: datetime,
) -> LmsIntervention:
    previous_status = existing.status if existing else None
    if payload.status is not None:
        target_status = payload.status
    elif existing is not None:
        target_status = InterventionStatus(existing.status)
    else:
        target_status = InterventionStatus.OPEN
    target_status = check_transition(previous_status, target_status)

    intervention = existing or LmsIntervention(
        user_id=payload.user_id,
        course_id=payload.course_id,
        risk_level=payload.risk_level,
        risk_score=0,
        reason=reason,
        created_at=now,
    )
    intervention.learning_path_id = payload.learning_path_id
    intervention.risk_level = payload.risk_level
    intervention.risk_score = clamp(payload.risk_score)
    intervention.reason = reason
    intervention.assigned_to = payload.assigned_to
    intervention.action_plan = sanitize_plain_text(payload.action_plan)
    intervention.due_at = payload.due_at
    intervention.last_contacted_at = payload.last_contacted_at
    intervention.resolved_at = resolved_at_for(
        previous_status, target_status, existing.resolved_at if existing else None, now
    )
    intervention.status = target_status.value
    intervention.intervention_metadata = {
        **(intervention.intervention_metadata or {}),
        "updated_by": actor_id,
    }
    intervention.updated_at = now

    session.add(intervention)
    return intervention
