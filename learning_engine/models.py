"""SQLModel tables for quiz attempts, interventions and the learner activity feeds."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, Index, UniqueConstraint, text
from sqlmodel import Field, SQLModel

from learning_engine.utils import utcnow

ACTIVE_STATUS_CLAUSE = "status IN ('open', 'in_progress')"


class LearnerUser(SQLModel, table=True):
    """Portal user as seen by the LMS (learners and staff)."""

    __table_args__ = (UniqueConstraint("email", name="uq_learneruser_email"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    first_name: str = ""
    last_name: str = ""
    email: str
    created_at: datetime = Field(default_factory=utcnow)


class Course(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    is_published: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)


class CourseModule(SQLModel, table=True):
    """A lesson inside a course. Quiz modules carry their authored payload as JSON."""

    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    title: str
    position: int = Field(default=0)
    module_type: str = Field(default="video")  # video | text | quiz
    # Whatever the course editor stored; normalized before use
    quiz_payload: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    pass_threshold: Optional[int] = None


class ModuleProgress(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("user_id", "module_id", name="uq_progress_user_module"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="learneruser.id", index=True)
    module_id: int = Field(foreign_key="coursemodule.id", index=True)
    completed: bool = Field(default=False)
    last_watched_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class CourseAssignment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field(foreign_key="course.id", index=True)
    title: str
    due_at: Optional[datetime] = None
    passing_percent: int = Field(default=70)
    is_published: bool = Field(default=False)


class AssignmentSubmission(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("assignment_id", "user_id", name="uq_submission_assignment_user"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    assignment_id: int = Field(foreign_key="courseassignment.id", index=True)
    user_id: int = Field(foreign_key="learneruser.id", index=True)
    status: str = Field(default="draft")  # draft | submitted | returned | graded
    score_percent: Optional[float] = None
    submitted_at: Optional[datetime] = None
    graded_at: Optional[datetime] = None


class QuizAttempt(SQLModel, table=True):
    """One graded quiz submission. Rows are never updated; retakes add new rows."""

    __table_args__ = (
        UniqueConstraint(
            "user_id", "module_id", "attempt_number", name="uq_quizattempt_user_module_number"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="learneruser.id", index=True)
    course_id: int = Field(foreign_key="course.id")
    module_id: int = Field(foreign_key="coursemodule.id", index=True)
    attempt_number: int
    seed: str
    answers: Dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON))
    question_order: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    option_order_by_question: Dict[str, List[str]] = Field(
        default_factory=dict, sa_column=Column(JSON)
    )
    score_percent: int
    correct_answers: int
    total_questions: int
    passed: bool
    pass_threshold: int
    started_at: Optional[datetime] = None
    submitted_at: datetime = Field(default_factory=utcnow)
    duration_seconds: Optional[int] = None


class LmsIntervention(SQLModel, table=True):
    """Staff follow-up on a learner flagged by the risk engine."""

    # At most one open or in-progress intervention per learner and course
    __table_args__ = (
        Index(
            "uq_lmsintervention_active_pair",
            "user_id",
            "course_id",
            unique=True,
            sqlite_where=text(ACTIVE_STATUS_CLAUSE),
            postgresql_where=text(ACTIVE_STATUS_CLAUSE),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="learneruser.id", index=True)
    course_id: Optional[int] = Field(default=None, foreign_key="course.id", index=True)
    learning_path_id: Optional[int] = None
    risk_level: str  # medium | high
    risk_score: int
    reason: str
    assigned_to: Optional[int] = Field(default=None, foreign_key="learneruser.id")
    status: str = Field(default="open")  # open | in_progress | resolved | dismissed
    action_plan: Optional[str] = None
    due_at: Optional[datetime] = None
    last_contacted_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    intervention_metadata: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
