"""Learning assessment and learner-risk engine."""

from learning_engine.interventions import InterventionStatus, link_candidates
from learning_engine.quiz import (
    QuizDefinition,
    QuizResult,
    QuizSession,
    build_quiz_seed,
    create_quiz_session,
    grade_quiz_session,
    normalize_quiz_payload,
)
from learning_engine.risk import RiskInputs, RiskPolicy, RiskSignal, build_lms_risk_signals

__all__ = [
    "InterventionStatus",
    "QuizDefinition",
    "QuizResult",
    "QuizSession",
    "RiskInputs",
    "RiskPolicy",
    "RiskSignal",
    "build_lms_risk_signals",
    "build_quiz_seed",
    "create_quiz_session",
    "grade_quiz_session",
    "link_candidates",
    "normalize_quiz_payload",
]
