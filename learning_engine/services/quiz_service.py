"""Quiz attempt persistence around the stateless quiz engine."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from learning_engine.config import get_settings
from learning_engine.models import CourseModule, QuizAttempt
from learning_engine.quiz import (
    QuizDefinition,
    QuizSession,
    build_quiz_seed,
    create_quiz_session,
    grade_quiz_session,
    normalize_quiz_payload,
    ordered_questions,
    validate_submission,
)
from learning_engine.services import NotFoundError, QuizUnavailableError
from learning_engine.utils import to_utc, utcnow, validate_pass_threshold

logger = logging.getLogger(__name__)

ATTEMPT_NUMBER_RETRIES = 3


def _get_module(session: Session, module_id: int) -> CourseModule:
    module = session.get(CourseModule, module_id)
    if not module:
        raise NotFoundError(f"Module with id={module_id} does not exist")
    return module


def load_quiz_definition(session: Session, module_id: int) -> QuizDefinition:
    """Normalize the module's stored quiz.

    Raises:
        NotFoundError: If the module doesn't exist
        QuizUnavailableError: If the module has no usable questions
    """
    module = _get_module(session, module_id)
    definition = normalize_quiz_payload(module.quiz_payload)
    if definition is None:
        raise QuizUnavailableError(f"Module {module_id} has no usable quiz questions")
    return definition


def pass_threshold_for(module: CourseModule) -> int:
    if module.pass_threshold is None:
        return get_settings().default_pass_threshold
    return validate_pass_threshold(module.pass_threshold)


def start_quiz_session(
    session: Session, module_id: int, user_id: int, freshness: Optional[Any] = None
) -> QuizSession:
    """Build a fresh session for a learner; each new freshness token reshuffles."""
    definition = load_quiz_definition(session, module_id)
    seed = build_quiz_seed(module_id, user_id, freshness)
    return create_quiz_session(definition, seed)


def list_attempts(session: Session, user_id: int, module_id: int) -> List[QuizAttempt]:
    """Attempts for a learner on a module, newest first."""
    stmt = (
        select(QuizAttempt)
        .where((QuizAttempt.user_id == user_id) & (QuizAttempt.module_id == module_id))
        .order_by(QuizAttempt.attempt_number.desc())
    )
    return session.exec(stmt).all()


def next_attempt_number(session: Session, user_id: int, module_id: int) -> int:
    stmt = select(func.max(QuizAttempt.attempt_number)).where(
        (QuizAttempt.user_id == user_id) & (QuizAttempt.module_id == module_id)
    )
    current = session.exec(stmt).one()
    return (current or 0) + 1


def submit_quiz_attempt(
    session: Session,
    module_id: int,
    user_id: int,
    seed: str,
    answers: Mapping[str, str],
    started_at: Optional[datetime] = None,
    submitted_at: Optional[datetime] = None,
) -> QuizAttempt:
    """Grade a submission and append it to the learner's attempt history.

    The session is rebuilt from ``seed`` so the stored orderings are exactly
    the ones the learner was shown.

    Raises:
        NotFoundError: If the module doesn't exist
        QuizUnavailableError: If the module has no usable questions
        IncompleteSubmissionError: If any question is unanswered
    """
    module = _get_module(session, module_id)
    definition = load_quiz_definition(session, module_id)
    answers = {str(key): value for key, value in answers.items()}
    validate_submission(definition, answers)

    threshold = pass_threshold_for(module)
    quiz_session = create_quiz_session(definition, seed)
    result = grade_quiz_session(quiz_session, answers, threshold)

    submitted_at = to_utc(submitted_at) or utcnow()
    started_at = to_utc(started_at)
    duration = None
    if started_at is not None:
        duration = max(0, int((submitted_at - started_at).total_seconds()))

    for retry in range(ATTEMPT_NUMBER_RETRIES):
        attempt = QuizAttempt(
            user_id=user_id,
            course_id=module.course_id,
            module_id=module_id,
            attempt_number=next_attempt_number(session, user_id, module_id),
            seed=seed,
            answers={question.id: answers[question.id] for question in definition.questions},
            question_order=list(quiz_session.question_order),
            option_order_by_question={
                key: list(value) for key, value in quiz_session.option_order_by_question.items()
            },
            score_percent=result.score_percent,
            correct_answers=result.correct_answers,
            total_questions=result.total_questions,
            passed=result.passed,
            pass_threshold=threshold,
            started_at=started_at,
            submitted_at=submitted_at,
            duration_seconds=duration,
        )
        session.add(attempt)
        try:
            session.commit()
        except IntegrityError:
            # Another submission took this attempt number; read it again
            session.rollback()
            logger.warning(
                "Attempt number clash for user %s module %s (retry %d)", user_id, module_id, retry + 1
            )
            continue
        session.refresh(attempt)
        logger.info(
            "Recorded quiz attempt %d for user %s module %s: %d%% (%s)",
            attempt.attempt_number,
            user_id,
            module_id,
            attempt.score_percent,
            "passed" if attempt.passed else "failed",
        )
        return attempt

    raise RuntimeError(f"Could not allocate an attempt number for user {user_id} module {module_id}")


def get_attempt(session: Session, attempt_id: int) -> QuizAttempt:
    attempt = session.get(QuizAttempt, attempt_id)
    if not attempt:
        raise NotFoundError(f"Attempt with id={attempt_id} does not exist")
    return attempt


def replay_attempt(session: Session, attempt_id: int) -> Dict[str, Any]:
    """Rebuild an attempt as the learner saw it, with the answers they gave.

    The layout comes from the stored orderings; ``reproducible`` reports
    whether the current quiz still derives the same orderings from the seed.
    """
    attempt = get_attempt(session, attempt_id)
    definition = load_quiz_definition(session, attempt.module_id)
    stored = QuizSession(
        seed=attempt.seed,
        question_order=attempt.question_order,
        option_order_by_question=attempt.option_order_by_question,
        definition=definition,
    )
    rederived = create_quiz_session(definition, attempt.seed)
    reproducible = (
        rederived.question_order == stored.question_order
        and rederived.option_order_by_question == stored.option_order_by_question
    )
    if not reproducible:
        logger.warning("Attempt %s no longer matches its seed; quiz was edited", attempt_id)

    try:
        questions = ordered_questions(stored, reveal=True)
    except KeyError:
        # The quiz changed too much to lay out the stored order
        questions = ordered_questions(rederived, reveal=True)

    return {
        "attempt_id": attempt.id,
        "attempt_number": attempt.attempt_number,
        "seed": attempt.seed,
        "reproducible": reproducible,
        "questions": questions,
        "answers": attempt.answers,
        "score_percent": attempt.score_percent,
        "correct_answers": attempt.correct_answers,
        "total_questions": attempt.total_questions,
        "passed": attempt.passed,
    }
