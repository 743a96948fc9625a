"""Course-player endpoints: start a quiz session, submit and review attempts."""

from datetime import datetime
from typing import Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session

from learning_engine.database import get_session
from learning_engine.models import QuizAttempt
from learning_engine.quiz import IncompleteSubmissionError, ordered_questions
from learning_engine.services import NotFoundError, QuizUnavailableError
from learning_engine.services.quiz_service import (
    list_attempts,
    replay_attempt,
    start_quiz_session,
    submit_quiz_attempt,
)

router = APIRouter()


class StartSessionIn(BaseModel):
    user_id: int
    freshness: Optional[str] = None


class SubmitAttemptIn(BaseModel):
    user_id: int
    seed: str
    answers: Dict[str, str]
    started_at: Optional[datetime] = None


def _attempt_out(attempt: QuizAttempt) -> dict:
    return {
        "attempt_id": attempt.id,
        "user_id": attempt.user_id,
        "course_id": attempt.course_id,
        "module_id": attempt.module_id,
        "attempt_number": attempt.attempt_number,
        "seed": attempt.seed,
        "question_order": attempt.question_order,
        "option_order_by_question": attempt.option_order_by_question,
        "answers": attempt.answers,
        "score_percent": attempt.score_percent,
        "correct_answers": attempt.correct_answers,
        "total_questions": attempt.total_questions,
        "passed": attempt.passed,
        "started_at": attempt.started_at,
        "submitted_at": attempt.submitted_at,
        "duration_seconds": attempt.duration_seconds,
    }


@router.post("/lms/modules/{module_id}/quiz/session")
def api_start_session(
    module_id: int,
    payload: StartSessionIn = Body(...),
    session: Session = Depends(get_session),
):
    try:
        quiz_session = start_quiz_session(session, module_id, payload.user_id, payload.freshness)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except QuizUnavailableError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        **quiz_session.to_record(),
        "title": quiz_session.definition.title,
        "questions": ordered_questions(quiz_session),
    }


@router.post("/lms/modules/{module_id}/quiz/attempts")
def api_submit_attempt(
    module_id: int,
    payload: SubmitAttemptIn = Body(...),
    session: Session = Depends(get_session),
):
    try:
        attempt = submit_quiz_attempt(
            session,
            module_id,
            payload.user_id,
            payload.seed,
            payload.answers,
            started_at=payload.started_at,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except QuizUnavailableError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except IncompleteSubmissionError as e:
        raise HTTPException(
            status_code=422,
            detail={"message": str(e), "missing_question_ids": e.missing_question_ids},
        )
    return _attempt_out(attempt)


@router.get("/lms/modules/{module_id}/quiz/attempts")
def api_list_attempts(
    module_id: int,
    user_id: int = Query(...),
    session: Session = Depends(get_session),
):
    return [_attempt_out(a) for a in list_attempts(session, user_id, module_id)]


@router.get("/lms/quiz/attempts/{attempt_id}")
def api_replay_attempt(attempt_id: int, session: Session = Depends(get_session)):
    try:
        return replay_attempt(session, attempt_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except QuizUnavailableError as e:
        raise HTTPException(status_code=409, detail=str(e))
