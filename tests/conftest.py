import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlmodel import Session


def _ensure_app_on_path():
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


_ensure_app_on_path()

from learning_engine import database
from learning_engine.models import (
    Course,
    CourseModule,
    LearnerUser,
)

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def test_engine():
    """Swap in a fresh in-memory database for every test."""
    original = database.engine
    engine = database.create_test_engine()
    database.set_engine(engine)
    database.reset_db()
    yield engine
    database.set_engine(original)


@pytest.fixture
def session(test_engine):
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================


@pytest.fixture
def client(test_engine):
    from fastapi.testclient import TestClient

    from learning_engine.main import app

    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[database.get_session] = override_get_session
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


# ============================================================================
# ENTITY FIXTURES
# ============================================================================

QUIZ_PAYLOAD = {
    "title": "Stewardship basics",
    "questions": [
        {
            "id": "Q1",
            "prompt": "Who owns a donor-advised fund?",
            "options": ["The sponsoring charity", "The donor", "The bank"],
            "correctIndex": 0,
            "explanation": "The charity holds legal title; the donor only advises.",
        },
        {
            "id": "Q2",
            "prompt": "How often are recurring gifts processed?",
            "options": [
                {"id": "A", "label": "Weekly"},
                {"id": "B", "label": "Monthly"},
                {"id": "C", "label": "Yearly"},
            ],
            "correctOptionId": "B",
        },
        {
            "id": "Q3",
            "prompt": "Which receipt is needed for a tax deduction?",
            "options": ["Annual giving statement", "Bank statement"],
            "correctIndex": 0,
        },
    ],
}


@pytest.fixture
def learner(session):
    user = LearnerUser(first_name="Alice", last_name="Tan", email="alice@example.com")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def staff_member(session):
    user = LearnerUser(first_name="Sam", last_name="Staff", email="sam@example.com")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def course(session):
    course = Course(title="Giving Foundations")
    session.add(course)
    session.commit()
    session.refresh(course)
    return course


@pytest.fixture
def quiz_module(session, course):
    module = CourseModule(
        course_id=course.id,
        title="Module quiz",
        position=1,
        module_type="quiz",
        quiz_payload=QUIZ_PAYLOAD,
        pass_threshold=70,
    )
    session.add(module)
    session.commit()
    session.refresh(module)
    return module


@pytest.fixture
def empty_quiz_module(session, course):
    module = CourseModule(
        course_id=course.id,
        title="Unfinished quiz",
        position=2,
        module_type="quiz",
        quiz_payload={"questions": [{"prompt": "", "options": []}]},
    )
    session.add(module)
    session.commit()
    session.refresh(module)
    return module


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)
