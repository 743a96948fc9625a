"""Database configuration and session dependency."""

from typing import Iterator

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from learning_engine.config import get_settings


def _build_engine(database_url: str, echo: bool = False):
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, echo=echo, connect_args=connect_args)


engine = _build_engine(get_settings().database_url, echo=get_settings().database_echo)


def create_db_and_tables() -> None:
    """Create database tables based on SQLModel metadata."""
    # Ensure models are imported so metadata is populated
    from learning_engine import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session() -> Iterator[Session]:
    """FastAPI dependency that yields a database session."""
    with Session(engine) as session:
        yield session


def create_test_engine(database_url: str = "sqlite:///:memory:"):
    """Create a test-only engine (in-memory SQLite by default).

    StaticPool keeps a single in-memory database visible across the
    connections opened by TestClient and the app.
    """
    return create_engine(
        database_url,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


def set_engine(new_engine) -> None:
    """Replace the module-level engine with `new_engine`."""
    global engine
    engine = new_engine


def reset_db() -> None:
    """Drop and recreate all tables on the current engine."""
    from learning_engine import models  # noqa: F401

    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
