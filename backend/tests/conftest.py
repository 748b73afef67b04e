"""Pytest configuration and shared fixtures."""

import random
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from examcore.core.clock import FixedClock
from examcore.core.dependencies import get_clock
from examcore.db.base import Base
from examcore.db.session import get_db
from examcore.main import create_app
from examcore.models.question import Exam, Question
from examcore.services.study_sessions import StudySessionManager
from examcore.services.test_sessions import TestSessionManager
from tests.helpers.seed import create_exam, create_questions

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture(scope="function")
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(start=1_700_000_000)


@pytest.fixture
def exam(db) -> Exam:
    return create_exam(db)


@pytest.fixture
def questions(db, exam) -> list[Question]:
    return create_questions(db, exam, count=10)


@pytest.fixture
def question_ids(questions) -> list[str]:
    return [q.id for q in questions]


@pytest.fixture
def study_manager(db, clock) -> StudySessionManager:
    return StudySessionManager(db, clock=clock, rng=random.Random(7))


@pytest.fixture
def test_manager(db, clock) -> TestSessionManager:
    return TestSessionManager(db, clock=clock, rng=random.Random(7))


@pytest.fixture
def client(session_factory, clock) -> Generator[TestClient, None, None]:
    """API client bound to the per-test database and clock."""
    app = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-User-Id": USER_ID}
