"""Pytest fixtures for testing."""
import base64
import json
import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from datetime import datetime
from fastapi.testclient import TestClient
from itsdangerous import TimestampSigner
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from app.auth import UserContext, get_current_user
from app.config import settings
from app.db.database import Base, get_db
from app.db.models import Question, UserActivity
from app.main import app
from app.services.selector import phrase_cache

TEST_EMAIL = "tester@example.com"


@pytest.fixture(scope="function")
def engine():
    """In-memory database shared by every connection in one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_db(engine):
    """Create a test database session for each test."""
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    db = SessionLocal()
    yield db
    db.close()


@pytest.fixture
def test_user():
    return UserContext(email=TEST_EMAIL, name="Tester", login="tester")


@pytest.fixture
def make_question(test_db):
    """Factory adding a question to the test database."""
    counter = {"n": 0}

    def _make(category="Cardiology", text=None, options=None, correct=None, explanation="", qid=None):
        counter["n"] += 1
        options = options if options is not None else ["A", "B", "C", "D"]
        question = Question(
            id=qid or f"q{counter['n']:03d}",
            category=category,
            question_text=text or f"Question {counter['n']}",
            options=options,
            correct_answers=correct if correct is not None else [options[0]],
            explanation=explanation,
        )
        test_db.add(question)
        test_db.commit()
        return question

    return _make


@pytest.fixture
def make_activity(test_db):
    """Factory adding an activity record to the test database."""

    def _make(question, email=TEST_EMAIL, is_correct=False, rating=2, satisfaction=None,
              attempted_at=None, submitted=None):
        record = UserActivity(
            question_id=question.id,
            user_email=email,
            is_correct=is_correct,
            user_rating=rating,
            satisfaction_rating=satisfaction,
            submitted_answer=submitted if submitted is not None else [],
            attempted_at=attempted_at or datetime.utcnow(),
        )
        test_db.add(record)
        test_db.commit()
        return record

    return _make


@pytest.fixture(autouse=True)
def clear_phrase_cache():
    phrase_cache.clear()
    yield
    phrase_cache.clear()


@pytest.fixture(scope="function")
def test_client(engine, test_user):
    """Test client bound to the in-memory database and a signed-in user."""
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: test_user

    client = TestClient(app)

    yield client

    app.dependency_overrides.clear()


def session_cookie(data: dict) -> str:
    """Sign session data the way Starlette's SessionMiddleware does."""
    payload = base64.b64encode(json.dumps(data).encode("utf-8"))
    return TimestampSigner(str(settings.SECRET_KEY)).sign(payload).decode("utf-8")


@pytest.fixture
def session_headers():
    """Factory for request headers carrying a signed session."""

    def _headers(data: dict) -> dict:
        return {"cookie": f"{settings.SESSION_COOKIE_NAME}={session_cookie(data)}"}

    return _headers


@pytest.fixture
def raw_client(engine):
    """Test client with the real session-based identity."""
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
