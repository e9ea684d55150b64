"""
Pytest configuration and fixtures.

Every test gets its own in-memory SQLite database, so nothing leaks between
tests and the real Postgres database is never touched.
"""
import os
from datetime import datetime, timedelta, timezone


# Settings are read once at import time, so the environment must be in place
# before anything under app/ is imported.
os.environ.setdefault("DATABASE_HOSTNAME", "localhost")
os.environ.setdefault("DATABASE_PASSWORD", "test")
os.environ.setdefault("DATABASE_NAME", "blog_test")
os.environ.setdefault("DATABASE_USERNAME", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256-signing")
os.environ.setdefault("MAIL_USERNAME", "mailer")
os.environ.setdefault("MAIL_PASSWORD", "mailer-password")
os.environ.setdefault("MAIL_FROM", "noreply@example.com")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
# Lowest bcrypt cost keeps the suite fast.
os.environ.setdefault("OTP_HASH_ROUNDS", "4")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import CodeHasher, hash_password
from app.database import Base
import app.models  # noqa: F401 — registers all ORM models
from app.models.user import User
from app.services.otp_service import OTPService, OTPPolicy
from app.services.otp_store import SQLAlchemyOTPStore


class FakeClock:
    """Callable clock the engine reads instead of the wall clock."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingDispatcher:
    """Stands in for NotificationDispatcher; keeps every code it was asked to deliver."""

    def __init__(self):
        self.sent = []

    async def deliver(self, channel, destination, code, context):
        self.sent.append(
            {"channel": channel, "destination": destination, "code": code, "context": context}
        )

    def last_code(self) -> str:
        return self.sent[-1]["code"]


@pytest.fixture
def test_engine():
    # StaticPool: one shared connection, so every session sees the same in-memory DB.
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hasher():
    return CodeHasher(rounds=4)


@pytest.fixture
def policy():
    return OTPPolicy(otp_length=6, expiry_minutes=15, max_retry=3, min_resend_interval_seconds=60)


@pytest.fixture
def store(db):
    return SQLAlchemyOTPStore(db)


@pytest.fixture
def otp_service(store, policy, hasher, clock):
    return OTPService(store=store, policy=policy, hasher=hasher, clock=clock)


@pytest.fixture
def user(db):
    user = User(
        name="Ada Lovelace",
        email="ada@example.com",
        phone="+15551234567",
        hashed_password=hash_password("correct-horse"),
        verified_at=datetime.now(timezone.utc),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def client(session_factory, dispatcher):
    """
    FastAPI TestClient wired to the per-test database and a recording
    dispatcher instead of SMTP.
    """
    from fastapi.testclient import TestClient
    from app.main import app
    from app.database import get_db
    from app.services.notification_service import get_notification_dispatcher

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
