"""
Pytest configuration and shared fixtures.

The test environment is set before any calltracker import so the settings,
engine and logging pick it up.
"""

import os
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_calls.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("API_SECRET_KEY", "test-api-key")
os.environ.setdefault("RETRY_BASE_DELAY_SECONDS", "0")

import pytest  # noqa: E402

# Clear settings cache before any app imports to ensure test env vars are used
from calltracker.config import get_settings  # noqa: E402
get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from calltracker.main import app  # noqa: E402
from calltracker.models import Call, CallStatus  # noqa: E402
from calltracker.storage import Base, CallStore, SessionLocal, engine  # noqa: E402

API_KEY = os.environ["API_SECRET_KEY"]


@pytest.fixture(scope="function")
def db():
    """Fresh calls table for each test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def store(db):
    return CallStore(db)


@pytest.fixture
def client(db):
    """Test client sharing the per-test database."""
    with TestClient(app) as test_client:
        test_client.headers.update({"X-API-Key": API_KEY})
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def now():
    return datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def seed_call(db):
    """Insert a call row directly, bypassing ingestion rules."""
    def _seed(call_id, started, status=CallStatus.STARTED, duration=None, ended=None):
        if status == CallStatus.ENDED and ended is None and duration is not None:
            ended = started + timedelta(seconds=duration)
        call = Call(
            id=call_id,
            from_number="+14155550100",
            to_number="+919876543210",
            started=started,
            ended=ended,
            duration=duration,
            status=status,
        )
        db.add(call)
        db.commit()
        return call
    return _seed
