# tests/conftest.py
"""
Pytest configuration and fixtures.
"""

import os
import uuid
from datetime import datetime, timezone

import pytest

# Set test environment
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("STORE_RETRY_BASE_DELAY", "0")
os.environ.setdefault("LOG_JSON", "false")

ADMIN_KEY = os.environ["ADMIN_API_KEY"]
CRON_SECRET = os.environ["CRON_SECRET"]

# Fixed evaluation time so every test is deterministic
NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database per test."""
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker
    from sqlalchemy.pool import StaticPool

    from app import models  # noqa: F401
    from app.database import Base

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)

    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def make_user(db_session):
    """Create a user, optionally with a subscription."""
    from app.models import Subscription, User

    def _make_user(user_id=None, subscription_status=None, end_date=None, account_tier="free"):
        user = User(id=user_id or uuid.uuid4().hex, username="collector", account_tier=account_tier)
        db_session.add(user)
        if subscription_status is not None:
            db_session.add(Subscription(user_id=user.id, status=subscription_status, end_date=end_date))
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_listing(db_session):
    """Create a listing. Timestamps default to None unless given."""
    from app.models import Listing

    def _make_listing(listing_id=None, user_id=None, status="active", created_at=None, **fields):
        listing = Listing(
            id=listing_id or uuid.uuid4().hex,
            user_id=user_id,
            title=fields.pop("title", "Charizard Base Set Holo"),
            status=status,
            created_at=created_at,
            **fields,
        )
        db_session.add(listing)
        db_session.commit()
        return listing

    return _make_listing


@pytest.fixture
def make_favorites(db_session):
    """Create `count` favorites referencing a listing id."""
    from app.models import Favorite

    def _make_favorites(listing_id, count=1):
        favorites = [
            Favorite(id=f"{listing_id}-fav-{i:05d}", user_id=f"fan-{i}", listing_id=listing_id)
            for i in range(count)
        ]
        db_session.add_all(favorites)
        db_session.commit()
        return favorites

    return _make_favorites
