"""Shared pytest fixtures for eventboard."""

from __future__ import annotations

import os
import sys
import tempfile
from datetime import time, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep the on-disk data directory out of the working tree.
os.environ.setdefault("EVENTBOARD_DATA_DIR", tempfile.mkdtemp(prefix="eventboard-"))

from eventboard import api, crud, database, security, storage
from eventboard.models import Base
from eventboard.utils import utcnow


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = database.enable_sqlite_pragmas(
        create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    storage.get_session = database.get_session
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    """bcrypt's default cost dominates test time; the minimum is plenty here."""

    monkeypatch.setattr(security, "BCRYPT_ROUNDS", 4)


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


def make_venue(session, *, email: str = "venue@example.com", name: str = "The Loft"):
    return crud.create_profile(
        session,
        email=email,
        password="secret123",
        user_type="venue",
        venue_name=name,
        venue_location="12 Harbour Street",
    )


def make_user(session, *, email: str = "user@example.com"):
    return crud.create_profile(session, email=email, password="secret123")


def make_event(session, venue, *, capacity: int | None = None, approve=True, **overrides):
    fields = {
        "title": "Jazz Night",
        "description": "Live quartet and late bar.",
        "category": "Music",
        "date": utcnow().date() + timedelta(days=7),
        "time": time(20, 0),
        "location": "12 Harbour Street",
        "price": 0,
        "capacity": capacity,
    }
    fields.update(overrides)
    event = crud.create_event(session, venue=venue, **fields)
    if approve:
        crud.approve_event(session, event)
    return event
