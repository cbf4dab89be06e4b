"""Engine and session plumbing for eventboard."""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import scoped_session, sessionmaker

from .config import settings

SQLITE_BUSY_TIMEOUT_MS = 5000

DATABASE_URL = f"sqlite:///{settings.database_path}"


def enable_sqlite_pragmas(target: Engine) -> Engine:
    """Turn on foreign keys and a busy timeout for every new SQLite connection."""
    if target.dialect.name != "sqlite":
        return target

    @event.listens_for(target, "connect")
    def _set_pragmas(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.close()

    return target


def make_session_factory(bind: Engine):
    return scoped_session(
        sessionmaker(
            bind=bind,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )


engine = enable_sqlite_pragmas(
    create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        future=True,
    )
)
SessionLocal = make_session_factory(engine)


@contextmanager
def get_session():
    """Yield a session that commits on success and rolls back on any error."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
