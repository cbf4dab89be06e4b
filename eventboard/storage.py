"""Schema migrations and the root admin token kept in ``meta``."""

from __future__ import annotations

import secrets
import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from .config import settings
from .database import engine, get_session
from .models import Meta
from .utils import utcnow

ROOT_TOKEN_BYTES = 32


def init_db() -> None:
    upgrade_database(make_backup=False)
    fetch_root_token()


def _alembic_config() -> Config:
    config = Config()
    config.set_main_option(
        "script_location", str(Path(__file__).resolve().parent / "alembic")
    )
    config.set_main_option("sqlalchemy.url", str(engine.url))
    return config


def _backup(db_path: Path) -> Path:
    target = db_path.with_name(db_path.name + ".bak")
    shutil.copy(db_path, target)
    return target


def upgrade_database(*, make_backup: bool = True) -> list[str]:
    """Migrate the schema to head and return a description of each step.

    Databases created before migrations were tracked already hold the
    eventboard tables; those are stamped instead of migrated.
    """
    actions: list[str] = []
    db_path = Path(settings.database_path)
    if make_backup and db_path.exists():
        actions.append(f"Backup created at {_backup(db_path)}")

    inspector = inspect(engine)
    config = _alembic_config()
    if inspector.has_table("alembic_version"):
        command.upgrade(config, "head")
        actions.append("Applied Alembic migrations to head")
    elif inspector.has_table("events"):
        command.stamp(config, "head")
        actions.append("Stamped existing database to Alembic head")
    else:
        command.upgrade(config, "head")
        actions.append("Ran Alembic upgrade to head (fresh database)")
    return actions


def read_root_token(session: Session) -> str | None:
    meta = session.get(Meta, settings.root_token_key)
    return meta.value if meta else None


def _store_root_token(session: Session, token: str) -> None:
    session.merge(Meta(key=settings.root_token_key, value=token, updated_at=utcnow()))


def fetch_root_token() -> str:
    """Return the root admin token, creating one on first use."""
    with get_session() as session:
        token = read_root_token(session)
        if token is None:
            token = secrets.token_urlsafe(ROOT_TOKEN_BYTES)
            _store_root_token(session, token)
        return token


def rotate_root_token() -> str:
    token = secrets.token_urlsafe(ROOT_TOKEN_BYTES)
    with get_session() as session:
        _store_root_token(session, token)
    return token
