"""Alembic environment, driven by ``storage.upgrade_database``."""

from __future__ import annotations

from alembic import context
from sqlalchemy import create_engine

from eventboard import database
from eventboard.models import Base


def _connectable():
    url = context.config.get_main_option("sqlalchemy.url")
    # Reuse the application engine so in-memory databases see the same tables.
    if url == str(database.engine.url):
        return database.engine
    return create_engine(url, future=True)


with _connectable().connect() as connection:
    context.configure(
        connection=connection,
        target_metadata=Base.metadata,
        compare_type=True,
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()
