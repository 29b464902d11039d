"""Alembic environment for the Kudos engagement tables.

The database URL comes from ``DATABASE_URL`` (``.env`` is honoured) and
falls back to ``sqlalchemy.url`` in ``alembic.ini``.  Online migrations
reuse :func:`kudos.database.engine.create_db_engine` so they connect
exactly like the service does.
"""

from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from dotenv import load_dotenv

from alembic import context
from kudos.database.engine import create_db_engine
from kudos.database.models import Base

load_dotenv()

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata


def _database_url() -> str:
    return os.getenv("DATABASE_URL") or config.get_main_option("sqlalchemy.url")


def run_migrations_offline() -> None:
    """Emit the migration SQL without connecting."""
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations against the live database."""
    engine = create_db_engine(_database_url())
    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                compare_type=True,
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()
    logger.info("Kudos schema is at revision %s", context.get_head_revision())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
