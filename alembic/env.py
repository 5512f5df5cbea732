"""Alembic environment for the attachment tables.

DATABASE_URL from the process environment takes precedence over the
settings file so deploy scripts can point migrations at another database.
"""

from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlmodel import SQLModel

from vault_backend import models  # noqa: F401
from vault_backend.config import settings
from vault_backend.db_urls import ensure_sqlite_parent_dir, normalize_database_url_for_alembic

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = SQLModel.metadata


def _database_url() -> str:
    return normalize_database_url_for_alembic(os.getenv("DATABASE_URL") or settings.database_url)


def _migrate(**configure_kwargs: object) -> None:
    context.configure(target_metadata=target_metadata, compare_type=True, **configure_kwargs)
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    _migrate(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
else:
    url = _database_url()
    ensure_sqlite_parent_dir(url)
    engine = create_engine(url, poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            # SQLite can't ALTER most constraints in place.
            _migrate(connection=connection, render_as_batch=connection.dialect.name == "sqlite")
    finally:
        engine.dispose()
