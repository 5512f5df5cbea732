from __future__ import annotations

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from vault_backend.config import settings
from vault_backend.db_urls import ensure_sqlite_parent_dir, normalize_database_url_for_async


def _enable_sqlite_busy_timeout(dbapi_connection, _connection_record) -> None:  # type: ignore[no-untyped-def]
    # Concurrent writers on one sqlite file wait instead of failing with "database is locked".
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA busy_timeout = 5000")
    cursor.close()


def _create_async_engine(database_url: str) -> AsyncEngine:
    # Always run with an async driver regardless of the URL scheme given.
    url = normalize_database_url_for_async(database_url)
    ensure_sqlite_parent_dir(url)
    engine = create_async_engine(url, echo=False, pool_pre_ping=True)
    if url.startswith("sqlite"):
        event.listen(engine.sync_engine, "connect", _enable_sqlite_busy_timeout)
    return engine


@lru_cache(maxsize=4)
def get_engine() -> AsyncEngine:
    # Rebuilt after tests/deployments override DATABASE_URL and call reset_engine_cache().
    return _create_async_engine(settings.database_url)


async def dispose_engine() -> None:
    # Close pooled aiosqlite/psycopg connections while the event loop is alive.
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
    get_engine.cache_clear()


def reset_engine_cache() -> None:
    get_engine.cache_clear()


async def init_db() -> None:
    # Local/test bootstrap only; production schema is managed by Alembic.
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


def _session_maker() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    async with _session_maker()() as session:
        yield session


async def get_session() -> AsyncIterator[AsyncSession]:
    async with _session_maker()() as session:
        yield session
