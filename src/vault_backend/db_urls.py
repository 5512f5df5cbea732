"""DATABASE_URL handling shared by the app engine and Alembic.

Only SQLite and PostgreSQL are supported. The app runs on aiosqlite/psycopg
async drivers; Alembic runs on the sync side of the same drivers.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy.engine import URL, make_url

_ASYNC_DRIVERS = {"sqlite": "sqlite+aiosqlite", "postgresql": "postgresql+psycopg"}
_SYNC_DRIVERS = {"sqlite": "sqlite", "postgresql": "postgresql+psycopg"}


def _parse(database_url: str) -> URL | None:
    raw = (database_url or "").strip()
    if not raw:
        return None
    if raw.startswith("postgres://"):
        raw = "postgresql://" + raw[len("postgres://") :]
    return make_url(raw)


def _with_driver(database_url: str, drivers: dict[str, str]) -> str:
    url = _parse(database_url)
    if url is None:
        return ""
    driver = drivers.get(url.get_backend_name())
    if driver is not None:
        url = url.set(drivername=driver)
    return url.render_as_string(hide_password=False)


def normalize_database_url_for_async(database_url: str) -> str:
    return _with_driver(database_url, _ASYNC_DRIVERS)


def normalize_database_url_for_alembic(database_url: str) -> str:
    return _with_driver(database_url, _SYNC_DRIVERS)


def sqlite_file_path(database_url: str) -> Path | None:
    """Local file behind a SQLite URL; None for in-memory or non-SQLite URLs."""

    url = _parse(database_url)
    if url is None or url.get_backend_name() != "sqlite":
        return None
    database = url.database or ""
    if not database or database == ":memory:" or database.startswith("file:"):
        return None
    return Path(database)


def ensure_sqlite_parent_dir(database_url: str) -> None:
    path = sqlite_file_path(database_url)
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
