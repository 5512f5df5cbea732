from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from vault_backend.config import settings
from vault_backend.db import dispose_engine, init_db, reset_engine_cache
from vault_backend.integrations.storage.local_storage import LocalObjectStorage


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
async def _dispose_engine_per_test(  # pyright: ignore[reportUnusedFunction]
    anyio_backend: object,  # noqa: ARG001
) -> AsyncGenerator[None, None]:
    # Close the cached AsyncEngine (aiosqlite worker threads) before the
    # per-test event loop is torn down.
    _ = anyio_backend
    yield
    await dispose_engine()


@pytest.fixture
async def storage(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> AsyncGenerator[LocalObjectStorage, None]:
    """Fresh sqlite database + local attachment dir; yields the object storage."""

    monkeypatch.setattr(settings, "database_url", f"sqlite:///{tmp_path / 'vault.db'}")
    monkeypatch.setattr(settings, "attachments_local_dir", str(tmp_path / "attachments"))
    monkeypatch.setattr(settings, "attachments_max_size_bytes", 25 * 1024 * 1024)
    # Cheap KDF costs keep the archive and lockout tests fast.
    monkeypatch.setattr(settings, "archive_scrypt_log2_n", 10)
    monkeypatch.setattr(settings, "attachments_bcrypt_rounds", 4)
    reset_engine_cache()
    await init_db()
    yield LocalObjectStorage(root_dir=settings.attachments_local_dir)
    await dispose_engine()


def pytest_sessionfinish(session: object, exitstatus: int) -> None:  # noqa: ARG001
    _ = session, exitstatus
    reset_engine_cache()
