# pyright: reportAttributeAccessIssue=false

from __future__ import annotations

from datetime import datetime
from typing import Any, cast

import sqlalchemy as sa
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from vault_backend.domain import folder_paths
from vault_backend.models import FolderRow


def in_subtree(column: Any, path: str):  # type: ignore[no-untyped-def]
    """SQL predicate: ``column`` is ``path`` or lies below it.

    Compares a prefix with "=" rather than LIKE, which sqlite matches case-insensitively.
    """

    if path == folder_paths.ROOT:
        return column.is_not(None)
    return sa.or_(column == path, sa.func.substr(column, 1, len(path) + 1) == path + "/")


def rebased(column: Any, old_path: str, new_path: str):  # type: ignore[no-untyped-def]
    """SQL expression moving a value of ``column`` from under ``old_path`` to under ``new_path``."""

    return sa.literal(new_path) + sa.func.substr(column, len(old_path) + 1)


async def get_folder(
    session: AsyncSession, *, path: str, for_update: bool = False
) -> FolderRow | None:
    stmt = (
        select(FolderRow)
        .where(FolderRow.path == path)
        .execution_options(populate_existing=True)
    )
    if for_update:
        # No-op on sqlite, where the first write takes the database lock.
        stmt = stmt.with_for_update()
    return (await session.exec(stmt)).first()


async def folder_exists(session: AsyncSession, *, path: str, lock: bool = False) -> bool:
    """``lock`` holds a shared row lock so a concurrent delete or rename waits for us."""

    if path == folder_paths.ROOT:
        return True
    stmt = select(FolderRow.id).where(FolderRow.path == path)
    if lock:
        stmt = stmt.with_for_update(read=True)
    return (await session.exec(stmt)).first() is not None


async def list_child_folders(session: AsyncSession, *, parent_path: str) -> list[FolderRow]:
    stmt = (
        select(FolderRow)
        .where(FolderRow.parent_path == parent_path)
        .order_by(cast(Any, FolderRow.name).asc())
    )
    return list((await session.exec(stmt)).all())


async def rename_subtree(
    session: AsyncSession, *, old_path: str, new_path: str, now: datetime
) -> int:
    """Move the folder at ``old_path`` and all folders below it to ``new_path``.

    One statement; SET expressions read the pre-update values of each row.
    """

    path_col = cast(Any, FolderRow.path)
    parent_col = cast(Any, FolderRow.parent_path)
    is_top = path_col == old_path
    stmt = (
        sa.update(FolderRow)
        .where(in_subtree(path_col, old_path))
        .values(
            path=rebased(path_col, old_path, new_path),
            name=sa.case(
                (is_top, folder_paths.basename(new_path)), else_=cast(Any, FolderRow.name)
            ),
            parent_path=sa.case(
                (is_top, parent_col), else_=rebased(parent_col, old_path, new_path)
            ),
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.exec(stmt)  # type: ignore[call-overload]
    return int(result.rowcount or 0)


async def delete_subtree(session: AsyncSession, *, path: str) -> int:
    stmt = (
        sa.delete(FolderRow)
        .where(in_subtree(cast(Any, FolderRow.path), path))
        .execution_options(synchronize_session=False)
    )
    result = await session.exec(stmt)  # type: ignore[call-overload]
    return int(result.rowcount or 0)
