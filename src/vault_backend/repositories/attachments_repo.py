# pyright: reportAttributeAccessIssue=false

from __future__ import annotations

from datetime import datetime
from typing import Any, cast

import sqlalchemy as sa
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from vault_backend.domain.records import AttachmentRecord, attachment_from_row
from vault_backend.models import AttachmentRow, utc_now
from vault_backend.repositories.folders_repo import in_subtree, rebased


def _active():  # type: ignore[no-untyped-def]
    return cast(Any, AttachmentRow.deleted_at).is_(None)


async def get_attachment_row_active(
    session: AsyncSession, *, attachment_id: str
) -> AttachmentRow | None:
    stmt = (
        select(AttachmentRow)
        .where(AttachmentRow.id == attachment_id)
        .where(_active())
        .execution_options(populate_existing=True)
    )
    return (await session.exec(stmt)).first()


async def get_attachment_active(
    session: AsyncSession, *, attachment_id: str
) -> AttachmentRecord | None:
    row = await get_attachment_row_active(session, attachment_id=attachment_id)
    return None if row is None else attachment_from_row(row)


async def list_attachments_in_folder(
    session: AsyncSession, *, folder_path: str
) -> list[AttachmentRecord]:
    stmt = (
        select(AttachmentRow)
        .where(AttachmentRow.folder_path == folder_path)
        .where(AttachmentRow.is_library == True)  # noqa: E712
        .where(_active())
        .order_by(cast(Any, AttachmentRow.created_at).desc())
    )
    rows = (await session.exec(stmt)).all()
    # sqlite compares text with BINARY collation for "=", so no re-check needed here.
    return [attachment_from_row(r) for r in rows]


async def compare_and_increment_failures(
    session: AsyncSession,
    *,
    attachment_id: str,
    expected: int,
    threshold: int,
) -> bool:
    """Set failed_attempts to expected+1 only if it still equals ``expected``.

    Reaching ``threshold`` tombstones the row in the same statement. Returns
    False when another writer changed the row first (or it is gone).
    """

    new_value = expected + 1
    now = utc_now()
    stmt = (
        sa.update(AttachmentRow)
        .where(cast(Any, AttachmentRow.id) == attachment_id)
        .where(cast(Any, AttachmentRow.is_encrypted).is_(True))
        .where(cast(Any, AttachmentRow.failed_attempts) == expected)
        .where(_active())
        .values(
            failed_attempts=new_value,
            updated_at=now,
            deleted_at=now if new_value >= threshold else None,
        )
        .execution_options(synchronize_session=False)
    )
    result = await session.exec(stmt)  # type: ignore[call-overload]
    return int(result.rowcount or 0) == 1


async def reset_failures(session: AsyncSession, *, attachment_id: str) -> bool:
    stmt = (
        sa.update(AttachmentRow)
        .where(cast(Any, AttachmentRow.id) == attachment_id)
        .where(_active())
        .values(failed_attempts=0, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    result = await session.exec(stmt)  # type: ignore[call-overload]
    return int(result.rowcount or 0) == 1


async def mark_deleted(session: AsyncSession, *, attachment_ids: list[str]) -> int:
    if not attachment_ids:
        return 0
    now = utc_now()
    stmt = (
        sa.update(AttachmentRow)
        .where(cast(Any, AttachmentRow.id).in_(attachment_ids))
        .where(_active())
        .values(deleted_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await session.exec(stmt)  # type: ignore[call-overload]
    return int(result.rowcount or 0)


async def list_pending_deletions(
    session: AsyncSession, *, attachment_ids: list[str] | None = None
) -> list[tuple[str, str]]:
    """(id, storage_key) of tombstoned rows, optionally limited to ``attachment_ids``."""

    stmt = sa.select(AttachmentRow.id, AttachmentRow.storage_key).where(
        cast(Any, AttachmentRow.deleted_at).is_not(None)
    )
    if attachment_ids is not None:
        if not attachment_ids:
            return []
        stmt = stmt.where(cast(Any, AttachmentRow.id).in_(attachment_ids))
    rows = (await session.exec(stmt)).all()  # type: ignore[call-overload]
    return [(str(r[0]), str(r[1])) for r in rows]


async def delete_tombstoned_row(session: AsyncSession, *, attachment_id: str) -> None:
    stmt = (
        sa.delete(AttachmentRow)
        .where(cast(Any, AttachmentRow.id) == attachment_id)
        .where(cast(Any, AttachmentRow.deleted_at).is_not(None))
        .execution_options(synchronize_session=False)
    )
    await session.exec(stmt)  # type: ignore[call-overload]


async def mark_subtree_deleted(session: AsyncSession, *, path: str) -> list[str]:
    """Tombstone every active attachment filed at or below ``path``; returns their ids."""

    now = utc_now()
    stmt = (
        sa.update(AttachmentRow)
        .where(in_subtree(cast(Any, AttachmentRow.folder_path), path))
        .where(_active())
        .values(deleted_at=now, updated_at=now)
        .returning(cast(Any, AttachmentRow.id))
        .execution_options(synchronize_session=False)
    )
    result = await session.exec(stmt)  # type: ignore[call-overload]
    return [str(r[0]) for r in result.all()]


async def move_subtree(
    session: AsyncSession, *, old_path: str, new_path: str, now: datetime
) -> int:
    folder_col = cast(Any, AttachmentRow.folder_path)
    stmt = (
        sa.update(AttachmentRow)
        .where(in_subtree(folder_col, old_path))
        .values(folder_path=rebased(folder_col, old_path, new_path), updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await session.exec(stmt)  # type: ignore[call-overload]
    return int(result.rowcount or 0)
