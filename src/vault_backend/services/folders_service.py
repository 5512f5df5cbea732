from __future__ import annotations

import logging
import uuid

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from vault_backend.domain import folder_paths
from vault_backend.errors import DuplicateFolderName, FolderNotFound, InvalidPath, StorageFailure
from vault_backend.integrations.storage.object_storage import ObjectStorage
from vault_backend.models import FolderRow, utc_now
from vault_backend.repositories import attachments_repo, folders_repo
from vault_backend.sanitize import sanitize_attachments
from vault_backend.schemas import FolderListing, FolderOut
from vault_backend.services.attachments_service import purge_deleted_attachments
from vault_backend.services.tx import rollback_quietly

logger = logging.getLogger(__name__)


def _to_out(row: FolderRow) -> FolderOut:
    return FolderOut(
        path=row.path,
        name=row.name,
        parent_path=row.parent_path,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


async def _commit_structural_change(session: AsyncSession, *, path: str) -> None:
    try:
        await session.commit()
    except IntegrityError as e:
        await rollback_quietly(session)
        raise DuplicateFolderName(path) from e
    except SQLAlchemyError as e:
        await rollback_quietly(session)
        raise StorageFailure() from e


async def get_folder(*, session: AsyncSession, path: str) -> FolderOut:
    p = folder_paths.normalize(path)
    row = await folders_repo.get_folder(session, path=p)
    if row is None:
        raise FolderNotFound(p)
    return _to_out(row)


async def create_folder(
    *, session: AsyncSession, name: str, parent_path: str | None = None
) -> FolderOut:
    parent = folder_paths.normalize(parent_path)
    segment = folder_paths.validate_segment(name)
    path = folder_paths.join(parent, segment)

    if not await folders_repo.folder_exists(session, path=parent, lock=True):
        raise FolderNotFound(parent)
    if await folders_repo.get_folder(session, path=path) is not None:
        raise DuplicateFolderName(path)

    now = utc_now()
    row = FolderRow(
        id=str(uuid.uuid4()),
        path=path,
        name=segment,
        parent_path=parent,
        created_at=now,
        updated_at=now,
    )
    session.add(row)
    # The unique index on path catches a concurrent create of the same folder.
    await _commit_structural_change(session, path=path)
    logger.info("created folder path=%s", path)
    return _to_out(row)


async def rename_folder(*, session: AsyncSession, path: str, new_name: str) -> FolderOut:
    old_path = folder_paths.normalize(path)
    if old_path == folder_paths.ROOT:
        raise InvalidPath("cannot rename the root folder")
    segment = folder_paths.validate_segment(new_name)
    new_path = folder_paths.join(folder_paths.parent(old_path), segment)

    target = await folders_repo.get_folder(session, path=old_path, for_update=True)
    if target is None:
        raise FolderNotFound(old_path)
    if new_path == old_path:
        return _to_out(target)
    if await folders_repo.get_folder(session, path=new_path) is not None:
        raise DuplicateFolderName(new_path)

    now = utc_now()
    try:
        # Everything below moves in the same transaction as the folder itself.
        folders = await folders_repo.rename_subtree(
            session, old_path=old_path, new_path=new_path, now=now
        )
        attachments = await attachments_repo.move_subtree(
            session, old_path=old_path, new_path=new_path, now=now
        )
    except IntegrityError as e:
        await rollback_quietly(session)
        raise DuplicateFolderName(new_path) from e
    except SQLAlchemyError as e:
        await rollback_quietly(session)
        raise StorageFailure() from e

    await _commit_structural_change(session, path=new_path)
    logger.info(
        "renamed folder %s -> %s folders=%s attachments=%s",
        old_path,
        new_path,
        folders,
        attachments,
    )
    # Bulk updates bypass the identity map, so the response is built from the loaded row.
    return FolderOut(
        path=folder_paths.replace_prefix(target.path, old_path, new_path),
        name=segment,
        parent_path=target.parent_path,
        created_at=target.created_at,
        updated_at=now,
    )


async def delete_folder(*, session: AsyncSession, storage: ObjectStorage, path: str) -> int:
    """Delete the folder, its subfolders and every attachment below it.

    Returns the number of attachments removed.
    """

    p = folder_paths.normalize(path)
    if p == folder_paths.ROOT:
        raise InvalidPath("cannot delete the root folder")

    if await folders_repo.get_folder(session, path=p, for_update=True) is None:
        raise FolderNotFound(p)

    try:
        # Tombstoned attachments are invisible immediately; their bytes go in the purge below.
        attachment_ids = await attachments_repo.mark_subtree_deleted(session, path=p)
        folders = await folders_repo.delete_subtree(session, path=p)
        await session.commit()
    except SQLAlchemyError as e:
        await rollback_quietly(session)
        raise StorageFailure() from e

    logger.info(
        "deleted folder path=%s folders=%s attachments=%s", p, folders, len(attachment_ids)
    )
    await purge_deleted_attachments(
        session=session, storage=storage, attachment_ids=attachment_ids
    )
    return len(attachment_ids)


async def list_folder(
    *, session: AsyncSession, path: str | None, include_text_content: bool = False
) -> FolderListing:
    p = folder_paths.normalize(path)
    if not await folders_repo.folder_exists(session, path=p):
        raise FolderNotFound(p)

    folders = await folders_repo.list_child_folders(session, parent_path=p)
    files = await attachments_repo.list_attachments_in_folder(session, folder_path=p)
    return FolderListing(
        folder_path=p,
        folders=[_to_out(f) for f in folders],
        files=sanitize_attachments(files, include_text_content=include_text_content),
    )
