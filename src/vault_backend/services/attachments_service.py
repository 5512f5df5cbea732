from __future__ import annotations

import hashlib
import logging
import uuid
from pathlib import PurePosixPath

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession
from starlette.concurrency import run_in_threadpool

from vault_backend.config import settings
from vault_backend.domain import folder_paths
from vault_backend.domain.records import attachment_from_row
from vault_backend.errors import (
    AttachmentNotFound,
    FolderNotFound,
    InvalidPath,
    StorageFailure,
    UploadRejected,
    UploadTooLarge,
)
from vault_backend.integrations.storage.object_storage import (
    ObjectStorage,
    ObjectStorageError,
    build_attachment_storage_key,
)
from vault_backend.models import AttachmentRow, utc_now
from vault_backend.repositories import attachments_repo, folders_repo
from vault_backend.sanitize import sanitize_attachment
from vault_backend.schemas import PublicAttachment
from vault_backend.sealed_archive import seal
from vault_backend.security import MAX_PASSWORD_BYTES, hash_attachment_password, password_fits
from vault_backend.services.tx import commit, rollback_quietly

logger = logging.getLogger(__name__)

_TEXT_MIMETYPES = {"application/json"}
_MAX_FILENAME_LEN = 255


def _clean_filename(filename: str | None) -> str:
    # Keep only the last path component of whatever the client sent.
    name = PurePosixPath((filename or "").replace("\\", "/")).name.strip()
    if not name or name in {".", ".."}:
        raise UploadRejected("filename is required")
    if "\x00" in name:
        raise UploadRejected("filename contains a null byte")
    if len(name) > _MAX_FILENAME_LEN:
        raise UploadRejected("filename too long")
    return name


def _clean_mimetype(mimetype: str | None) -> str:
    mt = (mimetype or "").split(";", 1)[0].strip().lower()
    if mt not in settings.allowed_mimetypes():
        raise UploadRejected(f"File type not supported: {mt or 'unknown'}")
    return mt


def _check_size(data: bytes) -> None:
    max_bytes = int(settings.attachments_max_size_bytes)
    if max_bytes > 0 and len(data) > max_bytes:
        raise UploadTooLarge()


def _check_password(password: str | None) -> str:
    if not password:
        raise UploadRejected("password is required for encrypted uploads")
    if not password_fits(password):
        raise UploadRejected(f"password too long (at most {MAX_PASSWORD_BYTES} bytes)")
    return password


def _extract_text(data: bytes, mimetype: str) -> str | None:
    # PDF/DOCX extraction lives outside this service.
    if not (mimetype.startswith("text/") or mimetype in _TEXT_MIMETYPES):
        return None
    text = data.decode("utf-8", errors="replace").strip()
    return text or None


async def _resolve_placement(
    session: AsyncSession, *, folder_path: str | None, is_library: bool | None
) -> str | None:
    library = (folder_path is not None) if is_library is None else bool(is_library)
    if not library:
        if folder_path is not None:
            raise UploadRejected("folder_path is only valid for library uploads")
        return None

    path = folder_paths.normalize(folder_path)
    if not await folders_repo.folder_exists(session, path=path, lock=True):
        raise FolderNotFound(path)
    return path


async def _discard_object(storage: ObjectStorage, key: str) -> None:
    try:
        await storage.delete(key)
    except ObjectStorageError:
        logger.warning("failed to remove stored object key=%s", key, exc_info=True)


async def _store_new_attachment(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    row: AttachmentRow,
    payload: bytes,
    content_type: str,
) -> PublicAttachment:
    # Bytes are written before the row commits; a failed commit removes them again.
    try:
        session.add(row)
        await session.flush()
        await storage.put_bytes(row.storage_key, payload, content_type=content_type)
        await session.commit()
    except Exception as e:
        await rollback_quietly(session)
        await _discard_object(storage, row.storage_key)
        if isinstance(e, (ObjectStorageError, SQLAlchemyError)):
            raise StorageFailure() from e
        raise

    logger.info(
        "stored attachment id=%s encrypted=%s folder=%s size=%s",
        row.id,
        row.is_encrypted,
        row.folder_path,
        row.size_bytes,
    )
    return sanitize_attachment(attachment_from_row(row))


async def upload_plain(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    data: bytes,
    filename: str | None,
    mimetype: str | None,
    folder_path: str | None = None,
    is_library: bool | None = None,
) -> PublicAttachment:
    name = _clean_filename(filename)
    mt = _clean_mimetype(mimetype)
    _check_size(data)
    placement = await _resolve_placement(session, folder_path=folder_path, is_library=is_library)

    attachment_id = str(uuid.uuid4())
    now = utc_now()
    row = AttachmentRow(
        id=attachment_id,
        filename=name,
        mimetype=mt,
        size_bytes=len(data),
        sha256_hex=hashlib.sha256(data).hexdigest(),
        storage_key=build_attachment_storage_key(attachment_id=attachment_id),
        folder_path=placement,
        is_library=placement is not None,
        is_encrypted=False,
        text_content=_extract_text(data, mt),
        created_at=now,
        updated_at=now,
    )
    return await _store_new_attachment(
        session=session, storage=storage, row=row, payload=data, content_type=mt
    )


async def upload_encrypted(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    data: bytes,
    filename: str | None,
    mimetype: str | None,
    password: str | None,
    folder_path: str | None = None,
    is_library: bool | None = None,
) -> PublicAttachment:
    name = _clean_filename(filename)
    mt = _clean_mimetype(mimetype)
    _check_size(data)
    secret = _check_password(password)
    placement = await _resolve_placement(session, folder_path=folder_path, is_library=is_library)

    password_hash = await run_in_threadpool(hash_attachment_password, secret)
    container = await run_in_threadpool(seal, data, name, secret)

    attachment_id = str(uuid.uuid4())
    now = utc_now()
    row = AttachmentRow(
        id=attachment_id,
        filename=name,
        mimetype=mt,
        size_bytes=len(data),
        sha256_hex=None,
        storage_key=build_attachment_storage_key(attachment_id=attachment_id),
        folder_path=placement,
        is_library=placement is not None,
        is_encrypted=True,
        encryption_password_hash=password_hash,
        failed_attempts=0,
        text_content=None,
        created_at=now,
        updated_at=now,
    )
    return await _store_new_attachment(
        session=session,
        storage=storage,
        row=row,
        payload=container,
        content_type="application/octet-stream",
    )


async def get_attachment(
    *, session: AsyncSession, attachment_id: str, include_text_content: bool = False
) -> PublicAttachment:
    record = await attachments_repo.get_attachment_active(session, attachment_id=attachment_id)
    if record is None:
        raise AttachmentNotFound()
    return sanitize_attachment(record, include_text_content=include_text_content)


async def update_attachment(
    *,
    session: AsyncSession,
    attachment_id: str,
    new_name: str | None = None,
    folder_path: str | None = None,
) -> PublicAttachment:
    """Rename and/or move an attachment in one commit.

    Both changes are validated before either is applied.
    """

    name = None if new_name is None else _clean_filename(new_name)
    target = None if folder_path is None else folder_paths.normalize(folder_path)
    row = await attachments_repo.get_attachment_row_active(session, attachment_id=attachment_id)
    if row is None:
        raise AttachmentNotFound()
    if target is not None:
        if not row.is_library:
            raise InvalidPath("only library files can be moved between folders")
        if not await folders_repo.folder_exists(session, path=target, lock=True):
            raise FolderNotFound(target)

    if name is not None:
        row.filename = name
    if target is not None:
        row.folder_path = target
    row.updated_at = utc_now()
    session.add(row)
    await commit(session)
    return sanitize_attachment(attachment_from_row(row))


async def rename_attachment(
    *, session: AsyncSession, attachment_id: str, new_name: str
) -> PublicAttachment:
    return await update_attachment(
        session=session, attachment_id=attachment_id, new_name=new_name
    )


async def move_attachment(
    *, session: AsyncSession, attachment_id: str, folder_path: str
) -> PublicAttachment:
    return await update_attachment(
        session=session, attachment_id=attachment_id, folder_path=folder_path
    )


async def purge_deleted_attachments(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    attachment_ids: list[str] | None = None,
) -> int:
    """Finish pending deletions: remove bytes first, then the tombstoned row.

    A failure leaves the remaining tombstones in place for the next call.
    """

    try:
        pending = await attachments_repo.list_pending_deletions(
            session, attachment_ids=attachment_ids
        )
    except SQLAlchemyError as e:
        await rollback_quietly(session)
        raise StorageFailure() from e
    await commit(session)

    purged = 0
    for attachment_id, storage_key in pending:
        try:
            await storage.delete(storage_key)
        except ObjectStorageError as e:
            raise StorageFailure() from e
        try:
            await attachments_repo.delete_tombstoned_row(session, attachment_id=attachment_id)
        except SQLAlchemyError as e:
            await rollback_quietly(session)
            raise StorageFailure() from e
        await commit(session)
        purged += 1
    return purged


async def delete_attachment(
    *, session: AsyncSession, storage: ObjectStorage, attachment_id: str
) -> None:
    try:
        marked = await attachments_repo.mark_deleted(session, attachment_ids=[attachment_id])
    except SQLAlchemyError as e:
        await rollback_quietly(session)
        raise StorageFailure() from e
    await commit(session)
    if not marked:
        raise AttachmentNotFound()

    await purge_deleted_attachments(
        session=session, storage=storage, attachment_ids=[attachment_id]
    )
    logger.info("deleted attachment id=%s", attachment_id)
