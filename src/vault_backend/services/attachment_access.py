"""Password-gated reads of attachment bytes with brute-force lockout.

An encrypted attachment tolerates ``MAX_FAILED_ATTEMPTS - 1`` cumulative wrong
passwords; the next one deletes it. The bcrypt hash stored on the row decides
whether a password is correct, never the archive itself. Counter updates are
compare-and-swap statements against the row, so concurrent guesses can't
overshoot the threshold or delete twice.

Every read starts from a fresh fetch of the row. Hashing and decryption run
in worker threads, outside any open transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import NoReturn

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession
from starlette.concurrency import run_in_threadpool

from vault_backend.domain.records import AttachmentRecord, EncryptedAttachment
from vault_backend.errors import (
    AttachmentNotFound,
    CorruptArchive,
    DeletedAfterLockout,
    IncorrectPassword,
    MissingFile,
    PasswordRequired,
    StorageFailure,
)
from vault_backend.integrations.storage.object_storage import (
    ObjectNotFound,
    ObjectStorage,
    ObjectStorageError,
)
from vault_backend.repositories import attachments_repo
from vault_backend.sanitize import sanitize_attachment
from vault_backend.schemas import PublicAttachment
from vault_backend.sealed_archive import IncorrectPasswordOrCorrupt, open_sealed
from vault_backend.security import check_attachment_password
from vault_backend.services.attachments_service import purge_deleted_attachments
from vault_backend.services.tx import commit, rollback_quietly

logger = logging.getLogger(__name__)

MAX_FAILED_ATTEMPTS = 6

# Each conflict means another request changed the counter; bounded by the threshold in practice.
_MAX_COUNTER_RETRIES = MAX_FAILED_ATTEMPTS * 4


@dataclass(frozen=True)
class UnlockedAttachment:
    attachment: PublicAttachment
    data: bytes


async def _fetch_fresh(session: AsyncSession, attachment_id: str) -> AttachmentRecord:
    try:
        record = await attachments_repo.get_attachment_active(session, attachment_id=attachment_id)
    except SQLAlchemyError as e:
        await rollback_quietly(session)
        raise StorageFailure() from e
    # End the read transaction so nothing is held while hashing.
    await commit(session)
    if record is None:
        raise AttachmentNotFound()
    return record


async def _read_object(storage: ObjectStorage, record: AttachmentRecord) -> bytes:
    try:
        return await storage.get_bytes(record.storage_key)
    except ObjectNotFound as e:
        logger.error("attachment bytes missing id=%s", record.id)
        raise MissingFile() from e
    except ObjectStorageError as e:
        raise StorageFailure() from e


async def _ensure_object(storage: ObjectStorage, record: AttachmentRecord) -> None:
    try:
        present = await storage.exists(record.storage_key)
    except ObjectStorageError as e:
        raise StorageFailure() from e
    if not present:
        logger.error("attachment bytes missing id=%s", record.id)
        raise MissingFile()


async def _lockout(session: AsyncSession, storage: ObjectStorage, attachment_id: str) -> NoReturn:
    logger.warning(
        "attachment deleted after %s failed password attempts id=%s",
        MAX_FAILED_ATTEMPTS,
        attachment_id,
    )
    try:
        await purge_deleted_attachments(
            session=session, storage=storage, attachment_ids=[attachment_id]
        )
    except StorageFailure:
        # The row is already tombstoned and invisible; the purge is retried at startup.
        logger.warning("purge after lockout incomplete id=%s", attachment_id, exc_info=True)
    raise DeletedAfterLockout()


async def _record_failure(
    session: AsyncSession, storage: ObjectStorage, record: EncryptedAttachment
) -> NoReturn:
    expected = record.failed_attempts
    for _ in range(_MAX_COUNTER_RETRIES):
        try:
            swapped = await attachments_repo.compare_and_increment_failures(
                session,
                attachment_id=record.id,
                expected=expected,
                threshold=MAX_FAILED_ATTEMPTS,
            )
        except SQLAlchemyError as e:
            await rollback_quietly(session)
            raise StorageFailure() from e
        await commit(session)

        if swapped:
            attempts = expected + 1
            if attempts >= MAX_FAILED_ATTEMPTS:
                await _lockout(session, storage, record.id)
            remaining = MAX_FAILED_ATTEMPTS - attempts
            logger.warning(
                "incorrect attachment password id=%s attempts_remaining=%s", record.id, remaining
            )
            raise IncorrectPassword(attempts_remaining=remaining)

        # Lost the race: re-read the counter and try again.
        current = await _fetch_fresh(session, record.id)
        if not isinstance(current, EncryptedAttachment):
            raise AttachmentNotFound()
        expected = current.failed_attempts

    raise StorageFailure("attempt counter is busy; try again")


async def _authorize(
    session: AsyncSession,
    storage: ObjectStorage,
    attachment_id: str,
    password: str | None,
) -> AttachmentRecord:
    record = await _fetch_fresh(session, attachment_id)
    if not isinstance(record, EncryptedAttachment):
        return record

    if not password:
        raise PasswordRequired()

    matches = await run_in_threadpool(check_attachment_password, password, record.password_hash)
    if not matches:
        await _record_failure(session, storage, record)

    # A successful unlock forgives earlier failures.
    try:
        still_there = await attachments_repo.reset_failures(session, attachment_id=record.id)
    except SQLAlchemyError as e:
        await rollback_quietly(session)
        raise StorageFailure() from e
    await commit(session)
    if not still_there:
        # Deleted by a concurrent lockout or delete between fetch and reset.
        raise AttachmentNotFound()
    return record


async def read_attachment_bytes(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    attachment_id: str,
    password: str | None = None,
) -> UnlockedAttachment:
    record = await _authorize(session, storage, attachment_id, password)
    raw = await _read_object(storage, record)

    if not isinstance(record, EncryptedAttachment):
        return UnlockedAttachment(attachment=sanitize_attachment(record), data=raw)

    try:
        _entry_name, data = await run_in_threadpool(open_sealed, raw, password or "")
    except IncorrectPasswordOrCorrupt as e:
        # The hash already matched, so this is damage, not a bad credential.
        logger.error("encrypted attachment failed to open id=%s", record.id)
        raise CorruptArchive() from e
    return UnlockedAttachment(attachment=sanitize_attachment(record), data=data)


async def validate_attachment_password(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    attachment_id: str,
    password: str | None,
) -> None:
    """Same checks and counter effects as read_attachment_bytes, without decrypting."""

    record = await _authorize(session, storage, attachment_id, password)
    await _ensure_object(storage, record)
