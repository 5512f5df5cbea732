from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from vault_backend.models import AttachmentRow


@dataclass(frozen=True)
class PlainAttachment:
    id: str
    filename: str
    mimetype: str
    size_bytes: int
    storage_key: str
    folder_path: str | None
    is_library: bool
    created_at: datetime
    updated_at: datetime
    sha256_hex: str | None = None
    text_content: str | None = None

    @property
    def is_encrypted(self) -> bool:
        return False


@dataclass(frozen=True)
class EncryptedAttachment:
    id: str
    filename: str
    mimetype: str
    size_bytes: int
    storage_key: str
    folder_path: str | None
    is_library: bool
    created_at: datetime
    updated_at: datetime
    password_hash: str
    failed_attempts: int = 0

    @property
    def is_encrypted(self) -> bool:
        return True


AttachmentRecord = Union[PlainAttachment, EncryptedAttachment]


def attachment_from_row(row: AttachmentRow) -> AttachmentRecord:
    if row.is_encrypted:
        if not row.encryption_password_hash:
            # The table constraint forbids this; fail loudly if it ever shows up.
            raise ValueError(f"encrypted attachment {row.id} has no password hash")
        return EncryptedAttachment(
            id=row.id,
            filename=row.filename,
            mimetype=row.mimetype,
            size_bytes=row.size_bytes,
            storage_key=row.storage_key,
            folder_path=row.folder_path,
            is_library=row.is_library,
            created_at=row.created_at,
            updated_at=row.updated_at,
            password_hash=row.encryption_password_hash,
            failed_attempts=row.failed_attempts,
        )
    return PlainAttachment(
        id=row.id,
        filename=row.filename,
        mimetype=row.mimetype,
        size_bytes=row.size_bytes,
        storage_key=row.storage_key,
        folder_path=row.folder_path,
        is_library=row.is_library,
        created_at=row.created_at,
        updated_at=row.updated_at,
        sha256_hex=row.sha256_hex,
        text_content=row.text_content,
    )
