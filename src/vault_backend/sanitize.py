"""Projection of attachment records into the externally visible shape.

Everything that leaves the service layer goes through ``sanitize_attachment``.
The storage key, password hash and attempt counter are never copied; text
content is copied only on request and only for plain files.
"""

from __future__ import annotations

from collections.abc import Iterable

from vault_backend.domain.records import AttachmentRecord, EncryptedAttachment, PlainAttachment
from vault_backend.schemas import PublicAttachment


def _should_include_text(record: AttachmentRecord, include: bool) -> bool:
    if not include:
        return False
    return isinstance(record, PlainAttachment)


def sanitize_attachment(
    record: AttachmentRecord, *, include_text_content: bool = False
) -> PublicAttachment:
    text_content: str | None = None
    sha256_hex: str | None = None
    if isinstance(record, PlainAttachment):
        sha256_hex = record.sha256_hex
        if _should_include_text(record, include_text_content):
            text_content = record.text_content

    return PublicAttachment(
        id=record.id,
        filename=record.filename,
        mimetype=record.mimetype,
        size_bytes=record.size_bytes,
        folder_path=record.folder_path,
        is_library=record.is_library,
        is_encrypted=isinstance(record, EncryptedAttachment),
        sha256_hex=sha256_hex,
        text_content=text_content,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def sanitize_attachments(
    records: Iterable[AttachmentRecord], *, include_text_content: bool = False
) -> list[PublicAttachment]:
    return [sanitize_attachment(r, include_text_content=include_text_content) for r in records]
