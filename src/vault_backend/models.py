from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import CheckConstraint, Column, Text
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AttachmentRow(SQLModel, table=True):
    __tablename__ = "attachments"  # pyright: ignore[reportAssignmentType]

    __table_args__ = (
        CheckConstraint("failed_attempts >= 0", name="ck_attachments_failed_attempts_nonneg"),
        CheckConstraint(
            "(NOT is_encrypted AND encryption_password_hash IS NULL)"
            " OR (is_encrypted AND encryption_password_hash IS NOT NULL AND text_content IS NULL)",
            name="ck_attachments_encryption_fields",
        ),
    )

    id: str = Field(primary_key=True, min_length=1, max_length=36)

    filename: str = Field(max_length=255)
    mimetype: str = Field(max_length=255)
    size_bytes: int = Field(default=0)
    # Plain files only; a content hash of an encrypted file would reveal equal contents.
    sha256_hex: Optional[str] = Field(default=None, max_length=64)

    storage_key: str = Field(min_length=1, max_length=512)

    # NULL for ephemeral (chat) uploads; "/" rooted library path otherwise.
    folder_path: Optional[str] = Field(default=None, max_length=1024, index=True)
    is_library: bool = Field(default=False, index=True)

    is_encrypted: bool = Field(default=False)
    encryption_password_hash: Optional[str] = Field(default=None, max_length=255)
    failed_attempts: int = Field(default=0)

    text_content: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)
    # Set when deletion has started; such rows are invisible and pending purge.
    deleted_at: Optional[datetime] = Field(default=None, index=True)


class FolderRow(SQLModel, table=True):
    __tablename__ = "attachment_folders"  # pyright: ignore[reportAssignmentType]

    id: str = Field(primary_key=True, min_length=1, max_length=36)

    path: str = Field(max_length=1024, unique=True, index=True)
    name: str = Field(max_length=255)
    parent_path: str = Field(max_length=1024, index=True)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
