"""attachments + attachment folders

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return table_name in insp.get_table_names()


def upgrade() -> None:
    if not _table_exists("attachments"):
        op.create_table(
            "attachments",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("filename", sa.String(length=255), nullable=False),
            sa.Column("mimetype", sa.String(length=255), nullable=False),
            sa.Column("size_bytes", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("sha256_hex", sa.String(length=64), nullable=True),
            sa.Column("storage_key", sa.String(length=512), nullable=False),
            sa.Column("folder_path", sa.String(length=1024), nullable=True),
            sa.Column("is_library", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_encrypted", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("encryption_password_hash", sa.String(length=255), nullable=True),
            sa.Column(
                "failed_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")
            ),
            sa.Column("text_content", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "failed_attempts >= 0", name="ck_attachments_failed_attempts_nonneg"
            ),
            sa.CheckConstraint(
                "(NOT is_encrypted AND encryption_password_hash IS NULL)"
                " OR (is_encrypted AND encryption_password_hash IS NOT NULL AND text_content IS NULL)",
                name="ck_attachments_encryption_fields",
            ),
        )
        op.create_index("ix_attachments_folder_path", "attachments", ["folder_path"], unique=False)
        op.create_index("ix_attachments_is_library", "attachments", ["is_library"], unique=False)
        op.create_index("ix_attachments_created_at", "attachments", ["created_at"], unique=False)
        op.create_index("ix_attachments_deleted_at", "attachments", ["deleted_at"], unique=False)

    if not _table_exists("attachment_folders"):
        op.create_table(
            "attachment_folders",
            sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("path", sa.String(length=1024), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("parent_path", sa.String(length=1024), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        )
        op.create_index(
            "ix_attachment_folders_path", "attachment_folders", ["path"], unique=True
        )
        op.create_index(
            "ix_attachment_folders_parent_path",
            "attachment_folders",
            ["parent_path"],
            unique=False,
        )


def downgrade() -> None:
    op.drop_index("ix_attachment_folders_parent_path", table_name="attachment_folders")
    op.drop_index("ix_attachment_folders_path", table_name="attachment_folders")
    op.drop_table("attachment_folders")

    op.drop_index("ix_attachments_deleted_at", table_name="attachments")
    op.drop_index("ix_attachments_created_at", table_name="attachments")
    op.drop_index("ix_attachments_is_library", table_name="attachments")
    op.drop_index("ix_attachments_folder_path", table_name="attachments")
    op.drop_table("attachments")
