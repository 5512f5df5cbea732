from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Error body returned by every route: {error, message, request_id, details}."""

    error: str
    message: str
    request_id: str | None = None
    details: object | None = None


class OkResponse(BaseModel):
    ok: bool = True


class HealthResponse(BaseModel):
    ok: bool = True


class PublicAttachment(BaseModel):
    # No field for storage key, password hash or attempt counter.
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, max_length=36)
    filename: str = Field(max_length=255)
    mimetype: str = Field(max_length=255)
    size_bytes: int
    folder_path: str | None = None
    is_library: bool
    is_encrypted: bool
    sha256_hex: str | None = None
    text_content: str | None = None
    created_at: datetime
    updated_at: datetime


class FolderOut(BaseModel):
    path: str
    name: str
    parent_path: str
    created_at: datetime
    updated_at: datetime


class FolderListing(BaseModel):
    folder_path: str
    folders: list[FolderOut] = Field(default_factory=list)
    files: list[PublicAttachment] = Field(default_factory=list)


class UploadResult(BaseModel):
    attachments: list[PublicAttachment] = Field(default_factory=list)
    count: int = 0


class FolderCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    parent_path: str = Field(default="/", max_length=1024, alias="parentPath")

    model_config = ConfigDict(populate_by_name=True)


class FolderRenameRequest(BaseModel):
    path: str = Field(min_length=1, max_length=1024)
    name: str = Field(min_length=1, max_length=255)


class FolderDeleteResult(BaseModel):
    ok: bool = True
    deleted_attachments: int = 0


class AttachmentPatchRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    folder_path: str | None = Field(default=None, max_length=1024, alias="folderPath")

    model_config = ConfigDict(populate_by_name=True)


class UnlockRequest(BaseModel):
    password: str = ""
    validate_only: bool = Field(default=False, alias="validateOnly")

    model_config = ConfigDict(populate_by_name=True)
