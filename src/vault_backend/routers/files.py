"""Library browsing, uploads and folder management."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlmodel.ext.asyncio.session import AsyncSession

from vault_backend.config import settings
from vault_backend.db import get_session
from vault_backend.errors import UploadTooLarge
from vault_backend.integrations.storage.object_storage import ObjectStorage, get_object_storage
from vault_backend.schemas import (
    AttachmentPatchRequest,
    FolderCreateRequest,
    FolderDeleteResult,
    FolderListing,
    FolderOut,
    FolderRenameRequest,
    OkResponse,
    PublicAttachment,
    UploadResult,
)
from vault_backend.services import attachments_service, folders_service

router = APIRouter(tags=["files"])


def _parse_bool(value: str | None, *, default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


async def _read_upload_file_limited(*, file: UploadFile, max_bytes: int) -> bytes:
    # Read the file in chunks and hard-stop once size exceeds max_bytes.
    buf = bytearray()
    chunk_size = 1024 * 1024
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        buf.extend(chunk)
        if len(buf) > max_bytes:
            raise UploadTooLarge()
    return bytes(buf)


@router.get("/files", response_model=FolderListing)
async def list_files(
    folder_path: Annotated[str, Query(alias="folderPath", max_length=1024)] = "/",
    include_text: Annotated[bool, Query(alias="includeText")] = False,
    session: AsyncSession = Depends(get_session),
) -> FolderListing:
    return await folders_service.list_folder(
        session=session, path=folder_path, include_text_content=include_text
    )


@router.post("/files", response_model=UploadResult)
async def upload_files(
    files: Annotated[list[UploadFile], File()],
    folder_path: Annotated[str | None, Form(alias="folderPath")] = None,
    is_library: Annotated[str | None, Form(alias="isLibrary")] = None,
    password: Annotated[str | None, Form()] = None,
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> UploadResult:
    if not files:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files provided")

    library = _parse_bool(is_library, default=True)
    target = (folder_path or "/") if library else None
    max_bytes = int(settings.attachments_max_size_bytes)

    out: list[PublicAttachment] = []
    for file in files:
        if max_bytes > 0:
            data = await _read_upload_file_limited(file=file, max_bytes=max_bytes)
        else:
            data = await file.read()

        if password:
            attachment = await attachments_service.upload_encrypted(
                session=session,
                storage=storage,
                data=data,
                filename=file.filename,
                mimetype=file.content_type,
                password=password,
                folder_path=target,
                is_library=library,
            )
        else:
            attachment = await attachments_service.upload_plain(
                session=session,
                storage=storage,
                data=data,
                filename=file.filename,
                mimetype=file.content_type,
                folder_path=target,
                is_library=library,
            )
        out.append(attachment)

    return UploadResult(attachments=out, count=len(out))


# Folder routes are registered before /files/{attachment_id} so "folders" is not taken as an id.
@router.post("/files/folders", response_model=FolderOut, status_code=status.HTTP_201_CREATED)
async def create_folder(
    payload: FolderCreateRequest,
    session: AsyncSession = Depends(get_session),
) -> FolderOut:
    return await folders_service.create_folder(
        session=session, name=payload.name, parent_path=payload.parent_path
    )


@router.get("/files/folders", response_model=FolderOut)
async def get_folder(
    path: Annotated[str, Query(min_length=1, max_length=1024)],
    session: AsyncSession = Depends(get_session),
) -> FolderOut:
    return await folders_service.get_folder(session=session, path=path)


@router.patch("/files/folders", response_model=FolderOut)
async def rename_folder(
    payload: FolderRenameRequest,
    session: AsyncSession = Depends(get_session),
) -> FolderOut:
    return await folders_service.rename_folder(
        session=session, path=payload.path, new_name=payload.name
    )


@router.delete("/files/folders", response_model=FolderDeleteResult)
async def delete_folder(
    path: Annotated[str, Query(min_length=1, max_length=1024)],
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> FolderDeleteResult:
    removed = await folders_service.delete_folder(session=session, storage=storage, path=path)
    return FolderDeleteResult(deleted_attachments=removed)


@router.get("/files/{attachment_id}", response_model=PublicAttachment)
async def get_file(
    attachment_id: str,
    include_text: Annotated[bool, Query(alias="includeText")] = False,
    session: AsyncSession = Depends(get_session),
) -> PublicAttachment:
    return await attachments_service.get_attachment(
        session=session, attachment_id=attachment_id, include_text_content=include_text
    )


@router.patch("/files/{attachment_id}", response_model=PublicAttachment)
async def patch_file(
    attachment_id: str,
    payload: AttachmentPatchRequest,
    session: AsyncSession = Depends(get_session),
) -> PublicAttachment:
    if payload.name is None and payload.folder_path is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="name or folderPath is required"
        )
    return await attachments_service.update_attachment(
        session=session,
        attachment_id=attachment_id,
        new_name=payload.name,
        folder_path=payload.folder_path,
    )


@router.delete("/files/{attachment_id}", response_model=OkResponse)
async def delete_file(
    attachment_id: str,
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> OkResponse:
    await attachments_service.delete_attachment(
        session=session, storage=storage, attachment_id=attachment_id
    )
    return OkResponse()
