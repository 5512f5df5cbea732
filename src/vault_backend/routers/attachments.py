"""Attachment byte access (plain download and password unlock)."""

from __future__ import annotations

from typing import Annotated
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends
from fastapi.responses import Response
from sqlmodel.ext.asyncio.session import AsyncSession

from vault_backend.db import get_session
from vault_backend.integrations.storage.object_storage import ObjectStorage, get_object_storage
from vault_backend.schemas import OkResponse, UnlockRequest
from vault_backend.services import attachment_access
from vault_backend.services.attachment_access import UnlockedAttachment

router = APIRouter(tags=["attachments"])


def _content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted == filename:
        return f'inline; filename="{filename}"'
    return f"inline; filename*=utf-8''{quoted}"


def _bytes_response(unlocked: UnlockedAttachment) -> Response:
    meta = unlocked.attachment
    return Response(
        content=unlocked.data,
        media_type=meta.mimetype or "application/octet-stream",
        headers={
            "Content-Disposition": _content_disposition(meta.filename or meta.id),
            "Cache-Control": "no-store",
        },
    )


@router.get("/attachments/{attachment_id}")
async def download_attachment(
    attachment_id: str,
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    unlocked = await attachment_access.read_attachment_bytes(
        session=session, storage=storage, attachment_id=attachment_id, password=None
    )
    return _bytes_response(unlocked)


@router.post("/attachments/{attachment_id}/unlock", response_model=None)
async def unlock_attachment(
    attachment_id: str,
    payload: Annotated[UnlockRequest | None, Body()] = None,
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response | OkResponse:
    body = payload or UnlockRequest()
    if body.validate_only:
        await attachment_access.validate_attachment_password(
            session=session, storage=storage, attachment_id=attachment_id, password=body.password
        )
        return OkResponse()

    unlocked = await attachment_access.read_attachment_bytes(
        session=session, storage=storage, attachment_id=attachment_id, password=body.password
    )
    return _bytes_response(unlocked)
