from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vault_backend.config import settings
from vault_backend.db import dispose_engine, session_scope
from vault_backend.error_handlers import register_error_handlers
from vault_backend.errors import StorageFailure
from vault_backend.integrations.storage.object_storage import get_object_storage
from vault_backend.request_id import REQUEST_ID_HEADER, RequestIdMiddleware
from vault_backend.routers import attachments, files, health
from vault_backend.services.attachments_service import purge_deleted_attachments

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

logger = logging.getLogger(__name__)


async def _finish_pending_deletions() -> None:
    # Deletions interrupted by a crash or a storage outage are completed here.
    try:
        async with session_scope() as session:
            purged = await purge_deleted_attachments(
                session=session, storage=get_object_storage()
            )
    except StorageFailure:
        logger.warning("pending attachment deletions not purged at startup", exc_info=True)
        return
    if purged:
        logger.info("purged %s pending attachment deletions", purged)


@asynccontextmanager
async def _lifespan(_app: FastAPI) -> AsyncIterator[None]:
    for msg in settings.security_warnings():
        logger.warning("SECURITY WARNING: %s", msg)
    await _finish_pending_deletions()
    yield
    await dispose_engine()


def create_app() -> FastAPI:
    application = FastAPI(title=settings.app_name, lifespan=_lifespan)
    application.add_middleware(RequestIdMiddleware)

    origins = settings.cors_origins_list()
    if origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            # Credentials only with an explicit allowlist.
            allow_credentials=origins != ["*"],
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=[REQUEST_ID_HEADER, "Content-Disposition"],
        )

    register_error_handlers(application)
    for router in (health.router, files.router, attachments.router):
        application.include_router(router, prefix=settings.api_prefix)
    return application


app = create_app()
