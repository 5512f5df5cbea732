"""Unified error handling (ErrorResponse).

Every route answers errors with the same JSON shape:
  {error, message, request_id, details}
Attachment errors carry their own stable ``code`` as ``error``; plain HTTP
errors get a code derived from the status.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import cast

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from vault_backend.errors import AttachmentError, StorageFailure
from vault_backend.schemas import ErrorResponse

logger = logging.getLogger(__name__)

_HTTP_STATUS_CODES: dict[int, str] = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
    422: "validation_error",
}


def _error_response(
    request: Request,
    *,
    status_code: int,
    error: str,
    message: str,
    details: object | None = None,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        message=message,
        request_id=getattr(request.state, "request_id", None),
        details=details,
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body, exclude_none=True),
        headers=dict(headers) if headers else None,
    )


async def _attachment_error_handler(request: Request, exc: Exception) -> JSONResponse:
    err = cast(AttachmentError, exc)
    return _error_response(
        request,
        status_code=err.status_code,
        error=err.code,
        message=err.message,
        details=err.details(),
    )


async def _database_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("database unavailable path=%s", request.url.path, exc_info=exc)
    return await _attachment_error_handler(request, StorageFailure())


async def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    http_exc = cast(StarletteHTTPException, exc)
    detail = http_exc.detail
    return _error_response(
        request,
        status_code=http_exc.status_code,
        error=_HTTP_STATUS_CODES.get(http_exc.status_code, f"http_{http_exc.status_code}"),
        message=detail if isinstance(detail, str) else "Request failed",
        details=None if isinstance(detail, str) else detail,
        headers=http_exc.headers,
    )


async def _validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(
        request,
        status_code=422,
        error="validation_error",
        message="Request validation error",
        details=cast(RequestValidationError, exc).errors(),
    )


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled exception request_id=%s method=%s path=%s",
        getattr(request.state, "request_id", None),
        request.method,
        request.url.path,
        exc_info=exc,
    )
    return _error_response(
        request, status_code=500, error="internal_error", message="Internal server error"
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AttachmentError, _attachment_error_handler)
    app.add_exception_handler(OperationalError, _database_unavailable_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
