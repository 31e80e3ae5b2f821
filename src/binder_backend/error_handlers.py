"""统一异常处理（ErrorResponse）。

所有 API 错误统一输出 ``{error, message, request_id, details}``，不再使用 FastAPI
默认的 ``{"detail": ...}``。业务错误的机器可读 code 放在 ``details.code``。
"""

from __future__ import annotations

import logging
from typing import cast

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from binder_backend.errors import (
    AuthorizationError,
    BinderBackendError,
    NotFoundError,
    SyncCancelledError,
    SyncConflictError,
    SyncError,
    TransportError,
    ValidationError,
)
from binder_backend.schemas_common import ErrorResponse

logger = logging.getLogger(__name__)


def _map_http_status_to_error(status_code: int) -> str:
    mapping: dict[int, str] = {
        400: "bad_request",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
        409: "conflict",
        422: "validation_error",
        502: "upstream_error",
        503: "unavailable",
    }
    return mapping.get(status_code, f"http_{status_code}")


def _status_for_binder_error(exc: BinderBackendError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, AuthorizationError):
        return 403
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (SyncConflictError, SyncCancelledError)):
        return 409
    if isinstance(exc, (SyncError, TransportError)):
        return 502
    return 500


async def _binder_error_handler(request: Request, exc: Exception) -> JSONResponse:
    binder_exc = cast(BinderBackendError, exc)
    status_code = _status_for_binder_error(binder_exc)
    code = binder_exc.reason if isinstance(binder_exc, ValidationError) else binder_exc.code

    request_id = getattr(request.state, "request_id", None)
    if status_code >= 500:
        logger.warning(
            "binder error request_id=%s path=%s code=%s message=%s",
            request_id,
            request.url.path,
            code,
            binder_exc.message,
        )

    payload = ErrorResponse(
        error=_map_http_status_to_error(status_code),
        message=binder_exc.message,
        request_id=request_id,
        details={"code": code, **binder_exc.details},
    )
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload, exclude_none=True))


async def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    http_exc = cast(StarletteHTTPException, exc)

    details: object | None = None
    message = str(http_exc.detail)
    if isinstance(http_exc.detail, dict):
        # 约定：{'message': str, 'details': object}
        msg = http_exc.detail.get("message")
        if isinstance(msg, str):
            message = msg
            details = http_exc.detail.get("details")
        else:
            details = http_exc.detail
    elif isinstance(http_exc.detail, list):
        details = http_exc.detail

    payload = ErrorResponse(
        error=_map_http_status_to_error(http_exc.status_code),
        message=message,
        request_id=getattr(request.state, "request_id", None),
        details=details,
    )
    headers = getattr(http_exc, "headers", None)
    return JSONResponse(
        status_code=http_exc.status_code,
        content=jsonable_encoder(payload, exclude_none=True),
        headers=headers,
    )


async def _validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    validation_exc = cast(RequestValidationError, exc)
    payload = ErrorResponse(
        error="validation_error",
        message="Request validation error",
        request_id=getattr(request.state, "request_id", None),
        details=validation_exc.errors(),
    )
    return JSONResponse(status_code=422, content=jsonable_encoder(payload, exclude_none=True))


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    logger.exception(
        "unhandled exception request_id=%s method=%s path=%s",
        request_id,
        request.method,
        request.url.path,
        exc_info=exc,
    )
    payload = ErrorResponse(
        error="internal_error",
        message="Internal server error",
        request_id=request_id,
    )
    return JSONResponse(status_code=500, content=jsonable_encoder(payload, exclude_none=True))


def register_error_handlers(app: FastAPI) -> None:
    """为 FastAPI 应用注册统一异常处理。"""

    app.add_exception_handler(BinderBackendError, _binder_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
