from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import cast

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from binder_backend.config import settings
from binder_backend.db import dispose_engine_cache, get_engine, init_db
from binder_backend.error_handlers import register_error_handlers
from binder_backend.integrations.document_store import get_document_store
from binder_backend.integrations.storage.local_binder_storage import LocalBinderStorage
from binder_backend.routers import binders, sync as sync_router
from binder_backend.schemas_common import HealthResponse
from binder_backend.services.binder_service import BinderService
from binder_backend.services.sync_service import BinderSyncService


REQUEST_ID_HEADER = b"x-request-id"


def _inbound_request_id(scope: Scope) -> bytes | None:
    headers = cast(list[tuple[bytes, bytes]], scope.get("headers") or [])
    for key, value in headers:
        if key.lower() == REQUEST_ID_HEADER:
            return value.strip() or None
    return None


class RequestIdMiddleware:
    """Echo or mint an ``X-Request-ID`` and expose it as ``request.state.request_id``."""

    def __init__(self, app: ASGIApp) -> None:
        self.app: ASGIApp = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        raw_id = _inbound_request_id(scope) or str(uuid.uuid4()).encode("ascii")
        # latin-1 maps bytes to str one to one.
        scope.setdefault("state", {})["request_id"] = raw_id.decode("latin-1")

        async def send_with_request_id(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers = [
                    (k, v)
                    for (k, v) in cast(list[tuple[bytes, bytes]], message.get("headers", []))
                    if k.lower() != REQUEST_ID_HEADER
                ]
                headers.append((REQUEST_ID_HEADER, raw_id))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_request_id)


logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

logger = logging.getLogger(__name__)
for msg in settings.security_warnings():
    logger.warning("SECURITY WARNING: %s", msg)


def build_binder_service() -> BinderService:
    storage = LocalBinderStorage(root_dir=settings.local_data_dir)
    sync = BinderSyncService(get_document_store())
    return BinderService(storage=storage, sync=sync)


@asynccontextmanager
async def _lifespan(app_: FastAPI):
    if settings.environment.strip().lower() != "production":
        # Production schemas come from alembic.
        await init_db()

    service = build_binder_service()
    await service.load()
    app_.state.binder_service = service
    yield

    await get_engine().dispose()
    # Ensure sqlite/aiosqlite worker threads don't keep the process alive.
    dispose_engine_cache()


app = FastAPI(title=settings.app_name, lifespan=_lifespan)

app.add_middleware(RequestIdMiddleware)
register_error_handlers(app)


origins = settings.cors_origins_list()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse()


app.include_router(binders.router, prefix=settings.api_prefix)
app.include_router(sync_router.router, prefix=settings.api_prefix)


@app.api_route(
    f"{settings.api_prefix.rstrip('/')}/{{path:path}}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
    include_in_schema=False,
)
async def _v1_fallback_not_found(path: str) -> None:  # noqa: ARG001
    raise HTTPException(status_code=404, detail="Not Found")
