from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    ok: bool = True


class OkResponse(BaseModel):
    ok: bool = True


class ErrorResponse(BaseModel):
    """Error body returned by every API route: {error, message, request_id, details}."""

    error: str
    message: str
    request_id: str | None = None
    details: object | None = None
