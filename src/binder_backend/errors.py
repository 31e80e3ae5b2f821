"""Typed errors raised by the binder sync engine.

Store-level functions never raise these into callers; they return a
``StoreResult`` carrying a ``ValidationError`` instead. Orchestration code
(sync, local persistence, the application service) raises them so callers can
branch on type and structured fields rather than on message text.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from binder_backend.schemas_binder import Binder, ConflictDescriptor


class BinderBackendError(RuntimeError):
    code: str = "binder_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})


class ValidationError(BinderBackendError):
    """Rejected mutation; the binder is left unchanged and nothing is logged."""

    code = "validation_error"

    def __init__(
        self, message: str, *, code: str = "invalid", details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, details=details)
        self.reason = code


class NotFoundError(BinderBackendError):
    code = "not_found"


class AuthorizationError(BinderBackendError):
    code = "forbidden"


class TransportError(BinderBackendError):
    """Remote store failure. Retried by the sync orchestrator."""

    code = "transport_error"


class SyncConflictError(BinderBackendError):
    code = "SYNC_CONFLICT"

    def __init__(
        self, descriptor: "ConflictDescriptor", *, source_version: int | None = None
    ) -> None:
        super().__init__(
            "Sync conflict detected",
            details={"conflict": descriptor.model_dump(mode="json", by_alias=True)},
        )
        self.descriptor = descriptor
        self.source_version = source_version


class SyncError(BinderBackendError):
    """Terminal sync failure after retries were exhausted (or disabled)."""

    code = "sync_error"

    def __init__(self, message: str, *, binder: "Binder", retry_count: int, last_error: str) -> None:
        super().__init__(
            message, details={"retryCount": retry_count, "lastError": last_error}
        )
        self.binder = binder
        self.retry_count = retry_count
        self.last_error = last_error


class SyncCancelledError(BinderBackendError):
    code = "sync_cancelled"
