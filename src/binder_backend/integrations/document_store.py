from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

from binder_backend.config import settings


logger = logging.getLogger(__name__)

DocumentCallback = Callable[[dict[str, Any] | None], None]
Unsubscribe = Callable[[], None]


class DocumentStore(Protocol):
    """Remote binder document store.

    Adapters raise ``TransportError`` for connectivity/backend failures and
    ``NotFoundError`` from ``delete`` when the key is absent.
    """

    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def put(self, key: str, doc: dict[str, Any]) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def query(
        self, owner_id: str, *, include_archived: bool = False
    ) -> list[dict[str, Any]]: ...

    def subscribe(self, key: str, callback: DocumentCallback) -> Unsubscribe: ...


def build_binder_document_key(*, owner_id: str, binder_id: str) -> str:
    return f"{owner_id}_{binder_id}"


class SubscriptionRegistry:
    """Per-key listeners notified after writes made through one store instance."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[DocumentCallback]] = {}

    def add(self, key: str, callback: DocumentCallback) -> Unsubscribe:
        self._listeners.setdefault(key, []).append(callback)

        def _unsubscribe() -> None:
            callbacks = self._listeners.get(key)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._listeners[key]

        return _unsubscribe

    def notify(self, key: str, doc: dict[str, Any] | None) -> None:
        for callback in list(self._listeners.get(key, [])):
            try:
                callback(doc)
            except Exception:
                # Listener failures never fail the write.
                logger.exception("document listener failed key=%s", key)


def get_document_store() -> DocumentStore:
    remote = settings.remote_store.strip().lower()
    if remote == "memory":
        from .remote.memory_document_store import MemoryDocumentStore

        return MemoryDocumentStore()

    from .remote.sql_document_store import SqlDocumentStore

    return SqlDocumentStore(batch_limit=settings.remote_batch_write_limit)
