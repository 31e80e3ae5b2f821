from __future__ import annotations

import copy
from typing import Any

from binder_backend.errors import NotFoundError
from binder_backend.integrations.document_store import (
    DocumentCallback,
    SubscriptionRegistry,
    Unsubscribe,
)


class MemoryDocumentStore:
    """Process-local document store for development and tests."""

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, Any]] = {}
        self._subscriptions = SubscriptionRegistry()

    async def get(self, key: str) -> dict[str, Any] | None:
        doc = self._docs.get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def put(self, key: str, doc: dict[str, Any]) -> None:
        self._docs[key] = copy.deepcopy(doc)
        self._subscriptions.notify(key, copy.deepcopy(doc))

    async def delete(self, key: str) -> None:
        if key not in self._docs:
            raise NotFoundError("Binder not found in cloud", details={"key": key})
        del self._docs[key]
        self._subscriptions.notify(key, None)

    async def query(self, owner_id: str, *, include_archived: bool = False) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for doc in self._docs.values():
            if doc.get("ownerId") != owner_id:
                continue
            if not include_archived and (doc.get("metadata") or {}).get("isArchived"):
                continue
            out.append(copy.deepcopy(doc))
        return out

    def subscribe(self, key: str, callback: DocumentCallback) -> Unsubscribe:
        return self._subscriptions.add(key, callback)
