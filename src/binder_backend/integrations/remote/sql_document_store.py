"""Binder documents on SQL (SQLModel + SQLAlchemy async).

Documents with ``cardsStorage == "partition"`` keep their ``cards`` mapping in
``binder_cards`` rows, one per position, so a large binder never rewrites the
whole mapping: writes diff the stored positions against the new mapping and
apply upserts/deletes in chunks of at most ``batch_limit`` operations.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from binder_backend.db import session_scope
from binder_backend.errors import NotFoundError, TransportError
from binder_backend.integrations.document_store import (
    DocumentCallback,
    SubscriptionRegistry,
    Unsubscribe,
)
from binder_backend.models import BinderCardRow, BinderDocument, utc_now
from binder_backend.repositories import binder_docs_repo


logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class SqlDocumentStore:
    def __init__(
        self,
        *,
        batch_limit: int = 400,
        session_factory: SessionFactory = session_scope,
    ) -> None:
        if batch_limit < 1:
            raise ValueError("batch_limit must be >= 1")
        self._batch_limit = batch_limit
        self._session_factory = session_factory
        self._subscriptions = SubscriptionRegistry()
        self.last_write_batches = 0

    async def _assemble(self, session: AsyncSession, row: BinderDocument) -> dict[str, Any]:
        doc = dict(row.body_json or {})
        if row.cards_storage == "partition":
            rows = await binder_docs_repo.list_card_rows(session, doc_key=row.doc_key)
            doc["cards"] = {str(r.position): r.card_json for r in rows}
        return doc

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            async with self._session_factory() as session:
                row = await binder_docs_repo.get_document(session, doc_key=key)
                if row is None:
                    return None
                return await self._assemble(session, row)
        except SQLAlchemyError as exc:
            raise TransportError("remote get failed", details={"key": key, "reason": str(exc)}) from exc

    async def _write_partition(
        self, session: AsyncSession, *, key: str, cards: dict[str, Any]
    ) -> int:
        existing = {
            r.position: r for r in await binder_docs_repo.list_card_rows(session, doc_key=key)
        }
        desired = {int(position): card for position, card in cards.items()}

        ops: list[tuple[int, dict[str, Any] | None]] = [
            (position, None) for position in sorted(existing) if position not in desired
        ]
        ops.extend(
            (position, card)
            for position, card in sorted(desired.items())
            if position not in existing or existing[position].card_json != card
        )

        batches = 0
        for start in range(0, len(ops), self._batch_limit):
            chunk = ops[start : start + self._batch_limit]
            stale = [position for position, card in chunk if card is None]
            if stale:
                await binder_docs_repo.delete_card_rows(session, doc_key=key, positions=stale)
            for position, card in chunk:
                if card is None:
                    continue
                row = existing.get(position)
                if row is None:
                    row = BinderCardRow(doc_key=key, position=position, card_json=card)
                else:
                    row.card_json = card
                    row.updated_at = utc_now()
                session.add(row)
            await session.flush()
            batches += 1

        if ops:
            logger.info(
                "partition write key=%s ops=%s batches=%s", key, len(ops), batches
            )
        return batches

    async def put(self, key: str, doc: dict[str, Any]) -> None:
        partitioned = doc.get("cardsStorage") == "partition"
        body = {k: v for k, v in doc.items() if k != "cards"} if partitioned else dict(doc)
        metadata = doc.get("metadata") or {}

        try:
            async with self._session_factory() as session:
                row = await binder_docs_repo.get_document(session, doc_key=key)
                if row is None:
                    row = BinderDocument(
                        doc_key=key,
                        binder_id=str(doc.get("id")),
                        owner_id=str(doc.get("ownerId")),
                    )
                row.owner_id = str(doc.get("ownerId"))
                row.version = int(doc.get("version") or 1)
                row.is_archived = bool(metadata.get("isArchived"))
                row.cards_storage = "partition" if partitioned else "embedded"
                row.binder_created_at = metadata.get("createdAt")
                row.body_json = body
                row.updated_at = utc_now()
                session.add(row)
                await session.flush()

                if partitioned:
                    self.last_write_batches = await self._write_partition(
                        session, key=key, cards=dict(doc.get("cards") or {})
                    )
                else:
                    await binder_docs_repo.delete_card_rows(session, doc_key=key)
                    self.last_write_batches = 0
                await session.commit()
        except SQLAlchemyError as exc:
            raise TransportError("remote put failed", details={"key": key, "reason": str(exc)}) from exc

        self._subscriptions.notify(key, dict(doc))

    async def delete(self, key: str) -> None:
        try:
            async with self._session_factory() as session:
                row = await binder_docs_repo.get_document(session, doc_key=key)
                if row is None:
                    raise NotFoundError("Binder not found in cloud", details={"key": key})
                await binder_docs_repo.delete_card_rows(session, doc_key=key)
                await session.delete(row)
                await session.commit()
        except SQLAlchemyError as exc:
            raise TransportError(
                "remote delete failed", details={"key": key, "reason": str(exc)}
            ) from exc

        self._subscriptions.notify(key, None)

    async def query(self, owner_id: str, *, include_archived: bool = False) -> list[dict[str, Any]]:
        try:
            async with self._session_factory() as session:
                rows = await binder_docs_repo.list_documents(
                    session, owner_id=owner_id, include_archived=include_archived
                )
                return [await self._assemble(session, row) for row in rows]
        except SQLAlchemyError as exc:
            raise TransportError(
                "remote query failed", details={"ownerId": owner_id, "reason": str(exc)}
            ) from exc

    def subscribe(self, key: str, callback: DocumentCallback) -> Unsubscribe:
        return self._subscriptions.add(key, callback)
