from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from binder_backend.domain import card_store
from binder_backend.domain.card_store import StoreResult
from binder_backend.domain.migration import migrate_binder
from binder_backend.errors import (
    AuthorizationError,
    NotFoundError,
    SyncConflictError,
    SyncError,
    ValidationError,
)
from binder_backend.integrations.storage.local_binder_storage import LocalBinderStorage
from binder_backend.schemas_binder import (
    LOCAL_USER,
    Binder,
    BinderCollectionExport,
    GridSize,
    binder_to_document,
)
from binder_backend.services.sync_service import BinderSyncService, CloudSyncStatus, SyncResult


logger = logging.getLogger(__name__)

Transition = Callable[[Binder], StoreResult]


class BinderService:
    """Binder collection held in memory, persisted one document at a time.

    Mutations of one binder are serialized by a per-binder ``asyncio.Lock``;
    different binders never contend. Cloud saves run outside the lock so
    concurrent saves of one binder share the sync service's in-flight call.
    """

    def __init__(self, *, storage: LocalBinderStorage, sync: BinderSyncService) -> None:
        self._storage = storage
        self._sync = sync
        self._binders: dict[str, Binder] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._current_id: str | None = None

    @property
    def sync(self) -> BinderSyncService:
        return self._sync

    async def load(self) -> None:
        binders = await self._storage.load_all()
        self._binders = {b.id: b for b in binders}
        current = await self._storage.get_current_binder_id()
        self._current_id = current if current in self._binders else None
        logger.info("loaded %s local binders (current=%s)", len(binders), self._current_id)

    def _lock(self, binder_id: str) -> asyncio.Lock:
        lock = self._locks.get(binder_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[binder_id] = lock
        return lock

    @staticmethod
    def _authorize(binder: Binder, actor_id: str) -> None:
        if binder.owner_id not in {actor_id, LOCAL_USER}:
            raise AuthorizationError(
                "Binder belongs to another user", details={"binderId": binder.id}
            )

    def _require(self, binder_id: str, actor_id: str) -> Binder:
        binder = self._binders.get(binder_id)
        if binder is None:
            raise NotFoundError("Binder not found", details={"binderId": binder_id})
        self._authorize(binder, actor_id)
        return binder

    async def _persist(self, binder: Binder) -> None:
        await self._storage.save_binder(binder)
        self._binders[binder.id] = binder

    def list_binders(self, actor_id: str) -> list[Binder]:
        visible = [b for b in self._binders.values() if b.owner_id in {actor_id, LOCAL_USER}]
        visible.sort(key=lambda b: b.metadata.created_at, reverse=True)
        return visible

    def get_binder(self, binder_id: str, actor_id: str) -> Binder:
        return self._require(binder_id, actor_id)

    async def create_binder(
        self,
        actor_id: str,
        *,
        name: str,
        description: str = "",
        grid_size: GridSize = "3x3",
    ) -> Binder:
        binder = card_store.create_binder(name, description, actor_id, grid_size=grid_size)
        async with self._lock(binder.id):
            await self._persist(binder)
        if self._current_id is None:
            await self.set_current_binder(binder.id, actor_id)
        logger.info("binder created binder=%s owner=%s", binder.id, actor_id)
        return binder

    async def mutate(self, binder_id: str, actor_id: str, transition: Transition) -> StoreResult:
        """Apply a pure store transition and persist the result.

        A rejected transition raises its ``ValidationError``; a silent no-op
        is returned as-is without touching storage.
        """

        async with self._lock(binder_id):
            binder = self._require(binder_id, actor_id)
            result = transition(binder)
            if result.error is not None:
                raise result.error
            if result.binder is not binder:
                await self._persist(result.binder)
            return result

    async def delete_binder(self, binder_id: str, actor_id: str) -> None:
        async with self._lock(binder_id):
            binder = self._require(binder_id, actor_id)
            await self._storage.delete_binder(binder_id)
            del self._binders[binder_id]
            if self._current_id == binder_id:
                self._current_id = None
                await self._storage.set_current_binder_id(None)

        if binder.sync.last_synced is not None:
            try:
                await self._sync.delete_from_cloud(binder_id, actor_id)
            except NotFoundError:
                logger.info("binder %s already absent from cloud", binder_id)
        self._locks.pop(binder_id, None)

    def get_current_binder(self, actor_id: str) -> Binder | None:
        if self._current_id is None:
            return None
        binder = self._binders.get(self._current_id)
        if binder is None or binder.owner_id not in {actor_id, LOCAL_USER}:
            return None
        return binder

    async def set_current_binder(self, binder_id: str, actor_id: str) -> Binder:
        binder = self._require(binder_id, actor_id)
        await self._storage.set_current_binder_id(binder_id)
        self._current_id = binder_id
        return binder

    def export_collection(self, actor_id: str) -> BinderCollectionExport:
        current = self.get_current_binder(actor_id)
        return BinderCollectionExport(
            binders=[binder_to_document(b) for b in self.list_binders(actor_id)],
            current_binder_id=current.id if current is not None else None,
        )

    async def import_collection(
        self, actor_id: str, snapshot: BinderCollectionExport
    ) -> list[Binder]:
        """Store every binder of an exported snapshot, replacing same-id binders.

        The snapshot is checked as a whole before anything is written: one bad
        record, or one binder owned by another user, rejects the import.
        """

        imported: list[Binder] = []
        for raw in snapshot.binders:
            try:
                binder = migrate_binder(raw)
            except PydanticValidationError as exc:
                raise ValidationError(
                    "Invalid binder in import",
                    code="invalid_import",
                    details={
                        "binderId": raw.get("id"),
                        "errors": exc.errors(include_url=False, include_context=False),
                    },
                ) from exc
            except ValueError as exc:
                raise ValidationError(
                    f"Invalid binder in import: {exc}",
                    code="invalid_import",
                    details={"binderId": raw.get("id")},
                ) from exc
            self._authorize(binder, actor_id)
            existing = self._binders.get(binder.id)
            if existing is not None:
                self._authorize(existing, actor_id)
            imported.append(binder)

        for binder in imported:
            async with self._lock(binder.id):
                await self._persist(binder)

        current_id = snapshot.current_binder_id
        if current_id is not None and any(b.id == current_id for b in imported):
            _ = await self.set_current_binder(current_id, actor_id)
        logger.info("imported %s binders for %s", len(imported), actor_id)
        return imported

    async def _mark_failed(
        self, binder_id: str, source_version: int | None, sync_update: dict[str, Any]
    ) -> None:
        async with self._lock(binder_id):
            current = self._binders.get(binder_id)
            # Edits made while the save was running keep their own sync state.
            if current is None or current.version != source_version:
                return
            sync = current.sync.model_copy(update=sync_update)
            await self._persist(current.model_copy(update={"sync": sync}))

    async def save_to_cloud(
        self,
        binder_id: str,
        actor_id: str,
        *,
        force_overwrite: bool = False,
        resolve_conflicts: bool = True,
    ) -> SyncResult:
        async with self._lock(binder_id):
            snapshot = self._require(binder_id, actor_id)

        try:
            result = await self._sync.sync_to_cloud(
                snapshot,
                actor_id,
                force_overwrite=force_overwrite,
                resolve_conflicts=resolve_conflicts,
            )
        except SyncConflictError as exc:
            await self._mark_failed(
                binder_id,
                exc.source_version,
                {"status": "conflict", "conflict_data": exc.descriptor},
            )
            raise
        except SyncError as exc:
            await self._mark_failed(
                binder_id,
                exc.binder.version,
                {
                    "status": "error",
                    "retry_count": exc.retry_count,
                    "last_error": exc.last_error,
                },
            )
            raise

        async with self._lock(binder_id):
            current = self._binders.get(binder_id)
            if current is None:
                logger.info("binder %s deleted locally during save; result not stored", binder_id)
            elif current.version == result.source_version:
                await self._persist(result.binder)
            else:
                logger.info(
                    "binder %s changed during save (saved v%s, local v%s); keeping local edits",
                    binder_id,
                    result.source_version,
                    current.version,
                )
                if (
                    result.resolved_conflict is None
                    and result.source_version is not None
                    and current.version > result.source_version
                ):
                    # The cloud copy is an ancestor of the local binder.
                    sync = current.sync.model_copy(
                        update={
                            "synced_version": result.binder.version,
                            "last_synced": result.binder.sync.last_synced,
                        }
                    )
                    await self._persist(current.model_copy(update={"sync": sync}))
        return result

    async def download_from_cloud(self, binder_id: str, actor_id: str) -> Binder:
        result = await self._sync.download_from_cloud(binder_id, actor_id)
        async with self._lock(binder_id):
            await self._persist(result.binder)
        return result.binder

    async def list_cloud_binders(self, actor_id: str) -> list[Binder]:
        return await self._sync.list_all_cloud_binders(actor_id)

    async def check_sync_status(
        self, binder_ids: list[str], actor_id: str
    ) -> dict[str, CloudSyncStatus]:
        return await self._sync.check_sync_status(binder_ids, actor_id)

    async def delete_from_cloud(self, binder_id: str, actor_id: str) -> None:
        await self._sync.delete_from_cloud(binder_id, actor_id)
        async with self._lock(binder_id):
            binder = self._binders.get(binder_id)
            if binder is not None and binder.owner_id in {actor_id, LOCAL_USER}:
                unsynced = binder.sync.model_copy(
                    update={"status": "local", "last_synced": None, "synced_version": None}
                )
                await self._persist(binder.model_copy(update={"sync": unsynced}))
