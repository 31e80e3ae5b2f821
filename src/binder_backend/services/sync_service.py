"""Binder <-> remote document store synchronization.

``BinderSyncService`` owns the single-flight map (one in-flight save per
binder id) and the retry policy. It never touches local storage; callers get
the synced/resolved binder back (or a typed error) and persist it themselves.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from binder_backend.config import settings
from binder_backend.domain.conflicts import detect_conflict, resolve_conflict
from binder_backend.domain.migration import migrate_binder
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
from binder_backend.integrations.document_store import (
    DocumentStore,
    Unsubscribe,
    build_binder_document_key,
)
from binder_backend.schemas_binder import (
    Binder,
    CamelModel,
    ConflictDescriptor,
    SyncState,
    UtcDatetime,
    binder_to_document,
    utc_now,
)


logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation for a sync call; stops pending retries."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds; True when cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except TimeoutError:
            return False
        return True


@dataclass(frozen=True)
class SyncResult:
    binder: Binder
    resolved_conflict: ConflictDescriptor | None = None
    # Local version the saved document was built from.
    source_version: int | None = None


@dataclass(frozen=True)
class BatchSyncItem:
    binder_id: str
    success: bool
    binder: Binder | None = None
    error: str | None = None
    error_code: str | None = None


class CloudSyncStatus(CamelModel):
    exists_in_cloud: bool
    cloud_version: int | None = None
    last_synced: UtcDatetime | None = None
    error: str | None = None


def _require_actor(actor_id: str | None) -> str:
    if not actor_id:
        raise AuthorizationError("User must be authenticated to sync")
    return actor_id


def _mark_synced(now: datetime, version: int) -> SyncState:
    return SyncState(status="synced", last_synced=now, synced_version=version)


def _after_prior_save(binder: Binder, task: asyncio.Task[SyncResult]) -> Binder:
    """Carry a finished save of an older local version forward to ``binder``.

    When that save stored ``binder``'s own history without merging anything
    remote, the remote document is an ancestor of ``binder`` and the next
    save may replace it without conflict detection.
    """

    if task.cancelled() or task.exception() is not None:
        return binder
    prior = task.result()
    if (
        prior.resolved_conflict is not None
        or prior.source_version is None
        or binder.version <= prior.source_version
        or prior.binder.version <= (binder.sync.synced_version or 0)
    ):
        return binder
    sync = binder.sync.model_copy(
        update={
            "synced_version": prior.binder.version,
            "last_synced": prior.binder.sync.last_synced,
        }
    )
    return binder.model_copy(update={"sync": sync})


class BinderSyncService:
    def __init__(
        self,
        store: DocumentStore,
        *,
        retry_attempts: int | None = None,
        retry_base_delay: float | None = None,
    ) -> None:
        self._store = store
        self._retry_attempts = (
            settings.sync_retry_attempts if retry_attempts is None else retry_attempts
        )
        self._retry_base_delay = (
            settings.sync_retry_base_delay_seconds if retry_base_delay is None else retry_base_delay
        )
        # binder id -> (latest save task, running or finished; local version it saves)
        self._saves: dict[str, tuple[asyncio.Task[SyncResult], int]] = {}

    @property
    def store(self) -> DocumentStore:
        return self._store

    def is_syncing(self, binder_id: str) -> bool:
        entry = self._saves.get(binder_id)
        return entry is not None and not entry[0].done()

    @staticmethod
    def _observe(task: asyncio.Task[SyncResult]) -> None:
        if not task.cancelled():
            # Callers observe the outcome through their own await.
            _ = task.exception()

    async def sync_to_cloud(
        self,
        binder: Binder,
        actor_id: str,
        *,
        force_overwrite: bool = False,
        resolve_conflicts: bool = True,
        retry_on_error: bool = True,
        cancel_token: CancellationToken | None = None,
    ) -> SyncResult:
        """Save ``binder`` to the remote store under ``actor_id``.

        Concurrent calls for the same binder id and version join the save
        already in flight and receive its result; the options of joining
        calls are ignored. A call carrying a different version waits for the
        in-flight save to finish and then saves its own binder. Cancelling
        one awaiting caller does not cancel the shared save.
        """

        actor = _require_actor(actor_id)
        if not binder.id:
            raise ValidationError("Invalid binder data", code="missing_id")

        while True:
            entry = self._saves.get(binder.id)
            if entry is None:
                break
            task, source_version = entry
            if task.done():
                binder = _after_prior_save(binder, task)
                break
            if source_version == binder.version:
                logger.info("sync already in flight binder=%s; joining", binder.id)
                return await asyncio.shield(task)

            logger.info(
                "sync in flight binder=%s for v%s; waiting to save v%s",
                binder.id,
                source_version,
                binder.version,
            )
            _ = await asyncio.wait([task])

        task = asyncio.create_task(
            self._run_sync(
                binder,
                actor,
                force_overwrite=force_overwrite,
                resolve_conflicts=resolve_conflicts,
                retry_on_error=retry_on_error,
                cancel_token=cancel_token,
            )
        )
        self._saves[binder.id] = (task, binder.version)
        task.add_done_callback(self._observe)
        return await asyncio.shield(task)

    async def _run_sync(
        self,
        binder: Binder,
        actor_id: str,
        *,
        force_overwrite: bool,
        resolve_conflicts: bool,
        retry_on_error: bool,
        cancel_token: CancellationToken | None,
    ) -> SyncResult:
        retry_count = 0
        while True:
            if cancel_token is not None and cancel_token.cancelled:
                raise SyncCancelledError("Sync cancelled", details={"binderId": binder.id})
            try:
                return await self._attempt(
                    binder,
                    actor_id,
                    force_overwrite=force_overwrite,
                    resolve_conflicts=resolve_conflicts,
                )
            except TransportError as exc:
                retry_count += 1
                if not retry_on_error or retry_count >= self._retry_attempts:
                    failed = binder.model_copy(
                        update={
                            "sync": binder.sync.model_copy(
                                update={
                                    "status": "error",
                                    "retry_count": retry_count,
                                    "last_error": exc.message,
                                }
                            )
                        }
                    )
                    logger.warning(
                        "sync failed binder=%s attempts=%s error=%s",
                        binder.id,
                        retry_count,
                        exc.message,
                    )
                    raise SyncError(
                        f"Sync failed after {retry_count} attempts: {exc.message}",
                        binder=failed,
                        retry_count=retry_count,
                        last_error=exc.message,
                    ) from exc

                delay = self._retry_base_delay * 2 ** (retry_count - 1)
                logger.info(
                    "sync retry binder=%s attempt=%s delay=%.2fs error=%s",
                    binder.id,
                    retry_count,
                    delay,
                    exc.message,
                )
                if cancel_token is None:
                    await asyncio.sleep(delay)
                elif await cancel_token.wait(delay):
                    raise SyncCancelledError(
                        "Sync cancelled", details={"binderId": binder.id, "retryCount": retry_count}
                    ) from exc

    async def _attempt(
        self,
        binder: Binder,
        actor_id: str,
        *,
        force_overwrite: bool,
        resolve_conflicts: bool,
    ) -> SyncResult:
        key = build_binder_document_key(owner_id=actor_id, binder_id=binder.id)
        now = utc_now()
        remote_doc = await self._store.get(key)

        to_save = binder
        remote_version = 0
        resolved: ConflictDescriptor | None = None
        if remote_doc is not None:
            remote = migrate_binder(remote_doc)
            remote_version = remote.version
            # Unchanged since this binder last synced: a plain fast-forward.
            fast_forward = binder.sync.synced_version == remote.version
            if not force_overwrite and not fast_forward:
                descriptor = detect_conflict(binder, remote)
                if descriptor.has_conflict:
                    if not resolve_conflicts:
                        logger.info(
                            "sync conflict binder=%s type=%s", binder.id, descriptor.type
                        )
                        raise SyncConflictError(descriptor, source_version=binder.version)
                    to_save = resolve_conflict(binder, remote, descriptor, now=now)
                    resolved = descriptor
                    logger.info(
                        "sync conflict resolved binder=%s type=%s", binder.id, descriptor.type
                    )

        version = max(binder.version, remote_version) + 1
        saved = to_save.model_copy(
            update={
                "owner_id": actor_id,
                "version": version,
                "last_modified": now,
                "last_modified_by": actor_id,
                "sync": _mark_synced(now, version),
            }
        )
        await self._store.put(key, binder_to_document(saved))
        logger.info("binder saved to cloud binder=%s version=%s", saved.id, saved.version)
        return SyncResult(binder=saved, resolved_conflict=resolved, source_version=binder.version)

    async def get_cloud_binder(self, binder_id: str, actor_id: str) -> Binder | None:
        actor = _require_actor(actor_id)
        doc = await self._store.get(build_binder_document_key(owner_id=actor, binder_id=binder_id))
        return migrate_binder(doc) if doc is not None else None

    async def download_from_cloud(self, binder_id: str, actor_id: str) -> SyncResult:
        binder = await self.get_cloud_binder(binder_id, actor_id)
        if binder is None:
            raise NotFoundError("Binder not found in cloud", details={"binderId": binder_id})
        downloaded = binder.model_copy(update={"sync": _mark_synced(utc_now(), binder.version)})
        return SyncResult(binder=downloaded, source_version=binder.version)

    async def check_sync_status(
        self, binder_ids: Sequence[str], actor_id: str
    ) -> dict[str, CloudSyncStatus]:
        actor = _require_actor(actor_id)
        out: dict[str, CloudSyncStatus] = {}
        for binder_id in binder_ids:
            key = build_binder_document_key(owner_id=actor, binder_id=binder_id)
            try:
                doc = await self._store.get(key)
            except TransportError as exc:
                out[binder_id] = CloudSyncStatus(exists_in_cloud=False, error=exc.message)
                continue
            if doc is None:
                out[binder_id] = CloudSyncStatus(exists_in_cloud=False)
                continue
            out[binder_id] = CloudSyncStatus(
                exists_in_cloud=True,
                cloud_version=doc.get("version"),
                last_synced=(doc.get("sync") or {}).get("lastSynced"),
            )
        return out

    async def list_all_cloud_binders(self, actor_id: str) -> list[Binder]:
        actor = _require_actor(actor_id)
        docs = await self._store.query(actor, include_archived=False)
        binders = [migrate_binder(doc) for doc in docs]
        binders = [b for b in binders if b.owner_id == actor and not b.metadata.is_archived]
        binders.sort(key=lambda b: b.metadata.created_at, reverse=True)
        return binders

    async def delete_from_cloud(self, binder_id: str, actor_id: str) -> None:
        actor = _require_actor(actor_id)
        await self._store.delete(build_binder_document_key(owner_id=actor, binder_id=binder_id))
        entry = self._saves.get(binder_id)
        if entry is not None and entry[0].done():
            del self._saves[binder_id]
        logger.info("binder deleted from cloud binder=%s", binder_id)

    def subscribe_to_cloud_binder(
        self,
        binder_id: str,
        actor_id: str,
        callback: Callable[[Binder | None], None],
    ) -> Unsubscribe:
        actor = _require_actor(actor_id)

        def _on_change(doc: dict[str, Any] | None) -> None:
            callback(migrate_binder(doc) if doc is not None else None)

        return self._store.subscribe(
            build_binder_document_key(owner_id=actor, binder_id=binder_id), _on_change
        )

    async def batch_sync(
        self, binders: Sequence[Binder], actor_id: str, **options: Any
    ) -> list[BatchSyncItem]:
        results = await asyncio.gather(
            *(self.sync_to_cloud(binder, actor_id, **options) for binder in binders),
            return_exceptions=True,
        )

        out: list[BatchSyncItem] = []
        for binder, result in zip(binders, results):
            if isinstance(result, SyncResult):
                out.append(BatchSyncItem(binder_id=binder.id, success=True, binder=result.binder))
            elif isinstance(result, BinderBackendError):
                out.append(
                    BatchSyncItem(
                        binder_id=binder.id,
                        success=False,
                        error=result.message,
                        error_code=result.code,
                    )
                )
            else:
                raise result
        return out
