from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

import anyio
import pytest

from binder_backend.domain import card_store
from binder_backend.errors import (
    AuthorizationError,
    NotFoundError,
    SyncCancelledError,
    SyncConflictError,
    SyncError,
    TransportError,
)
from binder_backend.integrations.document_store import build_binder_document_key
from binder_backend.integrations.remote.memory_document_store import MemoryDocumentStore
from binder_backend.schemas_binder import Binder, CardData, binder_to_document
from binder_backend.services.sync_service import BinderSyncService, CancellationToken


class FlakyStore(MemoryDocumentStore):
    def __init__(
        self,
        *,
        fail_puts: int = 0,
        put_delay: float = 0.0,
        failing_get_keys: set[str] | None = None,
    ) -> None:
        super().__init__()
        self.fail_puts = fail_puts
        self.put_delay = put_delay
        self.failing_get_keys = failing_get_keys or set()
        self.puts = 0
        self.put_attempts = 0
        self.get_gate: asyncio.Event | None = None

    async def get(self, key: str) -> dict[str, Any] | None:
        if self.get_gate is not None:
            _ = await self.get_gate.wait()
        if key in self.failing_get_keys:
            raise TransportError("get timed out")
        return await super().get(key)

    async def put(self, key: str, doc: dict[str, Any]) -> None:
        self.put_attempts += 1
        if self.put_delay:
            await asyncio.sleep(self.put_delay)
        if self.fail_puts > 0:
            self.fail_puts -= 1
            raise TransportError("network down")
        self.puts += 1
        await super().put(key, doc)


def _binder(binder_id: str = "b1", *, cards: int = 1) -> Binder:
    binder = card_store.create_binder("Sync me", binder_id=binder_id)
    for i in range(cards):
        binder = card_store.add_card(binder, CardData(id=f"card-{i}")).binder
    return binder


async def _seed_remote(store: MemoryDocumentStore, binder: Binder, *, owner: str = "u1") -> None:
    remote = binder.model_copy(update={"owner_id": owner})
    await store.put(
        build_binder_document_key(owner_id=owner, binder_id=binder.id), binder_to_document(remote)
    )


@pytest.mark.anyio
async def test_first_save_stamps_owner_version_and_sync_state() -> None:
    store = FlakyStore()
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)
    binder = _binder()
    assert binder.version == 2

    result = await service.sync_to_cloud(binder, "u1")

    saved = result.binder
    assert saved.owner_id == "u1"
    assert saved.last_modified_by == "u1"
    assert saved.version == 3
    assert saved.sync.status == "synced"
    assert saved.sync.last_synced is not None
    assert saved.sync.pending_changes == []
    assert result.resolved_conflict is None

    doc = await store.get("u1_b1")
    assert doc is not None
    assert doc["version"] == 3
    assert doc["ownerId"] == "u1"


@pytest.mark.anyio
async def test_concurrent_saves_share_one_put() -> None:
    store = FlakyStore(put_delay=0.05)
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)
    binder = _binder()

    first, second = await asyncio.gather(
        service.sync_to_cloud(binder, "u1"),
        service.sync_to_cloud(binder, "u1"),
    )

    assert store.puts == 1
    assert first is second
    assert not service.is_syncing(binder.id)

    # A later save runs again.
    _ = await service.sync_to_cloud(first.binder, "u1")
    assert store.puts == 2


@pytest.mark.anyio
async def test_save_of_newer_version_waits_for_in_flight_save() -> None:
    store = FlakyStore()
    store.get_gate = asyncio.Event()
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)
    binder = _binder(cards=1)

    first = asyncio.create_task(service.sync_to_cloud(binder, "u1"))
    while not service.is_syncing(binder.id):
        await asyncio.sleep(0)
    edited = card_store.add_card(binder, CardData(id="late")).binder
    second = asyncio.create_task(service.sync_to_cloud(edited, "u1"))
    await asyncio.sleep(0)
    store.get_gate.set()

    older, newer = await asyncio.gather(first, second)

    assert older.source_version == 2
    assert newer.source_version == 3
    assert newer.resolved_conflict is None
    assert store.puts == 2
    assert {c.card_id for c in newer.binder.cards.values()} == {"card-0", "late"}
    assert newer.binder.sync.synced_version == newer.binder.version == 4

    doc = await store.get("u1_b1")
    assert doc is not None
    assert doc["version"] == 4
    assert len(doc["cards"]) == 2


@pytest.mark.anyio
async def test_unchanged_remote_fast_forwards_without_conflict() -> None:
    store = FlakyStore()
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)
    saved = (await service.sync_to_cloud(_binder(cards=1), "u1")).binder
    assert saved.sync.synced_version == 3

    # Cloud copy stamped later than the local edit, but not changed since.
    doc = await store.get("u1_b1")
    assert doc is not None
    await store.put("u1_b1", {**doc, "lastModified": "2999-01-01T00:00:00Z"})
    edited = card_store.add_card(saved, CardData(id="late")).binder

    result = await service.sync_to_cloud(edited, "u1", resolve_conflicts=False)

    assert result.resolved_conflict is None
    assert len(result.binder.cards) == 2
    assert result.binder.version == 5


@pytest.mark.anyio
async def test_cancelling_one_caller_does_not_cancel_shared_save() -> None:
    store = FlakyStore(put_delay=0.05)
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)
    binder = _binder()

    first = asyncio.create_task(service.sync_to_cloud(binder, "u1"))
    await asyncio.sleep(0)
    second = asyncio.create_task(service.sync_to_cloud(binder, "u1"))
    await asyncio.sleep(0.01)
    first.cancel()

    result = await second
    assert result.binder.sync.status == "synced"
    assert store.puts == 1
    with pytest.raises(asyncio.CancelledError):
        await first


@pytest.mark.anyio
async def test_transport_errors_are_retried_with_exponential_backoff(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO, logger="binder_backend.services.sync_service")
    store = FlakyStore(fail_puts=2)
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0.01)

    result = await service.sync_to_cloud(_binder(), "u1")

    assert result.binder.sync.status == "synced"
    assert store.put_attempts == 3
    assert store.puts == 1

    delays = [r.args[2] for r in caplog.records if r.getMessage().startswith("sync retry")]
    assert delays == [0.01, 0.02]


@pytest.mark.anyio
async def test_retry_ceiling_raises_terminal_sync_error() -> None:
    store = FlakyStore(fail_puts=10)
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)

    with pytest.raises(SyncError) as exc_info:
        _ = await service.sync_to_cloud(_binder(), "u1")

    err = exc_info.value
    assert err.retry_count == 3
    assert err.last_error == "network down"
    assert err.binder.sync.status == "error"
    assert err.binder.sync.retry_count == 3
    assert err.binder.sync.last_error == "network down"
    assert store.put_attempts == 3
    assert store.puts == 0


@pytest.mark.anyio
async def test_retry_disabled_fails_after_first_error() -> None:
    store = FlakyStore(fail_puts=10)
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)

    with pytest.raises(SyncError) as exc_info:
        _ = await service.sync_to_cloud(_binder(), "u1", retry_on_error=False)

    assert exc_info.value.retry_count == 1
    assert store.put_attempts == 1


@pytest.mark.anyio
async def test_cancellation_interrupts_backoff() -> None:
    store = FlakyStore(fail_puts=10)
    service = BinderSyncService(store, retry_attempts=5, retry_base_delay=30)
    token = CancellationToken()

    task = asyncio.create_task(service.sync_to_cloud(_binder(), "u1", cancel_token=token))
    await asyncio.sleep(0.05)
    assert store.put_attempts == 1
    token.cancel()

    with anyio.fail_after(2):
        with pytest.raises(SyncCancelledError):
            await task
    assert store.put_attempts == 1


@pytest.mark.anyio
async def test_conflict_surfaces_when_resolution_not_requested() -> None:
    store = FlakyStore()
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)
    local = _binder().model_copy(update={"version": 3})
    remote = local.model_copy(update={"version": 5})
    await _seed_remote(store, remote)

    with pytest.raises(SyncConflictError) as exc_info:
        _ = await service.sync_to_cloud(local, "u1", resolve_conflicts=False)

    assert exc_info.value.code == "SYNC_CONFLICT"
    assert exc_info.value.descriptor.type == "version_newer_remote"
    assert store.puts == 1


@pytest.mark.anyio
async def test_conflict_resolution_remote_wins_then_saves() -> None:
    store = FlakyStore()
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)
    local = _binder(cards=1).model_copy(update={"version": 3})
    remote = _binder(cards=4).model_copy(update={"version": 5})
    await _seed_remote(store, remote)

    result = await service.sync_to_cloud(local, "u1")

    assert result.resolved_conflict is not None
    assert result.resolved_conflict.type == "version_newer_remote"
    assert len(result.binder.cards) == 4
    assert result.binder.version == 6
    assert result.binder.sync.status == "synced"


@pytest.mark.anyio
async def test_force_overwrite_skips_conflict_detection() -> None:
    store = FlakyStore()
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)
    local = _binder(cards=1).model_copy(update={"version": 3})
    await _seed_remote(store, _binder(cards=4).model_copy(update={"version": 9}))

    result = await service.sync_to_cloud(local, "u1", force_overwrite=True)
    assert len(result.binder.cards) == 1
    assert result.binder.version == 10


@pytest.mark.anyio
async def test_requires_authenticated_actor() -> None:
    service = BinderSyncService(FlakyStore(), retry_attempts=3, retry_base_delay=0)
    with pytest.raises(AuthorizationError):
        _ = await service.sync_to_cloud(_binder(), "")
    with pytest.raises(AuthorizationError):
        _ = await service.list_all_cloud_binders("")


@pytest.mark.anyio
async def test_download_and_delete_from_cloud() -> None:
    store = FlakyStore()
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)

    with pytest.raises(NotFoundError):
        _ = await service.download_from_cloud("missing", "u1")
    with pytest.raises(NotFoundError):
        await service.delete_from_cloud("missing", "u1")

    await _seed_remote(store, _binder(cards=2))
    downloaded = await service.download_from_cloud("b1", "u1")
    assert downloaded.binder.sync.status == "synced"
    assert downloaded.binder.sync.pending_changes == []
    assert len(downloaded.binder.cards) == 2

    await service.delete_from_cloud("b1", "u1")
    assert await service.get_cloud_binder("b1", "u1") is None


@pytest.mark.anyio
async def test_check_sync_status_reports_per_binder() -> None:
    store = FlakyStore(failing_get_keys={"u1_broken"})
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)
    _ = await service.sync_to_cloud(_binder("b1"), "u1")

    statuses = await service.check_sync_status(["b1", "nope", "broken"], "u1")

    assert statuses["b1"].exists_in_cloud is True
    assert statuses["b1"].cloud_version == 3
    assert statuses["b1"].last_synced is not None
    assert statuses["nope"].exists_in_cloud is False
    assert statuses["nope"].error is None
    assert statuses["broken"].exists_in_cloud is False
    assert statuses["broken"].error == "get timed out"


@pytest.mark.anyio
async def test_list_all_cloud_binders_filters_and_sorts() -> None:
    store = FlakyStore()
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)

    older = _binder("old")
    older = older.model_copy(
        update={
            "metadata": older.metadata.model_copy(
                update={"created_at": older.metadata.created_at - timedelta(days=2)}
            )
        }
    )
    archived = _binder("archived")
    archived = archived.model_copy(
        update={"metadata": archived.metadata.model_copy(update={"is_archived": True})}
    )
    for binder in (older, _binder("new"), archived):
        _ = await service.sync_to_cloud(binder, "u1")
    _ = await service.sync_to_cloud(_binder("other"), "u2")

    listed = await service.list_all_cloud_binders("u1")
    assert [b.id for b in listed] == ["new", "old"]


@pytest.mark.anyio
async def test_subscribe_receives_updates_until_unsubscribed() -> None:
    store = FlakyStore()
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)
    seen: list[Binder | None] = []

    unsubscribe = service.subscribe_to_cloud_binder("b1", "u1", seen.append)
    _ = await service.sync_to_cloud(_binder(), "u1")
    await service.delete_from_cloud("b1", "u1")
    unsubscribe()
    _ = await service.sync_to_cloud(_binder(), "u1")

    assert len(seen) == 2
    assert seen[0] is not None
    assert seen[0].sync.status == "synced"
    assert seen[1] is None


@pytest.mark.anyio
async def test_batch_sync_reports_each_binder() -> None:
    store = FlakyStore()
    service = BinderSyncService(store, retry_attempts=3, retry_base_delay=0)
    conflicted = _binder("conflicted").model_copy(update={"version": 2})
    await _seed_remote(store, conflicted.model_copy(update={"version": 8}))

    results = await service.batch_sync(
        [_binder("fresh"), conflicted], "u1", resolve_conflicts=False
    )

    assert [(r.binder_id, r.success) for r in results] == [("fresh", True), ("conflicted", False)]
    assert results[0].binder is not None
    assert results[1].error_code == "SYNC_CONFLICT"
