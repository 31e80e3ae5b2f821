from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config

from binder_backend.config import settings
from binder_backend.db import reset_engine_cache, session_scope
from binder_backend.domain import card_store
from binder_backend.errors import NotFoundError
from binder_backend.integrations.document_store import build_binder_document_key
from binder_backend.integrations.remote.sql_document_store import SqlDocumentStore
from binder_backend.repositories import binder_docs_repo
from binder_backend.schemas_binder import Binder, CardData, CardsStorage, binder_to_document


T0 = datetime(2026, 6, 1, tzinfo=timezone.utc)


def _alembic_upgrade_head() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    command.upgrade(cfg, "head")


@pytest.fixture
def sqlite_db(tmp_path: Path) -> Iterator[None]:
    old_db = settings.database_url
    try:
        settings.database_url = f"sqlite:///{tmp_path / 'test-binder-docs.db'}"
        reset_engine_cache()
        _alembic_upgrade_head()
        yield
    finally:
        settings.database_url = old_db


def _binder(
    binder_id: str,
    *,
    cards: int,
    owner: str = "u1",
    storage: CardsStorage = "partition",
    created: datetime = T0,
) -> Binder:
    binder = card_store.create_binder(
        f"Binder {binder_id}", owner_id=owner, binder_id=binder_id, cards_storage=storage, now=created
    )
    for i in range(cards):
        binder = card_store.add_card(binder, CardData(id=f"c{i}"), i, now=created).binder
    return binder


async def _card_positions(key: str) -> list[int]:
    async with session_scope() as session:
        rows = await binder_docs_repo.list_card_rows(session, doc_key=key)
        return [r.position for r in rows]


@pytest.mark.anyio
async def test_partitioned_document_round_trips(sqlite_db: None) -> None:
    _ = sqlite_db
    store = SqlDocumentStore()
    doc = binder_to_document(_binder("b1", cards=5))
    key = build_binder_document_key(owner_id="u1", binder_id="b1")

    await store.put(key, doc)

    assert await store.get(key) == doc
    assert await _card_positions(key) == [0, 1, 2, 3, 4]
    assert store.last_write_batches == 1
    assert await store.get("u1_missing") is None


@pytest.mark.anyio
async def test_partition_writes_are_diffed_and_chunked(sqlite_db: None) -> None:
    _ = sqlite_db
    store = SqlDocumentStore(batch_limit=2)
    key = build_binder_document_key(owner_id="u1", binder_id="b1")
    binder = _binder("b1", cards=5)

    await store.put(key, binder_to_document(binder))
    assert store.last_write_batches == 3

    # Unchanged cards produce no row writes.
    await store.put(key, binder_to_document(binder))
    assert store.last_write_batches == 0

    trimmed = card_store.remove_card(binder, 1).binder
    trimmed = card_store.remove_card(trimmed, 3).binder
    await store.put(key, binder_to_document(trimmed))
    assert store.last_write_batches == 1
    assert await _card_positions(key) == [0, 2, 4]

    stored = await store.get(key)
    assert stored is not None
    assert sorted(stored["cards"]) == ["0", "2", "4"]


@pytest.mark.anyio
async def test_embedded_documents_keep_cards_in_body(sqlite_db: None) -> None:
    _ = sqlite_db
    store = SqlDocumentStore()
    key = build_binder_document_key(owner_id="u1", binder_id="b1")

    await store.put(key, binder_to_document(_binder("b1", cards=3)))
    assert await _card_positions(key) == [0, 1, 2]

    embedded = binder_to_document(_binder("b1", cards=2, storage="embedded"))
    await store.put(key, embedded)

    assert await _card_positions(key) == []
    assert await store.get(key) == embedded


@pytest.mark.anyio
async def test_delete_removes_document_and_cards(sqlite_db: None) -> None:
    _ = sqlite_db
    store = SqlDocumentStore()
    key = build_binder_document_key(owner_id="u1", binder_id="b1")
    seen: list[object] = []
    _ = store.subscribe(key, seen.append)

    with pytest.raises(NotFoundError):
        await store.delete(key)

    await store.put(key, binder_to_document(_binder("b1", cards=2)))
    await store.delete(key)

    assert await store.get(key) is None
    assert await _card_positions(key) == []
    assert len(seen) == 2
    assert seen[-1] is None


@pytest.mark.anyio
async def test_query_filters_owner_and_archived_newest_first(sqlite_db: None) -> None:
    _ = sqlite_db
    store = SqlDocumentStore()

    old = _binder("old", cards=1, created=T0)
    new = _binder("new", cards=2, created=T0 + timedelta(days=1))
    archived = card_store.update_metadata(
        _binder("arch", cards=0, created=T0 + timedelta(days=2)), {"is_archived": True}
    ).binder
    other = _binder("other", cards=0, owner="u2")
    for binder in (old, new, archived, other):
        await store.put(
            build_binder_document_key(owner_id=binder.owner_id, binder_id=binder.id),
            binder_to_document(binder),
        )

    docs = await store.query("u1")
    assert [d["id"] for d in docs] == ["new", "old"]
    assert len(docs[0]["cards"]) == 2

    with_archived = await store.query("u1", include_archived=True)
    assert [d["id"] for d in with_archived] == ["arch", "new", "old"]
