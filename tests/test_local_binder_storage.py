from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from binder_backend.domain import card_store
from binder_backend.domain.migration import is_current
from binder_backend.integrations.storage.local_binder_storage import LocalBinderStorage
from binder_backend.schemas_binder import CardData, binder_to_document


@pytest.mark.anyio
async def test_save_load_and_delete_round_trip(tmp_path: Path) -> None:
    storage = LocalBinderStorage(root_dir=str(tmp_path))
    assert await storage.load_all() == []

    binder = card_store.create_binder("Fossil", binder_id="b1")
    binder = card_store.add_card(binder, CardData(id="fossil-1", name="Aerodactyl")).binder
    await storage.save_binder(binder)

    assert (tmp_path / "binders" / "b1.json").is_file()
    assert not list((tmp_path / "binders").glob("*.tmp"))

    loaded = await storage.load_all()
    assert [binder_to_document(b) for b in loaded] == [binder_to_document(binder)]

    await storage.delete_binder("b1")
    await storage.delete_binder("b1")
    assert await storage.load_all() == []


@pytest.mark.anyio
async def test_current_binder_pointer(tmp_path: Path) -> None:
    storage = LocalBinderStorage(root_dir=str(tmp_path))
    assert await storage.get_current_binder_id() is None

    await storage.set_current_binder_id("b2")
    assert await storage.get_current_binder_id() == "b2"

    await storage.set_current_binder_id(None)
    assert await storage.get_current_binder_id() is None
    await storage.set_current_binder_id(None)


@pytest.mark.anyio
async def test_corrupt_files_are_skipped(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.WARNING)
    storage = LocalBinderStorage(root_dir=str(tmp_path))
    await storage.save_binder(card_store.create_binder("Good", binder_id="good"))
    _ = (tmp_path / "binders" / "broken.json").write_text("{not json", encoding="utf-8")
    _ = (tmp_path / "binders" / "list.json").write_text("[1, 2]", encoding="utf-8")

    loaded = await storage.load_all()

    assert [b.id for b in loaded] == ["good"]
    assert "broken.json" in caplog.text
    assert "list.json" in caplog.text


@pytest.mark.anyio
async def test_legacy_files_are_migrated_on_load(tmp_path: Path) -> None:
    binders_dir = tmp_path / "binders"
    binders_dir.mkdir()
    legacy = {
        "id": "legacy",
        "name": "Team Rocket",
        "createdAt": "2023-05-01T10:00:00Z",
        "cards": [None, {"id": "tr-4", "name": "Dark Charizard"}],
        "settings": {"gridSize": "4x4"},
    }
    _ = (binders_dir / "legacy.json").write_text(json.dumps(legacy), encoding="utf-8")

    [binder] = await LocalBinderStorage(root_dir=str(tmp_path)).load_all()

    assert binder.schema_version == "2.0"
    assert binder.settings.grid_size == "4x4"
    assert binder.cards["1"].card_id == "tr-4"

    stored = json.loads((binders_dir / "legacy.json").read_text(encoding="utf-8"))
    assert is_current(stored)
    assert stored == binder_to_document(binder)

    [again] = await LocalBinderStorage(root_dir=str(tmp_path)).load_all()
    assert binder_to_document(again) == binder_to_document(binder)


@pytest.mark.anyio
async def test_rejects_path_like_binder_ids(tmp_path: Path) -> None:
    storage = LocalBinderStorage(root_dir=str(tmp_path))
    for bad in ("../escape", "a/b", "", ".."):
        with pytest.raises(ValueError):
            storage.resolve_path(bad)
    with pytest.raises(ValueError):
        await storage.set_current_binder_id("../escape")
