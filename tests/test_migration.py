from __future__ import annotations

from datetime import datetime, timezone

from binder_backend.domain import card_store
from binder_backend.domain.migration import MIGRATION_EPOCH, is_current, migrate_binder
from binder_backend.schemas_binder import CardData, binder_to_document


def _legacy_doc() -> dict[str, object]:
    return {
        "id": "legacy-1",
        "name": "Old Binder",
        "description": "from v1",
        "createdAt": "2024-01-01T00:00:00",
        "cards": [
            {"id": "base1-4", "name": "Charizard"},
            None,
            {"name": "no id"},
            {"id": "base1-2", "name": "Blastoise"},
        ]
        + [None] * 8
        + [{"id": "base1-15", "name": "Venusaur"}],
        "settings": {"gridSize": "3x3", "theme": "dark"},
    }


def test_migrates_array_cards_to_position_map() -> None:
    binder = migrate_binder(_legacy_doc())

    assert binder.schema_version == "2.0"
    assert binder.owner_id == "local_user"
    assert {k: v.card_id for k, v in binder.cards.items()} == {
        "0": "base1-4",
        "3": "base1-2",
        "12": "base1-15",
    }
    assert binder.cards["0"].card_data is not None
    assert binder.cards["0"].card_data.name == "Charizard"
    assert binder.metadata.name == "Old Binder"
    assert binder.metadata.description == "from v1"
    assert binder.metadata.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
    # Position 12 sits on card page 2 -> binder page 2.
    assert binder.settings.page_count == 2
    assert binder.settings.model_dump(by_alias=True)["theme"] == "dark"
    assert binder.cards_storage == "embedded"
    assert binder.sync.status == "local"
    assert binder.permissions.public is False

    assert [c.type for c in binder.changelog] == ["binder_migrated"]
    assert binder.changelog[0].data == {
        "fromVersion": "1.0",
        "toVersion": "2.0",
        "cardsCount": 3,
        "pageCount": 2,
    }


def test_migration_is_idempotent() -> None:
    once = migrate_binder(_legacy_doc())
    twice = migrate_binder(binder_to_document(once))
    assert binder_to_document(once) == binder_to_document(twice)
    assert is_current(binder_to_document(once))


def test_current_record_passes_through_unchanged() -> None:
    binder = card_store.add_card(card_store.create_binder("Now"), CardData(id="x")).binder
    doc = binder_to_document(binder)
    assert is_current(doc)
    assert binder_to_document(migrate_binder(doc)) == doc


def test_existing_page_count_and_changelog_are_kept() -> None:
    doc = _legacy_doc()
    doc["settings"] = {"gridSize": "3x3", "pageCount": 7}
    doc["changelog"] = [
        {
            "id": "change_1",
            "timestamp": "2024-02-01T00:00:00Z",
            "type": "card_added",
            "userId": "local_user",
            "data": {},
        }
    ]
    binder = migrate_binder(doc)
    assert binder.settings.page_count == 7
    assert [c.id for c in binder.changelog] == ["change_1"]


def test_migration_depends_only_on_the_record() -> None:
    doc = _legacy_doc()
    del doc["createdAt"]

    first = migrate_binder(doc)
    second = migrate_binder(doc)

    assert binder_to_document(first) == binder_to_document(second)
    assert first.last_modified == MIGRATION_EPOCH
    assert first.metadata.created_at == MIGRATION_EPOCH
    assert first.changelog[0].id == "migrated_legacy-1"
    assert first.changelog[0].timestamp == MIGRATION_EPOCH


def test_migration_takes_timestamps_from_the_record() -> None:
    doc = _legacy_doc()
    doc["updatedAt"] = "2024-03-02T12:00:00Z"

    binder = migrate_binder(doc)

    assert binder.last_modified == datetime(2024, 3, 2, 12, tzinfo=timezone.utc)
    assert binder.metadata.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert binder.changelog[0].timestamp == binder.last_modified
