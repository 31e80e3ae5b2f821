from __future__ import annotations

from datetime import datetime, timedelta, timezone

from binder_backend.domain import card_store
from binder_backend.domain.conflicts import detect_conflict, merge_cards, resolve_conflict
from binder_backend.schemas_binder import Binder, CardData, CardInstance, binder_to_document


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _instance(card_id: str, added_at: datetime) -> CardInstance:
    return CardInstance(
        instance_id=f"i-{card_id}",
        card_id=card_id,
        card_data=CardData(id=card_id),
        added_at=added_at,
    )


def _binder(*, version: int, modified: datetime, cards: dict[str, CardInstance]) -> Binder:
    base = card_store.create_binder("Shared", owner_id="u1", binder_id="b1", now=T0)
    return base.model_copy(update={"version": version, "last_modified": modified, "cards": cards})


def test_no_conflict_when_local_is_current() -> None:
    local = _binder(version=3, modified=T0, cards={"0": _instance("a", T0)})
    remote = _binder(version=3, modified=T0, cards={"0": _instance("a", T0)})
    descriptor = detect_conflict(local, remote)
    assert not descriptor.has_conflict
    assert descriptor.type is None


def test_remote_newer_version_wins() -> None:
    local = _binder(version=3, modified=T0, cards={"0": _instance("local", T0)})
    remote = _binder(version=5, modified=T0, cards={"0": _instance("remote", T0)})

    descriptor = detect_conflict(local, remote)
    assert descriptor.has_conflict
    assert descriptor.type == "version_newer_remote"
    assert descriptor.details["localVersion"] == 3
    assert descriptor.details["remoteVersion"] == 5

    now = T0 + timedelta(hours=1)
    resolved = resolve_conflict(local, remote, descriptor, now=now)
    assert resolved.version == 5
    assert resolved.cards["0"].card_id == "remote"
    assert resolved.sync.status == "synced"
    assert resolved.sync.last_synced == now
    assert resolved.sync.pending_changes == []


def test_type_precedence_version_then_timestamp_then_content() -> None:
    later = T0 + timedelta(minutes=5)
    local = _binder(version=2, modified=T0, cards={})
    remote = _binder(version=4, modified=later, cards={"0": _instance("a", T0)})

    descriptor = detect_conflict(local, remote)
    assert descriptor.type == "version_newer_remote"
    assert set(descriptor.details) == {
        "localVersion",
        "remoteVersion",
        "localModified",
        "remoteModified",
        "localCardCount",
        "remoteCardCount",
    }

    remote_ts = remote.model_copy(update={"version": 2})
    assert detect_conflict(local, remote_ts).type == "timestamp_newer_remote"

    remote_content = remote.model_copy(update={"version": 2, "last_modified": T0})
    assert detect_conflict(local, remote_content).type == "content_different"


def test_content_conflict_merges_cards() -> None:
    early = T0
    late = T0 + timedelta(days=1)
    local = _binder(
        version=4,
        modified=late,
        cards={
            "0": _instance("local-newer", late),
            "1": _instance("local-older", early),
            "2": _instance("local-only", early),
            "3": _instance("local-tie", early),
        },
    )
    local = local.model_copy(
        update={
            "metadata": local.metadata.model_copy(update={"name": "Local name"}),
        }
    )
    remote = _binder(
        version=6,
        modified=early,
        cards={
            "0": _instance("remote-older", early),
            "1": _instance("remote-newer", late),
            "3": _instance("remote-tie", early),
            "4": _instance("remote-only", early),
            "5": _instance("remote-extra", early),
        },
    )
    remote = remote.model_copy(
        update={
            "metadata": remote.metadata.model_copy(
                update={"name": "Remote name", "cover_image_url": "https://img/cover.png"}
            )
        }
    )
    # Force the content branch directly.
    descriptor = detect_conflict(local, remote.model_copy(update={"version": 4}))
    assert descriptor.type == "content_different"

    now = late + timedelta(hours=2)
    merged = resolve_conflict(local, remote, descriptor, now=now)

    assert {k: v.card_id for k, v in merged.cards.items()} == {
        "0": "local-newer",
        "1": "remote-newer",
        "2": "local-only",
        "3": "remote-tie",
        "4": "remote-only",
        "5": "remote-extra",
    }
    assert merged.version == 7
    assert merged.last_modified == now
    assert merged.metadata.name == "Local name"
    # None on the local side does not erase a remote value.
    assert merged.metadata.cover_image_url == "https://img/cover.png"
    assert merged.changelog == remote.changelog
    assert merged.id == remote.id


def test_local_wins_when_no_conflict_type() -> None:
    local = _binder(version=3, modified=T0, cards={})
    remote = _binder(version=2, modified=T0, cards={})
    descriptor = detect_conflict(local, remote)
    now = T0 + timedelta(seconds=1)
    resolved = resolve_conflict(local, remote, descriptor, now=now)
    assert resolved.version == 4
    assert resolved.last_modified == now


def test_resolution_is_deterministic() -> None:
    local = _binder(version=2, modified=T0, cards={"0": _instance("a", T0), "2": _instance("c", T0)})
    remote = _binder(version=2, modified=T0, cards={"1": _instance("b", T0)})
    now = T0 + timedelta(minutes=1)

    first = resolve_conflict(local, remote, detect_conflict(local, remote), now=now)
    second = resolve_conflict(local, remote, detect_conflict(local, remote), now=now)
    assert binder_to_document(first) == binder_to_document(second)
    assert list(first.cards) == ["0", "1", "2"]


def test_merge_cards_keeps_position_order() -> None:
    merged = merge_cards({"10": _instance("x", T0)}, {"2": _instance("y", T0)})
    assert list(merged) == ["2", "10"]


def test_merge_grows_page_count_to_fit_remote_cards() -> None:
    local = _binder(version=2, modified=T0, cards={"0": _instance("a", T0)})
    local = local.model_copy(
        update={"settings": local.settings.model_copy(update={"page_count": 1, "min_pages": 1})}
    )
    remote = _binder(version=2, modified=T0, cards={"30": _instance("far", T0)})

    descriptor = detect_conflict(local, remote.model_copy(update={"cards": {}}))
    assert descriptor.type == "content_different"
    merged = resolve_conflict(local, remote, descriptor, now=T0)

    assert list(merged.cards) == ["0", "30"]
    # Position 30 is on card page 4 of a 3x3 binder -> binder page 3.
    assert merged.settings.page_count == 3
