"""Conflict detection and resolution between a local and a remote binder.

Both functions are pure: the same inputs (and the same ``now``) always give
the same result.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from binder_backend.domain.card_store import fit_page_count
from binder_backend.schemas_binder import (
    Binder,
    BinderMetadata,
    BinderSettings,
    CardInstance,
    ConflictDescriptor,
    ConflictType,
    SyncState,
    utc_now,
)


def detect_conflict(local: Binder, remote: Binder) -> ConflictDescriptor:
    conflict_type: ConflictType | None = None
    details: dict[str, Any] = {}

    if remote.version > local.version:
        conflict_type = "version_newer_remote"
        details["localVersion"] = local.version
        details["remoteVersion"] = remote.version

    if remote.last_modified > local.last_modified:
        conflict_type = conflict_type or "timestamp_newer_remote"
        details["localModified"] = local.last_modified.isoformat()
        details["remoteModified"] = remote.last_modified.isoformat()

    if len(remote.cards) != len(local.cards):
        conflict_type = conflict_type or "content_different"
        details["localCardCount"] = len(local.cards)
        details["remoteCardCount"] = len(remote.cards)

    return ConflictDescriptor(
        has_conflict=conflict_type is not None, type=conflict_type, details=details
    )


def merge_cards(
    local_cards: dict[str, CardInstance], remote_cards: dict[str, CardInstance]
) -> dict[str, CardInstance]:
    """Union of both maps; a shared slot keeps the strictly later ``addedAt``."""

    merged = dict(remote_cards)
    for position, local_card in local_cards.items():
        remote_card = merged.get(position)
        if remote_card is None or local_card.added_at > remote_card.added_at:
            merged[position] = local_card
    return {k: merged[k] for k in sorted(merged, key=int)}


def _layered(remote_part: Any, local_part: Any) -> dict[str, Any]:
    return {**remote_part.model_dump(), **local_part.model_dump(exclude_none=True)}


def _remote_wins(remote: Binder, now: datetime) -> Binder:
    return remote.model_copy(update={"sync": SyncState(status="synced", last_synced=now)})


def _intelligent_merge(local: Binder, remote: Binder, now: datetime) -> Binder:
    cards = merge_cards(local.cards, remote.cards)
    merged_settings = BinderSettings.model_validate(_layered(remote.settings, local.settings))
    return remote.model_copy(
        update={
            "cards": cards,
            "metadata": BinderMetadata.model_validate(_layered(remote.metadata, local.metadata)),
            "settings": fit_page_count(merged_settings, cards),
            "version": max(local.version, remote.version) + 1,
            "last_modified": now,
            "last_modified_by": local.last_modified_by,
            "sync": local.sync,
        }
    )


def _local_wins(local: Binder, remote: Binder, now: datetime) -> Binder:
    return local.model_copy(
        update={"version": max(local.version, remote.version) + 1, "last_modified": now}
    )


def resolve_conflict(
    local: Binder,
    remote: Binder,
    descriptor: ConflictDescriptor,
    *,
    now: datetime | None = None,
) -> Binder:
    """Pick the resolution strategy for ``descriptor.type``.

    Newer remote version or timestamp: the remote snapshot is taken as-is and
    any local pending edits are dropped. Differing card sets are merged.
    Anything else keeps the local binder.
    """

    stamp = now or utc_now()
    if descriptor.type in ("version_newer_remote", "timestamp_newer_remote"):
        return _remote_wins(remote, stamp)
    if descriptor.type == "content_different":
        return _intelligent_merge(local, remote, stamp)
    return _local_wins(local, remote, stamp)
