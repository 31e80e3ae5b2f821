"""Upgrade persisted binder records to the current schema."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from binder_backend.domain.page_math import cards_per_page, required_binder_pages
from binder_backend.schemas_binder import (
    LOCAL_USER,
    SCHEMA_VERSION,
    Binder,
    BinderSettings,
)


logger = logging.getLogger(__name__)

# Timestamp for legacy records that carry none.
MIGRATION_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def is_current(raw: dict[str, Any]) -> bool:
    binder_settings = raw.get("settings")
    return (
        raw.get("schemaVersion") == SCHEMA_VERSION
        and isinstance(binder_settings, dict)
        and binder_settings.get("pageCount") is not None
        and raw.get("permissions") is not None
    )


def _legacy_cards(raw: dict[str, Any], owner_id: str, fallback_added_at: Any) -> dict[str, Any]:
    cards = raw.get("cards")
    if isinstance(cards, dict):
        return {
            position: {"instanceId": f"{raw.get('id')}-{position}", "addedBy": owner_id, **entry}
            for position, entry in cards.items()
            if isinstance(entry, dict) and entry.get("cardId")
        }
    if not isinstance(cards, list):
        return {}

    out: dict[str, Any] = {}
    for index, card in enumerate(cards):
        if not isinstance(card, dict) or not card.get("id"):
            continue
        out[str(index)] = {
            "instanceId": f"{raw.get('id')}-{index}",
            "cardId": card["id"],
            "cardData": card,
            "addedAt": card.get("addedAt") or fallback_added_at,
            "addedBy": owner_id,
            "notes": "",
            "condition": "mint",
            "quantity": 1,
            "isProtected": False,
        }
    return out


def _record_stamp(raw: dict[str, Any]) -> str:
    for key in ("lastModified", "updatedAt", "createdAt"):
        value = raw.get(key)
        if value:
            return value
    metadata = raw.get("metadata")
    if isinstance(metadata, dict) and metadata.get("createdAt"):
        return metadata["createdAt"]
    return MIGRATION_EPOCH.isoformat()


def migrate_binder(raw: dict[str, Any]) -> Binder:
    """Return ``raw`` as a current-schema ``Binder``.

    The result depends on ``raw`` alone: timestamps come from the record (or
    ``MIGRATION_EPOCH``) and the migration changelog entry gets an id derived
    from the binder id. Records already on the current schema are validated
    and returned as they are, so migrating twice gives the same binder.
    """

    if is_current(raw):
        return Binder.model_validate(raw)

    stamp = _record_stamp(raw)
    owner_id = raw.get("ownerId") or LOCAL_USER
    created_at = raw.get("createdAt") or stamp
    cards = _legacy_cards(raw, owner_id, created_at)

    raw_settings = raw.get("settings") if isinstance(raw.get("settings"), dict) else {}
    defaults = BinderSettings().model_dump(by_alias=True)
    min_pages = raw_settings.get("minPages") or defaults["minPages"]
    per_page = cards_per_page(raw_settings.get("gridSize"))
    calculated = max(required_binder_pages([int(k) for k in cards], per_page), min_pages)

    binder_settings = {**defaults, **raw_settings}
    binder_settings["pageCount"] = raw_settings.get("pageCount") or calculated

    metadata = raw.get("metadata") or {
        "name": raw.get("name") or "Untitled Binder",
        "description": raw.get("description") or "",
        "createdAt": created_at,
    }

    changelog = raw.get("changelog")
    if not changelog:
        changelog = [
            {
                "id": f"migrated_{raw.get('id')}",
                "timestamp": stamp,
                "type": "binder_migrated",
                "userId": owner_id,
                "data": {
                    "fromVersion": raw.get("schemaVersion") or "1.0",
                    "toVersion": SCHEMA_VERSION,
                    "cardsCount": len(cards),
                    "pageCount": calculated,
                },
            }
        ]

    migrated = {
        "id": raw.get("id"),
        "schemaVersion": SCHEMA_VERSION,
        "ownerId": owner_id,
        "permissions": raw.get("permissions") or {},
        "version": raw.get("version") or 1,
        "lastModified": stamp,
        "lastModifiedBy": raw.get("lastModifiedBy") or owner_id,
        "sync": raw.get("sync") or {},
        "metadata": metadata,
        "settings": binder_settings,
        "cards": cards,
        "changelog": changelog,
        "cardsStorage": raw.get("cardsStorage") or "embedded",
    }
    logger.info(
        "migrated binder %s from schema %s (%s cards)",
        raw.get("id"),
        raw.get("schemaVersion") or "1.0",
        len(cards),
    )
    return Binder.model_validate(migrated)
