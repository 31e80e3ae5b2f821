"""Pure position/card store transitions.

Every operation takes a ``Binder`` and returns a ``StoreResult``. Rejected
operations hand back the input binder untouched together with a
``ValidationError``; nothing here raises for a bad move or page request.
Accepted operations go through ``record_change`` so the version, sync status
and changelog move together.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import ValidationError as PydanticValidationError

from binder_backend.config import settings
from binder_backend.domain.changelog import make_change, record_change
from binder_backend.domain.page_math import (
    card_page_bounds,
    card_pages_for,
    cards_per_page,
    required_binder_pages,
)
from binder_backend.domain.sorting import SORT_DIRECTIONS, SORT_OPTIONS, sorted_cards
from binder_backend.errors import ValidationError
from binder_backend.schemas_binder import (
    LOCAL_USER,
    Binder,
    BinderMetadata,
    BinderSettings,
    CardData,
    CardInstance,
    CardsStorage,
    GridSize,
    SyncState,
    utc_now,
)


MoveMode = Literal["swap", "shift"]
CompactScope = Literal["binder", "page"]

# Batches this large are treated as a complete set and switch auto-sort off.
AUTO_SORT_SET_SIZE = 15


@dataclass(frozen=True)
class MoveOperation:
    from_position: int
    to_position: int


@dataclass(frozen=True)
class FailedOperation:
    from_position: int
    to_position: int
    error: str


@dataclass(frozen=True)
class StoreResult:
    success: bool
    binder: Binder
    error: ValidationError | None = None
    applied: list[MoveOperation] = field(default_factory=list)
    failed: list[FailedOperation] = field(default_factory=list)


def _reject(binder: Binder, code: str, message: str, **details: Any) -> StoreResult:
    return StoreResult(
        success=False,
        binder=binder,
        error=ValidationError(message, code=code, details=details),
    )


def _errors(exc: PydanticValidationError) -> list[Any]:
    return list(exc.errors(include_url=False, include_context=False))


def _positions(cards: Mapping[str, CardInstance]) -> list[int]:
    return [int(k) for k in cards]


def _next_free_position(cards: Mapping[str, CardInstance], start: int = 0) -> int:
    position = max(start, 0)
    while str(position) in cards:
        position += 1
    return position


def fit_page_count(
    binder_settings: BinderSettings, cards: Mapping[str, CardInstance]
) -> BinderSettings:
    """Raise ``page_count`` so every occupied position sits inside the binder."""
    required = required_binder_pages(_positions(cards), cards_per_page(binder_settings.grid_size))
    page_count = max(required, binder_settings.page_count, binder_settings.min_pages)
    if page_count == binder_settings.page_count:
        return binder_settings
    return binder_settings.model_copy(update={"page_count": page_count})


def _page_order(binder_settings: BinderSettings) -> list[int]:
    count = binder_settings.page_count
    current = [p for p in (binder_settings.page_order or []) if 0 <= p < count]
    seen = set(current)
    # Pages added after a reorder are appended in physical order.
    current.extend(p for p in range(count) if p not in seen)
    return current


def validate_position(position: int, *, max_position: int | None = None) -> str | None:
    limit = settings.max_card_position if max_position is None else max_position
    if isinstance(position, bool) or not isinstance(position, int) or position < 0:
        return "Position must be a non-negative number"
    if position > limit:
        return f"Position cannot exceed {limit}"
    return None


def validate_card_move(
    cards: Mapping[str, CardInstance],
    from_position: int,
    to_position: int,
    *,
    skip_validation: bool = False,
    max_position: int | None = None,
) -> ValidationError | None:
    if not skip_validation:
        problem = validate_position(from_position, max_position=max_position)
        if problem is not None:
            return ValidationError(f"Invalid from position: {problem}", code="invalid_position")
        problem = validate_position(to_position, max_position=max_position)
        if problem is not None:
            return ValidationError(f"Invalid to position: {problem}", code="invalid_position")

    if str(from_position) not in cards:
        return ValidationError("No card at source position", code="empty_source")

    if not skip_validation and from_position == to_position:
        return ValidationError(
            "Source and destination positions are the same", code="same_position"
        )
    return None


def build_card_instance(
    card: CardData,
    *,
    added_by: str,
    now: datetime | None = None,
    notes: str = "",
    condition: str = "mint",
    quantity: int = 1,
    is_protected: bool = False,
) -> CardInstance:
    if not card.id:
        raise ValueError("card id is required")
    return CardInstance(
        instance_id=uuid.uuid4().hex,
        card_id=card.id,
        card_data=card,
        added_at=now or utc_now(),
        added_by=added_by,
        notes=notes,
        condition=condition,
        quantity=quantity,
        is_protected=is_protected,
    )


def create_binder(
    name: str,
    description: str = "",
    owner_id: str = LOCAL_USER,
    *,
    binder_id: str | None = None,
    grid_size: GridSize = "3x3",
    cards_storage: CardsStorage = "partition",
    now: datetime | None = None,
) -> Binder:
    stamp = now or utc_now()
    created = make_change(
        "binder_created", {"name": name, "description": description}, user_id=owner_id, now=stamp
    )
    return Binder(
        id=binder_id or f"{int(stamp.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}",
        owner_id=owner_id,
        version=1,
        last_modified=stamp,
        last_modified_by=owner_id,
        sync=SyncState(status="local"),
        metadata=BinderMetadata(name=name, description=description, created_at=stamp),
        settings=BinderSettings(grid_size=grid_size),
        cards={},
        changelog=[created],
        cards_storage=cards_storage,
    )


def add_card(
    binder: Binder,
    card: CardData,
    position: int | None = None,
    *,
    actor: str | None = None,
    now: datetime | None = None,
    notes: str = "",
    condition: str = "mint",
    quantity: int = 1,
    is_protected: bool = False,
) -> StoreResult:
    if not card.id:
        return StoreResult(success=False, binder=binder)

    if position is not None:
        problem = validate_position(position)
        if problem is not None:
            return _reject(binder, "invalid_position", problem, position=position)

    stamp = now or utc_now()
    target = _next_free_position(binder.cards) if position is None else position
    entry = build_card_instance(
        card,
        added_by=binder.owner_id,
        now=stamp,
        notes=notes,
        condition=condition,
        quantity=quantity,
        is_protected=is_protected,
    )
    previous = binder.cards.get(str(target))
    cards = {**binder.cards, str(target): entry}
    updated = binder.model_copy(
        update={"cards": cards, "settings": fit_page_count(binder.settings, cards)}
    )
    updated = record_change(
        updated,
        "card_added",
        {
            "cardId": card.id,
            "position": target,
            "previousValue": previous.model_dump(mode="json", by_alias=True) if previous else None,
        },
        user_id=actor or binder.owner_id,
        now=stamp,
    )
    return StoreResult(success=True, binder=_auto_sorted(updated))


def batch_add_cards(
    binder: Binder,
    cards: Sequence[CardData],
    start_position: int | None = None,
    *,
    actor: str | None = None,
    now: datetime | None = None,
    notes: str = "",
    condition: str = "mint",
    quantity: int = 1,
    is_protected: bool = False,
) -> StoreResult:
    if start_position is not None:
        problem = validate_position(start_position)
        if problem is not None:
            return _reject(binder, "invalid_position", problem, position=start_position)

    stamp = now or utc_now()
    working = dict(binder.cards)
    cursor = _next_free_position(working) if start_position is None else start_position
    added: list[dict[str, Any]] = []

    for card in cards:
        if not card.id:
            continue
        cursor = _next_free_position(working, cursor)
        working[str(cursor)] = build_card_instance(
            card,
            added_by=binder.owner_id,
            now=stamp,
            notes=notes,
            condition=condition,
            quantity=quantity,
            is_protected=is_protected,
        )
        added.append({"cardId": card.id, "position": cursor})
        cursor += 1

    if not added:
        return StoreResult(success=False, binder=binder)

    updated = binder.model_copy(
        update={"cards": working, "settings": fit_page_count(binder.settings, working)}
    )
    updated = record_change(
        updated,
        "cards_batch_added",
        {"cardsAdded": added, "count": len(added), "startPosition": start_position},
        user_id=actor or binder.owner_id,
        now=stamp,
    )
    if len(added) >= AUTO_SORT_SET_SIZE and _auto_sort_by(updated.settings) is not None:
        # Keep the set in the order it was added.
        kept_order = BinderSettings.model_validate(
            {**updated.settings.model_dump(), "autoSort": False, "sortBy": "custom"}
        )
        return StoreResult(success=True, binder=updated.model_copy(update={"settings": kept_order}))
    return StoreResult(success=True, binder=_auto_sorted(updated))


def remove_card(binder: Binder, position: int, *, actor: str | None = None) -> StoreResult:
    key = str(position)
    removed = binder.cards.get(key)
    if removed is None:
        return StoreResult(success=True, binder=binder)

    cards = {k: v for k, v in binder.cards.items() if k != key}
    updated = record_change(
        binder.model_copy(update={"cards": cards}),
        "card_removed",
        {
            "cardId": removed.card_id,
            "position": position,
            "previousValue": removed.model_dump(mode="json", by_alias=True),
        },
        user_id=actor or binder.owner_id,
    )
    return StoreResult(success=True, binder=updated)


def update_card(
    binder: Binder, position: int, updates: Mapping[str, Any], *, actor: str | None = None
) -> StoreResult:
    key = str(position)
    existing = binder.cards.get(key)
    if existing is None:
        return _reject(binder, "empty_slot", "No card at position", position=position)

    merged = existing.model_dump()
    for name, value in updates.items():
        if name == "card_data" and isinstance(value, Mapping) and merged.get("card_data"):
            merged["card_data"] = {**merged["card_data"], **value}
        else:
            merged[name] = value
    # Identity of the placement never changes through an update.
    merged["instance_id"] = existing.instance_id
    merged["card_id"] = existing.card_id

    try:
        card = CardInstance.model_validate(merged)
    except PydanticValidationError as exc:
        return _reject(binder, "invalid_card", "Invalid card update", errors=_errors(exc))

    updated = record_change(
        binder.model_copy(update={"cards": {**binder.cards, key: card}}),
        "card_updated",
        {
            "cardId": existing.card_id,
            "position": position,
            "updates": dict(updates),
            "previousValue": existing.model_dump(mode="json", by_alias=True),
        },
        user_id=actor or binder.owner_id,
    )
    return StoreResult(success=True, binder=updated)


def _apply_move(
    cards: dict[str, CardInstance], from_position: int, to_position: int, mode: MoveMode
) -> None:
    from_key = str(from_position)
    to_key = str(to_position)
    moving = cards[from_key]
    at_destination = cards.get(to_key)

    if at_destination is None:
        cards[to_key] = moving
        del cards[from_key]
        return

    if mode == "swap":
        cards[from_key] = at_destination
        cards[to_key] = moving
        return

    del cards[from_key]
    if from_position < to_position:
        for pos in range(from_position + 1, to_position + 1):
            current = cards.pop(str(pos), None)
            if current is not None:
                cards[str(pos - 1)] = current
    else:
        for pos in range(from_position - 1, to_position - 1, -1):
            current = cards.pop(str(pos), None)
            if current is not None:
                cards[str(pos + 1)] = current
    cards[to_key] = moving


def move_card(
    binder: Binder,
    from_position: int,
    to_position: int,
    *,
    mode: MoveMode = "swap",
    optimistic: bool = False,
    skip_validation: bool = False,
    actor: str | None = None,
) -> StoreResult:
    """Move the card at ``from_position``; swaps when the target is occupied.

    ``optimistic`` only tags the change record: drag previews go through the
    same validation as confirmed moves.
    """

    error = validate_card_move(
        binder.cards, from_position, to_position, skip_validation=skip_validation
    )
    if error is not None:
        return StoreResult(success=False, binder=binder, error=error)

    moving = binder.cards[str(from_position)]
    at_destination = binder.cards.get(str(to_position))
    cards = dict(binder.cards)
    _apply_move(cards, from_position, to_position, mode)

    updated = record_change(
        binder.model_copy(update={"cards": cards}),
        "card_moved",
        {
            "cardId": moving.card_id,
            "fromPosition": from_position,
            "toPosition": to_position,
            "swappedWith": at_destination.card_id if at_destination is not None and mode == "swap" else None,
            "mode": mode,
            "optimistic": optimistic,
        },
        user_id=actor or binder.owner_id,
    )
    return StoreResult(success=True, binder=updated)


def batch_move_cards(
    binder: Binder, operations: Sequence[MoveOperation], *, actor: str | None = None
) -> StoreResult:
    """Apply every valid move/swap against one working copy.

    Each operation is validated against the state left by the previous ones.
    Invalid operations are reported in ``failed`` and skipped; the valid subset
    is kept.
    """

    working = dict(binder.cards)
    applied: list[MoveOperation] = []
    failed: list[FailedOperation] = []

    for op in operations:
        error = validate_card_move(working, op.from_position, op.to_position)
        if error is not None:
            failed.append(FailedOperation(op.from_position, op.to_position, error.message))
            continue
        _apply_move(working, op.from_position, op.to_position, "swap")
        applied.append(op)

    if not applied:
        return StoreResult(success=False, binder=binder, applied=applied, failed=failed)

    updated = record_change(
        binder.model_copy(update={"cards": working}),
        "batch_move_cards",
        {
            "operations": [
                {"fromPosition": op.from_position, "toPosition": op.to_position} for op in applied
            ],
            "failedCount": len(failed),
        },
        user_id=actor or binder.owner_id,
    )
    return StoreResult(success=True, binder=updated, applied=applied, failed=failed)


def reorder_pages(
    binder: Binder, from_index: int, to_index: int, *, actor: str | None = None
) -> StoreResult:
    if from_index == 0 or to_index == 0:
        return _reject(
            binder, "cover_page", "Cannot move cover page", fromIndex=from_index, toIndex=to_index
        )

    count = binder.settings.page_count
    if not (0 < from_index < count) or not (0 < to_index < count):
        return _reject(
            binder,
            "invalid_page",
            f"Page index must be between 1 and {count - 1}",
            fromIndex=from_index,
            toIndex=to_index,
        )

    order = _page_order(binder.settings)
    moved = order.pop(from_index)
    order.insert(to_index, moved)

    updated = record_change(
        binder.model_copy(
            update={"settings": binder.settings.model_copy(update={"page_order": order})}
        ),
        "pages_reordered",
        {"fromIndex": from_index, "toIndex": to_index, "pageOrder": order},
        user_id=actor or binder.owner_id,
    )
    return StoreResult(success=True, binder=updated)


def reorder_card_pages(
    binder: Binder, from_card_page: int, to_card_page: int, *, actor: str | None = None
) -> StoreResult:
    if from_card_page == 0 or to_card_page == 0:
        return _reject(
            binder,
            "cover_page",
            "Cannot move cover page",
            fromCardPageIndex=from_card_page,
            toCardPageIndex=to_card_page,
        )
    if from_card_page < 0 or to_card_page < 0:
        return _reject(binder, "invalid_page", "Card page index must be positive")
    if from_card_page == to_card_page:
        return _reject(binder, "same_page", "Source and destination card pages are the same")

    per_page = cards_per_page(binder.settings.grid_size)
    from_start, from_end = card_page_bounds(from_card_page, per_page)
    to_start, to_end = card_page_bounds(to_card_page, per_page)
    if max(from_end, to_end) - 1 > settings.max_card_position:
        return _reject(binder, "invalid_page", "Card page is beyond the position limit")

    source: dict[int, CardInstance] = {}
    target: dict[int, CardInstance] = {}
    cards: dict[str, CardInstance] = {}
    for key, card in binder.cards.items():
        pos = int(key)
        if from_start <= pos < from_end:
            source[pos - from_start] = card
        elif to_start <= pos < to_end:
            target[pos - to_start] = card
        else:
            cards[key] = card

    for offset, card in source.items():
        cards[str(to_start + offset)] = card
    for offset, card in target.items():
        cards[str(from_start + offset)] = card

    updated = binder.model_copy(update={"cards": cards})
    updated = updated.model_copy(update={"settings": fit_page_count(updated.settings, cards)})
    updated = record_change(
        updated,
        "card_pages_reordered",
        {
            "fromCardPageIndex": from_card_page,
            "toCardPageIndex": to_card_page,
            "sourceCardCount": len(source),
            "targetCardCount": len(target),
        },
        user_id=actor or binder.owner_id,
    )
    return StoreResult(success=True, binder=updated)


def add_page(binder: Binder, *, actor: str | None = None) -> StoreResult:
    return batch_add_pages(binder, 1, actor=actor)


def batch_add_pages(binder: Binder, count: int, *, actor: str | None = None) -> StoreResult:
    if count < 1:
        return _reject(binder, "invalid_count", "Page count to add must be at least 1", count=count)

    current = binder.settings.page_count
    new_count = current + count
    if new_count > binder.settings.max_pages:
        return _reject(
            binder,
            "max_pages",
            f"Page limit reached! Maximum is {binder.settings.max_pages} pages",
            maxPages=binder.settings.max_pages,
            canAdd=max(0, binder.settings.max_pages - current),
        )

    updated = binder.model_copy(
        update={"settings": binder.settings.model_copy(update={"page_count": new_count})}
    )
    if count == 1:
        change_type, data = "page_added", {"pageNumber": new_count, "previousPageCount": current}
    else:
        change_type, data = (
            "pages_batch_added",
            {"pagesAdded": count, "fromPageCount": current, "toPageCount": new_count},
        )
    updated = record_change(updated, change_type, data, user_id=actor or binder.owner_id)
    return StoreResult(success=True, binder=updated)


def remove_page(binder: Binder, *, actor: str | None = None) -> StoreResult:
    current = binder.settings.page_count
    if current <= 1:
        return _reject(binder, "cover_page", "Cannot remove the cover page")
    if current <= binder.settings.min_pages:
        return _reject(
            binder,
            "min_pages",
            f"Cannot remove pages. Minimum is {binder.settings.min_pages}",
            minPages=binder.settings.min_pages,
        )

    per_page = cards_per_page(binder.settings.grid_size)
    first_removed = card_pages_for(current - 1) * per_page
    blocking = sum(1 for pos in _positions(binder.cards) if pos >= first_removed)
    if blocking:
        return _reject(
            binder,
            "page_not_empty",
            "Cannot remove page - last page contains cards",
            blockingCards=blocking,
        )

    new_count = current - 1
    page_order = binder.settings.page_order
    if page_order is not None:
        page_order = [p for p in page_order if p < new_count]

    updated = binder.model_copy(
        update={
            "settings": binder.settings.model_copy(
                update={"page_count": new_count, "page_order": page_order}
            )
        }
    )
    updated = record_change(
        updated,
        "page_removed",
        {"pageNumber": current, "newPageCount": new_count},
        user_id=actor or binder.owner_id,
    )
    return StoreResult(success=True, binder=updated)


def update_settings(
    binder: Binder, changes: Mapping[str, Any], *, actor: str | None = None
) -> StoreResult:
    """Apply settings changes; a grid change recomputes ``pageCount`` from scratch."""

    if not changes:
        return _reject(binder, "empty_update", "At least one setting must be provided")

    previous = binder.settings
    try:
        merged = BinderSettings.model_validate({**previous.model_dump(), **dict(changes)})
    except PydanticValidationError as exc:
        return _reject(binder, "invalid_settings", "Invalid binder settings", errors=_errors(exc))

    if merged.min_pages > merged.max_pages:
        return _reject(binder, "invalid_settings", "minPages cannot exceed maxPages")

    required = required_binder_pages(_positions(binder.cards), cards_per_page(merged.grid_size))
    calculated: int | None = None
    if "page_count" in changes:
        if merged.page_count < required:
            return _reject(
                binder,
                "page_count_too_small",
                f"Binder needs at least {required} pages for its cards",
                requiredPages=required,
            )
        if not (merged.min_pages <= merged.page_count <= merged.max_pages):
            return _reject(
                binder,
                "page_count_out_of_range",
                f"pageCount must be between {merged.min_pages} and {merged.max_pages}",
            )
    elif merged.grid_size != previous.grid_size:
        calculated = min(max(required, merged.min_pages), merged.max_pages)
        merged = merged.model_copy(update={"page_count": calculated})
    else:
        clamped = min(max(merged.page_count, merged.min_pages), merged.max_pages)
        merged = merged.model_copy(update={"page_count": clamped})

    updated = record_change(
        binder.model_copy(update={"settings": merged}),
        "settings_updated",
        {
            "changes": {k: v for k, v in changes.items()},
            "previousSettings": previous.model_dump(mode="json", by_alias=True),
            "calculatedPageCount": calculated,
        },
        user_id=actor or binder.owner_id,
    )
    return StoreResult(success=True, binder=updated)


def update_metadata(
    binder: Binder, changes: Mapping[str, Any], *, actor: str | None = None
) -> StoreResult:
    if not changes:
        return _reject(binder, "empty_update", "At least one metadata field must be provided")
    try:
        metadata = BinderMetadata.model_validate({**binder.metadata.model_dump(), **dict(changes)})
    except PydanticValidationError as exc:
        return _reject(binder, "invalid_metadata", "Invalid binder metadata", errors=_errors(exc))

    updated = record_change(
        binder.model_copy(update={"metadata": metadata}),
        "metadata_updated",
        {"updates": {k: v for k, v in changes.items()}},
        user_id=actor or binder.owner_id,
    )
    return StoreResult(success=True, binder=updated)


def claim_ownership(binder: Binder, new_owner: str) -> StoreResult:
    if not new_owner or new_owner == LOCAL_USER:
        return _reject(binder, "invalid_owner", "A real principal is required to claim a binder")
    if binder.owner_id == new_owner:
        return _reject(binder, "already_owned", "Binder is already owned by this user")

    updated = binder.model_copy(update={"owner_id": new_owner, "last_modified_by": new_owner})
    updated = record_change(
        updated,
        "ownership_claimed",
        {"previousOwner": binder.owner_id, "newOwner": new_owner},
        user_id=new_owner,
    )
    return StoreResult(success=True, binder=updated)


def clear_cards(
    binder: Binder, *, reason: str = "clear_for_replacement", actor: str | None = None
) -> StoreResult:
    count = len(binder.cards)
    if count == 0:
        return StoreResult(success=True, binder=binder)

    updated = binder.model_copy(
        update={
            "cards": {},
            "settings": binder.settings.model_copy(update={"page_count": binder.settings.min_pages}),
        }
    )
    updated = record_change(
        updated,
        "cards_batch_cleared",
        {"reason": reason, "clearedCount": count},
        user_id=actor or binder.owner_id,
    )
    return StoreResult(success=True, binder=updated)


def _auto_sort_by(binder_settings: BinderSettings) -> str | None:
    extras = binder_settings.model_extra or {}
    sort_by = extras.get("sortBy")
    if extras.get("autoSort") and sort_by in SORT_OPTIONS and sort_by != "custom":
        return sort_by
    return None


def _auto_sorted(binder: Binder) -> Binder:
    sort_by = _auto_sort_by(binder.settings)
    if sort_by is None:
        return binder
    direction = (binder.settings.model_extra or {}).get("sortDirection") or "asc"
    return binder.model_copy(update={"cards": sorted_cards(binder.cards, sort_by, direction)})


def sort_binder(
    binder: Binder, sort_by: str, direction: str = "asc", *, actor: str | None = None
) -> StoreResult:
    """Repack cards into ``0..n-1`` in ``sort_by`` order and remember the choice.

    ``custom`` records the choice and leaves positions alone.
    """

    if sort_by not in SORT_OPTIONS:
        return _reject(binder, "invalid_sort", f"Unknown sort option: {sort_by}", sortBy=sort_by)
    if direction not in SORT_DIRECTIONS:
        return _reject(
            binder, "invalid_sort", f"Unknown sort direction: {direction}", sortDirection=direction
        )

    binder_settings = BinderSettings.model_validate(
        {**binder.settings.model_dump(), "sortBy": sort_by, "sortDirection": direction}
    )
    cards = sorted_cards(binder.cards, sort_by, direction)
    updated = binder.model_copy(update={"cards": cards, "settings": binder_settings})
    updated = record_change(
        updated,
        "binder_sorted",
        {"sortBy": sort_by, "sortDirection": direction},
        user_id=actor or binder.owner_id,
    )
    return StoreResult(success=True, binder=updated)


def compact_cards(
    binder: Binder,
    scope: CompactScope = "binder",
    page_indices: Sequence[int] = (),
    *,
    actor: str | None = None,
) -> StoreResult:
    """Close gaps between cards, across the binder or within given card pages.

    Card page indices follow ``card_page_bounds``: card page 1 starts at 0.
    Nothing to move returns the binder unchanged.
    """

    if scope not in ("binder", "page"):
        return _reject(binder, "invalid_scope", f"Unknown compaction scope: {scope}")
    if scope == "page" and any(index < 1 for index in page_indices):
        return _reject(
            binder,
            "invalid_page",
            "Card page index must be positive",
            pageIndices=list(page_indices),
        )

    if scope == "binder":
        cards = {str(i): binder.cards[k] for i, k in enumerate(sorted(binder.cards, key=int))}
    else:
        per_page = cards_per_page(binder.settings.grid_size)
        cards = dict(binder.cards)
        for index in sorted(set(page_indices)):
            start, end = card_page_bounds(index, per_page)
            occupied = sorted(p for p in _positions(cards) if start <= p < end)
            moved = {str(start + i): cards.pop(str(p)) for i, p in enumerate(occupied)}
            cards.update(moved)
        cards = {k: cards[k] for k in sorted(cards, key=int)}

    moved_count = sum(1 for k, card in cards.items() if binder.cards.get(k) is not card)
    if moved_count == 0:
        return StoreResult(success=True, binder=binder)

    updated = record_change(
        binder.model_copy(update={"cards": cards}),
        "cards_compacted",
        {"scope": scope, "pageIndices": list(page_indices), "movedCount": moved_count},
        user_id=actor or binder.owner_id,
    )
    return StoreResult(success=True, binder=updated)
