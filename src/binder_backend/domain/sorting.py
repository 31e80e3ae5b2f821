"""Card ordering used by binder sorting and auto-sort."""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any, Literal

from binder_backend.schemas_binder import CardInstance


SortBy = Literal["custom", "set", "rarity", "number", "type", "name"]
SortDirection = Literal["asc", "desc"]

SORT_OPTIONS: tuple[str, ...] = ("custom", "set", "rarity", "number", "type", "name")
SORT_DIRECTIONS: tuple[str, ...] = ("asc", "desc")

RARITY_ORDER: dict[str, int] = {
    "Common": 1,
    "Uncommon": 2,
    "Rare": 3,
    "Rare Holo": 4,
    "Rare Holo EX": 5,
    "Rare Holo GX": 6,
    "Rare Holo V": 7,
    "Rare Holo VMAX": 8,
    "Rare Holo VSTAR": 9,
    "Rare Ultra": 10,
    "Rare Secret": 11,
    "Rare Rainbow": 12,
    "Promo": 13,
    "Amazing Rare": 14,
    "Rare Radiant": 15,
    "Special Illustration Rare": 16,
    "Hyper Rare": 17,
    "Illustration Rare": 18,
    "Ultra Rare": 19,
}

TYPE_ORDER: dict[str, int] = {
    "Fire": 1,
    "Water": 2,
    "Grass": 3,
    "Lightning": 4,
    "Psychic": 5,
    "Fighting": 6,
    "Darkness": 7,
    "Metal": 8,
    "Fairy": 9,
    "Dragon": 10,
    "Colorless": 11,
}

UNRANKED = 999
_NUMBER_RE = re.compile(r"^([a-z]*?)(\d+)([a-z]*?)$")


def parse_card_number(number: str | None) -> tuple[str, int, str]:
    """Split a collector number into ``(prefix, numeric, suffix)``.

    ``"SWSH001"`` -> ``("swsh", 1, "")``; ``"12a"`` -> ``("", 12, "a")``.
    Missing or non-standard numbers sort last.
    """

    if not number:
        return "", 999999, "zzz"
    text = str(number).lower()
    match = _NUMBER_RE.match(text)
    if match is None:
        return "", 999999, text
    prefix, numeric, suffix = match.groups()
    return prefix, int(numeric), suffix


def _fields(card: CardInstance) -> tuple[str, str, str | None, str | None, list[str]]:
    data = card.card_data
    if data is None:
        return "", "", None, None, []
    return (
        (data.set.name or "").casefold(),
        (data.name or "").casefold(),
        data.number,
        data.rarity,
        list(data.types or []),
    )


def _by_set(card: CardInstance) -> tuple[Any, ...]:
    set_name, _, number, _, _ = _fields(card)
    return (set_name, *parse_card_number(number))


def _by_rarity(card: CardInstance) -> tuple[Any, ...]:
    set_name, _, number, rarity, _ = _fields(card)
    return (RARITY_ORDER.get(rarity or "", UNRANKED), set_name, parse_card_number(number)[1])


def _by_number(card: CardInstance) -> tuple[Any, ...]:
    set_name, _, number, _, _ = _fields(card)
    return (*parse_card_number(number), set_name)


def _by_type(card: CardInstance) -> tuple[Any, ...]:
    set_name, _, number, rarity, types = _fields(card)
    type_rank = TYPE_ORDER.get(types[0], UNRANKED) if types else UNRANKED
    return (
        type_rank,
        RARITY_ORDER.get(rarity or "", UNRANKED),
        set_name,
        parse_card_number(number)[1],
    )


def _by_name(card: CardInstance) -> tuple[Any, ...]:
    return (_fields(card)[1],)


_SORT_KEYS: dict[str, Callable[[CardInstance], tuple[Any, ...]]] = {
    "set": _by_set,
    "rarity": _by_rarity,
    "number": _by_number,
    "type": _by_type,
    "name": _by_name,
}


def sorted_cards(
    cards: Mapping[str, CardInstance], sort_by: str, direction: str = "asc"
) -> dict[str, CardInstance]:
    """Repack ``cards`` into positions ``0..n-1`` in ``sort_by`` order.

    ``custom`` keeps the map as it is. Ties keep their current position order.
    """

    key = _SORT_KEYS.get(sort_by)
    if key is None:
        return dict(cards)
    ordered = [cards[k] for k in sorted(cards, key=int)]
    ordered.sort(key=key, reverse=direction == "desc")
    return {str(i): card for i, card in enumerate(ordered)}
