"""Card-page / binder-page arithmetic.

A card page is one grid's worth of positions. A binder page is a physical
spread: binder page 1 holds the cover plus one card page, every later binder
page holds two card pages.
"""

from __future__ import annotations

import math
from collections.abc import Iterable


GRID_CONFIGS: dict[str, int] = {
    "1x1": 1,
    "2x2": 4,
    "3x3": 9,
    "4x3": 12,
    "4x4": 16,
}
DEFAULT_CARDS_PER_PAGE = 9


def cards_per_page(grid_size: str | None) -> int:
    return GRID_CONFIGS.get(grid_size or "", DEFAULT_CARDS_PER_PAGE)


def binder_pages_for(card_pages: int) -> int:
    if card_pages <= 1:
        return 1
    return 1 + math.ceil((card_pages - 1) / 2)


def card_pages_for(binder_pages: int) -> int:
    if binder_pages <= 1:
        return 1
    return 1 + 2 * (binder_pages - 1)


def required_card_pages(positions: Iterable[int], per_page: int) -> int:
    highest = max(positions, default=-1)
    if highest < 0:
        return 0
    return math.ceil((highest + 1) / per_page)


def required_binder_pages(positions: Iterable[int], per_page: int) -> int:
    return binder_pages_for(required_card_pages(positions, per_page))


def card_page_bounds(card_page_index: int, per_page: int) -> tuple[int, int]:
    """Half-open position range of a card page; card page 1 starts at 0."""
    start = (card_page_index - 1) * per_page
    return start, start + per_page
