"""
Level-of-detail bands and deck sizing helpers.
"""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class LodLevel:
    name: str
    label: str
    word_count_min: int
    word_count_max: int
    midpoint: int
    detail_level: str


LOD_LEVELS: dict[str, LodLevel] = {
    "executive": LodLevel("executive", "Executive", 70, 100, 85, "Executive"),
    "standard": LodLevel("standard", "Standard", 200, 250, 225, "Standard"),
    "detailed": LodLevel("detailed", "Detailed", 450, 500, 475, "Detailed"),
}

MAX_REVISIONS = 5
MAX_CARDS_WARNING = 40
MIN_CARDS = 3


@dataclass(frozen=True)
class CardCountEstimate:
    estimate: int
    min: int
    max: int


def get_lod(name: str) -> LodLevel:
    try:
        return LOD_LEVELS[name]
    except KeyError:
        raise ValueError(
            f"Unknown level of detail: {name!r} (expected one of {', '.join(LOD_LEVELS)})"
        ) from None


def estimate_card_count(total_word_count: int, lod: str) -> CardCountEstimate:
    """Rough card count from total source words and the LOD midpoint."""
    level = get_lod(lod)
    # round half up, not banker's rounding
    raw = int(math.floor(total_word_count / level.midpoint + 0.5))
    clamped = max(MIN_CARDS, raw)
    return CardCountEstimate(
        estimate=clamped,
        min=max(MIN_CARDS, math.floor(clamped * 0.7)),
        max=math.ceil(clamped * 1.3),
    )


def count_words(text: str) -> int:
    return len(text.split())
