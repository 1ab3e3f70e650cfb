"""Deterministic display helpers for the shelf view.

Spine text, height and rating labels are pure functions of their inputs.
Spine color and texture are drawn once when a book is created and stored on
the book afterwards; nothing here recomputes them from the id.
"""

import random
from typing import Optional

SPINE_COLORS = (
    "#8B4513", "#A0522D", "#CD853F", "#D2691E",
    "#556B2F", "#6B8E23", "#2F4F4F", "#8B7355",
)
SPINE_TEXTURES = ("cloth", "leather", "paper")

BASE_SPINE_HEIGHT = 320
SPINE_HEIGHT_JITTER = 16

RATING_LABELS = (
    (80, "Loved"),
    (60, "Great"),
    (40, "Good"),
    (20, "Meh"),
    (0, "Trash"),
)


def spine_text(title: str) -> str:
    words = title.split(" ")
    if len(words) == 1:
        return words[0][:12].upper()
    if len(words) == 2:
        return " ".join(w[:6] for w in words).upper()
    return "".join(w[:1] for w in words)[:8].upper()


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def spine_height(book_id: str) -> int:
    """Stable pixel height for a book's spine, within 320 +/- 16."""
    h = 0
    for ch in book_id:
        h = _int32((h << 5) - h + ord(ch))
    return BASE_SPINE_HEIGHT + (abs(h) % (2 * SPINE_HEIGHT_JITTER)) - SPINE_HEIGHT_JITTER


def rating_label(rating: int) -> str:
    for lower_bound, label in RATING_LABELS:
        if rating >= lower_bound:
            return label
    return RATING_LABELS[-1][1]


def generate_spine_color(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(SPINE_COLORS)


def generate_spine_texture(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(SPINE_TEXTURES)
