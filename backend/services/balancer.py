"""Deterministic bin packing of highlights into calendar days.

Highlights are weighted by their visible character count and placed
heaviest-first onto the currently lightest day. A linear-congruential
generator seeded from the month drives both the pre-sort shuffle and the
tie-breaking between equally loaded days, so the layout varies month to
month but is reproducible within a month.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any, TypedDict, TypeVar

from backend.text_utils import strip_tags

T = TypeVar("T")

_LCG_MULTIPLIER = 9301
_LCG_INCREMENT = 49297
_LCG_MODULUS = 233280
_UINT32_MASK = 0xFFFFFFFF


class ScoredHighlight(TypedDict):
    """Highlight id with its bin-packing weight."""

    id: str
    score: int


class DayBin(TypedDict):
    """One calendar day and the highlights placed on it."""

    day: int
    highlights: list[ScoredHighlight]
    total_score: int


def score(highlight: Mapping[str, Any]) -> int:
    """Return the visible character count of a highlight.

    Rich HTML content wins over plain text when present.
    """
    content = highlight.get("html_content") or highlight.get("text") or ""
    return len(strip_tags(content))


def score_highlights(highlights: Iterable[Mapping[str, Any]]) -> list[ScoredHighlight]:
    """Attach a score to each highlight row."""
    return [ScoredHighlight(id=str(h["id"]), score=score(h)) for h in highlights]


def month_seed(year: int, month: int) -> int:
    """Seed for a month's shuffle; salted so consecutive months diverge."""
    return year * 373 + month * 31


def _lcg_next(state: int) -> int:
    return (state * _LCG_MULTIPLIER + _LCG_INCREMENT) % _LCG_MODULUS


def seeded_shuffle(items: Sequence[T], seed: int) -> list[T]:
    """Return a Fisher-Yates permutation of ``items`` driven by ``seed``.

    Not cryptographic. Same seed and same input order always give the same
    output order.
    """
    shuffled = list(items)
    state = seed
    for i in range(len(shuffled) - 1, 0, -1):
        state = _lcg_next(state)
        j = int(state / _LCG_MODULUS * (i + 1))
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def hash_str(value: str) -> int:
    """32-bit signed string hash over UTF-16 code units (``h * 31 + c``)."""
    h = 0
    data = value.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & _UINT32_MASK
    return h - 0x100000000 if h >= 0x80000000 else h


def tie_break_seed(seed: int, highlight_id: str) -> int:
    """Per-highlight seed so one highlight lands on different days each month."""
    return (seed + hash_str(highlight_id)) & _UINT32_MASK


def make_bins(
    days: Iterable[int],
    starting_scores: Mapping[int, int] | None = None,
) -> list[DayBin]:
    """Build one bin per day, optionally pre-loaded with existing weight."""
    starting_scores = starting_scores or {}
    return [
        DayBin(day=day, highlights=[], total_score=starting_scores.get(day, 0))
        for day in days
    ]


def balance(
    highlights: Sequence[ScoredHighlight],
    bins: list[DayBin],
    seed: int,
    *,
    tie_break: bool = True,
) -> list[DayBin]:
    """Place highlights onto the lightest bins, heaviest highlight first.

    Args:
        highlights: Items to place.
        bins: Target bins, possibly pre-loaded. Mutated in place.
        seed: Month seed for the shuffle and the tie-break draws.
        tie_break: Pick pseudo-randomly among equally light bins. When off,
            the lowest-indexed bin wins.

    Returns:
        The same bins list. With no bins nothing is placed.
    """
    if not bins:
        return bins

    ordered = sorted(
        seeded_shuffle(highlights, seed), key=lambda h: h["score"], reverse=True
    )

    for highlight in ordered:
        min_score = min(b["total_score"] for b in bins)
        tied = [i for i, b in enumerate(bins) if b["total_score"] == min_score]
        index = tied[0]
        if tie_break and len(tied) > 1:
            draw = _lcg_next(tie_break_seed(seed, highlight["id"])) / _LCG_MODULUS
            index = tied[int(draw * len(tied))]

        bins[index]["highlights"].append(highlight)
        bins[index]["total_score"] += highlight["score"]

    return bins


def shuffle_within_bins(bins: list[DayBin], seed: int) -> list[DayBin]:
    """Shuffle each day's reading order so it is not longest-first."""
    for day_bin in bins:
        day_bin["highlights"] = seeded_shuffle(
            day_bin["highlights"], (seed + day_bin["day"]) & _UINT32_MASK
        )
    return bins
