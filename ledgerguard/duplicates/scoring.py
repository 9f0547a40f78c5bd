"""Similarity scoring between an incoming transaction and a stored one.

Four weighted dimensions, summing to 100 points:
    amount       30  signed amounts equal within tolerance
    direction    10  income/expense tags identical
    description  40  scaled by description similarity in [0, 1]
    date         20  graduated by day gap (0d=20, 1d=16, 2d=12, 3-7d=8)

Pairs are disqualified (score 0) when either amount magnitude is
negative, or when both sides carry execution dates more than 14 days
apart. The second rule keeps monthly recurring charges from matching
each other.

Everything here is pure and synchronous.
"""

from __future__ import annotations

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass
from datetime import date

from rapidfuzz.distance import Levenshtein

from ledgerguard.database.models import EXPENSE

logger = logging.getLogger(__name__)

AMOUNT_POINTS = 30
DIRECTION_POINTS = 10
DESCRIPTION_POINTS = 40
DATE_POINTS = 20
MAX_POINTS = AMOUNT_POINTS + DIRECTION_POINTS + DESCRIPTION_POINTS + DATE_POINTS

MAX_DAY_GAP = 14
AMOUNT_TOLERANCE = 0.01

# (max day gap, points), checked in order
DATE_STEPS = ((0, 20), (1, 16), (2, 12), (7, 8))

_NON_ALNUM_KEEP_SPACE = re.compile(r"[^a-z0-9\s]")
_NON_ALNUM = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class ScoreBreakdown:
    """Points earned per dimension for one pair."""
    amount_points: int = 0
    direction_points: int = 0
    description_points: int = 0
    date_points: int = 0
    description_similarity: float = 0.0
    day_gap: int | None = None
    disqualified: str | None = None  # "negative_amount", "date_gap"

    @property
    def total(self) -> int:
        if self.disqualified:
            return 0
        earned = (
            self.amount_points + self.direction_points
            + self.description_points + self.date_points
        )
        return _round_half_up(100 * earned / MAX_POINTS)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def parse_day(value: str | None) -> date | None:
    """Calendar day of a YYYY-MM-DD (or ISO datetime) string."""
    if not value:
        return None
    return date.fromisoformat(value[:10])


def day_gap(a: str | None, b: str | None) -> int | None:
    """Absolute day difference, or None when either side has no date."""
    day_a, day_b = parse_day(a), parse_day(b)
    if day_a is None or day_b is None:
        return None
    return abs((day_a - day_b).days)


def same_day(a: str | None, b: str | None) -> bool:
    return day_gap(a, b) == 0


def signed_amount(amount: float, direction: str) -> float:
    """Expenses are negative, income positive."""
    return -abs(amount) if direction == EXPENSE else abs(amount)


def amounts_match(
    amount_a: float, direction_a: str,
    amount_b: float, direction_b: str,
    tolerance: float = AMOUNT_TOLERANCE,
) -> bool:
    """Signed amounts equal within tolerance. Mismatched directions never match."""
    if direction_a != direction_b:
        return False
    a = signed_amount(amount_a, direction_a)
    b = signed_amount(amount_b, direction_b)
    # Small epsilon so a one-cent gap is not lost to float representation
    return a == b or abs(a - b) <= tolerance + 1e-9


def normalize_text(desc: str | None) -> str:
    """Lowercase, drop non-alphanumerics (keeping whitespace), collapse spaces."""
    return " ".join(_NON_ALNUM_KEEP_SPACE.sub("", (desc or "").lower()).split())


def token_overlap(a: str, b: str) -> float:
    """Dice coefficient over whitespace tokens of two normalized strings."""
    tokens_a = a.split()
    tokens_b = b.split()
    if not tokens_a or not tokens_b:
        return 0.0
    common = sum((Counter(tokens_a) & Counter(tokens_b)).values())
    return 2 * common / (len(tokens_a) + len(tokens_b))


def edit_similarity(a: str, b: str) -> float:
    """1 - Levenshtein distance / longer length."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1 - Levenshtein.distance(a, b) / longest


def description_similarity(desc_a: str | None, desc_b: str | None) -> float:
    """Greater of token overlap and edit similarity, in [0, 1]."""
    if desc_a == desc_b:
        return 1.0
    a = normalize_text(desc_a)
    b = normalize_text(desc_b)
    if a == b:
        return 1.0
    return max(token_overlap(a, b), edit_similarity(a, b))


def descriptions_similar(desc_a: str | None, desc_b: str | None) -> bool:
    """Loose similarity used by the fuzzy scan pass.

    True when one description contains the other once everything but
    letters and digits is stripped, or when at least 60% of the
    significant words (3+ chars) are shared.
    """
    if not desc_a or not desc_b:
        return False
    compact_a = _NON_ALNUM.sub("", desc_a.lower())
    compact_b = _NON_ALNUM.sub("", desc_b.lower())
    if compact_a and compact_b and (compact_a in compact_b or compact_b in compact_a):
        return True

    words_a = [w for w in desc_a.lower().split() if len(w) > 2]
    words_b = [w for w in desc_b.lower().split() if len(w) > 2]
    if not words_a or not words_b:
        return False
    common = [w for w in words_a if w in words_b]
    return len(common) / max(len(words_a), len(words_b)) >= 0.6


def _date_points(gap: int) -> int:
    for max_gap, points in DATE_STEPS:
        if gap <= max_gap:
            return points
    return 0


def score_pair(candidate, stored, tolerance: float = AMOUNT_TOLERANCE) -> ScoreBreakdown:
    """Score a candidate against a stored transaction.

    Both arguments need ``description``, ``amount``, ``direction`` and
    ``execution_date`` attributes (Transaction or TransactionSnapshot).
    """
    if candidate.amount < 0 or stored.amount < 0:
        logger.warning(
            "Skipping duplicate comparison, negative amount:"
            " new=(%s | %s | %s) existing=(%s | %s | %s)",
            candidate.description, candidate.amount, candidate.direction,
            stored.description, stored.amount, stored.direction,
        )
        return ScoreBreakdown(disqualified="negative_amount")

    gap = day_gap(candidate.execution_date, stored.execution_date)
    if gap is not None and gap > MAX_DAY_GAP:
        return ScoreBreakdown(day_gap=gap, disqualified="date_gap")

    amount_ok = amounts_match(
        candidate.amount, candidate.direction,
        stored.amount, stored.direction, tolerance,
    )
    similarity = description_similarity(candidate.description, stored.description)
    return ScoreBreakdown(
        amount_points=AMOUNT_POINTS if amount_ok else 0,
        direction_points=DIRECTION_POINTS if candidate.direction == stored.direction else 0,
        description_points=_round_half_up(similarity * DESCRIPTION_POINTS),
        date_points=_date_points(gap) if gap is not None else 0,
        description_similarity=similarity,
        day_gap=gap,
    )


def similarity_score(candidate, stored, tolerance: float = AMOUNT_TOLERANCE) -> int:
    """0-100 match score for a pair; 0 for disqualified pairs."""
    return score_pair(candidate, stored, tolerance).total
