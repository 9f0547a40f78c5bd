"""Duplicate classifier: turns the best similarity score into a verdict.

Thresholds (from DedupPolicy, defaults shown):
    score >= 98      prevent  drop the incoming transaction, audit it
    70 <= score < 98 pending  hold it back for manual review
    60 <= score < 70 soft     reported as a duplicate, created normally
    score < 60       allow
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ledgerguard.config import DedupPolicy
from ledgerguard.database.models import Transaction, TransactionSnapshot
from ledgerguard.database.repository import Repository
from ledgerguard.duplicates.scoring import ScoreBreakdown, score_pair

logger = logging.getLogger(__name__)


@dataclass
class ClassificationResult:
    is_duplicate: bool
    best_match: Transaction | None
    score: int
    reason: str
    confidence_band: str
    should_prevent: bool
    should_create_pending: bool
    breakdown: ScoreBreakdown | None = None


def confidence_band(score: int) -> str:
    if score == 100:
        return "exact match"
    if score >= 90:
        return "very high"
    if score >= 80:
        return "high"
    if score >= 70:
        return "medium-high"
    if score >= 60:
        return "medium"
    return "low"


def describe_match(breakdown: ScoreBreakdown | None) -> str:
    """Human-readable reason naming the dimensions that matched."""
    if breakdown is None or breakdown.total == 0:
        return "No similar transaction found"
    if breakdown.total == 100:
        return "Exact match (amount, type, description, same date)"

    parts = []
    parts.append("same amount" if breakdown.amount_points else "different amount")
    parts.append("same type" if breakdown.direction_points else "different type")
    if breakdown.description_similarity >= 1.0:
        parts.append("same description")
    else:
        parts.append(f"description {breakdown.description_similarity:.0%} similar")
    if breakdown.day_gap is None:
        parts.append("date unknown")
    elif breakdown.day_gap == 0:
        parts.append("same date")
    else:
        plural = "s" if breakdown.day_gap != 1 else ""
        parts.append(f"{breakdown.day_gap} day{plural} apart")
    return f"Partial match ({', '.join(parts)})"


def classify_against(
    candidate: TransactionSnapshot,
    stored: list[Transaction],
    policy: DedupPolicy,
) -> ClassificationResult:
    """Score every stored transaction and classify the best match.

    Ties keep the first transaction seen, so the result follows the
    order of ``stored``.
    """
    best_match: Transaction | None = None
    best: ScoreBreakdown | None = None
    highest = 0

    for txn in stored:
        breakdown = score_pair(candidate, txn, policy.amount_tolerance)
        score = breakdown.total
        if score >= policy.duplicate_threshold:
            logger.debug(
                "Similarity %d%%: new=(%s | %s | %s | %s) existing=(%s | %s | %s | %s)"
                " amount=%d direction=%d desc=%d (%.3f) date=%d (%sd)",
                score, candidate.description, candidate.amount,
                candidate.direction, candidate.execution_date,
                txn.description, txn.amount, txn.direction, txn.execution_date,
                breakdown.amount_points, breakdown.direction_points,
                breakdown.description_points, breakdown.description_similarity,
                breakdown.date_points, breakdown.day_gap,
            )
        if score > highest:
            highest = score
            best_match = txn
            best = breakdown

    return ClassificationResult(
        is_duplicate=highest >= policy.duplicate_threshold,
        best_match=best_match,
        score=highest,
        reason=describe_match(best),
        confidence_band=confidence_band(highest),
        should_prevent=highest >= policy.prevent_threshold,
        should_create_pending=policy.pending_threshold <= highest < policy.prevent_threshold,
        breakdown=best,
    )


class DuplicateClassifier:
    """Finds the best stored match for a candidate within the recent window."""

    def __init__(self, repo: Repository, policy: DedupPolicy | None = None):
        self.repo = repo
        self.policy = policy or DedupPolicy()

    def classify(
        self, candidate: TransactionSnapshot, user_id: int
    ) -> ClassificationResult:
        # Load once, then score without touching the store again
        stored = self.repo.find_recent_transactions(
            user_id, around=candidate.execution_date,
            days=self.policy.recent_window_days,
        )
        return classify_against(candidate, stored, self.policy)
