"""Import gate: duplicate-checked creation for imports and manual entry.

Runs the classifier before anything is persisted and obeys its verdict:
    prevent  write a prevented-duplicate audit row, persist nothing
    pending  hold the candidate in the pending ledger; the existing
             transaction is returned as the tentative result
    else     save the candidate

Check-and-create is serialized per user, so two concurrent imports of
the same transaction for one user cannot both pass the check. This only
holds within one process.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field

from ledgerguard.database.models import (
    DetectionOrigin,
    PendingDuplicate,
    PreventedDuplicate,
    Transaction,
    TransactionSnapshot,
)
from ledgerguard.database.repository import Repository
from ledgerguard.duplicates.classifier import ClassificationResult, DuplicateClassifier
from ledgerguard.duplicates.ledger import PendingDuplicateLedger
from ledgerguard.duplicates.resolution import transaction_from_snapshot

logger = logging.getLogger(__name__)

CREATED = "created"
PREVENTED = "prevented"
PENDING = "pending"


class UserLocks:
    """One lock per user id, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = defaultdict(threading.Lock)

    def for_user(self, user_id: int) -> threading.Lock:
        with self._guard:
            return self._locks[user_id]


@dataclass
class GateOutcome:
    status: str  # "created", "prevented", "pending"
    transaction: Transaction | None
    classification: ClassificationResult
    pending: PendingDuplicate | None = None
    prevented: PreventedDuplicate | None = None


@dataclass
class ImportSummary:
    created: int = 0
    prevented: int = 0
    pending: int = 0
    outcomes: list[GateOutcome] = field(default_factory=list)


class ImportGate:
    def __init__(
        self,
        repo: Repository,
        classifier: DuplicateClassifier,
        ledger: PendingDuplicateLedger,
        locks: UserLocks | None = None,
    ):
        self.repo = repo
        self.classifier = classifier
        self.ledger = ledger
        self.locks = locks or UserLocks()

    def submit(
        self,
        candidate: TransactionSnapshot,
        user_id: int,
        source: str = "manual",
        source_reference: str | None = None,
    ) -> GateOutcome:
        with self.locks.for_user(user_id):
            result = self.classifier.classify(candidate, user_id)

            if result.should_prevent and result.best_match is not None:
                prevented = self.repo.insert_prevented_duplicate(PreventedDuplicate(
                    user_id=user_id,
                    blocked_data=candidate,
                    source=source,
                    similarity_score=result.score,
                    reason=result.reason,
                    existing_transaction_id=result.best_match.id,
                    source_reference=source_reference,
                ))
                logger.info(
                    "Prevented duplicate for user %s: '%s' %.2f %s matches %s (%d%%)",
                    user_id, candidate.description, candidate.amount,
                    candidate.direction, result.best_match.id, result.score,
                )
                return GateOutcome(PREVENTED, result.best_match, result, prevented=prevented)

            if result.should_create_pending and result.best_match is not None:
                pending = self.ledger.create(
                    result.best_match, candidate, user_id,
                    source=source, source_reference=source_reference,
                    origin=DetectionOrigin.import_time(),
                    reason=result.reason,
                )
                logger.info(
                    "Held '%s' for review as possible duplicate of %s (%d%%, %s)",
                    candidate.description, result.best_match.id,
                    result.score, result.confidence_band,
                )
                return GateOutcome(PENDING, result.best_match, result, pending=pending)

            txn = transaction_from_snapshot(candidate, user_id, source)
            self.repo.save_transaction(txn)
            return GateOutcome(CREATED, txn, result)

    def submit_many(
        self,
        candidates: list[TransactionSnapshot],
        user_id: int,
        source: str = "csv_import",
        source_reference: str | None = None,
    ) -> ImportSummary:
        summary = ImportSummary()
        for candidate in candidates:
            outcome = self.submit(candidate, user_id, source, source_reference)
            summary.outcomes.append(outcome)
            if outcome.status == CREATED:
                summary.created += 1
            elif outcome.status == PREVENTED:
                summary.prevented += 1
            else:
                summary.pending += 1
        return summary
