"""Exact-duplicate cleanup: merge 100%-identical transaction rows.

Destructive and one-shot. Nothing schedules it; callers invoke it
explicitly. Rows are exact duplicates when signed amount, direction,
description (byte-identical) and execution day all agree. The
earliest-created row of each cluster survives; ledger records that
point at a removed row are re-pointed to the survivor first.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass

from ledgerguard.database.models import Transaction
from ledgerguard.database.repository import Repository
from ledgerguard.duplicates.ledger import PendingDuplicateLedger
from ledgerguard.duplicates.scoring import parse_day, signed_amount

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    transactions_scanned: int = 0
    duplicate_groups: int = 0
    removed: int = 0
    preserved: int = 0
    repointed: int = 0
    errors: int = 0
    execution_time: float = 0.0  # seconds


def exact_duplicate_key(txn: Transaction) -> tuple | None:
    day = parse_day(txn.execution_date)
    if day is None:
        return None
    cents = int(round(signed_amount(txn.amount, txn.direction) * 100))
    return (cents, txn.direction, txn.description, day)


def find_exact_clusters(transactions: list[Transaction]) -> list[list[Transaction]]:
    """Clusters of 2+ exact duplicates, each ordered oldest first."""
    buckets: dict[tuple, list[Transaction]] = defaultdict(list)
    for txn in transactions:
        key = exact_duplicate_key(txn)
        if key is not None:
            buckets[key].append(txn)
    return [
        sorted(bucket, key=lambda t: (t.created_at, t.id))
        for bucket in buckets.values()
        if len(bucket) > 1
    ]


class ExactDuplicateCleanup:
    def __init__(self, repo: Repository, ledger: PendingDuplicateLedger):
        self.repo = repo
        self.ledger = ledger

    def run(self, user_id: int) -> CleanupReport:
        start = time.monotonic()
        transactions = self.repo.get_transactions_for_user(user_id)
        clusters = find_exact_clusters(transactions)
        report = CleanupReport(
            transactions_scanned=len(transactions),
            duplicate_groups=len(clusters),
        )

        for cluster in clusters:
            keep, extras = cluster[0], cluster[1:]
            report.preserved += 1
            for txn in extras:
                self._repoint_references(txn, keep, report)
                self._dismiss_stale_detections(txn, report)
                try:
                    self.repo.delete_transaction(txn.id)
                except Exception as e:
                    logger.warning("Failed to delete duplicate transaction %s: %s", txn.id, e)
                    report.errors += 1
                    continue
                report.removed += 1

        report.execution_time = time.monotonic() - start
        logger.info(
            "Exact-duplicate cleanup for user %s: scanned=%d groups=%d removed=%d"
            " repointed=%d errors=%d (%.2fs)",
            user_id, report.transactions_scanned, report.duplicate_groups,
            report.removed, report.repointed, report.errors, report.execution_time,
        )
        return report

    def _repoint_references(
        self, removed: Transaction, keep: Transaction, report: CleanupReport
    ):
        """Point ledger records at ``keep`` instead of ``removed``.

        Failures are logged and counted; the rest still move.
        """
        for record in self.ledger.find_by_existing_transaction_id(removed.id):
            try:
                self.ledger.update(
                    record.id, {"existing_transaction_id": keep.id}, record.user_id
                )
            except Exception as e:
                logger.warning(
                    "Failed to re-point pending duplicate %s to %s: %s",
                    record.id, keep.id, e,
                )
                report.errors += 1
                continue
            report.repointed += 1

    def _dismiss_stale_detections(self, removed: Transaction, report: CleanupReport):
        """Resolve unresolved records whose "new" side is being removed.

        Failures are logged and counted like re-point failures.
        """
        for record in self.repo.get_pending_by_new_transaction(removed.id):
            if record.resolved:
                continue
            try:
                self.ledger.mark_resolved(record)
            except Exception as e:
                logger.warning("Failed to resolve stale pending duplicate %s: %s", record.id, e)
                report.errors += 1
