"""Batch duplicate scanner: full-ledger sweep per user.

Passes run in a fixed order; a transaction claimed by an earlier pass
is excluded from every later one:
1. Exact match: same amount, description, direction, day and source
2. Amount+date: same signed amount and day, different descriptions
3. Same-source: integration-source rows only, same amount and day
4. Fuzzy: same amount and day, similar descriptions

Within each group the earliest-created transaction is the original and
the rest become pending duplicates, unless that pair is already pending
or was resolved before. Re-running a scan on unchanged data creates
nothing new.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable

from ledgerguard.config import DedupPolicy
from ledgerguard.database.models import DetectionOrigin, Transaction
from ledgerguard.database.repository import Repository
from ledgerguard.duplicates.errors import ConcurrentScanError
from ledgerguard.duplicates.ledger import PendingDuplicateLedger
from ledgerguard.duplicates.scoring import amounts_match, descriptions_similar, same_day

logger = logging.getLogger(__name__)

HIGH = "high"
MEDIUM = "medium"


class ScanGuard:
    """Running/not-running flag shared by every scanner in this process.

    Single-process scope only. Several processes pointed at the same
    store need an external lease instead.
    """

    def __init__(self):
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self):
        if not self._lock.acquire(blocking=False):
            raise ConcurrentScanError()
        try:
            yield
        finally:
            self._lock.release()


@dataclass
class DuplicateGroup:
    transactions: list[Transaction]
    reason: str
    confidence: str
    strategy: str


@dataclass
class ScanResult:
    potential_duplicates_found: int = 0
    pending_duplicates_created: int = 0
    users_processed: int = 0
    execution_time: float = 0.0  # seconds
    errors: int = 0
    groups: list[DuplicateGroup] = field(default_factory=list)


Matcher = Callable[[Transaction, Transaction], bool]


def _group_by(
    transactions: list[Transaction],
    claimed: set[str],
    matcher: Matcher,
    reason: str,
    confidence: str,
    strategy: str,
) -> list[DuplicateGroup]:
    groups: list[DuplicateGroup] = []
    pool = [t for t in transactions if t.execution_date]
    for txn in pool:
        if txn.id in claimed:
            continue
        matches = [
            t for t in pool
            if t.id != txn.id and t.id not in claimed and matcher(txn, t)
        ]
        if matches:
            group = [txn, *matches]
            claimed.update(t.id for t in group)
            groups.append(DuplicateGroup(group, reason, confidence, strategy))
    return groups


def find_duplicate_groups(
    transactions: list[Transaction], policy: DedupPolicy | None = None
) -> list[DuplicateGroup]:
    """Run the four grouping passes over one user's transactions."""
    policy = policy or DedupPolicy()
    tolerance = policy.amount_tolerance
    claimed: set[str] = set()

    def same_amount(a: Transaction, b: Transaction) -> bool:
        return amounts_match(a.amount, a.direction, b.amount, b.direction, tolerance)

    def exact(a: Transaction, b: Transaction) -> bool:
        return (
            a.amount == b.amount
            and a.description == b.description
            and a.direction == b.direction
            and same_day(a.execution_date, b.execution_date)
            and a.source == b.source
        )

    def amount_date(a: Transaction, b: Transaction) -> bool:
        return (
            same_amount(a, b)
            and same_day(a.execution_date, b.execution_date)
            and a.description != b.description
        )

    def same_day_amount(a: Transaction, b: Transaction) -> bool:
        return same_amount(a, b) and same_day(a.execution_date, b.execution_date)

    def fuzzy(a: Transaction, b: Transaction) -> bool:
        return same_day_amount(a, b) and descriptions_similar(a.description, b.description)

    groups = _group_by(
        transactions, claimed, exact,
        "Exact match (amount, description, date, source)", HIGH, "exact",
    )
    groups += _group_by(
        transactions, claimed, amount_date,
        "Same amount and date, different descriptions", HIGH, "amount_date",
    )
    source = policy.integration_source
    groups += _group_by(
        [t for t in transactions if t.source == source], claimed, same_day_amount,
        f"Same-source duplicates ({source}, same amount and date)", HIGH, "same_source",
    )
    groups += _group_by(
        transactions, claimed, fuzzy,
        "Similar descriptions, same amount and date", MEDIUM, "fuzzy",
    )
    return groups


class BatchScanner:
    def __init__(
        self,
        repo: Repository,
        ledger: PendingDuplicateLedger,
        guard: ScanGuard,
        policy: DedupPolicy | None = None,
    ):
        self.repo = repo
        self.ledger = ledger
        self.guard = guard
        self.policy = policy or DedupPolicy()

    def detect_duplicates(self, user_id: int | None = None) -> ScanResult:
        """Scan one user, or every user in the store when user_id is None.

        Raises:
            ConcurrentScanError: another scan is already in flight.
        """
        with self.guard.hold():
            logger.info(
                "Starting duplicate detection %s",
                f"for user {user_id}" if user_id is not None else "for all users",
            )
            start = time.monotonic()
            if user_id is not None:
                result = self.scan_user(user_id)
            else:
                result = self._scan_all_users()
            result.execution_time = time.monotonic() - start
            logger.info(
                "Duplicate detection finished in %.2fs: %d potential, %d pending created,"
                " %d users, %d errors",
                result.execution_time, result.potential_duplicates_found,
                result.pending_duplicates_created, result.users_processed, result.errors,
            )
            return result

    def _scan_all_users(self) -> ScanResult:
        total = ScanResult()
        user_ids = self.repo.list_user_ids()
        for uid in user_ids:
            try:
                user_result = self.scan_user(uid)
            except Exception:
                logger.exception("Duplicate detection failed for user %s", uid)
                total.errors += 1
                continue
            total.potential_duplicates_found += user_result.potential_duplicates_found
            total.pending_duplicates_created += user_result.pending_duplicates_created
            total.errors += user_result.errors
            total.groups.extend(user_result.groups)
        total.users_processed = len(user_ids)
        return total

    def scan_user(self, user_id: int) -> ScanResult:
        """Group one user's transactions and record new pending pairs."""
        transactions = self.repo.get_transactions_for_user(user_id)
        logger.debug("Processing %d transactions for user %s", len(transactions), user_id)

        groups = find_duplicate_groups(transactions, self.policy)
        result = ScanResult(users_processed=1, groups=groups)

        for group in groups:
            ordered = sorted(group.transactions, key=lambda t: (t.created_at, t.id))
            original, duplicates = ordered[0], ordered[1:]
            result.potential_duplicates_found += len(duplicates)
            for duplicate in duplicates:
                try:
                    if self._record_pair(user_id, original, duplicate, group):
                        result.pending_duplicates_created += 1
                except Exception as e:
                    logger.warning(
                        "Failed to record duplicate pair %s/%s for user %s: %s",
                        original.id, duplicate.id, user_id, e,
                    )
                    result.errors += 1

        if result.potential_duplicates_found:
            logger.info(
                "User %s: %d potential duplicates, %d pending duplicates created",
                user_id, result.potential_duplicates_found, result.pending_duplicates_created,
            )
        return result

    def _record_pair(
        self,
        user_id: int,
        original: Transaction,
        duplicate: Transaction,
        group: DuplicateGroup,
    ) -> bool:
        if self.repo.has_unresolved_pair(user_id, original.id, duplicate.id):
            return False
        if self.repo.has_resolved_pair(user_id, original.id, duplicate.id):
            return False
        self.ledger.create(
            original, duplicate, user_id,
            source=duplicate.source,
            source_reference=f"duplicate_detection_{group.confidence}_{int(time.time() * 1000)}",
            origin=DetectionOrigin.post_scan(group.confidence),
            reason=group.reason,
        )
        return True
