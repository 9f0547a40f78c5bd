"""Pending duplicate ledger: transactions waiting for manual resolution.

Each record freezes both sides at detection time. The "new" side is a
full persisted transaction for scan detections, or candidate data that
was never saved for import-time detections.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from ledgerguard.database.models import (
    DetectionOrigin,
    PendingDuplicate,
    Transaction,
    TransactionSnapshot,
)
from ledgerguard.database.repository import Repository
from ledgerguard.duplicates.errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class BulkResult:
    """Per-id outcome of a bulk operation."""
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # id -> error message

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)


def run_bulk(ids: list[str], operation: Callable[[str], object], label: str) -> BulkResult:
    """Apply ``operation`` to each id; one failure does not stop the rest."""
    result = BulkResult()
    for pending_id in ids:
        try:
            operation(pending_id)
        except Exception as e:
            logger.warning("Bulk %s failed for pending duplicate %s: %s", label, pending_id, e)
            result.failed[pending_id] = str(e)
        else:
            result.succeeded.append(pending_id)
    return result


class PendingDuplicateLedger:
    def __init__(self, repo: Repository):
        self.repo = repo

    def create(
        self,
        existing: Transaction | None,
        candidate: Transaction | TransactionSnapshot,
        user_id: int,
        source: str = "manual",
        source_reference: str | None = None,
        origin: DetectionOrigin | None = None,
        reason: str | None = None,
    ) -> PendingDuplicate:
        """Persist a new unresolved record with frozen snapshots of both sides."""
        new_data = candidate if isinstance(candidate, TransactionSnapshot) else TransactionSnapshot.of(candidate)
        record = PendingDuplicate(
            user_id=user_id,
            new_data=new_data,
            origin=origin or DetectionOrigin.import_time(),
            existing_transaction_id=existing.id if existing else None,
            existing_data=TransactionSnapshot.of(existing) if existing else None,
            source=source,
            source_reference=source_reference,
            reason=reason,
        )
        return self.repo.insert_pending_duplicate(record)

    def list_pending(self, user_id: int) -> list[PendingDuplicate]:
        """Unresolved records, newest first, with display context attached."""
        return self.repo.list_pending_duplicates(user_id)

    def get(self, pending_id: str, user_id: int) -> PendingDuplicate:
        record = self.repo.get_pending_duplicate(pending_id, user_id)
        if record is None:
            raise NotFoundError("Pending duplicate", pending_id)
        return record

    def find_by_existing_transaction_id(self, txn_id: str) -> list[PendingDuplicate]:
        return self.repo.get_pending_by_existing_transaction(txn_id)

    def update(self, pending_id: str, fields: dict, user_id: int) -> PendingDuplicate:
        record = self.repo.get_pending_duplicate(
            pending_id, user_id, include_resolved=True
        )
        if record is None:
            raise NotFoundError("Pending duplicate", pending_id)
        self.repo.update_pending_duplicate(pending_id, **fields)
        return self.repo.get_pending_duplicate(
            pending_id, user_id, include_resolved=True
        )

    def delete(self, pending_id: str, user_id: int):
        """Remove a record without resolving it."""
        self.get(pending_id, user_id)
        self.repo.delete_pending_duplicate(pending_id)

    def mark_resolved(self, record: PendingDuplicate):
        self.repo.update_pending_duplicate(record.id, resolved=True)
        record.resolved = True

    def bulk_delete(self, ids: list[str], user_id: int) -> BulkResult:
        return run_bulk(ids, lambda pid: self.delete(pid, user_id), "delete")
