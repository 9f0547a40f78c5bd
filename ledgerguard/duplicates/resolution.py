"""Resolution workflow: apply a user's choice to a pending duplicate.

Scan detections (both sides persisted):
    every choice only dismisses the record; no transaction is deleted.

Import-time detections (the "new" side was never saved):
    maintain_both  save the candidate next to the existing transaction
    use_new        save the candidate; the existing one is left as-is
    keep_existing  discard the candidate

The transaction-side effect and the resolved flag commit together. If
the side effect fails, the record stays unresolved and the error
propagates to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from ledgerguard.database.models import (
    DetectionOrigin,
    PendingDuplicate,
    Transaction,
    TransactionSnapshot,
)
from ledgerguard.database.repository import Repository
from ledgerguard.duplicates.errors import InvalidChoiceError
from ledgerguard.duplicates.ledger import BulkResult, PendingDuplicateLedger, run_bulk

logger = logging.getLogger(__name__)


class DuplicateChoice(str, Enum):
    MAINTAIN_BOTH = "maintain_both"
    KEEP_EXISTING = "keep_existing"
    USE_NEW = "use_new"

    @classmethod
    def parse(cls, value: DuplicateChoice | str) -> DuplicateChoice:
        """Accept the enum, its value, or hyphen/space spellings of it."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_").replace(" ", "_")
            try:
                return cls(key)
            except ValueError:
                pass
        raise InvalidChoiceError(value)


@dataclass
class ResolutionResult:
    pending_id: str
    choice: DuplicateChoice
    origin: DetectionOrigin
    resolved: bool
    existing_transaction: Transaction | None
    new_transaction: Transaction | None
    message: str


def transaction_from_snapshot(
    snapshot: TransactionSnapshot, user_id: int, default_source: str
) -> Transaction:
    """Build a fresh Transaction from never-persisted candidate data."""
    return Transaction(
        user_id=user_id,
        description=snapshot.description,
        amount=snapshot.amount,
        direction=snapshot.direction,
        execution_date=snapshot.execution_date,
        source=snapshot.source or default_source,
        external_id=snapshot.external_id,
        account_id=snapshot.account_id,
        category_id=snapshot.category_id,
    )


class ResolutionWorkflow:
    def __init__(self, repo: Repository, ledger: PendingDuplicateLedger):
        self.repo = repo
        self.ledger = ledger

    def resolve(
        self, pending_id: str, user_id: int, choice: DuplicateChoice | str
    ) -> ResolutionResult:
        choice = DuplicateChoice.parse(choice)
        record = self.ledger.get(pending_id, user_id)

        with self.repo.atomic():
            if record.origin.is_post_scan:
                result = self._resolve_post_scan(record, choice)
            else:
                result = self._resolve_import_time(record, choice)
            self.ledger.mark_resolved(record)

        result.resolved = True
        logger.info(
            "Resolved pending duplicate %s (%s, %s) for user %s",
            record.id, record.origin.kind, choice.value, user_id,
        )
        return result

    def bulk_resolve(
        self, ids: list[str], user_id: int, choice: DuplicateChoice | str
    ) -> BulkResult:
        choice = DuplicateChoice.parse(choice)
        return run_bulk(ids, lambda pid: self.resolve(pid, user_id, choice), "resolve")

    def _existing(self, record: PendingDuplicate) -> Transaction | None:
        if record.existing_transaction_id is None:
            return None
        return self.repo.get_transaction(record.existing_transaction_id)

    def _resolve_post_scan(
        self, record: PendingDuplicate, choice: DuplicateChoice
    ) -> ResolutionResult:
        existing = self._existing(record)
        new = self.repo.get_transaction(record.new_data.id) if record.new_data.id else None
        if choice is DuplicateChoice.MAINTAIN_BOTH:
            message = "Both transactions kept"
        elif choice is DuplicateChoice.KEEP_EXISTING:
            message = "Detection dismissed; existing transaction kept, nothing deleted"
        else:
            message = "Preference for the newer transaction recorded; nothing deleted"
        return ResolutionResult(
            pending_id=record.id, choice=choice, origin=record.origin,
            resolved=False, existing_transaction=existing,
            new_transaction=new, message=message,
        )

    def _resolve_import_time(
        self, record: PendingDuplicate, choice: DuplicateChoice
    ) -> ResolutionResult:
        existing = self._existing(record)
        new: Transaction | None = None
        if choice is DuplicateChoice.KEEP_EXISTING:
            message = "Candidate discarded; existing transaction kept"
        else:
            new = transaction_from_snapshot(record.new_data, record.user_id, record.source)
            self.repo.save_transaction(new)
            if choice is DuplicateChoice.MAINTAIN_BOTH:
                message = "Candidate saved alongside the existing transaction"
            else:
                message = "Candidate saved as the current transaction"
        return ResolutionResult(
            pending_id=record.id, choice=choice, origin=record.origin,
            resolved=False, existing_transaction=existing,
            new_transaction=new, message=message,
        )
