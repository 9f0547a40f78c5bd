"""DuplicateService: the entry point collaborators call.

Wires the classifier, ledger, resolution workflow, batch scanner,
cleanup routine and import gate over one Repository. The scan guard is
passed in so several services in one process can share it.
"""

from __future__ import annotations

from ledgerguard.config import DedupPolicy
from ledgerguard.database.models import (
    PendingDuplicate,
    PreventedDuplicate,
    TransactionSnapshot,
)
from ledgerguard.database.repository import Repository
from ledgerguard.duplicates.classifier import ClassificationResult, DuplicateClassifier
from ledgerguard.duplicates.cleanup import CleanupReport, ExactDuplicateCleanup
from ledgerguard.duplicates.gate import GateOutcome, ImportGate, ImportSummary
from ledgerguard.duplicates.ledger import BulkResult, PendingDuplicateLedger
from ledgerguard.duplicates.resolution import (
    DuplicateChoice,
    ResolutionResult,
    ResolutionWorkflow,
)
from ledgerguard.duplicates.scanner import BatchScanner, ScanGuard, ScanResult


class DuplicateService:
    def __init__(
        self,
        repo: Repository,
        policy: DedupPolicy | None = None,
        guard: ScanGuard | None = None,
    ):
        self.repo = repo
        self.policy = policy or DedupPolicy()
        self.guard = guard or ScanGuard()
        self.ledger = PendingDuplicateLedger(repo)
        self.classifier = DuplicateClassifier(repo, self.policy)
        self.workflow = ResolutionWorkflow(repo, self.ledger)
        self.scanner = BatchScanner(repo, self.ledger, self.guard, self.policy)
        self.cleanup = ExactDuplicateCleanup(repo, self.ledger)
        self.gate = ImportGate(repo, self.classifier, self.ledger)

    # ── Detection ───────────────────────────────────────────

    def check_for_duplicate_before_creation(
        self, candidate: TransactionSnapshot, user_id: int
    ) -> ClassificationResult:
        """Classify a candidate without persisting anything."""
        return self.classifier.classify(candidate, user_id)

    def detect_duplicates(self, user_id: int | None = None) -> ScanResult:
        return self.scanner.detect_duplicates(user_id)

    def get_scan_status(self) -> dict:
        return {"is_running": self.guard.is_running}

    # ── Import ──────────────────────────────────────────────

    def import_transaction(
        self,
        candidate: TransactionSnapshot,
        user_id: int,
        source: str = "manual",
        source_reference: str | None = None,
    ) -> GateOutcome:
        return self.gate.submit(candidate, user_id, source, source_reference)

    def import_transactions(
        self,
        candidates: list[TransactionSnapshot],
        user_id: int,
        source: str = "csv_import",
        source_reference: str | None = None,
    ) -> ImportSummary:
        return self.gate.submit_many(candidates, user_id, source, source_reference)

    # ── Pending ledger ──────────────────────────────────────

    def list_pending_duplicates(self, user_id: int) -> list[PendingDuplicate]:
        return self.ledger.list_pending(user_id)

    def get_pending_duplicate(self, pending_id: str, user_id: int) -> PendingDuplicate:
        return self.ledger.get(pending_id, user_id)

    def update_pending_duplicate(
        self, pending_id: str, fields: dict, user_id: int
    ) -> PendingDuplicate:
        return self.ledger.update(pending_id, fields, user_id)

    def delete_pending_duplicate(self, pending_id: str, user_id: int):
        self.ledger.delete(pending_id, user_id)

    def resolve_pending_duplicate(
        self, pending_id: str, user_id: int, choice: DuplicateChoice | str
    ) -> ResolutionResult:
        return self.workflow.resolve(pending_id, user_id, choice)

    def bulk_resolve_pending_duplicates(
        self, ids: list[str], user_id: int, choice: DuplicateChoice | str
    ) -> BulkResult:
        return self.workflow.bulk_resolve(ids, user_id, choice)

    def bulk_delete_pending_duplicates(self, ids: list[str], user_id: int) -> BulkResult:
        return self.ledger.bulk_delete(ids, user_id)

    # ── Maintenance ─────────────────────────────────────────

    def cleanup_exact_duplicates(self, user_id: int) -> CleanupReport:
        return self.cleanup.run(user_id)

    def list_prevented_duplicates(self, user_id: int) -> list[PreventedDuplicate]:
        return self.repo.list_prevented_duplicates(user_id)
