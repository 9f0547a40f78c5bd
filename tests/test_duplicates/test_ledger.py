"""Tests for the pending duplicate ledger."""

import pytest

from ledgerguard.database.models import DetectionOrigin, Transaction, TransactionSnapshot
from ledgerguard.duplicates.errors import NotFoundError
from ledgerguard.duplicates.ledger import BulkResult, PendingDuplicateLedger, run_bulk


def _txn(**kw) -> Transaction:
    defaults = dict(
        user_id=1, description="Netflix Subscription", amount=15.99,
        direction="expense", execution_date="2025-01-15",
    )
    defaults.update(kw)
    return Transaction(**defaults)


@pytest.fixture
def ledger(repo):
    return PendingDuplicateLedger(repo)


@pytest.fixture
def pair(repo):
    existing = repo.save_transaction(_txn())
    new = repo.save_transaction(_txn(execution_date="2025-01-16"))
    return existing, new


class TestCreate:
    def test_freezes_both_sides(self, repo, ledger, pair):
        existing, new = pair
        record = ledger.create(existing, new, user_id=1, origin=DetectionOrigin.post_scan("high"))
        existing.description = "changed later"
        repo.save_transaction(existing)
        stored = ledger.get(record.id, 1)
        assert stored.existing_data.description == "Netflix Subscription"
        assert stored.new_data.id == new.id
        assert stored.origin.confidence_tier == "high"

    def test_accepts_unsaved_candidate(self, ledger, pair):
        existing, _ = pair
        candidate = TransactionSnapshot("Netflix Subscription", 15.99, "expense", "2025-01-16")
        record = ledger.create(existing, candidate, user_id=1, source="csv_import")
        assert record.new_data is candidate
        assert record.origin == DetectionOrigin.import_time()
        assert record.source == "csv_import"

    def test_without_existing(self, ledger):
        candidate = TransactionSnapshot("Rent", 1200.0, "expense", "2025-01-01")
        record = ledger.create(None, candidate, user_id=1)
        assert record.existing_transaction_id is None
        assert record.existing_data is None


class TestReadUpdateDelete:
    def test_list_pending_returns_unresolved(self, ledger, pair):
        existing, new = pair
        a = ledger.create(existing, new, user_id=1)
        b = ledger.create(existing, new, user_id=1)
        records = ledger.list_pending(1)
        assert {r.id for r in records} == {a.id, b.id}

    def test_get_missing_raises(self, ledger):
        with pytest.raises(NotFoundError, match="Pending duplicate 'nope' not found"):
            ledger.get("nope", 1)

    def test_get_other_user_raises(self, ledger, pair):
        record = ledger.create(*pair, user_id=1)
        with pytest.raises(NotFoundError):
            ledger.get(record.id, 2)

    def test_find_by_existing_transaction_id(self, ledger, pair):
        existing, new = pair
        record = ledger.create(existing, new, user_id=1)
        assert [r.id for r in ledger.find_by_existing_transaction_id(existing.id)] == [record.id]

    def test_update_returns_fresh_record(self, ledger, pair):
        record = ledger.create(*pair, user_id=1)
        updated = ledger.update(record.id, {"reason": "checked by hand"}, user_id=1)
        assert updated.reason == "checked by hand"

    def test_update_resolved_record_allowed(self, ledger, pair):
        record = ledger.create(*pair, user_id=1)
        ledger.mark_resolved(record)
        updated = ledger.update(record.id, {"source_reference": "audit"}, user_id=1)
        assert updated.resolved is True
        assert updated.source_reference == "audit"

    def test_update_missing_raises(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.update("nope", {"reason": "x"}, user_id=1)

    def test_delete(self, repo, ledger, pair):
        record = ledger.create(*pair, user_id=1)
        ledger.delete(record.id, 1)
        assert repo.count_pending_duplicates(1) == 0

    def test_delete_other_user_raises(self, repo, ledger, pair):
        record = ledger.create(*pair, user_id=1)
        with pytest.raises(NotFoundError):
            ledger.delete(record.id, 2)
        assert repo.count_pending_duplicates(1) == 1

    def test_mark_resolved(self, ledger, pair):
        record = ledger.create(*pair, user_id=1)
        ledger.mark_resolved(record)
        assert record.resolved is True
        assert ledger.list_pending(1) == []


class TestBulk:
    def test_bulk_delete_partial_failure(self, repo, ledger, pair):
        ids = [ledger.create(*pair, user_id=1).id for _ in range(3)]
        result = ledger.bulk_delete(ids + ["missing"], user_id=1)
        assert result.success_count == 3
        assert result.failure_count == 1
        assert "missing" in result.failed
        assert repo.count_pending_duplicates(1) == 0

    def test_run_bulk_continues_after_error(self):
        def op(item):
            if item == "bad":
                raise RuntimeError("nope")

        result = run_bulk(["a", "bad", "b"], op, "test")
        assert result.succeeded == ["a", "b"]
        assert result.failed == {"bad": "nope"}

    def test_empty_result(self):
        result = BulkResult()
        assert (result.success_count, result.failure_count) == (0, 0)
