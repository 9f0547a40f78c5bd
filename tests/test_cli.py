"""Tests for ledgerguard.cli: argument parsing and command handlers.

Handlers run through main(argv=[...]) against a temporary SQLite file
selected with LEDGER_DB_PATH.
"""

from __future__ import annotations

import subprocess
import sys

import pytest

from ledgerguard.cli import main
from ledgerguard.database.models import Transaction
from ledgerguard.database.repository import Repository
from tests.conftest import FIXTURE_CONFIG_DIR, MIGRATIONS_DIR


# ── Helpers ──────────────────────────────────────────────


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "ledger.db"
    monkeypatch.setenv("LEDGER_DB_PATH", str(path))
    monkeypatch.delenv("LEDGER_CONFIG_DIR", raising=False)
    monkeypatch.delenv("LEDGER_MIGRATIONS_DIR", raising=False)
    return path


def _open(db_path) -> Repository:
    repo = Repository(str(db_path))
    repo.apply_migrations(MIGRATIONS_DIR)
    return repo


def _seed(db_path, *txns: Transaction):
    repo = _open(db_path)
    for txn in txns:
        repo.save_transaction(txn)
    repo.close()


def _txn(**kw) -> Transaction:
    defaults = dict(
        user_id=1, description="Netflix Subscription", amount=15.99,
        direction="expense", execution_date="2025-01-15",
    )
    defaults.update(kw)
    return Transaction(**defaults)


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc:
        main(argv)
    return exc.value.code


ADD_NETFLIX = ["--user", "1", "Netflix Subscription", "15.99", "expense", "--date", "2025-01-15"]


# ── Argument parsing tests (subprocess) ──────────────────


class TestCliHelp:
    def test_help_exits_zero(self):
        result = subprocess.run(
            [sys.executable, "-m", "ledgerguard.cli", "--help"],
            capture_output=True, text=True,
        )
        assert result.returncode == 0
        assert "Duplicate transaction detection and resolution" in result.stdout

    def test_all_subcommands_listed_in_help(self):
        result = subprocess.run(
            [sys.executable, "-m", "ledgerguard.cli", "--help"],
            capture_output=True, text=True,
        )
        for cmd in ["check", "add", "scan", "status", "pending", "prevented", "cleanup"]:
            assert cmd in result.stdout, f"Subcommand '{cmd}' not in help output"

    def test_no_args_prints_help(self, capsys):
        assert _run([]) == 0
        assert "usage:" in capsys.readouterr().out.lower()

    def test_rejects_unknown_direction(self, db_path):
        with pytest.raises(SystemExit) as exc:
            main(["add", "--user", "1", "Coffee", "4.50", "sideways"])
        assert exc.value.code == 2


# ── Command handlers ─────────────────────────────────────


class TestCmdAddAndCheck:
    def test_add_creates(self, db_path, capsys):
        assert _run(["add", *ADD_NETFLIX]) == 0
        assert "Created transaction" in capsys.readouterr().out
        repo = _open(db_path)
        assert repo.count_transactions(1) == 1
        repo.close()

    def test_add_twice_prevents_second(self, db_path, capsys):
        _run(["add", *ADD_NETFLIX])
        assert _run(["add", *ADD_NETFLIX]) == 0
        out = capsys.readouterr().out
        assert "Not created: 100% match" in out
        repo = _open(db_path)
        assert repo.count_transactions(1) == 1
        assert repo.count_prevented_duplicates(1) == 1
        repo.close()

    def test_add_near_match_goes_pending(self, db_path, capsys):
        _seed(db_path, _txn(execution_date="2025-01-16"))
        assert _run(["add", *ADD_NETFLIX, "--source", "csv_import"]) == 0
        assert "Held for review as pending duplicate" in capsys.readouterr().out

    def test_check_persists_nothing(self, db_path, capsys):
        _seed(db_path, _txn(execution_date="2025-01-16"))
        assert _run(["check", *ADD_NETFLIX]) == 0
        out = capsys.readouterr().out
        assert "Score:     96%" in out
        assert "Verdict:   pending review" in out
        repo = _open(db_path)
        assert repo.count_transactions(1) == 1
        assert repo.count_pending_duplicates(1) == 0
        repo.close()

    def test_check_uses_config_dir(self, db_path, monkeypatch, capsys):
        monkeypatch.setenv("LEDGER_CONFIG_DIR", str(FIXTURE_CONFIG_DIR))
        _seed(db_path, _txn(execution_date="2025-01-16"))
        _run(["check", *ADD_NETFLIX])
        assert "Verdict:   prevent" in capsys.readouterr().out


class TestCmdScanAndStatus:
    def test_scan_creates_pending(self, db_path, capsys):
        _seed(db_path, _txn(), _txn())
        assert _run(["scan", "--user", "1"]) == 0
        out = capsys.readouterr().out
        assert "Pending created:      1" in out

    def test_scan_all_users(self, db_path, capsys):
        _seed(db_path, _txn(), _txn(), _txn(user_id=2), _txn(user_id=2))
        assert _run(["scan"]) == 0
        out = capsys.readouterr().out
        assert "Users processed:      2" in out
        assert "Pending created:      2" in out

    def test_status(self, db_path, capsys):
        _seed(db_path, _txn(), _txn())
        _run(["scan", "--user", "1"])
        capsys.readouterr()
        assert _run(["status", "--user", "1"]) == 0
        out = capsys.readouterr().out
        assert "Transactions:         2" in out
        assert "Pending duplicates:   1" in out
        assert "Scan running:         no" in out


class TestCmdPending:
    def _scan(self, db_path, count=2) -> list[str]:
        _seed(db_path, *[_txn() for _ in range(count)])
        _run(["scan", "--user", "1"])
        repo = _open(db_path)
        ids = [r.id for r in repo.list_pending_duplicates(1)]
        repo.close()
        return ids

    def test_list_empty(self, db_path, capsys):
        assert _run(["pending", "--user", "1", "list"]) == 0
        assert "No pending duplicates." in capsys.readouterr().out

    def test_list(self, db_path, capsys):
        [pending_id] = self._scan(db_path)
        capsys.readouterr()
        assert _run(["pending", "--user", "1", "list"]) == 0
        out = capsys.readouterr().out
        assert pending_id in out
        assert "[post_scan high]" in out

    def test_resolve(self, db_path, capsys):
        [pending_id] = self._scan(db_path)
        assert _run(["pending", "--user", "1", "resolve", pending_id, "keep-existing"]) == 0
        assert f"Resolved {pending_id} (keep_existing)" in capsys.readouterr().out
        repo = _open(db_path)
        assert repo.count_pending_duplicates(1) == 0
        assert repo.count_transactions(1) == 2
        repo.close()

    def test_resolve_missing(self, db_path, capsys):
        assert _run(["pending", "--user", "1", "resolve", "nope", "keep_existing"]) == 1
        assert "Error: Pending duplicate 'nope' not found" in capsys.readouterr().out

    def test_resolve_invalid_choice(self, db_path, capsys):
        [pending_id] = self._scan(db_path)
        assert _run(["pending", "--user", "1", "resolve", pending_id, "shrug"]) == 1
        assert "Invalid duplicate choice" in capsys.readouterr().out

    def test_delete(self, db_path, capsys):
        [pending_id] = self._scan(db_path)
        assert _run(["pending", "--user", "1", "delete", pending_id]) == 0
        assert f"Deleted pending duplicate {pending_id}." in capsys.readouterr().out

    def test_bulk_resolve_partial(self, db_path, capsys):
        ids = self._scan(db_path, count=3)
        assert _run(["pending", "--user", "1", "bulk-resolve", "maintain_both", *ids, "missing"]) == 1
        out = capsys.readouterr().out
        assert "Resolved 2, failed 1." in out
        assert "missing" in out

    def test_bulk_delete(self, db_path, capsys):
        ids = self._scan(db_path, count=3)
        assert _run(["pending", "--user", "1", "bulk-delete", *ids]) == 0
        assert "Deleted 2, failed 0." in capsys.readouterr().out

    def test_no_subcommand(self, db_path, capsys):
        assert _run(["pending", "--user", "1"]) == 1


class TestCmdPreventedAndCleanup:
    def test_prevented_empty(self, db_path, capsys):
        assert _run(["prevented", "--user", "1"]) == 0
        assert "No prevented duplicates." in capsys.readouterr().out

    def test_prevented_lists_audit(self, db_path, capsys):
        _run(["add", *ADD_NETFLIX])
        _run(["add", *ADD_NETFLIX])
        capsys.readouterr()
        assert _run(["prevented", "--user", "1"]) == 0
        out = capsys.readouterr().out
        assert "Prevented duplicates (1):" in out
        assert "Netflix Subscription" in out

    def test_cleanup_requires_yes(self, db_path, capsys):
        _seed(db_path, _txn(), _txn())
        assert _run(["cleanup", "--user", "1"]) == 1
        assert "--yes" in capsys.readouterr().out
        repo = _open(db_path)
        assert repo.count_transactions(1) == 2
        repo.close()

    def test_cleanup(self, db_path, capsys):
        _seed(db_path, _txn(), _txn())
        assert _run(["cleanup", "--user", "1", "--yes"]) == 0
        assert "Removed:              1" in capsys.readouterr().out
        repo = _open(db_path)
        assert repo.count_transactions(1) == 1
        repo.close()
