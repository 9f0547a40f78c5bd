"""Repository: CRUD operations against SQLite using raw SQL.

All methods take/return dataclass instances from models.py.
Connection management uses a single connection with WAL mode and
foreign keys enabled. Writes commit immediately unless they run inside
an ``atomic()`` block, which commits or rolls back as one unit.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, timedelta
from pathlib import Path

from .models import (
    DetectionOrigin,
    PendingDuplicate,
    PreventedDuplicate,
    Transaction,
    TransactionSnapshot,
)


class Repository:
    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        # The connection is shared across threads; an open atomic() block
        # owns it until it commits or rolls back.
        self._lock = threading.RLock()
        self._atomic_depth = 0

    @property
    def conn(self) -> sqlite3.Connection:
        with self._lock:
            if self._conn is None:
                self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
                self._conn.row_factory = sqlite3.Row
                self._conn.execute("PRAGMA foreign_keys = ON")
                self._conn.execute("PRAGMA journal_mode = WAL")
            return self._conn

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def atomic(self):
        """Group several writes into one transaction.

        Nested blocks join the outermost one. Any exception rolls back
        every write made inside the block and is re-raised. Other threads
        wait until the outermost block finishes, so their writes are never
        committed or rolled back with it.
        """
        with self._lock:
            self._atomic_depth += 1
            try:
                yield
            except Exception:
                if self._atomic_depth == 1:
                    self.conn.rollback()
                raise
            else:
                if self._atomic_depth == 1:
                    self.conn.commit()
            finally:
                self._atomic_depth -= 1

    def _fetchall(self, sql: str, params=()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    def _fetchone(self, sql: str, params=()) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def _write(self, sql: str, params=()):
        """Execute one write; commits unless an atomic() block is open."""
        with self._lock:
            self.conn.execute(sql, params)
            if self._atomic_depth == 0:
                self.conn.commit()

    # ── Migrations ──────────────────────────────────────────

    def apply_migrations(self, migrations_dir: Path):
        """Apply all pending SQL migrations in order.

        Each migration runs in a transaction: if the SQL fails, the
        schema_version row is not inserted, allowing retry on next startup.
        """
        with self._lock:
            self.conn.execute(
                "CREATE TABLE IF NOT EXISTS schema_version ("
                "  version INTEGER PRIMARY KEY,"
                "  description TEXT,"
                "  applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
                ")"
            )
            self.conn.commit()

            row = self.conn.execute(
                "SELECT MAX(version) FROM schema_version"
            ).fetchone()
            current = row[0] or 0

            for sql_file in sorted(Path(migrations_dir).glob("*.sql")):
                version = int(sql_file.name.split("_")[0])
                if version > current:
                    try:
                        self.conn.execute("BEGIN")
                        # executescript auto-commits, so we split statements manually
                        for statement in split_statements(sql_file.read_text()):
                            self.conn.execute(statement)
                        self.conn.execute(
                            "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                            (version, sql_file.stem),
                        )
                        self.conn.commit()
                    except Exception:
                        self.conn.rollback()
                        raise

    # ── Transactions ────────────────────────────────────────

    def save_transaction(self, txn: Transaction) -> Transaction:
        """Insert a transaction, or update every mutable field if it exists."""
        self._write(
            "INSERT INTO transactions"
            " (id, user_id, description, amount, direction, execution_date,"
            "  source, external_id, account_id, category_id, tags,"
            "  created_at, updated_at)"
            " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)"
            " ON CONFLICT(id) DO UPDATE SET"
            "  description = excluded.description,"
            "  amount = excluded.amount,"
            "  direction = excluded.direction,"
            "  execution_date = excluded.execution_date,"
            "  source = excluded.source,"
            "  external_id = excluded.external_id,"
            "  account_id = excluded.account_id,"
            "  category_id = excluded.category_id,"
            "  tags = excluded.tags,"
            "  updated_at = excluded.updated_at",
            (txn.id, txn.user_id, txn.description, txn.amount,
             txn.direction, txn.execution_date, txn.source,
             txn.external_id, txn.account_id, txn.category_id, txn.tags,
             txn.created_at, txn.updated_at),
        )
        return txn

    def get_transaction(
        self, txn_id: str, user_id: int | None = None
    ) -> Transaction | None:
        sql = "SELECT * FROM transactions WHERE id = ?"
        params: list = [txn_id]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        row = self._fetchone(sql, params)
        return self._row_to_transaction(row) if row else None

    def get_transactions_for_user(self, user_id: int) -> list[Transaction]:
        """All of a user's transactions, by execution date then creation time.

        Rows without an execution date sort last.
        """
        rows = self._fetchall(
            "SELECT * FROM transactions WHERE user_id = ?"
            " ORDER BY execution_date IS NULL, execution_date,"
            "  created_at, rowid",
            (user_id,),
        )
        return [self._row_to_transaction(r) for r in rows]

    def find_recent_transactions(
        self, user_id: int, around: str | None = None, days: int = 30,
    ) -> list[Transaction]:
        """Transactions within +/- days of ``around`` (default: today).

        Rows with no execution date are included; the scorer gives them
        no date credit but does not rule them out.
        """
        center = date.fromisoformat(around[:10]) if around else date.today()
        date_from = (center - timedelta(days=days)).isoformat()
        date_to = (center + timedelta(days=days)).isoformat()
        rows = self._fetchall(
            "SELECT * FROM transactions"
            " WHERE user_id = ?"
            "   AND (execution_date IS NULL"
            "        OR substr(execution_date, 1, 10) BETWEEN ? AND ?)"
            " ORDER BY execution_date DESC, created_at DESC, rowid DESC",
            (user_id, date_from, date_to),
        )
        return [self._row_to_transaction(r) for r in rows]

    def delete_transaction(self, txn_id: str):
        self._write("DELETE FROM transactions WHERE id = ?", (txn_id,))

    def list_user_ids(self) -> list[int]:
        rows = self._fetchall(
            "SELECT DISTINCT user_id FROM transactions ORDER BY user_id"
        )
        return [r[0] for r in rows]

    def count_transactions(self, user_id: int) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) FROM transactions WHERE user_id = ?", (user_id,)
        )
        return row[0]

    # ── Pending duplicates ──────────────────────────────────

    def insert_pending_duplicate(self, pd: PendingDuplicate) -> PendingDuplicate:
        self._write(
            "INSERT INTO pending_duplicates"
            " (id, user_id, existing_transaction_id, existing_data, new_data,"
            "  new_transaction_id, origin, confidence_tier, source,"
            "  source_reference, reason, resolved, created_at)"
            " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)",
            (pd.id, pd.user_id, pd.existing_transaction_id,
             _dump_snapshot(pd.existing_data), _dump_snapshot(pd.new_data),
             pd.new_data.id, pd.origin.kind, pd.origin.confidence_tier,
             pd.source, pd.source_reference, pd.reason,
             int(pd.resolved), pd.created_at),
        )
        return pd

    _PENDING_UPDATE_COLS = frozenset({
        "existing_transaction_id", "source", "source_reference",
        "reason", "resolved",
    })

    def update_pending_duplicate(self, pending_id: str, **fields):
        # Reject unknown column names to prevent silent bugs
        unknown = set(fields) - self._PENDING_UPDATE_COLS
        if unknown:
            raise ValueError(f"Unknown columns for update_pending_duplicate: {unknown}")
        if not fields:
            return
        sets = []
        vals: list = []
        for col in sorted(fields):
            sets.append(f"{col} = ?")
            val = fields[col]
            vals.append(int(val) if col == "resolved" else val)
        vals.append(pending_id)
        self._write(
            f"UPDATE pending_duplicates SET {', '.join(sets)} WHERE id = ?",
            vals,
        )

    def get_pending_duplicate(
        self, pending_id: str, user_id: int, include_resolved: bool = False,
    ) -> PendingDuplicate | None:
        sql = "SELECT * FROM pending_duplicates WHERE id = ? AND user_id = ?"
        if not include_resolved:
            sql += " AND resolved = 0"
        row = self._fetchone(sql, (pending_id, user_id))
        return self._row_to_pending(row) if row else None

    def list_pending_duplicates(self, user_id: int) -> list[PendingDuplicate]:
        """Unresolved records for a user, newest first, with the live
        existing transaction attached when it still exists."""
        rows = self._fetchall(
            "SELECT * FROM pending_duplicates"
            " WHERE user_id = ? AND resolved = 0"
            " ORDER BY created_at DESC, rowid DESC",
            (user_id,),
        )
        records = [self._row_to_pending(r) for r in rows]
        ids = [r.existing_transaction_id for r in records if r.existing_transaction_id]
        by_id = self.get_transactions_by_ids(ids)
        for record in records:
            if record.existing_transaction_id:
                record.existing_transaction = by_id.get(record.existing_transaction_id)
        return records

    def get_transactions_by_ids(self, txn_ids: list[str]) -> dict[str, Transaction]:
        """Fetch transactions in one query per chunk.

        Chunked to stay within SQLite's variable limit.
        """
        result: dict[str, Transaction] = {}
        chunk_size = 500
        unique = list(dict.fromkeys(txn_ids))
        for i in range(0, len(unique), chunk_size):
            chunk = unique[i : i + chunk_size]
            ph = ",".join("?" * len(chunk))
            rows = self._fetchall(
                f"SELECT * FROM transactions WHERE id IN ({ph})", chunk,
            )
            for r in rows:
                txn = self._row_to_transaction(r)
                result[txn.id] = txn
        return result

    def get_pending_by_existing_transaction(
        self, txn_id: str
    ) -> list[PendingDuplicate]:
        rows = self._fetchall(
            "SELECT * FROM pending_duplicates"
            " WHERE existing_transaction_id = ?"
            " ORDER BY created_at, rowid",
            (txn_id,),
        )
        return [self._row_to_pending(r) for r in rows]

    def get_pending_by_new_transaction(
        self, txn_id: str
    ) -> list[PendingDuplicate]:
        rows = self._fetchall(
            "SELECT * FROM pending_duplicates"
            " WHERE new_transaction_id = ?"
            " ORDER BY created_at, rowid",
            (txn_id,),
        )
        return [self._row_to_pending(r) for r in rows]

    def has_unresolved_pair(
        self, user_id: int, existing_id: str, new_id: str
    ) -> bool:
        row = self._fetchone(
            "SELECT EXISTS("
            "  SELECT 1 FROM pending_duplicates"
            "  WHERE user_id = ? AND resolved = 0"
            "    AND existing_transaction_id = ? AND new_transaction_id = ?"
            ")",
            (user_id, existing_id, new_id),
        )
        return bool(row[0])

    def has_resolved_pair(self, user_id: int, txn_a: str, txn_b: str) -> bool:
        """True if a resolved record links the two ids in either orientation."""
        row = self._fetchone(
            "SELECT EXISTS("
            "  SELECT 1 FROM pending_duplicates"
            "  WHERE user_id = ? AND resolved = 1"
            "    AND ((existing_transaction_id = ? AND new_transaction_id = ?)"
            "      OR (existing_transaction_id = ? AND new_transaction_id = ?))"
            ")",
            (user_id, txn_a, txn_b, txn_b, txn_a),
        )
        return bool(row[0])

    def delete_pending_duplicate(self, pending_id: str):
        self._write(
            "DELETE FROM pending_duplicates WHERE id = ?", (pending_id,)
        )

    def count_pending_duplicates(self, user_id: int | None = None) -> int:
        sql = "SELECT COUNT(*) FROM pending_duplicates WHERE resolved = 0"
        params: list = []
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        return self._fetchone(sql, params)[0]

    # ── Prevented duplicates ────────────────────────────────

    def insert_prevented_duplicate(
        self, prevented: PreventedDuplicate
    ) -> PreventedDuplicate:
        self._write(
            "INSERT INTO prevented_duplicates"
            " (id, user_id, existing_transaction_id, blocked_data, source,"
            "  source_reference, similarity_score, reason, created_at)"
            " VALUES (?,?,?,?,?,?,?,?,?)",
            (prevented.id, prevented.user_id,
             prevented.existing_transaction_id,
             _dump_snapshot(prevented.blocked_data), prevented.source,
             prevented.source_reference, prevented.similarity_score,
             prevented.reason, prevented.created_at),
        )
        return prevented

    def list_prevented_duplicates(self, user_id: int) -> list[PreventedDuplicate]:
        rows = self._fetchall(
            "SELECT * FROM prevented_duplicates WHERE user_id = ?"
            " ORDER BY created_at DESC, rowid DESC",
            (user_id,),
        )
        return [self._row_to_prevented(r) for r in rows]

    def count_prevented_duplicates(self, user_id: int) -> int:
        row = self._fetchone(
            "SELECT COUNT(*) FROM prevented_duplicates WHERE user_id = ?",
            (user_id,),
        )
        return row[0]

    # ── Row Converters ──────────────────────────────────────

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"], user_id=row["user_id"],
            description=row["description"], amount=row["amount"],
            direction=row["direction"],
            execution_date=row["execution_date"],
            source=row["source"], external_id=row["external_id"],
            account_id=row["account_id"],
            category_id=row["category_id"], tags=row["tags"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_pending(row: sqlite3.Row) -> PendingDuplicate:
        return PendingDuplicate(
            id=row["id"], user_id=row["user_id"],
            existing_transaction_id=row["existing_transaction_id"],
            existing_data=_load_snapshot(row["existing_data"]),
            new_data=_load_snapshot(row["new_data"]),
            origin=DetectionOrigin(row["origin"], row["confidence_tier"]),
            source=row["source"],
            source_reference=row["source_reference"],
            reason=row["reason"], resolved=bool(row["resolved"]),
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_prevented(row: sqlite3.Row) -> PreventedDuplicate:
        return PreventedDuplicate(
            id=row["id"], user_id=row["user_id"],
            existing_transaction_id=row["existing_transaction_id"],
            blocked_data=_load_snapshot(row["blocked_data"]),
            source=row["source"],
            source_reference=row["source_reference"],
            similarity_score=row["similarity_score"],
            reason=row["reason"], created_at=row["created_at"],
        )


def _dump_snapshot(snapshot: TransactionSnapshot | None) -> str | None:
    if snapshot is None:
        return None
    return json.dumps(snapshot.to_dict(), sort_keys=True)


def _load_snapshot(text: str | None) -> TransactionSnapshot | None:
    if not text:
        return None
    return TransactionSnapshot.from_dict(json.loads(text))


def split_statements(sql: str) -> list[str]:
    """Split a migration script on ";", ignoring "--" comment lines."""
    body = "\n".join(
        line for line in sql.splitlines() if not line.lstrip().startswith("--")
    )
    return [s.strip() for s in body.split(";") if s.strip()]
