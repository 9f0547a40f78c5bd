"""Dataclass models matching the SQLite schema.

Transactions and ledger rows use TEXT primary keys (uuid4 strings).
Amounts are always stored as non-negative magnitudes; the direction
field ("income" / "expense") carries the sign.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

INCOME = "income"
EXPENSE = "expense"

POST_SCAN = "post_scan"
IMPORT_TIME = "import_time"


def _new_id() -> str:
    return str(uuid4())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Transaction:
    user_id: int
    description: str
    amount: float
    direction: str
    id: str = field(default_factory=_new_id)
    execution_date: str | None = None  # YYYY-MM-DD
    source: str = "manual"  # manual, csv_import, api, recurring
    external_id: str | None = None
    account_id: str | None = None
    category_id: str | None = None
    tags: str | None = None
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)


@dataclass(frozen=True)
class TransactionSnapshot:
    """Frozen copy of a transaction's fields at detection time.

    ``id`` is None when the snapshot describes candidate data that was
    never persisted (import-time detection).
    """
    description: str
    amount: float
    direction: str
    execution_date: str | None = None
    source: str | None = None
    id: str | None = None
    external_id: str | None = None
    account_id: str | None = None
    category_id: str | None = None
    created_at: str | None = None

    @property
    def persisted(self) -> bool:
        return self.id is not None

    @classmethod
    def of(cls, txn: Transaction) -> TransactionSnapshot:
        return cls(
            description=txn.description, amount=txn.amount,
            direction=txn.direction, execution_date=txn.execution_date,
            source=txn.source, id=txn.id, external_id=txn.external_id,
            account_id=txn.account_id, category_id=txn.category_id,
            created_at=txn.created_at,
        )

    @classmethod
    def from_dict(cls, data: dict) -> TransactionSnapshot:
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class DetectionOrigin:
    """Where a pending duplicate came from.

    post_scan: both sides are persisted transactions found by the batch
    scanner, tagged with the confidence tier of the group.
    import_time: the "new" side is candidate data that was held back
    from persistence by the classifier.
    """
    kind: str
    confidence_tier: str | None = None

    @classmethod
    def post_scan(cls, confidence_tier: str) -> DetectionOrigin:
        return cls(POST_SCAN, confidence_tier)

    @classmethod
    def import_time(cls) -> DetectionOrigin:
        return cls(IMPORT_TIME)

    @property
    def is_post_scan(self) -> bool:
        return self.kind == POST_SCAN


@dataclass
class PendingDuplicate:
    user_id: int
    new_data: TransactionSnapshot
    origin: DetectionOrigin
    id: str = field(default_factory=_new_id)
    existing_transaction_id: str | None = None
    existing_data: TransactionSnapshot | None = None
    source: str = "manual"
    source_reference: str | None = None
    reason: str | None = None
    resolved: bool = False
    created_at: str = field(default_factory=_now)
    # Attached by list queries for display, not a column.
    existing_transaction: Transaction | None = None


@dataclass
class PreventedDuplicate:
    user_id: int
    blocked_data: TransactionSnapshot
    source: str
    similarity_score: int
    reason: str
    id: str = field(default_factory=_new_id)
    existing_transaction_id: str | None = None
    source_reference: str | None = None
    created_at: str = field(default_factory=_now)
