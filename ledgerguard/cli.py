"""CLI entry point for ledgerguard.

Commands:
    ledgerguard check  --user U DESC AMOUNT DIRECTION [--date D]   Score a candidate, persist nothing
    ledgerguard add    --user U DESC AMOUNT DIRECTION [--date D]   Duplicate-checked create
    ledgerguard scan   [--user U]                  Batch scan one user, or all users
    ledgerguard status --user U                    Transaction, pending and prevented counts
    ledgerguard pending --user U list              Unresolved pending duplicates
    ledgerguard pending --user U resolve ID CHOICE
    ledgerguard pending --user U delete ID
    ledgerguard pending --user U bulk-resolve CHOICE ID...
    ledgerguard pending --user U bulk-delete ID...
    ledgerguard prevented --user U                 Prevented-duplicate audit log
    ledgerguard cleanup --user U --yes             Merge exact duplicates (destructive)
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure logging based on LEDGER_LOG_LEVEL env var."""
    level = os.environ.get("LEDGER_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _get_policy():
    """Dedup policy from LEDGER_CONFIG_DIR, or the defaults when unset."""
    from ledgerguard.config import Config, DedupPolicy

    config_dir = os.environ.get("LEDGER_CONFIG_DIR")
    if not config_dir:
        return DedupPolicy()
    return Config(config_dir=config_dir).policy


def _get_migrations_dir() -> Path:
    """Get the migrations directory path."""
    default = Path(__file__).parent / "database" / "migrations"
    return Path(os.environ.get("LEDGER_MIGRATIONS_DIR", default))


def _get_repo():
    """Create a migrated Repository connected to the configured database."""
    from ledgerguard.database.repository import Repository

    db_path = os.environ.get("LEDGER_DB_PATH", "ledger.db")
    repo = Repository(db_path=db_path)
    repo.apply_migrations(_get_migrations_dir())
    return repo


def _get_service(repo):
    from ledgerguard.duplicates.service import DuplicateService

    return DuplicateService(repo, policy=_get_policy())


def _candidate(args: argparse.Namespace):
    from ledgerguard.database.models import TransactionSnapshot

    return TransactionSnapshot(
        description=args.description,
        amount=args.amount,
        direction=args.direction,
        execution_date=args.date,
        source=getattr(args, "source", None),
    )


def _fmt_snapshot(snap) -> str:
    if snap is None:
        return "(gone)"
    return f"{snap.execution_date or '----------'}  {snap.amount:>10.2f} {snap.direction:<7}  {snap.description[:40]}"


# ── Command handlers ─────────────────────────────────────


def cmd_check(args: argparse.Namespace) -> int:
    """Score a candidate against the store without persisting it."""
    repo = _get_repo()
    try:
        result = _get_service(repo).check_for_duplicate_before_creation(
            _candidate(args), args.user,
        )
    finally:
        repo.close()

    print(f"Score:     {result.score}% ({result.confidence_band})")
    print(f"Reason:    {result.reason}")
    if result.best_match is not None:
        m = result.best_match
        print(f"Match:     {m.id}  {m.execution_date}  {m.amount:.2f} {m.direction}  {m.description}")
    if result.should_prevent:
        verdict = "prevent"
    elif result.should_create_pending:
        verdict = "pending review"
    elif result.is_duplicate:
        verdict = "possible duplicate (created normally)"
    else:
        verdict = "allow"
    print(f"Verdict:   {verdict}")
    return 0


def cmd_add(args: argparse.Namespace) -> int:
    """Create a transaction through the duplicate gate."""
    repo = _get_repo()
    try:
        outcome = _get_service(repo).import_transaction(
            _candidate(args), args.user, source=args.source,
        )
    finally:
        repo.close()

    if outcome.status == "created":
        print(f"Created transaction {outcome.transaction.id}.")
    elif outcome.status == "prevented":
        print(
            f"Not created: {outcome.classification.score}% match with"
            f" {outcome.transaction.id} ({outcome.classification.reason})."
        )
    else:
        print(
            f"Held for review as pending duplicate {outcome.pending.id}"
            f" ({outcome.classification.score}%, {outcome.classification.confidence_band})."
        )
    return 0


def cmd_scan(args: argparse.Namespace) -> int:
    """Run the batch duplicate scanner."""
    from ledgerguard.duplicates.errors import ConcurrentScanError

    repo = _get_repo()
    try:
        result = _get_service(repo).detect_duplicates(args.user)
    except ConcurrentScanError as e:
        print(f"Error: {e}")
        return 1
    finally:
        repo.close()

    print("Duplicate scan complete")
    print("=" * 40)
    print(f"  Users processed:      {result.users_processed:,}")
    print(f"  Potential duplicates: {result.potential_duplicates_found:,}")
    print(f"  Pending created:      {result.pending_duplicates_created:,}")
    print(f"  Errors:               {result.errors:,}")
    print(f"  Time:                 {result.execution_time:.2f}s")
    return 0 if result.errors == 0 else 1


def cmd_status(args: argparse.Namespace) -> int:
    """Display duplicate-related counts for a user."""
    repo = _get_repo()
    service = _get_service(repo)

    print(f"ledgerguard status (user {args.user})")
    print("=" * 40)
    print(f"  Transactions:         {repo.count_transactions(args.user):,}")
    print(f"  Pending duplicates:   {repo.count_pending_duplicates(args.user):,}")
    print(f"  Prevented duplicates: {repo.count_prevented_duplicates(args.user):,}")
    print(f"  Scan running:         {'yes' if service.get_scan_status()['is_running'] else 'no'}")

    repo.close()
    return 0


def cmd_pending(args: argparse.Namespace) -> int:
    """Pending duplicate ledger commands."""
    from ledgerguard.duplicates.errors import DedupError

    sub = args.pending_command
    if sub is None:
        print("Usage: ledgerguard pending {list,resolve,delete,bulk-resolve,bulk-delete}")
        return 1

    repo = _get_repo()
    service = _get_service(repo)
    try:
        if sub == "list":
            return _cmd_pending_list(service, args)
        elif sub == "resolve":
            result = service.resolve_pending_duplicate(args.id, args.user, args.choice)
            print(f"Resolved {result.pending_id} ({result.choice.value}): {result.message}.")
            return 0
        elif sub == "delete":
            service.delete_pending_duplicate(args.id, args.user)
            print(f"Deleted pending duplicate {args.id}.")
            return 0
        elif sub == "bulk-resolve":
            return _print_bulk(
                "Resolved",
                service.bulk_resolve_pending_duplicates(args.ids, args.user, args.choice),
            )
        elif sub == "bulk-delete":
            return _print_bulk(
                "Deleted",
                service.bulk_delete_pending_duplicates(args.ids, args.user),
            )
    except DedupError as e:
        print(f"Error: {e}")
        return 1
    finally:
        repo.close()
    return 1


def _cmd_pending_list(service, args: argparse.Namespace) -> int:
    records = service.list_pending_duplicates(args.user)
    if not records:
        print("No pending duplicates.")
        return 0

    print(f"Pending duplicates ({len(records)}):")
    print("-" * 80)
    for r in records:
        tier = f" {r.origin.confidence_tier}" if r.origin.confidence_tier else ""
        print(f"  {r.id}  [{r.origin.kind}{tier}]  {r.reason or ''}")
        print(f"    existing: {_fmt_snapshot(r.existing_data)}")
        print(f"    new:      {_fmt_snapshot(r.new_data)}")
    return 0


def _print_bulk(verb: str, result) -> int:
    print(f"{verb} {result.success_count}, failed {result.failure_count}.")
    for pending_id, error in result.failed.items():
        print(f"  {pending_id}: {error}")
    return 0 if result.failure_count == 0 else 1


def cmd_prevented(args: argparse.Namespace) -> int:
    """List the prevented-duplicate audit log."""
    repo = _get_repo()
    records = _get_service(repo).list_prevented_duplicates(args.user)
    repo.close()

    if not records:
        print("No prevented duplicates.")
        return 0

    print(f"Prevented duplicates ({len(records)}):")
    print("-" * 80)
    for p in records:
        print(f"  {p.created_at[:19]}  {p.similarity_score:>3}%  {p.source:<10}  {_fmt_snapshot(p.blocked_data)}")
    return 0


def cmd_cleanup(args: argparse.Namespace) -> int:
    """Merge exact duplicate transactions for a user."""
    if not args.yes:
        print("Cleanup deletes transactions. Re-run with --yes to proceed.")
        return 1

    repo = _get_repo()
    try:
        report = _get_service(repo).cleanup_exact_duplicates(args.user)
    finally:
        repo.close()

    print("Exact-duplicate cleanup complete")
    print("=" * 40)
    print(f"  Transactions scanned: {report.transactions_scanned:,}")
    print(f"  Duplicate groups:     {report.duplicate_groups:,}")
    print(f"  Removed:              {report.removed:,}")
    print(f"  Re-pointed records:   {report.repointed:,}")
    print(f"  Errors:               {report.errors:,}")
    return 0 if report.errors == 0 else 1


# ── Main entry point ─────────────────────────────────────


_COMMANDS = {
    "check": cmd_check,
    "add": cmd_add,
    "scan": cmd_scan,
    "status": cmd_status,
    "pending": cmd_pending,
    "prevented": cmd_prevented,
    "cleanup": cmd_cleanup,
}


def _add_candidate_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--user", type=int, required=True, help="User ID")
    p.add_argument("description", help="Transaction description")
    p.add_argument("amount", type=float, help="Amount (non-negative magnitude)")
    p.add_argument("direction", choices=["income", "expense"], help="Transaction type")
    p.add_argument("--date", help="Execution date (YYYY-MM-DD)")


def main(argv: list[str] | None = None):
    _setup_logging()

    parser = argparse.ArgumentParser(
        prog="ledgerguard",
        description="Duplicate transaction detection and resolution",
    )
    subparsers = parser.add_subparsers(dest="command")

    # check
    check_p = subparsers.add_parser("check", help="Score a candidate without creating it")
    _add_candidate_args(check_p)

    # add
    add_p = subparsers.add_parser("add", help="Create a transaction through the duplicate gate")
    _add_candidate_args(add_p)
    add_p.add_argument("--source", default="manual", help="Origin tag (manual, csv_import, api, ...)")

    # scan
    scan_p = subparsers.add_parser("scan", help="Run the batch duplicate scanner")
    scan_p.add_argument("--user", type=int, help="User ID (default: all users)")

    # status
    status_p = subparsers.add_parser("status", help="Show duplicate counts for a user")
    status_p.add_argument("--user", type=int, required=True, help="User ID")

    # pending
    pending_p = subparsers.add_parser("pending", help="Manage pending duplicates")
    pending_p.add_argument("--user", type=int, required=True, help="User ID")
    pending_sub = pending_p.add_subparsers(dest="pending_command")
    pending_sub.add_parser("list", help="List unresolved pending duplicates")
    resolve_p = pending_sub.add_parser("resolve", help="Resolve one pending duplicate")
    resolve_p.add_argument("id", help="Pending duplicate ID")
    resolve_p.add_argument("choice", help="maintain_both, keep_existing or use_new")
    delete_p = pending_sub.add_parser("delete", help="Delete a pending duplicate without resolving")
    delete_p.add_argument("id", help="Pending duplicate ID")
    bulk_resolve_p = pending_sub.add_parser("bulk-resolve", help="Resolve several pending duplicates")
    bulk_resolve_p.add_argument("choice", help="maintain_both, keep_existing or use_new")
    bulk_resolve_p.add_argument("ids", nargs="+", help="Pending duplicate IDs")
    bulk_delete_p = pending_sub.add_parser("bulk-delete", help="Delete several pending duplicates")
    bulk_delete_p.add_argument("ids", nargs="+", help="Pending duplicate IDs")

    # prevented
    prevented_p = subparsers.add_parser("prevented", help="Show the prevented-duplicate audit log")
    prevented_p.add_argument("--user", type=int, required=True, help="User ID")

    # cleanup
    cleanup_p = subparsers.add_parser("cleanup", help="Merge exact duplicate transactions")
    cleanup_p.add_argument("--user", type=int, required=True, help="User ID")
    cleanup_p.add_argument("--yes", action="store_true", help="Confirm deletion")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}")
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()
