"""
Command-line entry point for the perfumery ledger.

Read-only reporting and maintenance over the ledger database. Document
processing (sales, purchases, manufacturing) happens through the service
layer, not here.

Usage Examples:
    # Create the database and tables
    perfumery init-db

    # Stock of one branch
    perfumery stock --branch 1

    # Records at or below their reorder threshold
    perfumery low-stock

    # Adjustment log for a product within a date range
    perfumery audit --product 42 --since 2026-01-01 --until 2026-01-31

    # Check every stock record against its movements (exit 1 on mismatch)
    perfumery verify
"""

import argparse
import logging
import sys
from datetime import datetime, time, timedelta, timezone

from perfumery.services import adjustment_audit_service, inventory_ledger_service
from perfumery.services.database import initialize_app_database
from perfumery.services.exceptions import ServiceError
from perfumery.utils.config import get_config

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Send log records to stderr; DEBUG with --verbose, INFO otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def _parse_bound(value: str, end_of_day: bool = False) -> datetime:
    """Parse an ISO date or datetime; a bare date covers the whole day."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date: {value}")
    if len(value) == 10 and end_of_day:
        parsed = datetime.combine(parsed.date(), time.min) + timedelta(days=1, microseconds=-1)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_until(value: str) -> datetime:
    return _parse_bound(value, end_of_day=True)


def cmd_init_db(args) -> int:
    config = get_config()
    print(f"Initializing database at {config.database_path}...")
    initialize_app_database()
    print("Database ready")
    return 0


def cmd_stock(args) -> int:
    records = inventory_ledger_service.read_all(
        branch_id=args.branch, product_id=args.product, exclude_zero=args.exclude_zero
    )
    if not records:
        print("No stock records")
        return 0
    print(f"{'Branch':>6}  {'Product':>7}  {'Quantity':>14}  {'Min':>10}  Lot")
    for record in records:
        print(
            f"{record['branch_id']:>6}  {record['product_id']:>7}  "
            f"{record['quantity']:>14}  {record['min_stock']:>10}  {record['lot_number'] or ''}"
        )
    return 0


def cmd_low_stock(args) -> int:
    records = inventory_ledger_service.get_low_stock(branch_id=args.branch)
    if not records:
        print("No products at or below their minimum")
        return 0
    for record in records:
        print(
            f"Branch {record['branch_id']} product {record['product_id']}: "
            f"{record['quantity']} (min {record['min_stock']})"
        )
    return 0


def cmd_audit(args) -> int:
    entries = adjustment_audit_service.query(
        branch_id=args.branch,
        product_id=args.product,
        start=args.since,
        end=args.until,
    )
    if not entries:
        print("No adjustment entries")
        return 0
    for entry in entries:
        user = entry["adjusted_by_user_id"] if entry["adjusted_by_user_id"] is not None else "-"
        print(
            f"{entry['adjusted_at']:%Y-%m-%d %H:%M:%S}  branch {entry['branch_id']} "
            f"product {entry['product_id']}  {entry['old_quantity']} -> {entry['new_quantity']}  "
            f"{entry['reason']}  user {user}  {entry['source_document_id'] or ''}"
        )
    return 0


def cmd_verify(args) -> int:
    mismatches = inventory_ledger_service.verify_ledger()
    if not mismatches:
        print("Ledger consistent: every stock record matches its movements")
        return 0
    print(f"ERROR: {len(mismatches)} stock record(s) disagree with their movements")
    for mismatch in mismatches:
        print(
            f"  branch {mismatch['branch_id']} product {mismatch['product_id']}: "
            f"stored {mismatch['stored']}, replayed {mismatch['replayed']}"
        )
    return 1


COMMANDS = {
    "init-db": cmd_init_db,
    "stock": cmd_stock,
    "low-stock": cmd_low_stock,
    "audit": cmd_audit,
    "verify": cmd_verify,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="perfumery",
        description="Inventory and manufacturing costing ledger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("init-db", help="Create the database and tables")

    stock_parser = subparsers.add_parser("stock", help="Show stock records")
    stock_parser.add_argument("--branch", type=int, help="Branch ID filter")
    stock_parser.add_argument("--product", type=int, help="Product ID filter")
    stock_parser.add_argument(
        "--exclude-zero", action="store_true", help="Hide records with zero quantity"
    )

    low_parser = subparsers.add_parser("low-stock", help="Show records at or below minimum")
    low_parser.add_argument("--branch", type=int, help="Branch ID filter")

    audit_parser = subparsers.add_parser("audit", help="Show the adjustment log, oldest first")
    audit_parser.add_argument("--branch", type=int, help="Branch ID filter")
    audit_parser.add_argument("--product", type=int, help="Product ID filter")
    audit_parser.add_argument("--since", type=_parse_bound, help="Start date (inclusive)")
    audit_parser.add_argument("--until", type=_parse_until, help="End date (inclusive)")

    subparsers.add_parser("verify", help="Check stock records against their movements")

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    configure_logging(args.verbose)
    config = get_config()
    logger.debug(f"{config.app_name} v{config.app_version} ({config.environment})")

    try:
        if args.command != "init-db":
            # Tables are created on first use
            initialize_app_database()
        return COMMANDS[args.command](args)
    except ServiceError as e:
        print(f"ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
