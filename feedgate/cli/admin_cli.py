"""
Admin CLI for operating feed ingestion.

Usage:
    feedgate-admin run-feed --feed-id <id> [--wait]
    feedgate-admin dry-run --feed-id <id>
    feedgate-admin quarantine-list [--status QUARANTINED] [--search <text>] [--page 1] [--limit 20]
    feedgate-admin quarantine-show --record-id <id>
    feedgate-admin quarantine-status --record-id <id> --status DISMISSED
    feedgate-admin add-correction --record-id <id> --field price --value 19.99
    feedgate-admin delete-correction --correction-id <id>
    feedgate-admin reprocess --record-ids <id,id,...> [--queue]
    feedgate-admin approve-run --run-id <id>
    feedgate-admin discard-run --run-id <id>
    feedgate-admin reactivate-feed --feed-id <id>
    feedgate-admin map-sku --sku-id <id> --canonical-id <id>
    feedgate-admin approve-sku --sku-id <id>
    feedgate-admin unmap-sku --sku-id <id>
    feedgate-admin metrics
"""

import argparse
import getpass
import json
import sys
from contextlib import contextmanager
from typing import Any

from psycopg import OperationalError

from feedgate.api import OperatorService
from feedgate.core.errors import FeedgateError
from feedgate.dispatch.redis_dispatcher import RedisJobDispatcher
from feedgate.observability import metrics
from feedgate.observability.logger import get_logger, setup_logger
from feedgate.settings import Settings, load_settings
from feedgate.storage.connection import DatabaseConnectionPool
from feedgate.storage.postgres_store import PostgresCatalogStore
from feedgate.utils.validation import InputValidationError

logger = get_logger(__name__)


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def split_ids(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def apply_db_overrides(settings: Settings, args) -> Settings:
    """Command-line database options win over settings and environment."""
    overrides = {
        "host": args.db_host,
        "port": args.db_port,
        "name": args.db_name,
        "user": args.db_user,
        "password": args.db_password,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if not overrides:
        return settings
    database = settings.database.model_copy(update=overrides)
    return settings.model_copy(update={"database": database})


@contextmanager
def open_service(args):
    """Build an OperatorService on PostgreSQL, with Redis dispatch when configured."""
    settings = apply_db_overrides(load_settings(args.config), args)
    pool = DatabaseConnectionPool.from_settings(settings.database)
    pool.open()
    try:
        store = PostgresCatalogStore(pool)
        store.ensure_schema()
        dispatcher = RedisJobDispatcher.from_url(settings.redis_url) if settings.redis_url else None
        yield OperatorService(store, dispatcher=dispatcher, settings=settings)
    finally:
        pool.close()


def run_feed_command(args, service: OperatorService):
    """
    Trigger a manual run.

    Queued when a dispatcher is configured, unless --wait is given.
    """
    result = service.trigger_feed_run(args.feed_id, args.actor, wait=args.wait)
    if "enqueued" in result and not result["enqueued"]:
        print(f"\nA run for {args.feed_id} is already waiting or active.")
        return
    print_json(result)


def dry_run_command(args, service: OperatorService):
    result = service.trigger_dry_run(args.feed_id, args.actor)

    print(f"\n{'=' * 60}")
    print(f"DRY RUN: {args.feed_id}")
    print(f"{'=' * 60}\n")
    print(f"  Status: {result['status']}")
    print(f"  Records parsed: {result['records_parsed']}")
    print(f"  Sample size: {result['sample_size']}")
    print(f"  Would index: {result['would_index']}")
    print(f"  Would quarantine: {result['would_quarantine']}")
    print(f"  Would reject: {result['would_reject']}")
    print(f"  Indexable: {result['indexable_ratio']}%")
    if result["primary_error_code"]:
        print(f"  Error: {result['primary_error_code']} - {result['error_message']}")

    if result["coercion_summary"]:
        print("\nCoercions:")
        for key, count in sorted(result["coercion_summary"].items(), key=lambda x: x[1], reverse=True):
            print(f"  {key:<30} {count:>8}")

    if result["error_samples"]:
        print("\nSample errors:")
        for sample in result["error_samples"]:
            codes = ", ".join(error["code"] for error in sample["errors"])
            print(f"  Row {sample['row_index']}: {sample['title'] or '-'} ({codes})")

    print(f"\n{'=' * 60}\n")


def quarantine_list_command(args, service: OperatorService):
    """
    Display quarantined records with filtering options.

    Args:
        args: Command line arguments
        service: Operator service
    """
    result = service.list_quarantine(
        status=args.status,
        search=args.search,
        feed_id=args.feed_id,
        page=args.page,
        limit=args.limit,
    )
    records = result["records"]
    pagination = result["pagination"]

    print(f"\n{'=' * 100}")
    print("QUARANTINE")
    print(f"{'=' * 100}\n")
    print("Counts: " + ", ".join(f"{status}={count}" for status, count in result["status_counts"].items()))
    print(f"Page {pagination['page']} of {pagination['total_pages']} ({pagination['total']} records)\n")

    if not records:
        print("No quarantine records found matching the criteria.")
        return

    print(f"{'Record ID':<34} {'Feed':<15} {'Status':<12} {'Title'}")
    print(f"{'-' * 100}")
    for record in records:
        title = (record["parsed_fields"] or {}).get("title") or "-"
        print(f"{record['id']:<34} {record['feed_id']:<15} {record['status']:<12} {title[:40]}")
    print(f"\n{'=' * 100}\n")


def quarantine_show_command(args, service: OperatorService):
    print_json(service.get_quarantine_record(args.record_id))


def quarantine_status_command(args, service: OperatorService):
    record = service.update_quarantine_status(args.record_id, args.status, args.actor)
    print(f"\nRecord {record['id']} is now {record['status']}.")


def add_correction_command(args, service: OperatorService):
    correction = service.create_correction(args.record_id, args.field, args.value, args.actor)
    print(f"\nCorrection {correction['id']}: {correction['field']} "
          f"'{correction['old_value']}' → '{correction['new_value']}'")


def delete_correction_command(args, service: OperatorService):
    correction = service.delete_correction(args.correction_id, args.actor)
    print(f"\nRemoved correction {correction['id']} from {correction['quarantined_record_id']}.")


def reprocess_command(args, service: OperatorService):
    """
    Reprocess quarantined records with their corrections applied.

    Args:
        args: Command line arguments
        service: Operator service
    """
    record_ids = split_ids(args.record_ids)

    if args.queue:
        result = service.enqueue_reprocess(record_ids, args.actor)
        print(f"\nBatch {result['batch_id']}: {result['enqueued_count']} job(s) enqueued, "
              f"{len(result['skipped_job_ids'])} already queued.")
        return

    result = service.reprocess(record_ids, args.actor)

    print(f"\n{'=' * 60}")
    print("REPROCESSING RESULTS")
    print(f"{'=' * 60}\n")
    print(f"  Total: {result['total']}")
    print(f"  Resolved: {result['succeeded']}")
    print(f"  Still quarantined: {result['failed']}")
    for outcome in result["results"]:
        if not outcome["success"]:
            print(f"    {outcome['record_id']}: {outcome['error']}")
    print(f"\n{'=' * 60}\n")


def approve_run_command(args, service: OperatorService):
    run = service.approve_run(args.run_id, args.actor)
    stats = run["stats"]
    print(f"\nRun {run['id']} promoted: {stats['upserted']} upserted, {stats['deactivated']} deactivated.")


def discard_run_command(args, service: OperatorService):
    run = service.discard_run(args.run_id, args.actor)
    print(f"\nRun {run['id']} discarded.")


def reactivate_feed_command(args, service: OperatorService):
    feed = service.reactivate_feed(args.feed_id, args.actor)
    print(f"\nFeed {feed['id']} is {feed['status']}.")


def map_sku_command(args, service: OperatorService):
    print_json(service.map_sku(args.sku_id, args.canonical_id, args.actor))


def approve_sku_command(args, service: OperatorService):
    print_json(service.approve_sku(args.sku_id, args.actor))


def unmap_sku_command(args, service: OperatorService):
    print_json(service.unmap_sku(args.sku_id, args.actor))


COMMANDS = {
    "run-feed": run_feed_command,
    "dry-run": dry_run_command,
    "quarantine-list": quarantine_list_command,
    "quarantine-show": quarantine_show_command,
    "quarantine-status": quarantine_status_command,
    "add-correction": add_correction_command,
    "delete-correction": delete_correction_command,
    "reprocess": reprocess_command,
    "approve-run": approve_run_command,
    "discard-run": discard_run_command,
    "reactivate-feed": reactivate_feed_command,
    "map-sku": map_sku_command,
    "approve-sku": approve_sku_command,
    "unmap-sku": unmap_sku_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feedgate-admin",
        description="Admin CLI for feed ingestion",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--config", help="Settings YAML (default: FEEDGATE_CONFIG or bundled file)")
    parser.add_argument("--actor", default=getpass.getuser(), help="Operator name recorded on changes")

    # Database connection options (override settings and DB_* environment)
    parser.add_argument("--db-host", help="Database host")
    parser.add_argument("--db-port", type=int, help="Database port")
    parser.add_argument("--db-name", help="Database name")
    parser.add_argument("--db-user", help="Database user")
    parser.add_argument("--db-password", help="Database password")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run-feed", help="Trigger a manual feed run")
    run_parser.add_argument("--feed-id", required=True, help="Feed to run")
    run_parser.add_argument("--wait", action="store_true", help="Run inline instead of queueing")

    dry_parser = subparsers.add_parser("dry-run", help="Evaluate a feed sample without indexing")
    dry_parser.add_argument("--feed-id", required=True, help="Feed to evaluate")

    list_parser = subparsers.add_parser("quarantine-list", help="List quarantined records")
    list_parser.add_argument("--status", choices=["QUARANTINED", "RESOLVED", "DISMISSED"], help="Filter by status")
    list_parser.add_argument("--search", help="Match key or title substring")
    list_parser.add_argument("--feed-id", help="Filter by feed")
    list_parser.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    list_parser.add_argument("--limit", type=int, help="Records per page (default: 20, max: 100)")

    show_parser = subparsers.add_parser("quarantine-show", help="Show a record with its corrections")
    show_parser.add_argument("--record-id", required=True, help="Quarantined record id")

    status_parser = subparsers.add_parser("quarantine-status", help="Change a record's status")
    status_parser.add_argument("--record-id", required=True, help="Quarantined record id")
    status_parser.add_argument("--status", required=True, choices=["RESOLVED", "DISMISSED"], help="New status")

    correction_parser = subparsers.add_parser("add-correction", help="Add a field correction")
    correction_parser.add_argument("--record-id", required=True, help="Quarantined record id")
    correction_parser.add_argument("--field", required=True, help="Canonical field name")
    correction_parser.add_argument("--value", required=True, help="Corrected value")

    delete_parser = subparsers.add_parser("delete-correction", help="Remove a correction")
    delete_parser.add_argument("--correction-id", required=True, help="Correction id")

    reprocess_parser = subparsers.add_parser("reprocess", help="Reprocess quarantined records")
    reprocess_parser.add_argument("--record-ids", required=True, help="Comma-separated record ids (max 100)")
    reprocess_parser.add_argument("--queue", action="store_true", help="Enqueue jobs instead of running now")

    approve_parser = subparsers.add_parser("approve-run", help="Promote a blocked run")
    approve_parser.add_argument("--run-id", required=True, help="Blocked run id")

    discard_parser = subparsers.add_parser("discard-run", help="Discard a blocked run")
    discard_parser.add_argument("--run-id", required=True, help="Blocked run id")

    reactivate_parser = subparsers.add_parser("reactivate-feed", help="Re-enable a disabled feed")
    reactivate_parser.add_argument("--feed-id", required=True, help="Feed id")

    map_parser = subparsers.add_parser("map-sku", help="Map a retailer SKU to a canonical product")
    map_parser.add_argument("--sku-id", required=True, help="Retailer SKU id")
    map_parser.add_argument("--canonical-id", required=True, help="Canonical SKU id")

    approve_sku_parser = subparsers.add_parser("approve-sku", help="Approve a SKU's automatic mapping")
    approve_sku_parser.add_argument("--sku-id", required=True, help="Retailer SKU id")

    unmap_parser = subparsers.add_parser("unmap-sku", help="Remove a SKU's canonical mapping")
    unmap_parser.add_argument("--sku-id", required=True, help="Retailer SKU id")

    subparsers.add_parser("metrics", help="Print Prometheus metrics")

    return parser


def main(argv: list[str] | None = None):
    """Main entry point for admin CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logger()

    if args.command == "metrics":
        sys.stdout.write(metrics.generate_metrics().decode("utf-8"))
        return

    try:
        with open_service(args) as service:
            COMMANDS[args.command](args, service)

    except (FeedgateError, InputValidationError, OperationalError) as e:
        logger.error(f"Command {args.command} failed: {e}", extra={"command": args.command})
        print(f"\nError: {e}")
        sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
