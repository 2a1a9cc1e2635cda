#!/usr/bin/env python3
"""
devdisco -- Discover Windows devices, reconcile them with the inventory,
and keep an audit trail of every change.

Usage:
  python main.py scan WKS-01
  python main.py scan 10.0.0.5 --apply total_ram_gb primary_ip --reason "RAM upgraded"
  python main.py scan 10.0.0.5 --apply-all --reason "Quarterly refresh"
  python main.py bulk --file targets.txt --reason "Quarterly audit"
  python main.py delete WKS-01 --reason "Decommissioned"
  python main.py audit --device-id 12
  python main.py purge-audit --days 365 --execute

Environment variables (or .env):
  DB_URL                  SQLAlchemy URL of the device store (default: SQLite beside cmdb/)
  WINRM_USERNAME / WINRM_PASSWORD   credentials for remote targets
  WINRM_TRANSPORT         ntlm (default), kerberos, credssp, basic, certificate
  BULK_MAX_WORKERS        worker pool size for bulk scans (default 4)
  DEFAULT_ACTOR           identity recorded on audit rows (default: OS login name)
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from cmdb.bulk import BulkScanOrchestrator
from cmdb.engine import DiscoveryEngine
from cmdb.planner import APPLY_ALL
from cmdb.store import DeviceStore
from core.collector import Collector
from core.config import Settings, get_settings
from core.errors import DiscoveryError
from core.formatter import (
    audit_to_csv,
    disable_color,
    print_audit,
    print_bulk_summary,
    print_comparison,
    print_persist_result,
    print_snapshot,
    to_json,
)

logger = logging.getLogger("devdisco.cli")


def _load_file(path: str) -> Optional[Path]:
    """Resolve a target list path and verify it is a regular file.

    Resolving symlinks and rejecting FIFOs or devices keeps a bulk run from
    blocking on a read that never ends.
    """
    file_path = Path(path).resolve()
    if not file_path.is_file():
        print(f"  [!] '{path}' is not a readable file.")
        return None
    return file_path


def _build(settings: Settings, max_workers: Optional[int] = None) -> tuple[DeviceStore, DiscoveryEngine, BulkScanOrchestrator]:
    store = DeviceStore(settings.db_url)
    engine = DiscoveryEngine(Collector.from_settings(settings), store)
    orchestrator = BulkScanOrchestrator(
        engine,
        store,
        max_workers=max_workers or settings.bulk_max_workers,
        report_dir=settings.failure_report_dir,
    )
    return store, engine, orchestrator


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def cmd_scan(args: argparse.Namespace, settings: Settings) -> int:
    store, engine, _ = _build(settings)
    try:
        comparison = engine.scan(args.target)
        selection = APPLY_ALL if args.apply_all else (args.apply or None)

        if args.json and selection is None:
            print(to_json(comparison))
            return 0
        if not args.json:
            print_snapshot(comparison.snapshot)
            print_comparison(comparison)

        if selection is None:
            if comparison.diffs:
                print("  Nothing written. Re-run with --apply FIELD ... or --apply-all to persist.\n")
            return 0

        result = engine.apply(
            comparison,
            selection,
            settings.actor(),
            comparison.session_id,
            args.reason or "",
            device_type=args.device_type,
        )
        if args.json:
            print(to_json(result))
        else:
            print_persist_result(result)
        return 0
    finally:
        store.close()


def cmd_bulk(args: argparse.Namespace, settings: Settings) -> int:
    path = _load_file(args.file)
    if path is None:
        return 2
    store, _, orchestrator = _build(settings, args.workers)

    # First Ctrl+C cancels the run cleanly; in-flight scans are stopped.
    cancel = threading.Event()

    def _interrupt(signum, frame):
        print("\n  [!] Cancelling bulk scan...", file=sys.stderr)
        cancel.set()

    previous = signal.signal(signal.SIGINT, _interrupt)
    try:
        result = orchestrator.run(path, actor=settings.actor(), reason=args.reason, cancel_event=cancel)
    finally:
        signal.signal(signal.SIGINT, previous)
        store.close()

    if args.json:
        print(to_json(result))
    else:
        print_bulk_summary(result)
    return 1 if result.failed else 0


def cmd_delete(args: argparse.Namespace, settings: Settings) -> int:
    store = DeviceStore(settings.db_url)
    try:
        result = store.delete(args.hostname, settings.actor(), args.reason)
    finally:
        store.close()
    if args.json:
        print(to_json(result))
    else:
        print(f"  Deleted {result.hostname} (id {result.device_id}). Record archived, audit history kept.")
    return 0


def cmd_audit(args: argparse.Namespace, settings: Settings) -> int:
    store = DeviceStore(settings.db_url)
    try:
        entries = store.get_audit_entries(
            device_id=args.device_id,
            session_id=args.session,
            hostname=args.hostname,
            limit=args.limit,
        )
    finally:
        store.close()
    if args.json:
        print(to_json(entries))
    elif args.csv:
        print(audit_to_csv(entries), end="")
    else:
        print_audit(entries)
    return 0


def cmd_purge_audit(args: argparse.Namespace, settings: Settings) -> int:
    days = args.days or settings.audit_retention_days
    store = DeviceStore(settings.db_url)
    try:
        count = store.purge_audit_entries(older_than_days=days, dry_run=not args.execute)
    finally:
        store.close()
    if args.execute:
        print(f"  Deleted {count} audit row(s) older than {days} days.")
    else:
        print(f"  {count} audit row(s) older than {days} days would be deleted. Re-run with --execute to delete.")
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devdisco",
        description="Device discovery and inventory reconciliation.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py scan WKS-01
  python main.py scan 10.0.0.5 --apply-all --reason "RAM upgraded"
  python main.py bulk --file targets.txt --reason "Quarterly audit" --workers 8
  python main.py bulk --file targets_FAILED_20250101_120000.txt --reason "Retry"
  python main.py delete WKS-01 --reason "Decommissioned"
  python main.py audit --session 3f2b... --csv > audit.csv
        """,
    )
    parser.add_argument("--json", action="store_true", help="Output structured JSON")
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI color codes in terminal output")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    scan = sub.add_parser("scan", help="Scan one target and show (or apply) the differences")
    scan.add_argument("target", help="Hostname or IP address")
    group = scan.add_mutually_exclusive_group()
    group.add_argument("--apply", nargs="+", metavar="FIELD", help="Write only these fields (names as listed by the diff)")
    group.add_argument("--apply-all", action="store_true", help="Write every differing field")
    scan.add_argument("--reason", help="Change reason (required when updating an existing device)")
    scan.add_argument("--device-type", help="Device type for a new device (default: Other)")

    bulk = sub.add_parser("bulk", help="Scan every target in a list file")
    bulk.add_argument("--file", required=True, metavar="PATH", help="Target list, one per line (# comments, , and ; separators)")
    bulk.add_argument("--reason", required=True, help="Change reason recorded for every device touched")
    bulk.add_argument("--workers", type=int, metavar="N", help="Parallel scans (default: BULK_MAX_WORKERS)")

    delete = sub.add_parser("delete", help="Archive and remove a device")
    delete.add_argument("hostname")
    delete.add_argument("--reason", required=True)

    audit = sub.add_parser("audit", help="Show audit entries")
    audit.add_argument("--device-id", type=int)
    audit.add_argument("--session", metavar="ID")
    audit.add_argument("--hostname")
    audit.add_argument("--limit", type=int, default=200)
    audit.add_argument("--csv", action="store_true", help="Output CSV")

    purge = sub.add_parser("purge-audit", help="Delete audit rows past the retention window (dry run by default)")
    purge.add_argument("--days", type=int, help="Retention window in days (default: AUDIT_RETENTION_DAYS)")
    purge.add_argument("--execute", action="store_true", help="Actually delete the rows")
    return parser


_COMMANDS = {
    "scan": cmd_scan,
    "bulk": cmd_bulk,
    "delete": cmd_delete,
    "audit": cmd_audit,
    "purge-audit": cmd_purge_audit,
}


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Apply color preference before any output
    if args.no_color:
        disable_color()

    try:
        return _COMMANDS[args.command](args, settings)
    except DiscoveryError as exc:
        logger.debug("%s failed", args.command, exc_info=True)
        print(f"  [!] {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        # Bad --workers or --days values
        print(f"  [!] {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
