"""Maintenance commands.

    flexiconvert-cleanup [--dry-run] [--hours N]
    flexiconvert-reset-stuck [--minutes N]
"""

import argparse
import logging
import sys
from datetime import timedelta
from typing import List, Optional

from flexiconvert.config import load_runtime_config
from flexiconvert.core.utils import format_bytes
from flexiconvert.services import file_service
from flexiconvert.storage.records import RecordStore, utcnow

logger = logging.getLogger(__name__)

DEFAULT_STUCK_MINUTES = 60


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout,
    )


def _open_store(config) -> RecordStore:
    store = RecordStore(config.database_path)
    store.init_schema()
    return store


def cleanup_main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="flexiconvert-cleanup",
        description="Delete expired conversion records and their files.",
    )
    parser.add_argument("--dry-run", action="store_true", help="Report what would be deleted without deleting")
    parser.add_argument("--hours", type=int, default=None, help="Retention window (default: FILE_RETENTION_HOURS)")
    args = parser.parse_args(argv)

    if args.hours is not None and args.hours < 0:
        parser.error("--hours must be zero or more")

    _setup_logging()
    config = load_runtime_config()
    hours = config.file_retention_hours if args.hours is None else args.hours
    summary = file_service.cleanup_expired(
        _open_store(config),
        config.upload_folder,
        hours,
        dry_run=args.dry_run,
    )

    verb = "Would delete" if args.dry_run else "Deleted"
    print(f"{verb} {summary['records_deleted']} record(s) older than {hours}h (cutoff {summary['cutoff']})")
    print(f"{verb} {summary['orphans_deleted']} orphaned folder(s)")
    print(f"Files: {summary['files_deleted']}  Space: {format_bytes(summary['bytes_freed'])}")
    return 0


def reset_stuck_main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="flexiconvert-reset-stuck",
        description="Mark conversions stuck in pending/processing as failed (e.g. after a crash).",
    )
    parser.add_argument(
        "--minutes",
        type=int,
        default=DEFAULT_STUCK_MINUTES,
        help=f"Only reset records idle for at least this long (default: {DEFAULT_STUCK_MINUTES})",
    )
    args = parser.parse_args(argv)

    if args.minutes < 0:
        parser.error("--minutes must be zero or more")

    _setup_logging()
    config = load_runtime_config()
    count = _open_store(config).reset_stuck(utcnow() - timedelta(minutes=args.minutes))
    print(f"Reset {count} stuck record(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(cleanup_main())
