#!/usr/bin/env python3
"""
Audit log archival job.

Moves audit records older than the retention window into one checksummed
archive row. Intended to run monthly from cron:

    python -m docguard.jobs.archive_audit_logs --days 365
"""
import argparse
import logging
import sys
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from docguard.core.config import get_settings
from docguard.core.logging import configure_logging
from docguard.core.time import as_utc
from docguard.db.session import SessionLocal
from docguard.services.audit_service import AuditSink

logger = logging.getLogger(__name__)


def run(
    session_factory: Callable[[], Session],
    days: int,
    out: Callable[[str], None] = print,
    now: datetime | None = None,
) -> int:
    """Returns the process exit code."""
    sink = AuditSink(session_factory)
    try:
        stats = sink.stats(retention_days=days, now=now)
        out("Current audit log statistics:")
        out(f"   Total logs: {stats['total']}")
        out(f"   Failed actions: {stats['failed']}")
        out(f"   Logs older than {days} days: {stats['older_than_retention']}")

        if stats["older_than_retention"] == 0:
            out(f"No logs to archive. All logs are less than {days} days old.")
            return 0

        out(f"Archiving logs older than {days} days...")
        archive = sink.archive(days, now=now)
    except Exception:
        logger.error("Audit log archival failed", exc_info=True)
        out("Archival failed; see logs for details.")
        return 1

    if archive is None:
        out("No logs to archive.")
        return 0

    out("Archive created successfully!")
    out(f"   Archive ID: {archive.id}")
    out(f"   Records: {archive.record_count}")
    out(
        f"   Date range: {as_utc(archive.start_at_utc).date().isoformat()} "
        f"to {as_utc(archive.end_at_utc).date().isoformat()}"
    )
    out(f"   Checksum: {archive.checksum[:16]}...")
    out(f"   Archive date: {as_utc(archive.archived_at_utc).isoformat()}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Archive audit records older than the retention window.")
    parser.add_argument(
        "--days",
        type=int,
        default=settings.audit_retention_days,
        help=f"Archive records older than this many days (default: {settings.audit_retention_days})",
    )
    args = parser.parse_args(argv)
    if args.days < 0:
        parser.error("--days must not be negative")

    configure_logging(settings)
    return run(SessionLocal, args.days)


if __name__ == "__main__":
    sys.exit(main())
