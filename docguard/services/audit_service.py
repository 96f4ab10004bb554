"""
Append-only audit sink and archival.

Writes go through their own short-lived session so that an audit failure can
never roll back, or be rolled back by, the caller's transaction.
"""
import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from docguard.core.exceptions import ArchiveIntegrityError
from docguard.core.logging import AUDIT_OPS_LOGGER
from docguard.core.time import as_utc, utcnow
from docguard.models import AuditAction, AuditArchive, AuditRecord, UNKNOWN_ACCOUNT

logger = logging.getLogger(__name__)
ops_logger = logging.getLogger(AUDIT_OPS_LOGGER)


@dataclass(frozen=True)
class RequestContext:
    ip_address: str = "unknown"
    user_agent: str = "unknown"


@dataclass
class ArchiveContents:
    archive: AuditArchive
    records: List[dict]
    verified: bool = True


def _normalize_details(details: Any) -> str | None:
    if details is None:
        return None
    if isinstance(details, str):
        return json.dumps({"message": details})
    try:
        return json.dumps(details, default=str)
    except TypeError:
        return json.dumps({"repr": repr(details)})


def _checksum(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _serialize_record(record: AuditRecord) -> dict:
    return {
        "id": record.id,
        "account_id": record.account_id,
        "document_id": record.document_id,
        "action": record.action,
        "at_utc": as_utc(record.at_utc).isoformat(),
        "ip_address": record.ip_address,
        "user_agent": record.user_agent,
        "details": record.details,
        "success": record.success,
        "error_message": record.error_message,
    }


class AuditSink:
    def __init__(self, session_factory: Callable[[], Session], context: RequestContext | None = None):
        self.session_factory = session_factory
        self.context = context or RequestContext()

    def bind(self, context: RequestContext) -> "AuditSink":
        return AuditSink(self.session_factory, context)

    def record(
        self,
        action: AuditAction,
        account_id: str | None,
        document_id: str | None = None,
        success: bool = True,
        error_message: str | None = None,
        metadata: Any = None,
    ) -> Optional[AuditRecord]:
        """Persist one audit record. Never raises; failures go to the ops log."""
        action_tag = AuditAction(action).value
        actor = account_id or UNKNOWN_ACCOUNT
        entry = AuditRecord(
            account_id=actor,
            action=action_tag,
            document_id=document_id,
            success=success,
            error_message=error_message,
            details=_normalize_details(metadata),
            ip_address=self.context.ip_address,
            user_agent=self.context.user_agent,
            at_utc=utcnow(),
        )
        try:
            with self.session_factory() as db:
                db.add(entry)
                db.commit()
        except Exception:
            ops_logger.error(
                f"Failed to write audit record action={action_tag} account={actor} "
                f"document={document_id} success={success}",
                exc_info=True,
            )
            return None

        logger.info(f"[Audit] {action_tag.upper()} by {actor} - {'SUCCESS' if success else 'FAILED'}")
        return entry

    def records_for_account(self, account_id: str, limit: int = 100) -> List[AuditRecord]:
        """Oldest first, so the result reads as the account's security narrative."""
        with self.session_factory() as db:
            stmt = (
                select(AuditRecord)
                .where(AuditRecord.account_id == account_id)
                .order_by(AuditRecord.at_utc.asc(), AuditRecord.id.asc())
                .limit(limit)
            )
            return list(db.scalars(stmt))

    def records_for_document(self, document_id: str, limit: int = 100) -> List[AuditRecord]:
        with self.session_factory() as db:
            stmt = (
                select(AuditRecord)
                .where(AuditRecord.document_id == document_id)
                .order_by(AuditRecord.at_utc.desc(), AuditRecord.id.desc())
                .limit(limit)
            )
            return list(db.scalars(stmt))

    def archive(self, older_than_days: int, now: datetime | None = None) -> Optional[AuditArchive]:
        """
        Move unarchived records older than the cutoff into one checksummed archive row.

        Returns None when nothing is eligible; no rows are written in that case.
        """
        cutoff = (now or utcnow()) - timedelta(days=older_than_days)
        with self.session_factory() as db:
            records = list(
                db.scalars(
                    select(AuditRecord)
                    .where(AuditRecord.at_utc < cutoff, AuditRecord.archived.is_(False))
                    .order_by(AuditRecord.at_utc.asc(), AuditRecord.id.asc())
                )
            )
            if not records:
                return None

            payload = json.dumps([_serialize_record(r) for r in records])
            archive = AuditArchive(
                archived_at_utc=utcnow(),
                start_at_utc=records[0].at_utc,
                end_at_utc=records[-1].at_utc,
                record_count=len(records),
                records_json=payload,
                checksum=_checksum(payload),
            )
            db.add(archive)
            flipped = db.execute(
                update(AuditRecord)
                .where(AuditRecord.id.in_([r.id for r in records]), AuditRecord.archived.is_(False))
                .values(archived=True)
                .execution_options(synchronize_session=False)
            ).rowcount
            if flipped != len(records):
                # another run archived some of these rows first
                db.rollback()
                ops_logger.warning(
                    f"[Audit Archive] Concurrent archive run detected: {flipped} of {len(records)} records still unarchived"
                )
                return None
            db.commit()
            db.refresh(archive)

        logger.info(
            f"[Audit Archive] Archived {archive.record_count} records from "
            f"{as_utc(archive.start_at_utc).isoformat()} to {as_utc(archive.end_at_utc).isoformat()}"
        )
        return archive

    def list_archives(self, limit: int = 100) -> List[AuditArchive]:
        with self.session_factory() as db:
            stmt = select(AuditArchive).order_by(AuditArchive.archived_at_utc.desc()).limit(limit)
            return list(db.scalars(stmt))

    def read_archive(self, archive_id: str) -> Optional[ArchiveContents]:
        """Returns None if the archive does not exist; raises ArchiveIntegrityError on checksum mismatch."""
        with self.session_factory() as db:
            archive = db.get(AuditArchive, archive_id)
        if archive is None:
            return None

        actual = _checksum(archive.records_json)
        if actual != archive.checksum:
            ops_logger.critical(f"[Audit Archive] Checksum mismatch for archive {archive_id}")
            raise ArchiveIntegrityError(archive_id, archive.checksum, actual)

        return ArchiveContents(archive=archive, records=json.loads(archive.records_json))

    def stats(self, retention_days: int = 365, now: datetime | None = None) -> dict:
        cutoff = (now or utcnow()) - timedelta(days=retention_days)
        with self.session_factory() as db:
            total = db.scalar(select(func.count()).select_from(AuditRecord)) or 0
            by_action = {
                action: count
                for action, count in db.execute(
                    select(AuditRecord.action, func.count()).group_by(AuditRecord.action)
                )
            }
            failed = db.scalar(
                select(func.count()).select_from(AuditRecord).where(AuditRecord.success.is_(False))
            ) or 0
            older = db.scalar(
                select(func.count()).select_from(AuditRecord).where(AuditRecord.at_utc < cutoff)
            ) or 0
        return {
            "total": total,
            "by_action": by_action,
            "failed": failed,
            "older_than_retention": older,
        }
