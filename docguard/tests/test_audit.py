import json
from datetime import timedelta

import pytest
from sqlalchemy import event, select, update

from docguard.core.exceptions import ArchiveIntegrityError
from docguard.core.time import utcnow
from docguard.models import AuditAction, AuditArchive, AuditRecord
from docguard.services.audit_service import AuditSink

LATER = timedelta(days=400)


def seed_records(audit, account_id="acct-1", count=3):
    for i in range(count):
        audit.record(AuditAction.VIEW, account_id, document_id=f"doc-{i}", metadata={"n": i})
    audit.record(AuditAction.ACCESS_DENIED, account_id, success=False, error_message="No permission to edit")


def test_record_captures_request_context(audit):
    entry = audit.record(AuditAction.LOGIN_SUCCESS, "acct-1", metadata="plain message")

    assert entry.ip_address == "127.0.0.1"
    assert entry.user_agent == "pytest"
    assert json.loads(entry.details) == {"message": "plain message"}


def test_missing_account_is_recorded_as_unknown(audit):
    entry = audit.record(AuditAction.LOGIN_FAILED, None, success=False)
    assert entry.account_id == "unknown"


def test_write_failure_never_raises():
    def broken_session():
        raise RuntimeError("database is down")

    assert AuditSink(broken_session).record(AuditAction.LOGOUT, "acct-1") is None


def test_records_for_account_are_oldest_first(audit):
    seed_records(audit)
    audit.record(AuditAction.VIEW, "someone-else")

    records = audit.records_for_account("acct-1")

    assert [r.action for r in records] == ["view", "view", "view", "access_denied"]
    assert [r.id for r in records] == sorted(r.id for r in records)


def test_records_for_document(audit):
    seed_records(audit)
    assert [r.document_id for r in audit.records_for_document("doc-1")] == ["doc-1"]


def test_archive_with_nothing_eligible_writes_nothing(audit, session_factory):
    seed_records(audit)

    assert audit.archive(365) is None
    with session_factory() as db:
        assert db.scalars(select(AuditArchive)).all() == []


def test_archive_moves_old_records_into_checksummed_archive(audit, session_factory):
    seed_records(audit)

    archive = audit.archive(365, now=utcnow() + LATER)

    assert archive.record_count == 4
    assert len(archive.checksum) == 64
    with session_factory() as db:
        assert all(r.archived for r in db.scalars(select(AuditRecord)))

    contents = audit.read_archive(archive.id)
    assert contents.verified
    assert [r["action"] for r in contents.records] == ["view", "view", "view", "access_denied"]

    # already archived records are not archived twice
    assert audit.archive(365, now=utcnow() + LATER) is None
    assert [a.id for a in audit.list_archives()] == [archive.id]


def test_tampered_archive_fails_integrity_check(audit, session_factory):
    seed_records(audit)
    archive = audit.archive(365, now=utcnow() + LATER)

    with session_factory() as db:
        db.execute(update(AuditArchive).where(AuditArchive.id == archive.id).values(records_json="[]"))
        db.commit()

    with pytest.raises(ArchiveIntegrityError) as exc:
        audit.read_archive(archive.id)
    assert exc.value.archive_id == archive.id


def test_read_missing_archive_returns_none(audit):
    assert audit.read_archive("no-such-archive") is None


def test_stats(audit):
    seed_records(audit)

    stats = audit.stats(retention_days=365)
    assert stats["total"] == 4
    assert stats["failed"] == 1
    assert stats["by_action"] == {"view": 3, "access_denied": 1}
    assert stats["older_than_retention"] == 0

    assert audit.stats(retention_days=365, now=utcnow() + LATER)["older_than_retention"] == 4


def test_overlapping_archive_runs_archive_each_record_once(audit, session_factory):
    seed_records(audit)
    later = utcnow() + LATER
    other_run = {}

    def racing_session():
        db = session_factory()

        @event.listens_for(db, "do_orm_execute")
        def archive_elsewhere_first(state):
            if state.is_update and "archive" not in other_run:
                other_run["archive"] = AuditSink(session_factory).archive(365, now=later)

        return db

    assert AuditSink(racing_session).archive(365, now=later) is None

    assert other_run["archive"].record_count == 4
    with session_factory() as db:
        assert len(db.scalars(select(AuditArchive)).all()) == 1
        assert all(r.archived for r in db.scalars(select(AuditRecord)))
