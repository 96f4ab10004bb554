"""Seed helpers shared by the test modules."""
from datetime import datetime, timedelta, timezone

import pyotp
from sqlalchemy import select

from docguard.core import security
from docguard.models import Account, AuditRecord, Document
from docguard.services.mfa_service import MfaEngine

NOW = datetime(2030, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
PASSWORD = "Correct-Horse-42!"


def make_account(db, email="alice@example.com", password=PASSWORD, name=None) -> Account:
    account = Account(email=email, name=name, password_hash=security.hash_password(password))
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def make_document(db, owner: Account, file_name="report.pdf") -> Document:
    document = Document(
        owner_id=owner.id,
        file_name=file_name,
        size_bytes=128,
        mime_type="application/pdf",
        storage_path=f"{owner.id}/{file_name}",
        bucket_name="documents",
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    return document


def enable_mfa(db, audit, settings, account: Account, now=NOW):
    engine = MfaEngine(db, audit, settings)
    secret = engine.initiate_setup(account.id).data["secret"]
    result = engine.complete_setup(account.id, secret, pyotp.TOTP(secret).at(now), now)
    assert result.success
    return secret, result.data["backup_codes"]


def wrong_code(secret: str, now=NOW) -> str:
    totp = pyotp.TOTP(secret)
    accepted = {totp.at(now + timedelta(seconds=offset)) for offset in (-30, 0, 30)}
    return next(c for c in ("000000", "111111", "222222", "333333") if c not in accepted)


def audit_actions(session_factory, account_id=None):
    with session_factory() as db:
        stmt = select(AuditRecord).order_by(AuditRecord.id.asc())
        if account_id is not None:
            stmt = stmt.where(AuditRecord.account_id == account_id)
        return [(r.action, r.success) for r in db.scalars(stmt)]
