import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from docguard.core import security
from docguard.core.config import Settings
from docguard.models import Account, AuditAction
from docguard.services.audit_service import AuditSink
from docguard.services.credential_service import normalize_email
from docguard.services.results import FailureReason, ServiceResult

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, db: Session, audit: AuditSink, settings: Settings):
        self.db = db
        self.audit = audit
        self.settings = settings

    def find_by_email(self, email: str) -> Optional[Account]:
        return self.db.scalar(select(Account).where(Account.email == normalize_email(email)))

    def register(self, email: str, password: str, name: str | None = None) -> ServiceResult:
        email = normalize_email(email)
        missing = security.failed_password_requirements(password)
        if missing:
            return ServiceResult.fail(
                FailureReason.WEAK_PASSWORD,
                "Password does not meet requirements: " + "; ".join(missing),
            )

        try:
            if self.find_by_email(email) is not None:
                return ServiceResult.fail(FailureReason.EMAIL_TAKEN, "Email already exists")
            account = Account(email=email, name=name, password_hash=security.hash_password(password))
            self.db.add(account)
            self.db.commit()
            self.db.refresh(account)
        except IntegrityError:
            # lost a race with a concurrent registration for the same email
            self.db.rollback()
            return ServiceResult.fail(FailureReason.EMAIL_TAKEN, "Email already exists")
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Failed to register account {email}", exc_info=True)
            return ServiceResult.fail(FailureReason.UNAVAILABLE, "Registration is temporarily unavailable")

        logger.info(f"Registered account {account.id} ({email})")
        self.audit.record(AuditAction.REGISTER, account.id, metadata={"email": email})
        return ServiceResult.ok(account=account)
