"""
Email/password verification with attempt-count lockout.

The failed-attempt counter and the lockout timestamp are changed by one
UPDATE statement so that parallel failures for the same account cannot both
read the same counter value.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docguard.core import security
from docguard.core.config import Settings
from docguard.core.time import as_utc, utcnow
from docguard.models import Account, AuditAction
from docguard.services.audit_service import AuditSink

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials."
ACCOUNT_LOCKED = "Account is locked. Please try again later."


class LoginStatus(str, enum.Enum):
    OK = "ok"
    LOCKED = "locked"
    INVALID = "invalid"
    UNAVAILABLE = "unavailable"


@dataclass
class AuthResult:
    status: LoginStatus
    account: Optional[Account] = None

    @property
    def message(self) -> str | None:
        if self.status == LoginStatus.LOCKED:
            return ACCOUNT_LOCKED
        if self.status == LoginStatus.INVALID:
            return INVALID_CREDENTIALS
        if self.status == LoginStatus.UNAVAILABLE:
            return "Authentication is temporarily unavailable."
        return None


@dataclass
class FailureState:
    failed_attempts: int
    lockout_until: Optional[datetime]
    newly_locked: bool


def normalize_email(email: str) -> str:
    return email.strip().lower()


class CredentialAuthenticator:
    def __init__(self, db: Session, audit: AuditSink, settings: Settings):
        self.db = db
        self.audit = audit
        self.settings = settings

    def get_account_by_email(self, email: str) -> Optional[Account]:
        stmt = select(Account).where(Account.email == normalize_email(email)).execution_options(populate_existing=True)
        return self.db.scalar(stmt)

    def authenticate(self, email: str, password: str, now: datetime | None = None) -> AuthResult:
        now = as_utc(now) if now else utcnow()
        try:
            return self._authenticate(email, password, now)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Authentication store failure for {normalize_email(email)}", exc_info=True)
            return AuthResult(LoginStatus.UNAVAILABLE)

    def _authenticate(self, email: str, password: str, now: datetime) -> AuthResult:
        account = self.get_account_by_email(email)
        if account is None:
            self.audit.record(
                AuditAction.LOGIN_FAILED,
                None,
                success=False,
                error_message="Unknown email",
                metadata={"email": normalize_email(email)},
            )
            return AuthResult(LoginStatus.INVALID)

        lockout_until = as_utc(account.lockout_until_utc)
        if lockout_until and lockout_until > now:
            self.audit.record(
                AuditAction.LOGIN_FAILED,
                account.id,
                success=False,
                error_message="Account locked",
                metadata={"lockoutUntil": lockout_until.isoformat(), "failedAttempts": account.failed_login_attempts},
            )
            return AuthResult(LoginStatus.LOCKED, account)

        if not security.verify_password(password, account.password_hash):
            state = self.register_failure(account, now)
            self.audit.record(
                AuditAction.LOGIN_FAILED,
                account.id,
                success=False,
                error_message="Invalid password",
                metadata={"failedAttempts": state.failed_attempts},
            )
            if state.newly_locked:
                self.audit.record(
                    AuditAction.ACCOUNT_LOCKED,
                    account.id,
                    success=True,
                    metadata={
                        "failedAttempts": state.failed_attempts,
                        "lockoutUntil": state.lockout_until.isoformat(),
                    },
                )
                return AuthResult(LoginStatus.LOCKED, account)
            return AuthResult(LoginStatus.INVALID, account)

        self.reset_failures(account)
        return AuthResult(LoginStatus.OK, account)

    def register_failure(self, account: Account, now: datetime | None = None) -> FailureState:
        """
        Atomically count one failed attempt and lock the account at the threshold.

        An expired lockout starts a fresh count. Commits before returning.
        """
        now = as_utc(now) if now else utcnow()
        lock_until = now + timedelta(minutes=self.settings.lockout_minutes)
        lock_expired = and_(Account.lockout_until_utc.isnot(None), Account.lockout_until_utc <= now)
        lock_active = and_(Account.lockout_until_utc.isnot(None), Account.lockout_until_utc > now)
        next_count = case((lock_expired, 1), else_=Account.failed_login_attempts + 1)

        self.db.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(
                failed_login_attempts=next_count,
                lockout_until_utc=case(
                    (and_(next_count >= self.settings.max_failed_attempts, ~lock_active), lock_until),
                    (lock_expired, None),
                    else_=Account.lockout_until_utc,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        row = self.db.execute(
            select(Account.failed_login_attempts, Account.lockout_until_utc).where(Account.id == account.id)
        ).one()
        self.db.commit()
        self.db.refresh(account)

        stored_lockout = as_utc(row.lockout_until_utc)
        # exactly one statement observes the count at the threshold
        newly_locked = row.failed_login_attempts == self.settings.max_failed_attempts and stored_lockout == lock_until
        if newly_locked:
            logger.warning(f"Account {account.id} locked after {row.failed_login_attempts} failed attempts")
        return FailureState(row.failed_login_attempts, stored_lockout, newly_locked)

    def reset_failures(self, account: Account) -> None:
        if (account.failed_login_attempts or 0) > 0 or account.lockout_until_utc is not None:
            self.db.execute(
                update(Account)
                .where(Account.id == account.id)
                .values(failed_login_attempts=0, lockout_until_utc=None)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            self.db.refresh(account)
