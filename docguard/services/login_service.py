"""Login orchestration: password step, optional MFA step, session issue."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docguard.core.config import Settings
from docguard.core.time import as_utc, utcnow
from docguard.models import Account, AuditAction
from docguard.services.audit_service import AuditSink
from docguard.services.credential_service import CredentialAuthenticator, LoginStatus, ACCOUNT_LOCKED
from docguard.services.mfa_service import METHOD_BACKUP_CODE, METHOD_TOTP, MfaEngine
from docguard.services.results import FailureReason
from docguard.services.session_service import MfaPending, SessionManager

logger = logging.getLogger(__name__)


@dataclass
class LoginOutcome:
    status: LoginStatus
    carrier: Optional[str] = None
    mfa_required: bool = False
    account_id: Optional[str] = None
    message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == LoginStatus.OK


class LoginFlow:
    def __init__(self, db: Session, audit: AuditSink, settings: Settings):
        self.db = db
        self.audit = audit
        self.settings = settings
        self.credentials = CredentialAuthenticator(db, audit, settings)
        self.mfa = MfaEngine(db, audit, settings)
        self.sessions = SessionManager(audit, settings)

    def login(self, email: str, password: str, now: datetime | None = None) -> LoginOutcome:
        now = as_utc(now) if now else utcnow()
        result = self.credentials.authenticate(email, password, now)
        if result.status != LoginStatus.OK:
            return LoginOutcome(result.status, message=result.message)

        account = result.account
        if account.mfa_enabled:
            self.audit.record(
                AuditAction.LOGIN_ATTEMPT,
                account.id,
                metadata={"stage": "password", "mfaRequired": True},
            )
            return LoginOutcome(
                LoginStatus.OK,
                carrier=self.sessions.issue_pending(account, now),
                mfa_required=True,
                account_id=account.id,
            )

        self.audit.record(AuditAction.LOGIN_SUCCESS, account.id, metadata={"mfa": False})
        return LoginOutcome(LoginStatus.OK, carrier=self.sessions.issue(account, now), account_id=account.id)

    def complete_mfa(
        self,
        pending_carrier: str | None,
        code: str,
        method: str = METHOD_TOTP,
        now: datetime | None = None,
    ) -> LoginOutcome:
        now = as_utc(now) if now else utcnow()
        check = self.sessions.validate(pending_carrier, now)
        if not isinstance(check.state, MfaPending):
            self.audit.record(
                AuditAction.LOGIN_FAILED,
                None,
                success=False,
                error_message="No pending MFA session",
                metadata={"reason": check.expired.value if check.expired else "missing"},
            )
            return LoginOutcome(LoginStatus.INVALID, message="No pending MFA session")

        pending = check.state
        try:
            account = self.db.get(Account, pending.account_id, populate_existing=True)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Failed to load account {pending.account_id} for MFA completion", exc_info=True)
            return LoginOutcome(LoginStatus.UNAVAILABLE, message="Authentication is temporarily unavailable.")
        if account is None:
            return LoginOutcome(LoginStatus.INVALID, message="No pending MFA session")

        lockout_until = as_utc(account.lockout_until_utc)
        if lockout_until and lockout_until > now:
            self.audit.record(
                AuditAction.LOGIN_FAILED,
                account.id,
                success=False,
                error_message="Account locked",
                metadata={"stage": "mfa"},
            )
            return LoginOutcome(LoginStatus.LOCKED, account_id=account.id, message=ACCOUNT_LOCKED)

        if method == METHOD_BACKUP_CODE:
            verification = self.mfa.verify_backup_code(account.id, code)
        else:
            verification = self.mfa.verify_code(account.id, code, now)

        if not verification.success:
            if verification.reason == FailureReason.UNAVAILABLE:
                return LoginOutcome(LoginStatus.UNAVAILABLE, message=verification.error)
            try:
                state = self.credentials.register_failure(account, now)
            except SQLAlchemyError:
                self.db.rollback()
                logger.error(f"Failed to record MFA failure for {account.id}", exc_info=True)
                return LoginOutcome(LoginStatus.UNAVAILABLE, message="Authentication is temporarily unavailable.")
            if state.newly_locked:
                self.audit.record(
                    AuditAction.ACCOUNT_LOCKED,
                    account.id,
                    metadata={
                        "failedAttempts": state.failed_attempts,
                        "lockoutUntil": state.lockout_until.isoformat(),
                        "stage": "mfa",
                    },
                )
                return LoginOutcome(LoginStatus.LOCKED, account_id=account.id, message=ACCOUNT_LOCKED)
            return LoginOutcome(LoginStatus.INVALID, account_id=account.id, message=verification.error)

        try:
            self.credentials.reset_failures(account)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Failed to reset failed attempts for {account.id}", exc_info=True)
            return LoginOutcome(LoginStatus.UNAVAILABLE, message="Authentication is temporarily unavailable.")

        self.audit.record(AuditAction.LOGIN_SUCCESS, account.id, metadata={"mfa": True, "method": method})
        return LoginOutcome(LoginStatus.OK, carrier=self.sessions.issue(account, now), account_id=account.id)
