"""
TOTP multi-factor authentication: setup, verification, backup codes, disable.

The TOTP secret is only persisted once a code generated from it has been
verified, so an abandoned setup leaves the account untouched.
"""
import logging
from datetime import datetime
from typing import Optional

from cryptography.fernet import InvalidToken
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docguard.core import security
from docguard.core.config import Settings
from docguard.core.encryption import decrypt_secret, encrypt_secret
from docguard.core.mfa import (
    build_otpauth_and_qr,
    generate_backup_codes,
    generate_totp_secret,
    hash_backup_code,
    verify_otp,
)
from docguard.models import Account, AuditAction, MfaBackupCode
from docguard.services.audit_service import AuditSink
from docguard.services.results import FailureReason, ServiceResult

logger = logging.getLogger(__name__)

METHOD_TOTP = "totp"
METHOD_BACKUP_CODE = "backup_code"


class MfaEngine:
    def __init__(self, db: Session, audit: AuditSink, settings: Settings):
        self.db = db
        self.audit = audit
        self.settings = settings

    @property
    def _master_key(self) -> str:
        return self.settings.encryption_master_key or self.settings.session_secret

    def _get_account(self, account_id: str) -> Optional[Account]:
        return self.db.get(Account, account_id, populate_existing=True)

    def _unavailable(self, action: str, account_id: str) -> ServiceResult:
        self.db.rollback()
        logger.error(f"[MFA] Store failure during {action} for account {account_id}", exc_info=True)
        return ServiceResult.fail(FailureReason.UNAVAILABLE, f"Failed to {action}")

    def remaining_backup_codes(self, account_id: str) -> int:
        stmt = select(func.count()).select_from(MfaBackupCode).where(MfaBackupCode.account_id == account_id)
        return self.db.scalar(stmt) or 0

    def status(self, account_id: str) -> ServiceResult:
        try:
            account = self._get_account(account_id)
            if account is None:
                return ServiceResult.fail(FailureReason.NOT_AUTHENTICATED, "Not authenticated")
            return ServiceResult.ok(
                enabled=bool(account.mfa_enabled),
                enforced=self.settings.mfa_enforced,
                remaining_backup_codes=self.remaining_backup_codes(account_id) if account.mfa_enabled else 0,
            )
        except SQLAlchemyError:
            return self._unavailable("check MFA status", account_id)

    def initiate_setup(self, account_id: str) -> ServiceResult:
        try:
            account = self._get_account(account_id)
        except SQLAlchemyError:
            return self._unavailable("initialize MFA setup", account_id)
        if account is None:
            return ServiceResult.fail(FailureReason.NOT_AUTHENTICATED, "Not authenticated")
        if account.mfa_enabled:
            return ServiceResult.fail(FailureReason.ALREADY_ENABLED, "MFA is already enabled")

        secret = generate_totp_secret()
        otpauth_url, qr_code = build_otpauth_and_qr(account.email, secret, self.settings.totp_issuer)

        self.audit.record(AuditAction.MFA_SETUP_INITIATED, account.id, metadata={"email": account.email})
        return ServiceResult.ok(secret=secret, otpauth_url=otpauth_url, qr_code=qr_code)

    def complete_setup(self, account_id: str, secret: str, code: str, now: datetime | None = None) -> ServiceResult:
        try:
            account = self._get_account(account_id)
            if account is None:
                return ServiceResult.fail(FailureReason.NOT_AUTHENTICATED, "Not authenticated")
            if account.mfa_enabled:
                return ServiceResult.fail(FailureReason.ALREADY_ENABLED, "MFA is already enabled")

            if not verify_otp(secret, code, self.settings.totp_issuer, self.settings.totp_valid_window, now):
                self.audit.record(
                    AuditAction.MFA_SETUP_FAILED,
                    account.id,
                    success=False,
                    error_message="Invalid verification code",
                )
                return ServiceResult.fail(FailureReason.INVALID_CODE, "Invalid verification code")

            backup_codes = generate_backup_codes(self.settings.backup_code_count)
            self.db.execute(delete(MfaBackupCode).where(MfaBackupCode.account_id == account.id))
            self.db.add_all(
                [MfaBackupCode(account_id=account.id, code_hash=hash_backup_code(c)) for c in backup_codes]
            )
            account.mfa_secret = encrypt_secret(secret, self._master_key)
            account.mfa_enabled = True
            self.db.add(account)
            self.db.commit()
        except SQLAlchemyError:
            return self._unavailable("complete MFA setup", account_id)

        logger.info(f"[MFA] Enabled for account {account_id}")
        self.audit.record(
            AuditAction.MFA_ENABLED,
            account_id,
            metadata={"backupCodesGenerated": len(backup_codes)},
        )
        return ServiceResult.ok(backup_codes=backup_codes)

    def verify_code(self, account_id: str, code: str, now: datetime | None = None) -> ServiceResult:
        try:
            account = self._get_account(account_id)
        except SQLAlchemyError:
            return self._unavailable("verify MFA code", account_id)
        if account is None or not account.mfa_enabled or not account.mfa_secret:
            self.audit.record(
                AuditAction.MFA_VERIFICATION,
                account_id,
                success=False,
                error_message="MFA not configured",
                metadata={"method": METHOD_TOTP},
            )
            return ServiceResult.fail(FailureReason.NOT_CONFIGURED, "MFA not configured")

        try:
            secret = decrypt_secret(account.mfa_secret, self._master_key)
        except InvalidToken:
            logger.error(f"[MFA] Stored secret for account {account_id} cannot be decrypted with the current master key")
            self.audit.record(
                AuditAction.MFA_VERIFICATION,
                account_id,
                success=False,
                error_message="MFA secret unreadable",
                metadata={"method": METHOD_TOTP},
            )
            return ServiceResult.fail(FailureReason.UNAVAILABLE, "Failed to verify MFA code")
        valid = verify_otp(secret, code, self.settings.totp_issuer, self.settings.totp_valid_window, now)

        self.audit.record(
            AuditAction.MFA_VERIFICATION,
            account_id,
            success=valid,
            error_message=None if valid else "Invalid MFA code",
            metadata={"method": METHOD_TOTP},
        )
        if not valid:
            return ServiceResult.fail(FailureReason.INVALID_CODE, "Invalid verification code")
        return ServiceResult.ok(method=METHOD_TOTP)

    def verify_backup_code(self, account_id: str, code: str) -> ServiceResult:
        """Consume a backup code. The DELETE is the check, so a code can succeed only once."""
        try:
            account = self._get_account(account_id)
            if account is None or not account.mfa_enabled:
                consumed = False
            else:
                result = self.db.execute(
                    delete(MfaBackupCode).where(
                        MfaBackupCode.account_id == account_id,
                        MfaBackupCode.code_hash == hash_backup_code(code or ""),
                    )
                )
                consumed = result.rowcount == 1
            self.db.commit()
            remaining = self.remaining_backup_codes(account_id)
        except SQLAlchemyError:
            return self._unavailable("verify backup code", account_id)

        self.audit.record(
            AuditAction.MFA_BACKUP_CODE_USED,
            account_id,
            success=consumed,
            error_message=None if consumed else "Invalid backup code",
            metadata={"method": METHOD_BACKUP_CODE, "remaining": remaining},
        )
        if not consumed:
            return ServiceResult.fail(FailureReason.INVALID_CODE, "Invalid backup code")
        logger.info(f"[MFA] Backup code used for account {account_id}, {remaining} remaining")
        return ServiceResult.ok(method=METHOD_BACKUP_CODE, remaining_backup_codes=remaining)

    def disable(self, account_id: str, password: str) -> ServiceResult:
        try:
            account = self._get_account(account_id)
        except SQLAlchemyError:
            return self._unavailable("disable MFA", account_id)
        if account is None:
            return ServiceResult.fail(FailureReason.NOT_AUTHENTICATED, "Not authenticated")
        if not account.mfa_enabled:
            return ServiceResult.fail(FailureReason.NOT_CONFIGURED, "MFA is not enabled")

        if not security.verify_password(password, account.password_hash):
            self.audit.record(
                AuditAction.MFA_DISABLE_FAILED,
                account_id,
                success=False,
                error_message="Invalid password",
            )
            return ServiceResult.fail(FailureReason.INVALID_PASSWORD, "Invalid password")

        if self.settings.mfa_enforced:
            self.audit.record(
                AuditAction.MFA_DISABLE_FAILED,
                account_id,
                success=False,
                error_message="Multi-factor authentication is required",
            )
            return ServiceResult.fail(FailureReason.MFA_REQUIRED, "Multi-factor authentication is required")

        try:
            self.db.execute(delete(MfaBackupCode).where(MfaBackupCode.account_id == account_id))
            account.mfa_enabled = False
            account.mfa_secret = None
            self.db.add(account)
            self.db.commit()
        except SQLAlchemyError:
            return self._unavailable("disable MFA", account_id)

        logger.info(f"[MFA] Disabled for account {account_id}")
        self.audit.record(AuditAction.MFA_DISABLED, account_id)
        return ServiceResult.ok()
