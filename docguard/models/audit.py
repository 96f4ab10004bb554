import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from docguard.core.time import utcnow
from docguard.db.base import Base

UNKNOWN_ACCOUNT = "unknown"


class AuditAction(str, enum.Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"
    VIEW = "view"
    LIST = "list"
    SHARE = "share"
    REVOKE = "revoke"
    ACCESS_DENIED = "access_denied"
    MFA_SETUP_INITIATED = "mfa_setup_initiated"
    MFA_SETUP_FAILED = "mfa_setup_failed"
    MFA_ENABLED = "mfa_enabled"
    MFA_DISABLED = "mfa_disabled"
    MFA_VERIFICATION = "mfa_verification"
    MFA_BACKUP_CODE_USED = "mfa_backup_code_used"
    MFA_DISABLE_FAILED = "mfa_disable_failed"
    LOGIN_ATTEMPT = "login_attempt"
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    SESSION_EXPIRED = "session_expired"
    ACCOUNT_LOCKED = "account_locked"
    REGISTER = "register"


class AuditRecord(Base):
    __tablename__ = "audit_records"

    # integer key doubles as the insertion-order tie breaker
    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(String(36), nullable=False)
    action = Column(String(64), nullable=False, index=True)
    document_id = Column(String(36), nullable=True, index=True)
    success = Column(Boolean, nullable=False, default=True)
    error_message = Column(Text, nullable=True)
    details = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    at_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    archived = Column(Boolean, nullable=False, default=False, index=True)

    __table_args__ = (
        Index("ix_audit_records_account_time", "account_id", "at_utc"),
    )


class AuditArchive(Base):
    __tablename__ = "audit_archives"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    archived_at_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    start_at_utc = Column(DateTime(timezone=True), nullable=False)
    end_at_utc = Column(DateTime(timezone=True), nullable=False)
    record_count = Column(Integer, nullable=False)
    records_json = Column(Text, nullable=False)
    checksum = Column(String(64), nullable=False)
