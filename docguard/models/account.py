import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from docguard.core.time import utcnow
from docguard.db.base import Base


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=False)
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    lockout_until_utc = Column(DateTime(timezone=True), nullable=True)
    mfa_enabled = Column(Boolean, default=False, nullable=False)
    # Fernet token, present only while MFA is enabled
    mfa_secret = Column(String(255), nullable=True)
    created_at_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    backup_codes = relationship("MfaBackupCode", back_populates="account", cascade="all, delete-orphan")
    documents = relationship("Document", back_populates="owner", cascade="all, delete-orphan")


class MfaBackupCode(Base):
    """One hashed single-use recovery code. Consuming a code deletes its row."""
    __tablename__ = "mfa_backup_codes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    code_hash = Column(String(64), nullable=False)
    created_at_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    account = relationship("Account", back_populates="backup_codes")

    __table_args__ = (
        UniqueConstraint("account_id", "code_hash", name="uq_backup_code_per_account"),
    )
