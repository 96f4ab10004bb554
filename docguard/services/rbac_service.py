"""
Document-level role-based access control.

Levels form a total order (owner > editor > viewer), so every check is a
single integer comparison against the level an action requires.
"""
import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docguard.core.config import Settings
from docguard.core.time import as_utc, utcnow
from docguard.models import Account, AuditAction, Document, DocumentPermission, PermissionLevel
from docguard.services.audit_service import AuditSink
from docguard.services.results import FailureReason, ServiceResult

logger = logging.getLogger(__name__)


class DocumentAction(str, enum.Enum):
    VIEW = "view"
    DOWNLOAD = "download"
    EDIT = "edit"
    DELETE = "delete"
    SHARE = "share"


ACTION_REQUIREMENTS = {
    DocumentAction.VIEW: PermissionLevel.VIEWER,
    DocumentAction.DOWNLOAD: PermissionLevel.VIEWER,
    DocumentAction.EDIT: PermissionLevel.EDITOR,
    DocumentAction.DELETE: PermissionLevel.OWNER,
    DocumentAction.SHARE: PermissionLevel.OWNER,
}

SHAREABLE_LEVELS = (PermissionLevel.EDITOR, PermissionLevel.VIEWER)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass
class SharedWith:
    permission_id: str
    user_id: str
    user_email: str
    user_name: Optional[str]
    permission_level: PermissionLevel
    granted_by: str
    granted_at: datetime
    expires_at: Optional[datetime]


@dataclass
class SharedDocument:
    document: Document
    permission_level: PermissionLevel
    owner_email: str
    expires_at: Optional[datetime]


def _active_grant(now: datetime):
    return or_(DocumentPermission.expires_at_utc.is_(None), DocumentPermission.expires_at_utc > now)


class RbacEngine:
    def __init__(self, db: Session, audit: AuditSink, settings: Settings):
        self.db = db
        self.audit = audit
        self.settings = settings

    def get_level(self, account_id: str, document_id: str, now: datetime | None = None) -> Optional[PermissionLevel]:
        now = as_utc(now) if now else utcnow()
        try:
            document = self.db.get(Document, document_id, populate_existing=True)
            if document is None:
                return None
            if document.owner_id == account_id:
                return PermissionLevel.OWNER

            level = self.db.scalar(
                select(DocumentPermission.permission_level).where(
                    DocumentPermission.document_id == document_id,
                    DocumentPermission.user_id == account_id,
                    _active_grant(now),
                )
            )
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"[RBAC] Error getting permission level for {account_id} on {document_id}", exc_info=True)
            return None
        return level

    def can_access(
        self,
        account_id: str,
        document_id: str,
        required: PermissionLevel = PermissionLevel.VIEWER,
        now: datetime | None = None,
    ) -> bool:
        level = self.get_level(account_id, document_id, now)
        return level is not None and level.rank >= required.rank

    def mfa_satisfied(self, account_id: str) -> bool:
        if not self.settings.mfa_enforced:
            return True
        try:
            account = self.db.get(Account, account_id, populate_existing=True)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"[RBAC] Error loading account {account_id}", exc_info=True)
            return False
        return account is not None and bool(account.mfa_enabled)

    def deny_without_mfa(self, account_id: str, document_id: str | None, attempted: str) -> Optional[ServiceResult]:
        if self.mfa_satisfied(account_id):
            return None
        self.audit.record(
            AuditAction.ACCESS_DENIED,
            account_id,
            document_id=document_id,
            success=False,
            error_message="Multi-factor authentication is required",
            metadata={"attemptedAction": attempted, "reason": FailureReason.MFA_REQUIRED.value},
        )
        return ServiceResult.fail(FailureReason.MFA_REQUIRED, "Multi-factor authentication is required")

    def can_perform(
        self,
        account_id: str,
        document_id: str,
        action: DocumentAction,
        now: datetime | None = None,
    ) -> bool:
        action = DocumentAction(action)
        if self.deny_without_mfa(account_id, document_id, action.value):
            return False

        level = self.get_level(account_id, document_id, now)
        if level is None:
            self.audit.record(
                AuditAction.ACCESS_DENIED,
                account_id,
                document_id=document_id,
                success=False,
                error_message=f"No permission to {action.value}",
                metadata={"attemptedAction": action.value, "currentPermission": "none"},
            )
            return False

        allowed = level.rank >= ACTION_REQUIREMENTS[action].rank
        if not allowed:
            self.audit.record(
                AuditAction.ACCESS_DENIED,
                account_id,
                document_id=document_id,
                success=False,
                error_message=f"Insufficient permission to {action.value}",
                metadata={"attemptedAction": action.value, "currentPermission": level.value},
            )
        return allowed

    def _deny_owner_only(self, owner_id: str, document_id: str, attempted: str, target_id: str, message: str) -> ServiceResult:
        self.audit.record(
            AuditAction.ACCESS_DENIED,
            owner_id,
            document_id=document_id,
            success=False,
            error_message=message,
            metadata={"attemptedAction": attempted, "targetUser": target_id},
        )
        return ServiceResult.fail(FailureReason.FORBIDDEN, message)

    def share(
        self,
        document_id: str,
        owner_id: str,
        target_id: str,
        level: PermissionLevel,
        expires_at: datetime | None = None,
        now: datetime | None = None,
    ) -> ServiceResult:
        now = as_utc(now) if now else utcnow()
        denied = self.deny_without_mfa(owner_id, document_id, "share")
        if denied:
            return denied
        if not self.can_access(owner_id, document_id, PermissionLevel.OWNER, now):
            return self._deny_owner_only(owner_id, document_id, "share", target_id, "Only document owner can share")

        level = PermissionLevel(level)
        if level not in SHAREABLE_LEVELS:
            return ServiceResult.fail(FailureReason.INVALID_LEVEL, "Permission level must be editor or viewer")

        if owner_id == target_id:
            self.audit.record(
                AuditAction.SHARE,
                owner_id,
                document_id=document_id,
                success=False,
                error_message="Cannot share document with yourself",
            )
            return ServiceResult.fail(FailureReason.SELF_SHARE, "Cannot share document with yourself")

        try:
            target = self.db.get(Account, target_id)
            if target is None:
                self.audit.record(
                    AuditAction.SHARE,
                    owner_id,
                    document_id=document_id,
                    success=False,
                    error_message="User not found",
                    metadata={"sharedWith": target_id},
                )
                return ServiceResult.fail(FailureReason.USER_NOT_FOUND, "User not found")

            dialect = self.db.get_bind().dialect.name
            insert = _UPSERT_DIALECTS.get(dialect)
            if insert is None:
                logger.error(f"[RBAC] No conflict-resolving insert for dialect {dialect}")
                return ServiceResult.fail(FailureReason.UNAVAILABLE, "Failed to share document")
            stmt = insert(DocumentPermission).values(
                id=str(uuid.uuid4()),
                document_id=document_id,
                user_id=target_id,
                permission_level=level,
                granted_by=owner_id,
                granted_at_utc=now,
                expires_at_utc=as_utc(expires_at),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["document_id", "user_id"],
                set_={
                    "permission_level": stmt.excluded.permission_level,
                    "granted_by": stmt.excluded.granted_by,
                    "granted_at_utc": stmt.excluded.granted_at_utc,
                    "expires_at_utc": stmt.excluded.expires_at_utc,
                },
            )
            self.db.execute(stmt)
            self.db.commit()
            target_email = target.email
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"[RBAC] Error sharing document {document_id} with {target_id}", exc_info=True)
            return ServiceResult.fail(FailureReason.UNAVAILABLE, "Failed to share document")

        self.audit.record(
            AuditAction.SHARE,
            owner_id,
            document_id=document_id,
            metadata={
                "sharedWith": target_id,
                "sharedWithEmail": target_email,
                "permission": level.value,
                "expiresAt": as_utc(expires_at).isoformat() if expires_at else "never",
            },
        )
        return ServiceResult.ok(user_id=target_id, permission_level=level, expires_at=as_utc(expires_at))

    def revoke(self, document_id: str, owner_id: str, target_id: str, now: datetime | None = None) -> ServiceResult:
        denied = self.deny_without_mfa(owner_id, document_id, "revoke")
        if denied:
            return denied
        if not self.can_access(owner_id, document_id, PermissionLevel.OWNER, now):
            return self._deny_owner_only(
                owner_id, document_id, "revoke", target_id, "Only document owner can revoke access"
            )

        try:
            grant = self.db.scalar(
                select(DocumentPermission).where(
                    DocumentPermission.document_id == document_id,
                    DocumentPermission.user_id == target_id,
                )
            )
            deleted = 0
            if grant is not None:
                previous = grant.permission_level
                deleted = self.db.execute(
                    delete(DocumentPermission)
                    .where(DocumentPermission.id == grant.id)
                    .execution_options(synchronize_session=False)
                ).rowcount
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"[RBAC] Error revoking {target_id} on {document_id}", exc_info=True)
            return ServiceResult.fail(FailureReason.UNAVAILABLE, "Failed to revoke access")

        if deleted == 0:
            return ServiceResult.fail(FailureReason.NOT_FOUND, "Permission not found")

        self.audit.record(
            AuditAction.REVOKE,
            owner_id,
            document_id=document_id,
            metadata={"revokedFrom": target_id, "previousPermission": previous.value},
        )
        return ServiceResult.ok(user_id=target_id, previous_level=previous)

    def list_shared_with(self, document_id: str, now: datetime | None = None) -> List[SharedWith]:
        now = as_utc(now) if now else utcnow()
        try:
            rows = self.db.execute(
                select(DocumentPermission, Account)
                .join(Account, DocumentPermission.user_id == Account.id)
                .where(DocumentPermission.document_id == document_id, _active_grant(now))
                .order_by(DocumentPermission.granted_at_utc.desc())
            ).all()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"[RBAC] Error getting shared users for {document_id}", exc_info=True)
            return []
        return [
            SharedWith(
                permission_id=permission.id,
                user_id=account.id,
                user_email=account.email,
                user_name=account.name,
                permission_level=permission.permission_level,
                granted_by=permission.granted_by,
                granted_at=as_utc(permission.granted_at_utc),
                expires_at=as_utc(permission.expires_at_utc),
            )
            for permission, account in rows
        ]

    def list_accessible_by(self, account_id: str, now: datetime | None = None) -> dict:
        """Owned documents plus documents shared with the account through a live grant."""
        now = as_utc(now) if now else utcnow()
        try:
            owned = list(
                self.db.scalars(
                    select(Document).where(Document.owner_id == account_id).order_by(Document.uploaded_at_utc.desc())
                )
            )
            rows = self.db.execute(
                select(Document, DocumentPermission, Account.email)
                .join(DocumentPermission, DocumentPermission.document_id == Document.id)
                .join(Account, Document.owner_id == Account.id)
                .where(DocumentPermission.user_id == account_id, _active_grant(now))
                .order_by(DocumentPermission.granted_at_utc.desc())
            ).all()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"[RBAC] Error getting accessible documents for {account_id}", exc_info=True)
            return {"owned": [], "shared": []}
        shared = [
            SharedDocument(
                document=document,
                permission_level=permission.permission_level,
                owner_email=owner_email,
                expires_at=as_utc(permission.expires_at_utc),
            )
            for document, permission, owner_email in rows
        ]
        return {"owned": owned, "shared": shared}
