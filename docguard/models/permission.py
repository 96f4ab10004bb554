import enum
import uuid

from sqlalchemy import Column, DateTime, Enum, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from docguard.core.time import utcnow
from docguard.db.base import Base


class PermissionLevel(str, enum.Enum):
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"

    @property
    def rank(self) -> int:
        return PERMISSION_RANK[self]


PERMISSION_RANK = {
    PermissionLevel.OWNER: 3,
    PermissionLevel.EDITOR: 2,
    PermissionLevel.VIEWER: 1,
}


class DocumentPermission(Base):
    """A grant of editor/viewer access on one document to one non-owner account."""
    __tablename__ = "document_permissions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    document_id = Column(String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    permission_level = Column(Enum(PermissionLevel), nullable=False)
    granted_by = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    granted_at_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at_utc = Column(DateTime(timezone=True), nullable=True)

    document = relationship("Document", back_populates="permissions")
    user = relationship("Account", foreign_keys=[user_id])
    grantor = relationship("Account", foreign_keys=[granted_by])

    __table_args__ = (
        UniqueConstraint("document_id", "user_id", name="uq_document_permission"),
    )
