import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from docguard.core.time import utcnow
from docguard.db.base import Base


class Document(Base):
    """Metadata for a stored file. The bytes live in object storage under storage_path."""
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    size_bytes = Column(Integer, nullable=False)
    mime_type = Column(String(255), nullable=False)
    storage_path = Column(String(512), nullable=False)
    bucket_name = Column(String(64), nullable=False, default="documents")
    description = Column(Text, nullable=True)
    uploaded_at_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    owner = relationship("Account", back_populates="documents")
    permissions = relationship("DocumentPermission", back_populates="document", cascade="all, delete-orphan")
