"""Document metadata operations gated by RBAC before any storage call."""
import logging
import uuid
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docguard.core.config import Settings
from docguard.models import AuditAction, Document, DocumentPermission
from docguard.services.audit_service import AuditSink
from docguard.services.rbac_service import DocumentAction, RbacEngine
from docguard.services.results import FailureReason, ServiceResult
from docguard.services.storage import ObjectStorage, StorageError

logger = logging.getLogger(__name__)

ACCESS_DENIED = "Document not found or access denied"


def build_storage_path(owner_id: str, file_name: str) -> str:
    _, dot, extension = file_name.rpartition(".")
    suffix = f".{extension.lower()}" if dot and extension else ""
    return f"{owner_id}/{uuid.uuid4()}{suffix}"


class DocumentService:
    def __init__(self, db: Session, audit: AuditSink, settings: Settings, storage: ObjectStorage):
        self.db = db
        self.audit = audit
        self.settings = settings
        self.storage = storage
        self.rbac = RbacEngine(db, audit, settings)

    def upload(
        self,
        owner_id: str,
        file_name: str,
        data: bytes,
        content_type: str,
        description: str | None = None,
    ) -> ServiceResult:
        denied = self.rbac.deny_without_mfa(owner_id, None, "upload")
        if denied:
            return denied

        error = None
        if not data:
            error = "No file provided"
        elif len(data) > self.settings.max_upload_bytes:
            error = f"File size exceeds maximum of {self.settings.max_upload_bytes // (1024 * 1024)}MB"
        elif content_type not in self.settings.allowed_mime_types:
            error = f"File type {content_type} is not allowed"
        if error:
            self.audit.record(
                AuditAction.UPLOAD,
                owner_id,
                success=False,
                error_message=error,
                metadata={"fileName": file_name, "mimeType": content_type, "size": len(data or b"")},
            )
            return ServiceResult.fail(FailureReason.INVALID_FILE, error)

        path = build_storage_path(owner_id, file_name)
        try:
            stored_path = self.storage.put_object(path, data, content_type)
        except StorageError as e:
            self.audit.record(AuditAction.UPLOAD, owner_id, success=False, error_message=str(e))
            return ServiceResult.fail(FailureReason.STORAGE_ERROR, "Failed to upload file")

        document = Document(
            owner_id=owner_id,
            file_name=file_name,
            size_bytes=len(data),
            mime_type=content_type,
            storage_path=stored_path,
            bucket_name=self.settings.storage_bucket,
            description=description,
        )
        try:
            self.db.add(document)
            self.db.commit()
            self.db.refresh(document)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Failed to save metadata for {stored_path}", exc_info=True)
            try:
                self.storage.delete_object(stored_path)
            except StorageError:
                logger.warning(f"Orphaned object left in storage: {stored_path}")
            return ServiceResult.fail(FailureReason.UNAVAILABLE, "Failed to save document")

        logger.info(f"Document {document.id} uploaded by {owner_id} ({len(data)} bytes)")
        self.audit.record(
            AuditAction.UPLOAD,
            owner_id,
            document_id=document.id,
            metadata={"fileName": file_name, "mimeType": content_type, "size": len(data)},
        )
        return ServiceResult.ok(document=document)

    def _reload(self, document_id: str) -> Optional[Document]:
        # the row may have been deleted since the permission check
        try:
            return self.db.get(Document, document_id, populate_existing=True)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Failed to load document {document_id}", exc_info=True)
            return None

    def get(self, account_id: str, document_id: str) -> ServiceResult:
        if not self.rbac.can_perform(account_id, document_id, DocumentAction.VIEW):
            return ServiceResult.fail(FailureReason.FORBIDDEN, ACCESS_DENIED)
        document = self._reload(document_id)
        if document is None:
            return ServiceResult.fail(FailureReason.NOT_FOUND, ACCESS_DENIED)
        self.audit.record(AuditAction.VIEW, account_id, document_id=document_id)
        return ServiceResult.ok(document=document, permission_level=self.rbac.get_level(account_id, document_id))

    def list_accessible(self, account_id: str) -> ServiceResult:
        denied = self.rbac.deny_without_mfa(account_id, None, "list")
        if denied:
            return denied
        accessible = self.rbac.list_accessible_by(account_id)
        self.audit.record(
            AuditAction.LIST,
            account_id,
            metadata={"owned": len(accessible["owned"]), "shared": len(accessible["shared"])},
        )
        return ServiceResult.ok(**accessible)

    def download_url(self, account_id: str, document_id: str) -> ServiceResult:
        # authorization must complete before storage is asked to sign anything
        if not self.rbac.can_perform(account_id, document_id, DocumentAction.DOWNLOAD):
            return ServiceResult.fail(FailureReason.FORBIDDEN, ACCESS_DENIED)

        document = self._reload(document_id)
        if document is None:
            return ServiceResult.fail(FailureReason.NOT_FOUND, ACCESS_DENIED)
        try:
            url = self.storage.get_signed_url(document.storage_path, self.settings.signed_url_ttl_seconds)
        except StorageError as e:
            self.audit.record(
                AuditAction.DOWNLOAD,
                account_id,
                document_id=document_id,
                success=False,
                error_message=str(e),
            )
            return ServiceResult.fail(FailureReason.STORAGE_ERROR, "Failed to generate download URL")

        self.audit.record(
            AuditAction.DOWNLOAD,
            account_id,
            document_id=document_id,
            metadata={"fileName": document.file_name, "ttlSeconds": self.settings.signed_url_ttl_seconds},
        )
        return ServiceResult.ok(url=url, expires_in=self.settings.signed_url_ttl_seconds)

    def delete(self, account_id: str, document_id: str) -> ServiceResult:
        if not self.rbac.can_perform(account_id, document_id, DocumentAction.DELETE):
            return ServiceResult.fail(FailureReason.FORBIDDEN, ACCESS_DENIED)

        document = self._reload(document_id)
        if document is None:
            return ServiceResult.fail(FailureReason.NOT_FOUND, ACCESS_DENIED)
        storage_path, file_name = document.storage_path, document.file_name
        try:
            self.storage.delete_object(storage_path)
        except StorageError:
            # metadata is still removed; the object becomes an orphan for cleanup
            logger.error(f"Error deleting {storage_path} from storage", exc_info=True)

        try:
            self.db.execute(delete(DocumentPermission).where(DocumentPermission.document_id == document_id))
            self.db.execute(delete(Document).where(Document.id == document_id))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Failed to delete document {document_id}", exc_info=True)
            return ServiceResult.fail(FailureReason.UNAVAILABLE, "Failed to delete document")

        self.audit.record(
            AuditAction.DELETE,
            account_id,
            document_id=document_id,
            metadata={"fileName": file_name},
        )
        return ServiceResult.ok()
