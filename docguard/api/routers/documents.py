from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from docguard.api.deps import get_current_session, get_document_service, get_rbac, raise_for_result
from docguard.models import PermissionLevel
from docguard.schemas.documents import (
    DocumentList,
    DocumentOut,
    DocumentPermissions,
    DownloadUrl,
    PermissionOut,
    ShareRequest,
    SharedDocumentOut,
)
from docguard.services.document_service import ACCESS_DENIED, DocumentService
from docguard.services.rbac_service import DocumentAction, RbacEngine
from docguard.services.session_service import Authenticated

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("", response_model=DocumentList)
def list_documents(
    session: Authenticated = Depends(get_current_session),
    documents: DocumentService = Depends(get_document_service),
):
    result = raise_for_result(documents.list_accessible(session.account_id))
    shared = [
        SharedDocumentOut(
            **DocumentOut.model_validate(item.document).model_dump(),
            permission_level=item.permission_level,
            owner_email=item.owner_email,
            expires_at=item.expires_at,
        )
        for item in result.data["shared"]
    ]
    owned = [DocumentOut.model_validate(d) for d in result.data["owned"]]
    return DocumentList(owned=owned, shared=shared)


@router.post("", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
def upload_document(
    file: UploadFile = File(...),
    description: Optional[str] = Form(default=None),
    session: Authenticated = Depends(get_current_session),
    documents: DocumentService = Depends(get_document_service),
):
    data = file.file.read()
    content_type = file.content_type or "application/octet-stream"
    result = raise_for_result(
        documents.upload(session.account_id, file.filename or "upload", data, content_type, description)
    )
    return result.data["document"]


@router.get("/{document_id}/download", response_model=DownloadUrl)
def download_document(
    document_id: str,
    session: Authenticated = Depends(get_current_session),
    documents: DocumentService = Depends(get_document_service),
):
    result = raise_for_result(documents.download_url(session.account_id, document_id))
    return DownloadUrl(**result.data)


@router.delete("/{document_id}")
def delete_document(
    document_id: str,
    session: Authenticated = Depends(get_current_session),
    documents: DocumentService = Depends(get_document_service),
):
    raise_for_result(documents.delete(session.account_id, document_id))
    return {"status": "ok"}


@router.get("/{document_id}/permissions", response_model=DocumentPermissions)
def document_permissions(
    document_id: str,
    session: Authenticated = Depends(get_current_session),
    rbac: RbacEngine = Depends(get_rbac),
):
    if not rbac.can_perform(session.account_id, document_id, DocumentAction.VIEW):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=ACCESS_DENIED)
    level = rbac.get_level(session.account_id, document_id)
    # only the owner sees who else holds access
    shared_with = rbac.list_shared_with(document_id) if level == PermissionLevel.OWNER else []
    return DocumentPermissions(
        document_id=document_id,
        permission_level=level,
        shared_with=[PermissionOut.model_validate(item) for item in shared_with],
    )


@router.post("/{document_id}/share")
def share_document(
    document_id: str,
    body: ShareRequest,
    session: Authenticated = Depends(get_current_session),
    rbac: RbacEngine = Depends(get_rbac),
):
    result = raise_for_result(
        rbac.share(document_id, session.account_id, body.user_id, body.permission_level, body.expires_at)
    )
    return {
        "status": "ok",
        "user_id": result.data["user_id"],
        "permission_level": result.data["permission_level"].value,
        "expires_at": result.data["expires_at"],
    }


@router.delete("/{document_id}/share/{user_id}")
def revoke_access(
    document_id: str,
    user_id: str,
    session: Authenticated = Depends(get_current_session),
    rbac: RbacEngine = Depends(get_rbac),
):
    result = raise_for_result(rbac.revoke(document_id, session.account_id, user_id))
    return {"status": "ok", "user_id": user_id, "previous_level": result.data["previous_level"].value}
