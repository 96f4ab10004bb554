from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from docguard.models import PermissionLevel


class DocumentOut(BaseModel):
    id: str
    owner_id: str
    file_name: str
    size_bytes: int
    mime_type: str
    description: Optional[str] = None
    uploaded_at_utc: datetime

    model_config = {"from_attributes": True}


class SharedDocumentOut(DocumentOut):
    permission_level: PermissionLevel
    owner_email: str
    expires_at: Optional[datetime] = None


class DocumentList(BaseModel):
    owned: List[DocumentOut]
    shared: List[SharedDocumentOut]


class DownloadUrl(BaseModel):
    url: str
    expires_in: int


class ShareRequest(BaseModel):
    user_id: str
    permission_level: PermissionLevel
    expires_at: Optional[datetime] = None


class PermissionOut(BaseModel):
    permission_id: str
    user_id: str
    user_email: str
    user_name: Optional[str] = None
    permission_level: PermissionLevel
    granted_by: str
    granted_at: datetime
    expires_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DocumentPermissions(BaseModel):
    document_id: str
    permission_level: PermissionLevel
    shared_with: List[PermissionOut]
