from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class AuditRecordOut(BaseModel):
    id: int
    at_utc: datetime
    action: str
    account_id: str
    document_id: Optional[str] = None
    success: bool
    error_message: Optional[str] = None
    details: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    model_config = {"from_attributes": True}


class AuditPage(BaseModel):
    items: list[AuditRecordOut]
    total: int
