from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    name: Optional[str] = Field(default=None, max_length=255)


class AccountOut(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    mfa_enabled: bool = False
    created_at_utc: datetime

    model_config = {"from_attributes": True}


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    mfa_required: bool = False
    account_id: str


class VerifyMfaRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=16)
    method: Literal["totp", "backup_code"] = "totp"


class SessionInfo(BaseModel):
    authenticated: bool
    account_id: Optional[str] = None
    email: Optional[str] = None
    mfa_pending: bool = False
    created_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    expires_at: Optional[datetime] = None
