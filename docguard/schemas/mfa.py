from typing import List

from pydantic import BaseModel, Field


class MfaStatus(BaseModel):
    enabled: bool
    enforced: bool = False
    remaining_backup_codes: int = 0


class MfaSetupResponse(BaseModel):
    secret: str
    otpauth_url: str
    qr_code: str


class MfaSetupCompleteRequest(BaseModel):
    secret: str = Field(..., min_length=16)
    code: str = Field(..., min_length=6, max_length=6)


class MfaSetupCompleteResponse(BaseModel):
    enabled: bool = True
    backup_codes: List[str]


class MfaDisableRequest(BaseModel):
    password: str
