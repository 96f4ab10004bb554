"""Typed outcomes returned by the service layer instead of raising."""
import enum
from dataclasses import dataclass, field
from typing import Any, Optional


class FailureReason(str, enum.Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    ALREADY_ENABLED = "already_enabled"
    NOT_CONFIGURED = "not_configured"
    INVALID_CODE = "invalid_code"
    INVALID_PASSWORD = "invalid_password"
    WEAK_PASSWORD = "weak_password"
    EMAIL_TAKEN = "email_taken"
    MFA_REQUIRED = "mfa_required"
    FORBIDDEN = "forbidden"
    SELF_SHARE = "self_share"
    INVALID_LEVEL = "invalid_level"
    USER_NOT_FOUND = "user_not_found"
    NOT_FOUND = "not_found"
    INVALID_FILE = "invalid_file"
    STORAGE_ERROR = "storage_error"
    UNAVAILABLE = "unavailable"


@dataclass
class ServiceResult:
    success: bool
    error: Optional[str] = None
    reason: Optional[FailureReason] = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data: Any) -> "ServiceResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, reason: FailureReason, error: str) -> "ServiceResult":
        return cls(success=False, error=error, reason=reason)
