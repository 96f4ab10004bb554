from .account import Account, MfaBackupCode
from .document import Document
from .permission import DocumentPermission, PermissionLevel, PERMISSION_RANK
from .audit import AuditAction, AuditArchive, AuditRecord, UNKNOWN_ACCOUNT

__all__ = [
    "Account",
    "MfaBackupCode",
    "Document",
    "DocumentPermission",
    "PermissionLevel",
    "PERMISSION_RANK",
    "AuditAction",
    "AuditArchive",
    "AuditRecord",
    "UNKNOWN_ACCOUNT",
]
