import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from docguard.core.config import Settings, get_settings
from docguard.db.session import SessionLocal
from docguard.services.account_service import AccountService
from docguard.services.audit_service import AuditSink, RequestContext
from docguard.services.document_service import DocumentService
from docguard.services.login_service import LoginFlow
from docguard.services.mfa_service import MfaEngine
from docguard.services.rbac_service import RbacEngine
from docguard.services.results import FailureReason, ServiceResult
from docguard.services.session_service import Authenticated, SessionManager
from docguard.services.storage import InMemoryStorage, ObjectStorage, SupabaseStorage

logger = logging.getLogger(__name__)

_memory_storage: InMemoryStorage | None = None

FAILURE_STATUS = {
    FailureReason.NOT_AUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    FailureReason.INVALID_PASSWORD: status.HTTP_401_UNAUTHORIZED,
    FailureReason.ALREADY_ENABLED: status.HTTP_400_BAD_REQUEST,
    FailureReason.NOT_CONFIGURED: status.HTTP_400_BAD_REQUEST,
    FailureReason.INVALID_CODE: status.HTTP_400_BAD_REQUEST,
    FailureReason.WEAK_PASSWORD: status.HTTP_400_BAD_REQUEST,
    FailureReason.EMAIL_TAKEN: status.HTTP_400_BAD_REQUEST,
    FailureReason.SELF_SHARE: status.HTTP_400_BAD_REQUEST,
    FailureReason.INVALID_LEVEL: status.HTTP_400_BAD_REQUEST,
    FailureReason.INVALID_FILE: status.HTTP_400_BAD_REQUEST,
    FailureReason.MFA_REQUIRED: status.HTTP_403_FORBIDDEN,
    FailureReason.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    FailureReason.USER_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FailureReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FailureReason.STORAGE_ERROR: status.HTTP_502_BAD_GATEWAY,
    FailureReason.UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent") or "unknown",
    )


def get_audit(
    context: RequestContext = Depends(get_request_context),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> AuditSink:
    return AuditSink(session_factory, context)


def get_storage(settings: Settings = Depends(get_settings)) -> ObjectStorage:
    global _memory_storage
    if settings.storage_url:
        return SupabaseStorage(settings.storage_url, settings.storage_service_key, settings.storage_bucket)
    if _memory_storage is None:
        logger.warning("No storage URL configured; documents are kept in process memory")
        _memory_storage = InMemoryStorage(settings.storage_bucket)
    return _memory_storage


def get_session_manager(
    audit: AuditSink = Depends(get_audit), settings: Settings = Depends(get_settings)
) -> SessionManager:
    return SessionManager(audit, settings)


def get_login_flow(
    db: Session = Depends(get_db),
    audit: AuditSink = Depends(get_audit),
    settings: Settings = Depends(get_settings),
) -> LoginFlow:
    return LoginFlow(db, audit, settings)


def get_account_service(
    db: Session = Depends(get_db),
    audit: AuditSink = Depends(get_audit),
    settings: Settings = Depends(get_settings),
) -> AccountService:
    return AccountService(db, audit, settings)


def get_mfa_engine(
    db: Session = Depends(get_db),
    audit: AuditSink = Depends(get_audit),
    settings: Settings = Depends(get_settings),
) -> MfaEngine:
    return MfaEngine(db, audit, settings)


def get_rbac(
    db: Session = Depends(get_db),
    audit: AuditSink = Depends(get_audit),
    settings: Settings = Depends(get_settings),
) -> RbacEngine:
    return RbacEngine(db, audit, settings)


def get_document_service(
    db: Session = Depends(get_db),
    audit: AuditSink = Depends(get_audit),
    settings: Settings = Depends(get_settings),
    storage: ObjectStorage = Depends(get_storage),
) -> DocumentService:
    return DocumentService(db, audit, settings, storage)


def set_session_cookie(response: Response, settings: Settings, token: str, max_age: int) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=max_age,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


def session_rejected(settings: Settings, detail: str) -> HTTPException:
    cleared = Response()
    clear_session_cookie(cleared, settings)
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"set-cookie": cleared.headers["set-cookie"]},
    )


def get_current_session(
    request: Request,
    response: Response,
    sessions: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
) -> Authenticated:
    """Validate the session carrier, refresh its activity timestamp, or reject with 401."""
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    check = sessions.validate(token)
    if not check.valid:
        raise session_rejected(settings, "Session expired" if check.expired else "Not authenticated")
    if not isinstance(check.state, Authenticated):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="MFA verification required")

    set_session_cookie(response, settings, sessions.touch(check.state), int(sessions.max_duration.total_seconds()))
    return check.state


def raise_for_result(result: ServiceResult) -> ServiceResult:
    if result.success:
        return result
    code = FAILURE_STATUS.get(result.reason, status.HTTP_400_BAD_REQUEST)
    raise HTTPException(status_code=code, detail=result.error)
