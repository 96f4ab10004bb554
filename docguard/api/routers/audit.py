from fastapi import APIRouter, Depends, Query

from docguard.api.deps import get_audit, get_current_session
from docguard.schemas.audit import AuditPage, AuditRecordOut
from docguard.services.audit_service import AuditSink
from docguard.services.session_service import Authenticated

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/me", response_model=AuditPage)
def my_audit_trail(
    limit: int = Query(default=100, ge=1, le=1000),
    session: Authenticated = Depends(get_current_session),
    audit: AuditSink = Depends(get_audit),
):
    records = audit.records_for_account(session.account_id, limit)
    return AuditPage(items=[AuditRecordOut.model_validate(r) for r in records], total=len(records))
