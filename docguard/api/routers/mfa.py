from fastapi import APIRouter, Depends

from docguard.api.deps import get_current_session, get_mfa_engine, raise_for_result
from docguard.schemas.mfa import (
    MfaDisableRequest,
    MfaSetupCompleteRequest,
    MfaSetupCompleteResponse,
    MfaSetupResponse,
    MfaStatus,
)
from docguard.services.mfa_service import MfaEngine
from docguard.services.session_service import Authenticated

router = APIRouter(prefix="/mfa", tags=["mfa"])


@router.get("/status", response_model=MfaStatus)
def mfa_status(session: Authenticated = Depends(get_current_session), mfa: MfaEngine = Depends(get_mfa_engine)):
    result = raise_for_result(mfa.status(session.account_id))
    return MfaStatus(**result.data)


@router.post("/setup", response_model=MfaSetupResponse)
def setup_mfa(session: Authenticated = Depends(get_current_session), mfa: MfaEngine = Depends(get_mfa_engine)):
    result = raise_for_result(mfa.initiate_setup(session.account_id))
    return MfaSetupResponse(**result.data)


@router.post("/setup/complete", response_model=MfaSetupCompleteResponse)
def complete_mfa_setup(
    body: MfaSetupCompleteRequest,
    session: Authenticated = Depends(get_current_session),
    mfa: MfaEngine = Depends(get_mfa_engine),
):
    result = raise_for_result(mfa.complete_setup(session.account_id, body.secret, body.code))
    return MfaSetupCompleteResponse(backup_codes=result.data["backup_codes"])


@router.post("/disable")
def disable_mfa(
    body: MfaDisableRequest,
    session: Authenticated = Depends(get_current_session),
    mfa: MfaEngine = Depends(get_mfa_engine),
):
    raise_for_result(mfa.disable(session.account_id, body.password))
    return {"status": "ok"}
