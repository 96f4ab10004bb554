from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from docguard.api.deps import (
    clear_session_cookie,
    get_account_service,
    get_login_flow,
    get_session_manager,
    raise_for_result,
    session_rejected,
    set_session_cookie,
)
from docguard.core.config import Settings, get_settings
from docguard.schemas.auth import AccountOut, LoginRequest, LoginResponse, RegisterRequest, SessionInfo, VerifyMfaRequest
from docguard.services.account_service import AccountService
from docguard.services.credential_service import LoginStatus
from docguard.services.login_service import LoginFlow, LoginOutcome
from docguard.services.session_service import Authenticated, MfaPending, SessionManager

router = APIRouter(prefix="/auth", tags=["auth"])


def _raise_for_login(outcome: LoginOutcome) -> None:
    if outcome.status == LoginStatus.UNAVAILABLE:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=outcome.message)
    if outcome.status != LoginStatus.OK:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=outcome.message)


@router.post("/register", response_model=AccountOut, status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, accounts: AccountService = Depends(get_account_service)):
    result = raise_for_result(accounts.register(body.email, body.password, body.name))
    return result.data["account"]


@router.post("/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    response: Response,
    flow: LoginFlow = Depends(get_login_flow),
    settings: Settings = Depends(get_settings),
):
    outcome = flow.login(body.email, body.password)
    _raise_for_login(outcome)
    if outcome.mfa_required:
        max_age = int(flow.sessions.challenge_ttl.total_seconds())
    else:
        max_age = int(flow.sessions.max_duration.total_seconds())
    set_session_cookie(response, settings, outcome.carrier, max_age)
    return LoginResponse(mfa_required=outcome.mfa_required, account_id=outcome.account_id)


@router.post("/verify-mfa", response_model=LoginResponse)
def verify_mfa(
    body: VerifyMfaRequest,
    request: Request,
    response: Response,
    flow: LoginFlow = Depends(get_login_flow),
    settings: Settings = Depends(get_settings),
):
    pending = request.cookies.get(settings.session_cookie_name)
    outcome = flow.complete_mfa(pending, body.code, body.method)
    _raise_for_login(outcome)
    set_session_cookie(response, settings, outcome.carrier, int(flow.sessions.max_duration.total_seconds()))
    return LoginResponse(mfa_required=False, account_id=outcome.account_id)


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    sessions: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
):
    sessions.destroy(request.cookies.get(settings.session_cookie_name))
    clear_session_cookie(response, settings)
    return {"status": "ok"}


@router.post("/extend-session", response_model=SessionInfo)
def extend_session(
    request: Request,
    response: Response,
    sessions: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
):
    check, token = sessions.extend(request.cookies.get(settings.session_cookie_name))
    if token is None:
        raise session_rejected(settings, "Session expired" if check.expired else "Not authenticated")
    set_session_cookie(response, settings, token, int(sessions.max_duration.total_seconds()))
    state = sessions.decode(token)
    return _session_info(state, sessions)


@router.get("/session", response_model=SessionInfo)
def get_session(
    request: Request,
    response: Response,
    sessions: SessionManager = Depends(get_session_manager),
    settings: Settings = Depends(get_settings),
):
    check = sessions.validate(request.cookies.get(settings.session_cookie_name))
    if check.expired:
        clear_session_cookie(response, settings)
    return _session_info(check.state, sessions)


def _session_info(state, sessions: SessionManager) -> SessionInfo:
    if isinstance(state, Authenticated):
        return SessionInfo(
            authenticated=True,
            account_id=state.account_id,
            email=state.email,
            created_at=state.created_at,
            last_activity=state.last_activity,
            expires_at=min(
                state.last_activity + sessions.inactivity_timeout,
                state.created_at + sessions.max_duration,
            ),
        )
    if isinstance(state, MfaPending):
        return SessionInfo(
            authenticated=False,
            account_id=state.account_id,
            email=state.email,
            mfa_pending=True,
            created_at=state.created_at,
            expires_at=state.created_at + sessions.challenge_ttl,
        )
    return SessionInfo(authenticated=False)
