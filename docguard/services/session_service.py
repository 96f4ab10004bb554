"""
Session carrier handling.

A carrier is one signed token whose ``state`` claim is either ``mfa_pending``
or ``authenticated``. Both session timestamps travel inside the same
signature, so a carrier can never hold one timestamp without the other.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import jwt

from docguard.core import security
from docguard.core.config import Settings
from docguard.core.time import as_utc, utcnow
from docguard.models import Account, AuditAction
from docguard.services.audit_service import AuditSink

logger = logging.getLogger(__name__)

STATE_MFA_PENDING = "mfa_pending"
STATE_AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class Anonymous:
    pass


@dataclass(frozen=True)
class MfaPending:
    account_id: str
    email: str
    created_at: datetime


@dataclass(frozen=True)
class Authenticated:
    account_id: str
    email: str
    created_at: datetime
    last_activity: datetime


SessionState = Union[Anonymous, MfaPending, Authenticated]


class ExpiryReason(str, enum.Enum):
    INACTIVITY = "inactivity"
    MAX_DURATION = "max-duration"
    CHALLENGE_EXPIRED = "mfa-challenge-expired"
    INVALID = "invalid"


@dataclass
class SessionCheck:
    state: SessionState
    expired: Optional[ExpiryReason] = None

    @property
    def valid(self) -> bool:
        return self.expired is None and not isinstance(self.state, Anonymous)


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# carrier timestamps are integer microseconds since the epoch
def _to_epoch_us(value: datetime) -> int:
    return (as_utc(value) - EPOCH) // timedelta(microseconds=1)


def _from_epoch_us(value) -> datetime:
    return EPOCH + timedelta(microseconds=int(value))


class SessionManager:
    def __init__(self, audit: AuditSink, settings: Settings):
        self.audit = audit
        self.settings = settings

    @property
    def inactivity_timeout(self) -> timedelta:
        return timedelta(minutes=self.settings.session_inactivity_minutes)

    @property
    def max_duration(self) -> timedelta:
        return timedelta(hours=self.settings.session_max_hours)

    @property
    def challenge_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.mfa_challenge_minutes)

    def issue(self, account: Account, now: datetime | None = None) -> str:
        """Mint an authenticated carrier. Call only after every required factor passed."""
        now = as_utc(now) if now else utcnow()
        return self._encode_authenticated(account.id, account.email, now, now)

    def issue_pending(self, account: Account, now: datetime | None = None) -> str:
        now = as_utc(now) if now else utcnow()
        payload = {
            "sub": account.id,
            "email": account.email,
            "state": STATE_MFA_PENDING,
            "created_at": _to_epoch_us(now),
        }
        return security.create_token(self.settings, payload, now + self.challenge_ttl)

    def _encode_authenticated(self, account_id: str, email: str, created_at: datetime, last_activity: datetime) -> str:
        payload = {
            "sub": account_id,
            "email": email,
            "state": STATE_AUTHENTICATED,
            "created_at": _to_epoch_us(created_at),
            "last_activity": _to_epoch_us(last_activity),
        }
        # outer lifetime matches the absolute ceiling
        return security.create_token(self.settings, payload, as_utc(created_at) + self.max_duration)

    def decode(self, token: str | None) -> SessionState:
        """Signature-checked parse without any time policy; malformed carriers read as Anonymous."""
        if not token:
            return Anonymous()
        try:
            claims = security.decode_token(self.settings, token, verify_exp=False)
        except jwt.PyJWTError:
            return Anonymous()

        try:
            state = claims["state"]
            if state == STATE_MFA_PENDING:
                return MfaPending(claims["sub"], claims.get("email", ""), _from_epoch_us(claims["created_at"]))
            if state == STATE_AUTHENTICATED:
                return Authenticated(
                    claims["sub"],
                    claims.get("email", ""),
                    _from_epoch_us(claims["created_at"]),
                    _from_epoch_us(claims["last_activity"]),
                )
        except (KeyError, TypeError, ValueError):
            logger.warning("Session carrier missing timestamps; treating as invalid")
        return Anonymous()

    def validate(self, token: str | None, now: datetime | None = None) -> SessionCheck:
        now = as_utc(now) if now else utcnow()
        if not token:
            return SessionCheck(Anonymous())

        state = self.decode(token)
        if isinstance(state, Anonymous):
            return SessionCheck(state, ExpiryReason.INVALID)

        if isinstance(state, MfaPending):
            if now - state.created_at > self.challenge_ttl:
                return SessionCheck(Anonymous(), ExpiryReason.CHALLENGE_EXPIRED)
            return SessionCheck(state)

        reason = None
        if now - state.last_activity > self.inactivity_timeout:
            reason = ExpiryReason.INACTIVITY
        if now - state.created_at > self.max_duration:
            reason = ExpiryReason.MAX_DURATION

        if reason is not None:
            logger.info(f"[Session Timeout] Session for {state.account_id} expired: {reason.value}")
            self.audit.record(
                AuditAction.SESSION_EXPIRED,
                state.account_id,
                metadata={"reason": reason.value, "email": state.email},
            )
            return SessionCheck(Anonymous(), reason)
        return SessionCheck(state)

    def touch(self, state: Authenticated, now: datetime | None = None) -> str:
        """Re-sign the carrier with a fresh activity timestamp. Hot path: no audit write."""
        now = as_utc(now) if now else utcnow()
        return self._encode_authenticated(state.account_id, state.email, state.created_at, now)

    def extend(self, token: str | None, now: datetime | None = None) -> tuple[SessionCheck, Optional[str]]:
        now = as_utc(now) if now else utcnow()
        check = self.validate(token, now)
        if not check.valid or not isinstance(check.state, Authenticated):
            return check, None
        return check, self.touch(check.state, now)

    def destroy(self, token: str | None) -> None:
        """Logout. The caller clears the carrier; this records who it belonged to, if readable."""
        state = self.decode(token)
        account_id = None
        metadata = {}
        if isinstance(state, (Authenticated, MfaPending)):
            account_id = state.account_id
            metadata["email"] = state.email
        self.audit.record(AuditAction.LOGOUT, account_id, metadata=metadata or None)
