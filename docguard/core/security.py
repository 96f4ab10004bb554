import re
from datetime import datetime, timedelta
from typing import Any, Dict, List

import jwt
from passlib.context import CryptContext

from .config import Settings
from .time import utcnow


# Use pbkdf2_sha256 as primary to avoid bcrypt backend issues; keep bcrypt variants for legacy verification.
pwd_context = CryptContext(
    schemes=["pbkdf2_sha256", "bcrypt_sha256", "bcrypt"],
    deprecated="auto",
    bcrypt__truncate_error=False,
)
ALGORITHM = "HS256"

PASSWORD_MIN_LENGTH = 12
PASSWORD_REQUIREMENTS = [
    ("At least 12 characters", lambda p: len(p) >= PASSWORD_MIN_LENGTH),
    ("At least one uppercase letter", lambda p: re.search(r"[A-Z]", p) is not None),
    ("At least one lowercase letter", lambda p: re.search(r"[a-z]", p) is not None),
    ("At least one number", lambda p: re.search(r"[0-9]", p) is not None),
    (
        "At least one special character (!@#$%^&*)",
        lambda p: re.search(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]", p) is not None,
    ),
]


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def failed_password_requirements(password: str) -> List[str]:
    return [label for label, check in PASSWORD_REQUIREMENTS if not check(password)]


def create_token(settings: Settings, payload: Dict[str, Any], expires_at: datetime) -> str:
    claims = {
        **payload,
        "iss": settings.session_issuer,
        "iat": utcnow(),
        "exp": expires_at,
    }
    return jwt.encode(claims, settings.session_secret, algorithm=ALGORITHM)


def decode_token(settings: Settings, token: str, verify_exp: bool = True) -> Dict[str, Any]:
    """Verify signature and issuer; expiry is left to the caller when verify_exp is False."""
    return jwt.decode(
        token,
        settings.session_secret,
        issuer=settings.session_issuer,
        algorithms=[ALGORITHM],
        options={"require": ["iss", "iat", "exp", "sub", "state"], "verify_exp": verify_exp},
        leeway=timedelta(seconds=0),
    )
