"""
Encryption utilities for sensitive data (TOTP secrets at rest)
"""
import base64
from functools import lru_cache

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


@lru_cache(maxsize=8)
def _get_fernet(master_key: str) -> Fernet:
    """Derive Fernet key from master key"""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=b"docguard-mfa-secret",
        iterations=100000,
    )
    key = base64.urlsafe_b64encode(kdf.derive(master_key.encode()))
    return Fernet(key)


def encrypt_secret(value: str, master_key: str) -> str:
    """
    Encrypt a secret for storage

    Args:
        value: Plain text secret
        master_key: Configured encryption master key

    Returns:
        Fernet token as text
    """
    return _get_fernet(master_key).encrypt(value.encode()).decode("ascii")


def decrypt_secret(token: str, master_key: str) -> str:
    """
    Decrypt a stored secret

    Args:
        token: Fernet token produced by encrypt_secret
        master_key: Configured encryption master key

    Returns:
        Plain text secret
    """
    return _get_fernet(master_key).decrypt(token.encode("ascii")).decode()
