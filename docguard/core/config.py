from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str | List[str]) -> List[str]:
    if isinstance(value, list):
        return value
    return [v.strip() for v in str(value).split(",") if v and v.strip()]


DEFAULT_ALLOWED_MIME_TYPES = ",".join(
    [
        "application/pdf",
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel",
        "text/csv",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ]
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DOCGUARD_",
        extra="ignore",
    )

    app_name: str = "DocGuard Document Sharing API"
    database_url: str = "sqlite:///./docguard.db"
    db_echo: bool = False

    # values must come from environment/.env to avoid hardcoding secrets
    session_secret: str = ""
    session_issuer: str = "docguard"
    session_cookie_name: str = "docguard_session"
    session_cookie_secure: bool = True
    session_inactivity_minutes: int = 30
    session_max_hours: int = 12
    mfa_challenge_minutes: int = 5

    totp_issuer: str = "DocGuard"
    totp_valid_window: int = 1
    backup_code_count: int = 10
    mfa_enforced: bool = False
    encryption_master_key: str = ""

    max_failed_attempts: int = 5
    lockout_minutes: int = 15

    audit_retention_days: int = 365

    storage_url: str = ""
    storage_service_key: str = ""
    storage_bucket: str = "documents"
    signed_url_ttl_seconds: int = 3600
    max_upload_bytes: int = 50 * 1024 * 1024
    allowed_mime_types_raw: str = DEFAULT_ALLOWED_MIME_TYPES

    cors_origins_raw: str = "http://localhost:3000"
    enable_docs: bool = True
    log_level: str = "INFO"
    log_dir: str = ""

    @property
    def cors_origins(self) -> List[str]:
        parsed = _split_csv(self.cors_origins_raw)
        return parsed or ["http://localhost:3000"]

    @property
    def allowed_mime_types(self) -> List[str]:
        return _split_csv(self.allowed_mime_types_raw)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
