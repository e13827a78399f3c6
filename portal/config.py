"""
Application configuration using environment variables.
"""
import os
import secrets
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings

_GENERATED_SECRET = secrets.token_urlsafe(32)


def parse_day_list(raw: str) -> List[int]:
    """Parse a comma-separated list of day thresholds, ignoring junk entries."""
    days = []
    for part in raw.split(","):
        part = part.strip()
        if part.lstrip("-").isdigit():
            days.append(int(part))
    return days


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Campaign Portal API"
    debug: bool = False
    environment: str = "development"
    base_url: str = "http://localhost:5000"

    # Security
    secret_key: str = os.getenv("SECRET_KEY", _GENERATED_SECRET)
    algorithm: str = "HS256"
    session_expiry_days: int = 7
    magic_link_expiry_minutes: int = 60
    session_cookie_name: str = "campaign_session"
    magic_link_rate_limit: str = "20/15minutes"

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./campaign_portal.db")

    # Tenancy
    tenant_domain_override: Optional[str] = None

    # CORS
    cors_origins: List[str] = [
        "http://localhost:5000",
        "http://localhost:5173",
    ]

    # Email
    email_backend: str = "log"  # log or http
    email_api_url: str = "https://api.resend.com/emails"
    email_api_key: Optional[str] = None
    from_email: str = "campaigns@localhost"
    email_timeout_seconds: float = 10.0

    # Object storage
    storage_root: str = "./data/uploads"
    storage_bucket: str = "local"
    storage_prefix: str = ""
    download_url_expiry_seconds: int = 900

    # Uploads
    upload_max_mb: int = 50
    upload_max_files: int = 10
    allowed_mime_types: List[str] = [
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
        "video/mp4",
        "application/zip",
    ]

    # Workflow
    workflow_auto_advance: bool = False

    # Reminders
    reminders_enabled: bool = True
    reminder_interval_seconds: int = 3600
    reminder_asset_days: str = "7,3,1"
    reminder_draft_days: str = "7,3,1"
    reminder_escalate_after_days: int = 1
    reminder_pending_timeout_seconds: int = 3600

    @property
    def asset_reminder_days(self) -> List[int]:
        return parse_day_list(self.reminder_asset_days)

    @property
    def draft_reminder_days(self) -> List[int]:
        return parse_day_list(self.reminder_draft_days)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Validate secret key on startup
settings = get_settings()
if settings.environment == "production" and settings.secret_key == _GENERATED_SECRET:
    raise ValueError(
        "SECRET_KEY must be set in production! "
        "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )
