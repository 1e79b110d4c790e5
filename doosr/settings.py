from __future__ import annotations

import os
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")
    backend_session_secret: str = Field(..., alias="BACKEND_SESSION_SECRET")
    journal_session_encryption_key: str = Field(..., alias="JOURNAL_SESSION_ENCRYPTION_KEY")

    app_timezone: str = Field("UTC", alias="APP_TIMEZONE")

    allowed_emails_raw: str = Field("", alias="ALLOWED_EMAILS")
    default_permanent_sections_raw: str = Field("", alias="DEFAULT_PERMANENT_SECTIONS")

    journal_session_ttl_hours: int = Field(24, alias="JOURNAL_SESSION_TTL_HOURS")
    unfurl_timeout_seconds: float = Field(5.0, alias="UNFURL_TIMEOUT_SECONDS")
    unfurl_enabled: bool = Field(True, alias="UNFURL_ENABLED")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def allowed_emails(self) -> List[str]:
        return [email.strip().lower() for email in self.allowed_emails_raw.split(",") if email.strip()]

    @property
    def default_permanent_sections(self) -> list[str]:
        items = [item.strip() for item in str(self.default_permanent_sections_raw).split(",") if item.strip()]
        dedup = []
        seen = set()
        for item in items:
            if item.lower() in seen:
                continue
            seen.add(item.lower())
            dedup.append(item)
        return dedup


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None


# For local dev convenience only.
if os.getenv("BACKEND_DEBUG_SETTINGS"):
    print(get_settings())
