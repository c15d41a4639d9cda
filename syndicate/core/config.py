"""
Application configuration models and helpers.

Centralizes settings management so both the FastAPI app and the scheduler
worker share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

import os

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_env_file(path: str = ".env") -> list[str]:
    """Copy KEY=VALUE lines from a dotenv file into ``os.environ``.

    Nested settings groups read the process environment rather than the
    file, so this runs before any of them is built. Variables that are
    already set win; returns the keys that were added.
    """
    env_path = Path(path)
    if not env_path.is_file():
        return []
    added = []
    for line in env_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = (part.strip() for part in line.split("=", 1))
        if key and key not in os.environ:
            os.environ[key] = value.strip("\"'")
            added.append(key)
    return added


load_env_file()


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    token_encryption_key: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_KEY",
        description="64 hex characters (256 bits) used for AES-GCM credential encryption.",
    )
    oauth_state_secret: Optional[str] = Field(
        None,
        validation_alias="OAUTH_STATE_SECRET",
        description="HMAC secret for signing OAuth state parameters.",
    )
    billing_webhook_secret: Optional[str] = Field(
        None,
        validation_alias="BILLING_WEBHOOK_SECRET",
        description="Optional shared secret used to verify billing webhook signatures.",
    )


class OAuthSettings(BaseSettings):
    """OAuth flow configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    state_ttl_seconds: int = Field(900, validation_alias="OAUTH_STATE_TTL")
    public_base_url: AnyHttpUrl = Field(
        "http://localhost:8000",
        validation_alias="PUBLIC_BASE_URL",
        description="Externally reachable base URL used to build provider redirect URIs.",
    )

    def redirect_uri(self, callback_path: str) -> str:
        return f"{str(self.public_base_url).rstrip('/')}{callback_path}"


class ProviderSettings(BaseSettings):
    """Client credentials for every OAuth provider family."""

    model_config = SettingsConfigDict(extra="ignore")

    twitter_client_id: Optional[str] = Field(None, validation_alias="TWITTER_CLIENT_ID")
    twitter_client_secret: Optional[str] = Field(None, validation_alias="TWITTER_CLIENT_SECRET")
    facebook_client_id: Optional[str] = Field(None, validation_alias="FACEBOOK_APP_ID")
    facebook_client_secret: Optional[str] = Field(None, validation_alias="FACEBOOK_APP_SECRET")
    threads_client_id: Optional[str] = Field(None, validation_alias="THREADS_CLIENT_ID")
    threads_client_secret: Optional[str] = Field(None, validation_alias="THREADS_CLIENT_SECRET")
    linkedin_client_id: Optional[str] = Field(None, validation_alias="LINKEDIN_CLIENT_ID")
    linkedin_client_secret: Optional[str] = Field(None, validation_alias="LINKEDIN_CLIENT_SECRET")
    tiktok_client_id: Optional[str] = Field(None, validation_alias="TIKTOK_CLIENT_KEY")
    tiktok_client_secret: Optional[str] = Field(None, validation_alias="TIKTOK_CLIENT_SECRET")
    google_client_id: Optional[str] = Field(None, validation_alias="GOOGLE_CLIENT_ID")
    google_client_secret: Optional[str] = Field(None, validation_alias="GOOGLE_CLIENT_SECRET")
    reddit_client_id: Optional[str] = Field(None, validation_alias="REDDIT_CLIENT_ID")
    reddit_client_secret: Optional[str] = Field(None, validation_alias="REDDIT_CLIENT_SECRET")
    discord_client_id: Optional[str] = Field(None, validation_alias="DISCORD_CLIENT_ID")
    discord_client_secret: Optional[str] = Field(None, validation_alias="DISCORD_CLIENT_SECRET")
    medium_client_id: Optional[str] = Field(None, validation_alias="MEDIUM_CLIENT_ID")
    medium_client_secret: Optional[str] = Field(None, validation_alias="MEDIUM_CLIENT_SECRET")
    patreon_client_id: Optional[str] = Field(None, validation_alias="PATREON_CLIENT_ID")
    patreon_client_secret: Optional[str] = Field(None, validation_alias="PATREON_CLIENT_SECRET")

    def client_pair(self, family: str) -> tuple[Optional[str], Optional[str]]:
        """Return the (client_id, client_secret) configured for a provider family."""
        return (
            getattr(self, f"{family}_client_id", None),
            getattr(self, f"{family}_client_secret", None),
        )


class DispatchSettings(BaseSettings):
    """Retry and timeout policy applied to outbound platform calls."""

    model_config = SettingsConfigDict(extra="ignore")

    max_attempts: int = Field(3, ge=1, validation_alias="DISPATCH_MAX_ATTEMPTS")
    base_delay_seconds: float = Field(1.0, ge=0, validation_alias="DISPATCH_BASE_DELAY")
    max_delay_seconds: float = Field(30.0, ge=0, validation_alias="DISPATCH_MAX_DELAY")
    request_timeout_seconds: float = Field(
        30.0, gt=0, validation_alias="DISPATCH_REQUEST_TIMEOUT"
    )


class SchedulerSettings(BaseSettings):
    """Configuration for the recurring dispatch sweep."""

    model_config = SettingsConfigDict(extra="ignore")

    interval_seconds: float = Field(60.0, gt=0, validation_alias="SCHEDULER_INTERVAL")
    stale_claim_seconds: int = Field(900, gt=0, validation_alias="SCHEDULER_STALE_CLAIM")
    enabled: bool = Field(
        False,
        validation_alias="SCHEDULER_ENABLED",
        description="Run the sweep inside the API process instead of a separate worker.",
    )


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting users back to the front-end.",
    )
    database_path: str = Field("data/syndicate.db", validation_alias="SYNDICATE_DB_PATH")
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        return value.upper()


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "DispatchSettings",
    "OAuthSettings",
    "ProviderSettings",
    "SchedulerSettings",
    "SecuritySettings",
    "get_settings",
]
