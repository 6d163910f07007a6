"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development.

Usage:
    from backend.app.core.config import settings
    print(settings.LOCAL_TIMEZONE)
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SMS_PROVIDERS = ("simulation", "twilio", "msg91")


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Tourist Safety Monitor"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 1
    RELOAD: bool = True

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8000",
    ]
    CORS_ALLOW_ALL: bool = True  # False in production

    # ── Storage ──
    STORAGE_BACKEND: str = "memory"  # memory | sql
    DATABASE_URL: str = "sqlite+aiosqlite:///./tourist_safety.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False  # log SQL queries
    TOURISTS_FILE: Optional[str] = None  # JSON seed for the tourist directory

    # ── Geofencing ──
    LOCAL_TIMEZONE: str = "Asia/Kolkata"
    NIGHT_START_HOUR: int = 20  # inclusive
    NIGHT_END_HOUR: int = 6     # inclusive
    ZONES_FILE: Optional[str] = None  # JSON zone table; built-in table if unset
    DEFAULT_NEARBY_RADIUS_M: int = 1000

    # ── Timeouts (seconds) ──
    UPSTREAM_TIMEOUT_SECONDS: float = 5.0
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    # ── Notifications ──
    SMS_PROVIDER: str = "simulation"  # simulation | twilio | msg91
    SMS_API_KEY: Optional[str] = None  # Twilio auth token or MSG91 authkey
    SMS_ACCOUNT_SID: Optional[str] = None  # Twilio only
    SMS_SENDER: Optional[str] = None  # Twilio "From" number or MSG91 sender id
    POLICE_DISPATCH_URL: Optional[str] = None  # simulated when unset
    NOTIFICATION_MAX_RETRIES: int = 2
    NOTIFICATION_BACKOFF_SECONDS: float = 0.5

    @field_validator("SMS_PROVIDER")
    @classmethod
    def check_sms_provider(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in SMS_PROVIDERS:
            raise ValueError(
                f"SMS_PROVIDER must be one of {', '.join(SMS_PROVIDERS)}, got {v!r}"
            )
        return v

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def uses_sql_storage(self) -> bool:
        return self.STORAGE_BACKEND.lower() == "sql"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
