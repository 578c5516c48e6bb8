"""Configuration surface for the InAppPay SDK."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_BASE_URL, Headers, RetryDefaults, Timeouts


class InAppPaySettings(BaseSettings):
    """Main SDK configuration, read from ``INAPPPAY_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="INAPPPAY_",
        env_file=".env",
        extra="ignore",
    )

    # Backend
    base_url: str = DEFAULT_BASE_URL
    project_name: str = ""
    user_id: str = ""
    api_key: Optional[str] = None

    # Transport
    request_timeout: float = Field(default=Timeouts.HTTP_DEFAULT, gt=0)
    connect_timeout: float = Field(default=Timeouts.HTTP_CONNECT, gt=0)
    idempotency_header: str = Headers.IDEMPOTENCY_KEY

    # Retry policy
    max_attempts: int = Field(default=RetryDefaults.MAX_ATTEMPTS, ge=1)
    max_elapsed_seconds: float = Field(default=RetryDefaults.MAX_ELAPSED_SECONDS, gt=0)
    base_delay: float = Field(default=RetryDefaults.BASE_DELAY, ge=0)
    max_delay: float = Field(default=RetryDefaults.MAX_DELAY, ge=0)
    jitter: float = Field(default=RetryDefaults.JITTER, ge=0, le=1)

    # Idempotency key persistence: empty for in-memory, or sqlite:///path
    key_store_dsn: str = ""

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_json: bool = False

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("key_store_dsn")
    @classmethod
    def validate_key_store_dsn(cls, v: str) -> str:
        if v and not v.startswith("sqlite:///"):
            raise ValueError("key_store_dsn must be empty or a sqlite:/// DSN")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v


@lru_cache
def load_settings(env_file: str | None = None) -> InAppPaySettings:
    """Load settings once per process so every component sees the same values."""
    env_path = Path(env_file) if env_file else None
    return InAppPaySettings(_env_file=env_path)
