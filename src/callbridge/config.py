"""
Application configuration with environment-driven settings.

Provider adapter layer: credential vault secret, outbound HTTP timeout and
webhook verification windows.
"""

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Development fallback for PROVIDER_ENCRYPTION_KEY. Blobs encrypted with it
# are readable by anyone who has the source, so prod refuses to start with it.
INSECURE_DEFAULT_ENCRYPTION_KEY = "default-dev-key-32-chars-long!!"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "callbridge"
    app_env: Literal["dev", "qa", "uat", "prod"] = "dev"
    log_level: str = "INFO"

    # Credential vault
    provider_encryption_key: str = Field(
        default=INSECURE_DEFAULT_ENCRYPTION_KEY,
        description="Static secret the vault derives its AES key from",
    )

    # Outbound vendor HTTP
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Timeout applied to every vendor REST request",
    )

    # Inbound webhooks
    webhook_base_url: str = Field(
        default="http://localhost:8000",
        description="Public base URL vendors call back into",
    )
    telnyx_webhook_tolerance_seconds: int = Field(
        default=300,
        ge=0,
        description="Maximum age of a signed Telnyx webhook",
    )
    elevenlabs_webhook_tolerance_seconds: int = Field(
        default=1800,
        ge=0,
        description="Maximum age of a signed ElevenLabs webhook",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return str(v).upper()

    @property
    def uses_insecure_encryption_key(self) -> bool:
        return self.provider_encryption_key == INSECURE_DEFAULT_ENCRYPTION_KEY

    def get_webhook_url(self, path: str) -> str:
        base = self.webhook_base_url.rstrip("/")
        return f"{base}{path}"


@lru_cache
def _get_settings_cached() -> Settings:
    return Settings()


def get_settings() -> Settings:
    # Under pytest env vars are monkeypatched between tests, never freeze them.
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return Settings()
    return _get_settings_cached()
