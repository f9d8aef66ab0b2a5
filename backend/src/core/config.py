"""Configuration management using Pydantic Settings."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application Settings
    APP_ENV: Literal["development", "staging", "production"] = "development"

    # Logging
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"

    # CORS Configuration
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Upstream product API (owns the enrichment job and the user session)
    ENRICHMENT_API_URL: str = "http://localhost:5000"
    PROFILE_CONTEXT_PATH: str = "/api/user/profile-context"
    ENRICH_RETRY_PATH: str = "/api/enrich/retry"
    SESSION_COOKIE_NAME: str = "connect.sid"
    ENRICHMENT_HTTP_TIMEOUT_SECONDS: float = 15.0

    # Briefing poll loop
    BRIEFING_INITIAL_DELAY_SECONDS: float = 2.0
    BRIEFING_POLL_INTERVAL_SECONDS: float = 2.5
    BRIEFING_MAX_ATTEMPTS: int = 90
    BRIEFING_TIMELINE_INTERVAL_SECONDS: float = 3.0
    BRIEFING_TIMELINE_MAX_STEP: int = 4
    BRIEFING_BACKOFF_FACTOR: float = 1.0  # 1.0 = fixed cadence
    BRIEFING_MAX_POLL_INTERVAL_SECONDS: float = 30.0
    # Stopped briefings (and the session cookie they hold) are dropped after this
    BRIEFING_RETENTION_SECONDS: float = 900.0

    @field_validator("ENRICHMENT_API_URL")
    @classmethod
    def validate_enrichment_api_url(cls, v: str) -> str:
        """Validate that ENRICHMENT_API_URL is a valid URL."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("ENRICHMENT_API_URL must start with http:// or https://")
        return v.rstrip("/") if v else v

    @field_validator("PROFILE_CONTEXT_PATH", "ENRICH_RETRY_PATH")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Endpoint paths are joined onto the base URL and must be absolute."""
        if not v.startswith("/"):
            raise ValueError("endpoint paths must start with '/'")
        return v

    @field_validator("BRIEFING_MAX_ATTEMPTS", "BRIEFING_TIMELINE_MAX_STEP")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Attempt ceiling and timeline length must be at least 1."""
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator(
        "BRIEFING_INITIAL_DELAY_SECONDS",
        "BRIEFING_POLL_INTERVAL_SECONDS",
        "BRIEFING_TIMELINE_INTERVAL_SECONDS",
        "BRIEFING_MAX_POLL_INTERVAL_SECONDS",
        "BRIEFING_RETENTION_SECONDS",
        "ENRICHMENT_HTTP_TIMEOUT_SECONDS",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        """Delays and timeouts cannot be negative."""
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("BRIEFING_BACKOFF_FACTOR")
    @classmethod
    def validate_backoff_factor(cls, v: float) -> float:
        """A factor below 1.0 would shrink the delay on every attempt."""
        if v < 1.0:
            raise ValueError("BRIEFING_BACKOFF_FACTOR must be >= 1.0")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.APP_ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"

    @property
    def profile_context_url(self) -> str:
        """Absolute URL of the profile-context endpoint."""
        return f"{self.ENRICHMENT_API_URL}{self.PROFILE_CONTEXT_PATH}"

    @property
    def enrich_retry_url(self) -> str:
        """Absolute URL of the re-enrichment trigger endpoint."""
        return f"{self.ENRICHMENT_API_URL}{self.ENRICH_RETRY_PATH}"

    def validate_startup(self) -> None:
        """Validate that the upstream API is configured.

        Raises:
            ValueError: If any required setting is missing or empty.
        """
        required = {
            "ENRICHMENT_API_URL": self.ENRICHMENT_API_URL,
            "SESSION_COOKIE_NAME": self.SESSION_COOKIE_NAME,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ValueError(f"Required settings are missing or empty: {', '.join(missing)}")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance with validated configuration.

    Raises:
        ValueError: If required settings are missing.
    """
    settings = Settings()
    settings.validate_startup()
    return settings


# Global settings instance - import this for easy access
settings = get_settings()
