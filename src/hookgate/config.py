"""Configuration management for Hookgate."""

import logging
import warnings
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Hookgate configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the HOOKGATE_ prefix. For example:
        HOOKGATE_DATABASE_URL=postgresql+asyncpg://localhost/hookgate
        HOOKGATE_RATE_LIMIT_REDIS_URL=redis://localhost:6379

    Security Notes:
        - API key authentication is on unless explicitly disabled
        - Disabling auth in production logs a warning
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    database_url: str = Field(
        default="sqlite+aiosqlite:///./hookgate.db",
        description="SQLAlchemy async database URL",
    )
    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements (debugging only)",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # Authentication
    auth_enabled: bool = Field(
        default=True,
        description="Require a Bearer API key on protected routes",
    )

    # Rate Limiting
    rate_limit_enabled: bool = Field(
        default=True,
        description="Enable per-key rate limiting",
    )
    rate_limit_requests: int = Field(
        default=100,
        ge=1,
        description="Max requests per window per API key",
    )
    rate_limit_window_ms: int = Field(
        default=60_000,
        ge=1,
        description="Fixed window length in milliseconds",
    )
    rate_limit_redis_url: str | None = Field(
        default=None,
        description="Redis URL for distributed rate limiting (e.g., redis://localhost:6379). "
        "If not set, uses in-memory rate limiting (not suitable for multi-instance deployments).",
    )
    rate_limit_trust_proxy_headers: bool = Field(
        default=False,
        description="Key anonymous requests by X-Forwarded-For / X-Real-IP. "
        "Enable only behind a proxy you control.",
    )

    # Webhook delivery
    webhook_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Hard timeout for a single delivery attempt",
    )
    webhook_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Delivery attempts per subscription per event",
    )
    webhook_retry_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Initial retry delay (doubles each attempt)",
    )
    webhook_failure_threshold: int = Field(
        default=10,
        ge=1,
        description="Consecutive failures before a webhook is disabled",
    )
    webhook_max_concurrent: int = Field(
        default=10,
        ge=1,
        description="Maximum deliveries in flight per dispatcher",
    )

    # CORS Configuration
    cors_enabled: bool = Field(
        default=True,
        description="Enable CORS middleware",
    )
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="List of allowed CORS origins",
    )
    cors_allow_methods: list[str] = Field(
        default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        description="List of allowed HTTP methods for CORS",
    )
    cors_allow_headers: list[str] = Field(
        default_factory=lambda: ["authorization", "x-client-info", "apikey", "content-type"],
        description="List of allowed headers for CORS",
    )

    model_config = {
        "env_prefix": "HOOKGATE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @model_validator(mode="after")
    def validate_security_settings(self) -> "Settings":
        """Warn when production runs without API key authentication."""
        if self.env == "production" and not self.auth_enabled:
            warnings.warn(
                "Authentication is disabled in production environment. "
                "This is a security risk. Set HOOKGATE_AUTH_ENABLED=true to enable.",
                UserWarning,
                stacklevel=2,
            )
            logger.warning("Authentication disabled in production - this is a security risk")
        if self.env == "production" and self.rate_limit_enabled and not self.rate_limit_redis_url:
            logger.warning(
                "In-memory rate limiting in production: limits are per instance, "
                "set HOOKGATE_RATE_LIMIT_REDIS_URL to share them"
            )
        return self


# Global settings instance
settings = Settings()
