"""Unit tests for Hookgate configuration."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from hookgate.config import Settings


class TestSettingsDefaults:
    """Tests for default configuration values."""

    def test_delivery_defaults(self):
        """Delivery uses a 10s timeout, 3 attempts and a 1s initial delay."""
        settings = Settings()
        assert settings.webhook_timeout_seconds == 10.0
        assert settings.webhook_max_attempts == 3
        assert settings.webhook_retry_delay_seconds == 1.0
        assert settings.webhook_failure_threshold == 10

    def test_rate_limit_defaults(self):
        """100 requests per 60 second window."""
        settings = Settings()
        assert settings.rate_limit_enabled is True
        assert settings.rate_limit_requests == 100
        assert settings.rate_limit_window_ms == 60_000
        assert settings.rate_limit_redis_url is None
        assert settings.rate_limit_trust_proxy_headers is False

    def test_auth_on_by_default(self):
        assert Settings().auth_enabled is True


class TestSettingsEnvironment:
    """Tests for environment variable overrides."""

    def test_env_prefix(self):
        env = {
            "HOOKGATE_DATABASE_URL": "memory://",
            "HOOKGATE_RATE_LIMIT_REQUESTS": "5",
            "HOOKGATE_WEBHOOK_FAILURE_THRESHOLD": "3",
        }
        with patch.dict(os.environ, env):
            settings = Settings()

        assert settings.database_url == "memory://"
        assert settings.rate_limit_requests == 5
        assert settings.webhook_failure_threshold == 3

    def test_cors_origins_from_json(self):
        with patch.dict(os.environ, {"HOOKGATE_CORS_ALLOW_ORIGINS": '["https://app.example.com"]'}):
            settings = Settings()
        assert settings.cors_allow_origins == ["https://app.example.com"]


class TestSettingsValidation:
    """Tests for field constraints."""

    @pytest.mark.parametrize(
        "overrides",
        [
            {"webhook_timeout_seconds": 0},
            {"webhook_max_attempts": 0},
            {"webhook_max_attempts": 11},
            {"webhook_retry_delay_seconds": -1},
            {"webhook_failure_threshold": 0},
            {"rate_limit_requests": 0},
            {"rate_limit_window_ms": 0},
            {"env": "staging"},
            {"log_format": "xml"},
        ],
    )
    def test_rejects_invalid_values(self, overrides):
        with pytest.raises(ValidationError):
            Settings(**overrides)


class TestSecurityWarnings:
    """Tests for production safety warnings."""

    def test_auth_disabled_in_production_warns(self):
        with pytest.warns(UserWarning, match="Authentication is disabled"):
            Settings(env="production", auth_enabled=False)

    def test_auth_disabled_in_development_is_quiet(self, recwarn):
        Settings(env="development", auth_enabled=False)
        assert not [w for w in recwarn if issubclass(w.category, UserWarning)]
