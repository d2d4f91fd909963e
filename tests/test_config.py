"""
Tests for settings and store configuration.
"""

from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import pytest

from storelayer.config import ConfigurationError, Settings, StoreConfig, get_settings, settings


class TestSettings:
    """Tests for environment settings."""

    def test_defaults(self):
        """Defaults describe a production store with a 30 second timeout."""
        result = Settings(_env_file=None)

        assert result.sandbox is False
        assert result.silent is False
        assert result.validation_timeout_seconds == 30.0
        assert result.rate_ask_time_threshold_days == 60
        assert result.rate_ask_duration_threshold_minutes == 25

    def test_environment_overrides(self, monkeypatch):
        """Settings are read from the environment."""
        monkeypatch.setenv("SANDBOX", "true")
        monkeypatch.setenv("VALIDATION_URL", "https://validation.example.com/verify")
        monkeypatch.setenv("APPLE_APP_ID", "42")

        result = Settings(_env_file=None)

        assert result.sandbox is True
        assert result.validation_url == "https://validation.example.com/verify"
        assert result.apple_app_id == 42

    def test_product_identifier_set(self):
        """Comma-separated identifiers are split and trimmed."""
        result = Settings(_env_file=None, product_identifiers=" premium.monthly, ,premium.yearly ")

        assert result.product_identifier_set == frozenset({"premium.monthly", "premium.yearly"})

    def test_get_settings(self):
        """The module-level instance is returned."""
        assert get_settings() is settings


class TestFailFast:
    """Tests for startup validation."""

    def test_rejects_non_http_url(self):
        """The validation endpoint must be http(s)."""
        with pytest.raises(ConfigurationError, match="VALIDATION_URL"):
            Settings(_env_file=None, validation_url="ftp://validation.example.com")

    @pytest.mark.parametrize("timeout", [0, -1.5])
    def test_rejects_non_positive_timeout(self, timeout):
        """The request timeout must be positive."""
        with pytest.raises(ConfigurationError, match="VALIDATION_TIMEOUT_SECONDS"):
            Settings(_env_file=None, validation_timeout_seconds=timeout)

    def test_rejects_negative_thresholds(self):
        """Rating thresholds cannot be negative."""
        with pytest.raises(ConfigurationError) as exc_info:
            Settings(
                _env_file=None,
                rate_ask_time_threshold_days=-1,
                rate_ask_duration_threshold_minutes=-1,
            )

        message = str(exc_info.value)
        assert "RATE_ASK_TIME_THRESHOLD_DAYS" in message
        assert "RATE_ASK_DURATION_THRESHOLD_MINUTES" in message


class TestStoreConfig:
    """Tests for per-store configuration."""

    def test_from_settings(self):
        """Store config is derived from settings."""
        source = Settings(
            _env_file=None,
            validation_url="https://validation.example.com/verify",
            sandbox=True,
            receipt_path="/tmp/receipt",
            bundle_id="com.example.app",
            product_identifiers="premium.monthly",
            apple_app_id=7,
        )

        config = StoreConfig.from_settings(source)

        assert config.product_identifiers == frozenset({"premium.monthly"})
        assert config.receipt_path == Path("/tmp/receipt")
        assert config.sandbox is True
        assert config.apple_app_id == 7

    def test_from_settings_without_receipt_path(self):
        """An empty receipt path stays unset."""
        assert StoreConfig.from_settings(Settings(_env_file=None)).receipt_path is None

    def test_validation_config(self, store_config):
        """The validator config mirrors the store's validation fields."""
        config = store_config.validation_config()

        assert config.validation_url == store_config.validation_url
        assert config.receipt_path == store_config.receipt_path
        assert config.bundle_id == store_config.bundle_id
        assert config.environment_flag == "0"

    def test_naive_last_time_rate_asked_read_as_utc(self):
        """A naive last-prompt time is stored as UTC."""
        config = StoreConfig(last_time_rate_asked=datetime(2026, 1, 1, 12))
        assert config.last_time_rate_asked == datetime(2026, 1, 1, 12, tzinfo=UTC)

    def test_aware_last_time_rate_asked_kept(self):
        """An aware last-prompt time keeps its offset."""
        moment = datetime(2026, 1, 1, 12, tzinfo=timezone(timedelta(hours=2)))
        assert StoreConfig(last_time_rate_asked=moment).last_time_rate_asked.utcoffset() == timedelta(hours=2)
