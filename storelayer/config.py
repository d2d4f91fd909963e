"""
Store Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Invalid config is rejected at startup.
"""

import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from storelayer.models.receipt import ValidationConfig


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Store settings loaded from environment variables."""

    # Receipt validation
    validation_url: str = ""
    sandbox: bool = False
    silent: bool = False
    receipt_path: str = ""  # Local App Store receipt file
    bundle_id: str = ""  # Bundle identifier of the running application
    validation_timeout_seconds: float = 30.0

    # Catalog
    product_identifiers: str = ""  # Comma-separated product identifiers

    # Rating prompt
    apple_app_id: int = 0
    rate_ask_time_threshold_days: float = 60
    rate_ask_duration_threshold_minutes: float = 25

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability
    metrics_enabled: bool = True
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "storelayer"
    service_version: str = "0.1.0"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def product_identifier_set(self) -> frozenset[str]:
        """Get the configured product identifiers."""
        return frozenset(
            pid.strip() for pid in self.product_identifiers.split(",") if pid.strip()
        )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate configuration at startup.

        A store with an unusable validation endpoint or negative thresholds
        must not start.
        """
        errors: list[str] = []

        if self.validation_url and not self.validation_url.startswith(("http://", "https://")):
            errors.append(
                f"VALIDATION_URL must be an http(s) URL, got: {self.validation_url[:20]}..."
            )
        if self.validation_timeout_seconds <= 0:
            errors.append("VALIDATION_TIMEOUT_SECONDS must be positive")
        if self.rate_ask_time_threshold_days < 0:
            errors.append("RATE_ASK_TIME_THRESHOLD_DAYS cannot be negative")
        if self.rate_ask_duration_threshold_minutes < 0:
            errors.append("RATE_ASK_DURATION_THRESHOLD_MINUTES cannot be negative")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - STORE CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


def as_utc(moment: datetime) -> datetime:
    """Read a naive datetime as UTC; aware datetimes are returned unchanged."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


@dataclass(frozen=True)
class StoreConfig:
    """Configuration of one store instance."""

    product_identifiers: frozenset[str] = frozenset()
    validation_url: str = ""
    sandbox: bool = False
    silent: bool = False  # Handle operations without notifying the user
    receipt_path: Path | None = None
    bundle_id: str = ""
    apple_app_id: int = 0

    # Days that must pass between two rating prompts
    rate_ask_time_threshold_days: float = 60
    # Active usage [min] needed since the last prompt before asking again
    rate_ask_duration_threshold_minutes: float = 25
    last_time_rate_asked: datetime = field(default_factory=lambda: datetime.now(UTC))
    user_usage_time_seconds: float = 0
    user_usage_time_at_last_rating_seconds: float = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "last_time_rate_asked", as_utc(self.last_time_rate_asked))

    def validation_config(self) -> ValidationConfig:
        """Derive the receipt validator configuration."""
        return ValidationConfig(
            validation_url=self.validation_url,
            sandbox=self.sandbox,
            silent=self.silent,
            receipt_path=self.receipt_path,
            bundle_id=self.bundle_id,
        )

    @classmethod
    def from_settings(cls, source: Settings) -> "StoreConfig":
        """Build a store config from environment settings."""
        return cls(
            product_identifiers=source.product_identifier_set,
            validation_url=source.validation_url,
            sandbox=source.sandbox,
            silent=source.silent,
            receipt_path=Path(source.receipt_path) if source.receipt_path else None,
            bundle_id=source.bundle_id,
            apple_app_id=source.apple_app_id,
            rate_ask_time_threshold_days=source.rate_ask_time_threshold_days,
            rate_ask_duration_threshold_minutes=source.rate_ask_duration_threshold_minutes,
        )


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get store settings instance."""
    return settings
