"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3033
    api_title: str = "Zone API"
    api_version: str = "0.1.0"
    api_description: str = "Per-domain daily time budget ledger"
    environment: str = "development"  # development, test or production

    # Calendar day boundary for the daily usage reset
    timezone: str = "UTC"

    # CORS - comma-separated list, empty means allow all
    cors_origins: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "zone-api"

    # Override codes
    override_code_length: int = 6
    override_code_expiry_minutes: int = 10
    override_duration_minutes: int = 10

    # Override code delivery
    code_delivery_webhook_url: str = ""  # Empty = log-only delivery
    code_sender_address: str = "Zone <no-reply@zone.dev>"

    # Rate limiting (fixed windows, per user + client IP)
    rate_limit_window_seconds: int = 900
    rate_limit_max_requests: int = 100
    config_rate_limit_window_seconds: int = 60
    config_rate_limit_max_requests: int = 60
    unlock_request_window_seconds: int = 900
    unlock_request_max_requests: int = 3
    unlock_verify_window_seconds: int = 900
    unlock_verify_max_requests: int = 5

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(f"TIMEZONE is not a known IANA zone: {self.timezone}")

        if not 4 <= self.override_code_length <= 10:
            errors.append("OVERRIDE_CODE_LENGTH must be between 4 and 10")

        if self.override_code_expiry_minutes <= 0 or self.override_duration_minutes <= 0:
            errors.append("Override expiry and duration must be positive")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def is_production(self) -> bool:
        """Whether debug conveniences (e.g. echoing override codes) are disabled."""
        return self.environment.lower() == "production"

    @property
    def tz(self) -> ZoneInfo:
        """Timezone that defines the server calendar day."""
        return ZoneInfo(self.timezone)

    @property
    def allowed_origins(self) -> list[str]:
        """Parsed CORS origins."""
        origins = [o.strip() for o in self.cors_origins.split(",") if o.strip()]
        return origins or ["*"]


# Global settings instance - validates at import time
settings = Settings()
