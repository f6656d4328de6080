"""
Client Configuration - Pydantic Settings for the enforcement client.

Kept separate from zone.config so the client never needs server settings
such as DATABASE_URL.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Enforcement client settings, read from ZONE_CLIENT_* variables."""

    api_base_url: str = "http://localhost:3033/api"
    http_timeout_seconds: float = 5.0

    # Decision refresh gates
    cache_ttl_seconds: float = Field(5.0, ge=0)
    min_request_interval_seconds: float = Field(0.5, ge=0)
    check_interval_seconds: float = Field(5.0, gt=0)

    # Exponential backoff on 429
    backoff_base_seconds: float = Field(2.0, gt=0)
    backoff_cap_seconds: float = Field(30.0, gt=0)

    # Heartbeat emitter
    heartbeat_interval_seconds: float = Field(30.0, gt=0)
    min_report_seconds: float = Field(1.0, ge=0)

    # Persisted state (uuid, email, snapshot); empty means in-memory only
    store_path: str = ""

    model_config = SettingsConfigDict(
        env_prefix="ZONE_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )
