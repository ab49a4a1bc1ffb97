"""
Application configuration using Pydantic Settings.

Configuration values can be set via environment variables or .env file.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = "GoBiz Wallet"
    environment: str = "development"
    debug: bool = False
    dev_mode: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 3000

    # 64 hex characters (32 bytes); required at startup
    master_key: Optional[str] = None

    # Upstream GoBiz API
    gobiz_api_base: str = "https://api.gobiz.co.id"
    gobiz_client_id: str = "go-biz-web-new"
    upstream_timeout: float = 30.0

    # Resilient client retry policy
    max_retries: int = Field(default=2, ge=0)
    network_backoff_base_ms: int = 400
    upstream_backoff_base_ms: int = 500

    # Token lifecycle
    refresh_margin_seconds: int = 300
    default_expires_in: int = 3600

    # Auth flows
    login_settle_delay: float = 0.8
    otp_login_type: str = "otp"
    # Upstream contract for one-time-code verification is not documented;
    # the web portal accepts the password grant with an otp payload.
    otp_grant_type: str = "password"
    otp_country_code: str = "62"

    # Ledger queries
    merchant_timezone: str = "Asia/Jakarta"
    merchant_utc_offset: str = "+07:00"

    # Session cookie transport
    session_cookie_name: str = "gobiz_acc"
    session_max_age: int = 7 * 24 * 60 * 60  # 7 days

    # Rate limiting configuration
    rate_limit_auth_endpoints: str = "10/minute"
    rate_limit_read_endpoints: str = "240/minute"

    # Optional Redis URL for distributed rate limiting
    # When set, rate limits will be shared across multiple instances
    redis_url: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


# Global settings instance
settings = Settings()
