"""Application configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="approval-hub", description="Application name")
    environment: Literal["development", "testing", "staging", "production"] = Field(
        default="development", description="Runtime environment"
    )
    debug: bool = Field(default=False, description="Debug mode flag")

    # API
    api_v1_prefix: str = Field(default="/api/v1", description="API v1 prefix")
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="CORS allowed origins",
    )

    # Database
    db_host: str = Field(default="localhost", description="PostgreSQL host")
    db_port: int = Field(default=5432, description="PostgreSQL port")
    db_user: str = Field(default="postgres", description="PostgreSQL user")
    db_password: str = Field(default="postgres", description="PostgreSQL password")
    db_name: str = Field(default="approvalhub", description="PostgreSQL database name")

    # Redis
    redis_host: str = Field(default="localhost", description="Redis host")
    redis_port: int = Field(default=6379, description="Redis port")
    redis_db: int = Field(default=0, description="Redis database number")
    redis_password: str | None = Field(default=None, description="Redis password")

    # Service authentication
    auth_cache_ttl_seconds: float = Field(
        default=300, ge=0, description="How long a validated service key is cached"
    )
    rate_limit_window_seconds: int = Field(
        default=60, ge=1, description="Fixed rate-limit window size"
    )

    # Webhooks
    webhook_retry_delay_seconds: int = Field(
        default=300, ge=1, description="Delay before a failed delivery is retried"
    )
    webhook_retry_sweep_seconds: float = Field(
        default=60.0, gt=0, description="Interval of the retry sweep task"
    )
    webhook_retry_lease_seconds: int = Field(
        default=600,
        ge=1,
        description="How long a claimed retry stays reserved before another sweep may take it",
    )
    webhook_stats_window_days: int = Field(
        default=7, ge=1, description="Window used for webhook delivery statistics"
    )
    webhook_response_snippet_chars: int = Field(
        default=1000, ge=0, description="Stored prefix of the receiver's response body"
    )
    webhook_user_agent: str = Field(
        default="ApprovalHub-Webhook/1.0", description="User-Agent for deliveries"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="json", description="Log output format"
    )
    slow_request_ms: int = Field(
        default=1000, ge=0, description="Requests slower than this log a warning"
    )

    @computed_field
    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @computed_field
    @property
    def database_url_sync(self) -> str:
        """Construct synchronous database URL for migrations."""
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    @computed_field
    @property
    def redis_url(self) -> str:
        """Construct Redis URL from components."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
