"""Configuration management using Pydantic Settings."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service Configuration
    service_host: str = Field(default="0.0.0.0", description="Service host")
    service_port: int = Field(default=3000, description="Service port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Job engine
    max_concurrent_items: int = Field(
        default=5, ge=1, description="Maximum item workflows in flight per job"
    )
    retry_max_attempts: int = Field(
        default=3, ge=1, description="Attempts per item before recording a failure"
    )
    retry_delay_seconds: float = Field(
        default=2.0, ge=0.0, description="Fixed delay between attempts of one item"
    )
    log_retention_limit: int = Field(
        default=1000, ge=1, description="Log entries kept per job (oldest dropped)"
    )
    job_retention_seconds: int = Field(
        default=300,
        ge=0,
        description="Seconds a finished job stays readable before it is reaped",
    )
    cleanup_interval_seconds: float = Field(
        default=60.0, gt=0.0, description="Reaper tick interval in seconds"
    )
    shutdown_timeout_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Max seconds to wait for in-flight jobs on shutdown",
    )

    # Collaborator timeouts
    request_timeout_seconds: float = Field(
        default=30.0, description="HTTP timeout for control-panel and DNS calls"
    )
    ssh_connect_timeout_seconds: float = Field(
        default=20.0, description="SSH connect timeout in seconds"
    )
    ssh_command_timeout_seconds: float = Field(
        default=120.0, description="Timeout for a single remote command"
    )

    # Control panel (WHM)
    whm_verify_ssl: bool = Field(
        default=False,
        description="Verify WHM TLS certificates (panels commonly use self-signed certs)",
    )

    # DNS (Cloudflare)
    cloudflare_api_url: str = Field(
        default="https://api.cloudflare.com/client/v4",
        description="Cloudflare API base URL",
    )
    dns_record_ttl: int = Field(default=300, description="TTL for created records")
    dns_proxied: bool = Field(
        default=True, description="Create records proxied (orange cloud)"
    )

    # Sentry Observability
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking",
    )
    sentry_environment: str = Field(
        default="development",
        description="Sentry environment tag (development, staging, production)",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
