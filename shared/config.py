"""
Shared configuration management for the Transaction Proxy.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="TXPROXY_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Upstream spending API
    upstream_base_url: str = Field(default="https://api.spending.gov.ua/api/v2/api")
    upstream_connect_timeout: float = Field(default=30.0)
    upstream_read_timeout: float = Field(default=600.0)
    upstream_max_connections: int = Field(default=50)
    upstream_keepalive_expiry: float = Field(default=20.0)

    # Record store
    store_backend: str = Field(default="postgres")
    postgres_dsn: str = Field(default="postgresql://localhost:5432/transactions")
    postgres_min_pool_size: int = Field(default=2)
    postgres_max_pool_size: int = Field(default=10)
    postgres_command_timeout: float = Field(default=30.0)

    # Pipeline
    max_transactions_per_request: int = Field(default=5000)
    processing_parallelism: int = Field(default=8, ge=1, le=8)
    cache_retention_days: int = Field(default=30)

    # Housekeeping
    enable_housekeeping: bool = Field(default=True)
    memory_threshold: float = Field(default=0.8)
    memory_limit_bytes: Optional[int] = Field(default=None)
    memory_check_interval_seconds: float = Field(default=60.0)
    memory_stats_interval_seconds: float = Field(default=300.0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
