"""
Shared configuration management for the Listings platform.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="LISTINGS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/listings")

    # Backend selection ("memory" keeps everything in-process for local runs)
    storage_backend: Literal["postgres", "memory"] = Field(default="postgres")
    cache_backend: Literal["redis", "memory"] = Field(default="redis")

    # Cache TTLs in seconds
    list_cache_ttl: int = Field(default=300, ge=1)
    record_cache_ttl: int = Field(default=600, ge=1)
    owner_cache_ttl: int = Field(default=180, ge=1)

    # Cache circuit breaker
    cache_failure_threshold: int = Field(default=5, ge=1)
    cache_recovery_timeout: float = Field(default=30.0, gt=0)
    cache_socket_timeout: float = Field(default=0.5, gt=0)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
