"""
Shared configuration management for the policy decision platform.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="POLICY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Decision cache
    cache_backend: str = Field(default="local", description="local or redis")
    cache_ttl_seconds: int = Field(default=300, ge=1)
    cache_max_entries: int = Field(default=100_000, ge=1)

    # Cross-instance invalidation
    invalidation_backend: str = Field(default="redis", description="local or redis")
    invalidation_channel: str = Field(default="policy:invalidation")

    # Evaluation budgets
    store_timeout_ms: int = Field(default=50, ge=1)
    evaluation_timeout_ms: int = Field(default=250, ge=1)

    # Audit
    audit_queue_size: int = Field(default=10_000, ge=1)

    # Endpoint registry / role defaults (YAML); built-in defaults when unset
    registry_file: Optional[str] = Field(default=None)

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter: str = Field(default="http://localhost:4318")


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
