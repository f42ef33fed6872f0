"""
Shared configuration management for the Entitlements service.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ENTITLEMENTS_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local", description="Deployment environment")
    log_level: str = Field(default="info", description="Log level")

    # Directory (principal/role/resource stores)
    directory_backend: str = Field(default="memory", description="memory or postgres")
    directory_file: Optional[str] = Field(default=None, description="JSON documents for the memory backend")
    postgres_dsn: str = Field(default="postgres://localhost:5432/entitlements")
    postgres_pool_min_size: int = Field(default=2)
    postgres_pool_max_size: int = Field(default=10)
    store_timeout_seconds: float = Field(default=5.0, description="Per-query timeout")
    store_retry_attempts: int = Field(default=3)
    store_retry_base_delay: float = Field(default=0.1)

    # Enforcement
    staff_id_header: str = Field(default="X-Staff-Id", description="Header carrying the caller's staff id")

    # Audit
    audit_enabled: bool = Field(default=True)
    audit_path_prefixes: List[str] = Field(default_factory=lambda: ["/v1/api/"])


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
