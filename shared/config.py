"""
Shared configuration management for the Vault Access Layer.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="VAULT_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Listener
    host: str = Field(default="0.0.0.0")

    # Rate limiting (fixed window, per caller)
    rate_limit_requests: int = Field(default=60, ge=1)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    rate_limit_max_identities: int = Field(default=10000, ge=1)
    rate_limit_shards: int = Field(default=16, ge=1)
    rate_limit_sweep_interval_seconds: float = Field(default=300.0, gt=0)

    # Vault store
    vault_shards: int = Field(default=16, ge=1)

    # Credential schemes stripped from the Authorization header
    auth_schemes: List[str] = Field(default_factory=lambda: ["Bearer"])


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: Optional[int] = None

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, **kwargs)
        # VAULT_PORT wins over the service default
        if self.port is None:
            self.port = port


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
