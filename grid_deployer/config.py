"""Centralized configuration for the grid deployer.

Uses pydantic-settings for environment variable loading and validation.
All settings can be overridden via environment variables with the GRID_ prefix.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GridSettings(BaseSettings):
    """Settings for talking to the chain and the node agents.

    Environment variables:
        GRID_RELAY_URL: Base URL of the HTTP message-bus relay
        GRID_RPC_TIMEOUT: Timeout for one node RPC in seconds
        GRID_RETRY_ATTEMPTS: Attempts for calls failing with a transport error
        GRID_RETRY_BACKOFF_BASE: First backoff delay in seconds
        GRID_RETRY_BACKOFF_MAX: Maximum backoff delay in seconds
        GRID_POLL_INTERVAL: Delay between deployment.get polls in seconds
        GRID_POLL_ATTEMPTS: Maximum number of deployment.get polls
        GRID_POLL_TIMEOUT: Overall polling budget per node in seconds
        GRID_SELF_FUNDED: Create contracts funded by the owner twin
        GRID_LOG_LEVEL: Logging level
        GRID_LOG_JSON: Enable JSON log format
        GRID_OTEL_ENABLED: Enable OpenTelemetry
        GRID_OTEL_ENDPOINT: OTLP collector endpoint
        GRID_OTEL_SERVICE_NAME: Service name for traces
    """

    model_config = SettingsConfigDict(
        env_prefix="GRID_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Transport settings
    relay_url: str = Field(
        default="http://localhost:8051",
        description="Base URL of the HTTP message-bus relay",
    )
    rpc_timeout: float = Field(
        default=30.0,
        description="Timeout for one node RPC in seconds",
    )

    # Retry settings for transient transport failures
    retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for calls failing with a transport error",
    )
    retry_backoff_base: float = Field(
        default=1.0,
        ge=0,
        description="First backoff delay in seconds (doubled per attempt)",
    )
    retry_backoff_max: float = Field(
        default=10.0,
        ge=0,
        description="Maximum backoff delay in seconds",
    )

    # Result polling
    poll_interval: float = Field(
        default=2.0,
        ge=0,
        description="Delay between deployment.get polls in seconds",
    )
    poll_attempts: int = Field(
        default=60,
        ge=1,
        description="Maximum number of deployment.get polls",
    )
    poll_timeout: float = Field(
        default=240.0,
        gt=0,
        description="Overall polling budget per node in seconds",
    )

    # Contracts
    self_funded: bool = Field(
        default=True,
        description="Create node contracts funded by the owner twin",
    )

    # Observability settings
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Enable JSON log format",
    )
    otel_enabled: bool = Field(
        default=False,
        description="Enable OpenTelemetry tracing",
    )
    otel_endpoint: str | None = Field(
        default=None,
        description="OTLP collector endpoint (console exporter if unset)",
    )
    otel_service_name: str = Field(
        default="grid-deployer",
        description="Service name for traces",
    )


# Global settings instance - import this directly
settings = GridSettings()
