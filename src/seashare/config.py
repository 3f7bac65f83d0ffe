"""Configuration settings for the seashare gateway."""

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# -----------------------------------------------------------------------------
# Environment Variable Substitution
# -----------------------------------------------------------------------------

ENV_VAR_PATTERN = re.compile(r"\$\{env\.([A-Z_][A-Z0-9_]*)(?::=([^}]*))?\}")


def replace_env_vars(config: Any) -> Any:
    """Recursively replace ${env.VAR:=default} patterns in config."""
    if isinstance(config, dict):
        return {k: replace_env_vars(v) for k, v in config.items()}
    elif isinstance(config, list):
        return [replace_env_vars(v) for v in config]
    elif isinstance(config, str):

        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            default = match.group(2)
            value = os.environ.get(var_name)
            if value is not None:
                return value
            if default is not None:
                return default
            raise ValueError(f"Environment variable {var_name} is required but not set")

        return ENV_VAR_PATTERN.sub(replacer, config)
    return config


# -----------------------------------------------------------------------------
# Backend Configuration
# -----------------------------------------------------------------------------


class BackendConfig(BaseModel):
    """Seafile backend the gateway relays to."""

    base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the Seafile server",
    )
    timeout: float | None = Field(
        default=None,
        description="Transport timeout in seconds (None waits indefinitely)",
    )
    max_connections: int = Field(
        default=100,
        description="Maximum pooled connections to the backend",
    )
    max_keepalive_connections: int = Field(
        default=20,
        description="Maximum idle keep-alive connections to the backend",
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @classmethod
    def sample_config(cls) -> dict[str, Any]:
        return {
            "base_url": "${env.SEAFILE_SERVER:=http://localhost:8000}",
            "max_connections": 100,
            "max_keepalive_connections": 20,
        }


# -----------------------------------------------------------------------------
# Relay Configuration
# -----------------------------------------------------------------------------


class RelayConfig(BaseModel):
    """Settings for composing links handed back to uploading clients."""

    public_scheme: Literal["http", "https"] = Field(
        default="https",
        description="Scheme used when composing public raw links",
    )
    channel_capacity: int = Field(
        default=1,
        ge=1,
        description="Chunks allowed in flight between client and backend",
    )


# -----------------------------------------------------------------------------
# Observability Configuration
# -----------------------------------------------------------------------------


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    json_logs: bool = Field(default=False)
    enable_access_logs: bool = Field(default=True)

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class MetricsConfig(BaseModel):
    """Prometheus metrics configuration."""

    enabled: bool = Field(default=True)


# -----------------------------------------------------------------------------
# Server Configuration
# -----------------------------------------------------------------------------


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)


# -----------------------------------------------------------------------------
# Main Gateway Configuration
# -----------------------------------------------------------------------------


class GatewayConfig(BaseModel):
    """Main configuration for the seashare gateway."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GatewayConfig":
        """Create config from dict with environment variable substitution."""
        resolved = replace_env_vars(data)
        return cls.model_validate(resolved)

    @classmethod
    def sample_config(cls) -> dict[str, Any]:
        """Generate sample configuration for documentation."""
        return {
            "server": {
                "host": "0.0.0.0",
                "port": 8080,
            },
            "backend": BackendConfig.sample_config(),
            "relay": {
                "public_scheme": "${env.SEASHARE_PUBLIC_SCHEME:=https}",
            },
            "logging": {
                "level": "${env.LOG_LEVEL:=INFO}",
                "json_logs": True,
            },
        }


# -----------------------------------------------------------------------------
# Settings (for simple environment-based config)
# -----------------------------------------------------------------------------


class Settings(BaseSettings):
    """Simple settings for environment-based configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SEASHARE_",
        env_file=".env",
        case_sensitive=False,
    )

    # Config file path (if using YAML config)
    config_file: Path | None = Field(
        default=None,
        description="Path to YAML configuration file",
    )

    # Server settings (used if no config file)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)

    seafile_server: str = Field(default="http://localhost:8000")
    public_scheme: Literal["http", "https"] = Field(default="https")

    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)

    def to_gateway_config(self) -> GatewayConfig:
        """Convert simple settings to full GatewayConfig."""
        return GatewayConfig(
            server=ServerConfig(host=self.host, port=self.port),
            backend=BackendConfig(base_url=self.seafile_server),
            relay=RelayConfig(public_scheme=self.public_scheme),
            logging=LoggingConfig(level=self.log_level, json_logs=self.json_logs),
        )


# Global settings instance
settings = Settings()
