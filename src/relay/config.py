"""Configuration schema for the signaling relay.

Defines Pydantic models for loading and validating relay configuration
from YAML files and environment variables.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class TransportConfig(BaseModel):
    """WebSocket transport configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8081, ge=1024, le=65535, description="Bind port")
    max_message_bytes: int = Field(
        default=2**20, ge=1024, description="Maximum inbound message size in bytes"
    )
    ping_interval_s: float | None = Field(
        default=20.0, description="Protocol-level keepalive ping interval (None disables)"
    )
    ping_timeout_s: float | None = Field(
        default=20.0, description="Protocol-level keepalive pong timeout (None disables)"
    )


class AuthConfig(BaseModel):
    """Admission token configuration.

    Tokens are issued elsewhere; the relay only checks them at connect time.

    Modes:
    - static: accept only tokens listed in ``tokens``
    - any: accept any non-empty token (development only)
    """

    mode: Literal["static", "any"] = Field(
        default="static", description="Token validation mode"
    )
    tokens: list[str] = Field(
        default_factory=list, description="Accepted tokens for static mode"
    )


class HealthConfig(BaseModel):
    """Health check HTTP server configuration."""

    enabled: bool = Field(default=True, description="Enable health/metrics HTTP server")
    host: str = Field(default="127.0.0.1", description="Bind host address")
    port: int = Field(default=8082, ge=1024, le=65535, description="Bind port")


class ClientConfig(BaseModel):
    """Signaling client reconnect and heartbeat configuration."""

    host: str = Field(default="localhost:8081", description="Relay host[:port]")
    path: str = Field(default="/ws", description="Relay WebSocket path")
    secure: bool = Field(default=False, description="Use wss:// instead of ws://")
    max_reconnect_attempts: int = Field(
        default=5, ge=0, description="Reconnect attempts before giving up"
    )
    reconnect_base_delay_s: float = Field(
        default=1.0, gt=0, description="Delay before the first reconnect attempt"
    )
    heartbeat_interval_s: float = Field(
        default=30.0, gt=0, description="Interval between application-level pings"
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Validate that the path is absolute."""
        if not v.startswith("/"):
            raise ValueError(f"client path must start with '/', got '{v}'")
        return v


class RelayConfig(BaseModel):
    """Root relay configuration."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)

    # Operational settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    graceful_shutdown_timeout_s: int = Field(
        default=10,
        ge=1,
        description="Graceful shutdown timeout in seconds",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "RelayConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        apply_env_overrides(data)
        return cls.model_validate(data)

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "RelayConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Environment overrides apply in both cases.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        data: dict = {}
        apply_env_overrides(data)
        return cls.model_validate(data)


def apply_env_overrides(data: dict) -> None:
    """Apply ``RELAY_*`` environment variables onto raw config data in place."""
    import os

    if host := os.getenv("RELAY_HOST"):
        data.setdefault("transport", {})["host"] = host

    if port := os.getenv("RELAY_PORT"):
        data.setdefault("transport", {})["port"] = int(port)

    if auth_mode := os.getenv("RELAY_AUTH_MODE"):
        data.setdefault("auth", {})["mode"] = auth_mode

    if auth_tokens := os.getenv("RELAY_AUTH_TOKENS"):
        data.setdefault("auth", {})["tokens"] = [
            token.strip() for token in auth_tokens.split(",") if token.strip()
        ]

    if log_level := os.getenv("RELAY_LOG_LEVEL"):
        data["log_level"] = log_level
