"""Configuration management module for the edge router.

This module handles loading and validating configuration from multiple sources:
- Configuration files (YAML)
- Environment variables
"""

import os
from pathlib import Path
from typing import Any, Callable, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from edgeroute.core.rules import Rule


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(default=8080, ge=1, le=65535, description="Server port")
    keepalive_timeout: int = Field(default=75, ge=1, description="Keep-alive timeout in seconds")
    client_max_size: int = Field(
        default=10 * 1024 * 1024, ge=1024, description="Maximum request body size in bytes"
    )


class StaticResponseConfig(BaseModel):
    """Fixed response returned by a ``respond`` route."""

    status: int = Field(default=200, ge=100, le=599, description="HTTP status code")
    body: str = Field(default="", description="Response body")
    content_type: str = Field(default="text/plain", description="Response content type")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra response headers")


class RouteConfig(BaseModel):
    """One entry of a router table.

    An entry with nested ``routes`` mounts a sub-router whose environment is
    ``variables``; otherwise ``action`` decides what a matching request gets.
    """

    id: str = Field(description="Unique route identifier")
    rule: Rule = Field(default_factory=Rule, description="Rule tree the request must match")
    action: Literal["forward", "respond"] = Field(
        default="forward", description="Forward to the rewritten target or respond directly"
    )
    response: Optional[StaticResponseConfig] = Field(
        default=None, description="Response for the respond action"
    )
    variables: dict[str, Any] = Field(
        default_factory=dict, description="Environment of the nested router"
    )
    routes: Optional[list["RouteConfig"]] = Field(default=None, description="Nested router table")

    @model_validator(mode="after")
    def validate_action(self) -> "RouteConfig":
        """Validate that a respond route has a response and a mount has no action."""
        if self.routes is not None and self.response is not None:
            raise ValueError(f"Route {self.id}: a route with nested routes cannot respond")
        if self.action == "respond" and self.routes is None and self.response is None:
            self.response = StaticResponseConfig()
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format (json or text)")
    output: str = Field(default="stdout", description="Log output (stdout, stderr, file path)")
    correlation_id_header: str = Field(
        default="X-Request-ID", description="Header name for correlation ID"
    )
    redact_headers: list[str] = Field(
        default_factory=lambda: ["Authorization", "Cookie", "Set-Cookie"],
        description="Headers to redact from logs",
    )

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is valid."""
        if v.lower() not in ("json", "text"):
            raise ValueError(f"Invalid log format: {v}. Must be json or text")
        return v.lower()


class UpstreamConfig(BaseModel):
    """Upstream transport configuration."""

    connection_timeout: int = Field(default=5, ge=1, description="Connection timeout in seconds")
    request_timeout: int = Field(default=30, ge=1, description="Request timeout in seconds")
    pool_size: int = Field(default=100, ge=1, description="Connection pool size per host")
    forward_correlation_id: bool = Field(
        default=True, description="Send the correlation ID to the origin"
    )


class MetricsConfig(BaseModel):
    """Metrics and observability configuration."""

    enabled: bool = Field(default=True, description="Enable metrics collection")
    endpoint: str = Field(default="/metrics", description="Metrics endpoint path")
    health_endpoint: str = Field(default="/health", description="Health check endpoint path")
    liveness_endpoint: str = Field(default="/health/live", description="Liveness endpoint path")
    upstream_health_window: int = Field(
        default=300, ge=1, description="Seconds an origin call outcome counts towards health"
    )


class EdgeConfig(BaseModel):
    """Main edge router configuration."""

    environment: str = Field(default="development", description="Environment name")
    variables: dict[str, Any] = Field(
        default_factory=dict, description="Environment of the root router"
    )
    server: ServerConfig = Field(default_factory=ServerConfig)
    routes: list[RouteConfig] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @model_validator(mode="after")
    def validate_unique_route_ids(self) -> "EdgeConfig":
        """Validate that route ids are unique across the whole tree.

        Ids name the routers in logs, so a duplicate would make two routers
        indistinguishable.
        """
        seen: set[str] = set()
        pending = list(self.routes)
        while pending:
            route = pending.pop()
            if route.id in seen:
                raise ValueError(f"Duplicate route id: {route.id}")
            seen.add(route.id)
            pending.extend(route.routes or [])
        return self


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# EDGEROUTE_<SECTION>_<KEY> variables and the setting each one overrides
ENV_OVERRIDES: dict[str, tuple[tuple[str, ...], Callable[[str], Any]]] = {
    "EDGEROUTE_ENV": (("environment",), str),
    "EDGEROUTE_SERVER_HOST": (("server", "host"), str),
    "EDGEROUTE_SERVER_PORT": (("server", "port"), int),
    "EDGEROUTE_LOG_LEVEL": (("logging", "level"), str),
    "EDGEROUTE_LOG_FORMAT": (("logging", "format"), str),
    "EDGEROUTE_LOG_OUTPUT": (("logging", "output"), str),
    "EDGEROUTE_UPSTREAM_CONNECTION_TIMEOUT": (("upstream", "connection_timeout"), int),
    "EDGEROUTE_UPSTREAM_REQUEST_TIMEOUT": (("upstream", "request_timeout"), int),
    "EDGEROUTE_METRICS_ENABLED": (("metrics", "enabled"), _parse_bool),
}


class ConfigLoader:
    """Loads a YAML file and applies environment overrides on top."""

    def __init__(self, config_path: str | None = None):
        """Initialize the configuration loader.

        Args:
            config_path: Path to configuration file. If None, uses environment variable
                        EDGEROUTE_CONFIG_PATH or defaults to config/edgeroute.yaml
        """
        self.config_path = self._resolve_config_path(config_path)

    def _resolve_config_path(self, config_path: str | None) -> Path:
        if config_path:
            return Path(config_path)

        if env_path := os.getenv("EDGEROUTE_CONFIG_PATH"):
            return Path(env_path)

        env_specific = Path(f"config/edgeroute.{os.getenv('EDGEROUTE_ENV', 'development')}.yaml")
        if env_specific.exists():
            return env_specific
        return Path("config/edgeroute.yaml")

    def load(self) -> EdgeConfig:
        """Load and validate configuration.

        Returns:
            Validated EdgeConfig instance

        Raises:
            ValueError: If the file is malformed or the configuration is invalid
        """
        config_dict = self._override_from_env(self._load_from_file())

        try:
            return EdgeConfig(**config_dict)
        except Exception as e:
            raise ValueError(f"Configuration validation failed: {e}") from e

    def _load_from_file(self) -> dict[str, Any]:
        # A missing file means defaults
        if not self.config_path.exists():
            return {}

        with open(self.config_path) as f:
            try:
                config_dict = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Configuration file {self.config_path} is not valid YAML: {e}") from e

        if not isinstance(config_dict, dict):
            raise ValueError(f"Configuration file {self.config_path} must contain a mapping")
        return config_dict

    def _override_from_env(self, config_dict: dict[str, Any]) -> dict[str, Any]:
        for name, (path, convert) in ENV_OVERRIDES.items():
            raw = os.getenv(name)
            if not raw:
                continue
            *sections, key = path
            target = config_dict
            for section in sections:
                target = target.setdefault(section, {})
            target[key] = convert(raw)
        return config_dict


def load_config(config_path: str | None = None) -> EdgeConfig:
    """Load configuration (convenience function).

    Args:
        config_path: Optional path to configuration file

    Returns:
        Validated EdgeConfig instance
    """
    loader = ConfigLoader(config_path)
    return loader.load()
