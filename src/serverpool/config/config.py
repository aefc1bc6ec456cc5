"""Core configuration management for serverpool.

This module provides the main configuration classes and loading functionality
with YAML file and environment variable support.
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from serverpool.config.deployment import HealthCheckConfig
from serverpool.core.controller import PoolConfig
from serverpool.provisioners.base import (
    MANAGED_LABELS,
    InstanceProvisioner,
    InstanceTemplate,
    ResourceSpec,
)


class ConfigError(Exception):
    """Configuration-related errors."""

    pass


class ProvisionerConfig(BaseModel):
    """Orchestration backend and the shape of provisioned instances."""

    backend: Literal["kubernetes", "memory"] = "kubernetes"
    in_cluster: bool | None = None
    image: str = "game-server-instance:latest"
    container_port: int = 3000
    health_path: str = "/health"
    labels: dict[str, str] = Field(default_factory=lambda: dict(MANAGED_LABELS))
    env: dict[str, str] = Field(default_factory=dict)
    requests: ResourceSpec = Field(default_factory=ResourceSpec)
    limits: ResourceSpec = Field(
        default_factory=lambda: ResourceSpec(cpu="500m", memory="512Mi")
    )

    def template(self) -> InstanceTemplate:
        return InstanceTemplate(
            image=self.image,
            container_port=self.container_port,
            labels=dict(self.labels),
            env=dict(self.env),
            requests=self.requests,
            limits=self.limits,
            health_path=self.health_path,
        )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "text"] = "json"
    enable_pii_redaction: bool = False


class MetricsConfig(BaseModel):
    """Metrics configuration."""

    enabled: bool = True
    path: str = "/metrics"


class TracingConfig(BaseModel):
    """Tracing configuration."""

    enabled: bool = False
    service_name: str = "serverpool"
    otlp_endpoint: str | None = None


class ServerConfig(BaseModel):
    """HTTP/WebSocket server configuration."""

    host: str = "0.0.0.0"
    port: int = 3001
    provision_on_demand: bool = True
    allowed_origins: list[str] = Field(default_factory=lambda: ["*"])


class Config(BaseModel):
    """Main configuration class for serverpool.

    This class combines all configuration sections and provides
    validation and environment variable loading.
    """

    pool: PoolConfig = Field(default_factory=PoolConfig)
    provisioner: ProvisionerConfig = Field(default_factory=ProvisionerConfig)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    tracing: TracingConfig = Field(default_factory=TracingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    health: HealthCheckConfig = Field(default_factory=HealthCheckConfig)

    environment: Literal["development", "staging", "production", "testing"] = (
        "development"
    )
    debug: bool = False


def load_config_from_file(config_path: Path) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Loaded configuration

    Raises:
        ConfigError: If configuration is invalid or file cannot be read
    """
    try:
        with open(config_path) as f:
            config_data = yaml.safe_load(f)

        if config_data is None:
            config_data = {}

        return Config(**config_data)

    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {config_path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e


def _env(name: str, *fallbacks: str) -> str | None:
    for key in (name, *fallbacks):
        value = os.getenv(key)
        if value:
            return value
    return None


def _env_number(name: str, kind: type, *fallbacks: str) -> Any:
    value = _env(name, *fallbacks)
    if value is None:
        return None
    try:
        return kind(value)
    except ValueError as e:
        raise ConfigError(f"Invalid {name}: {value}") from e


def load_config_from_env() -> dict[str, Any]:
    """Collect configuration overrides from environment variables.

    Environment variables are mapped as follows:
    - SERVERPOOL_ENVIRONMENT: Environment name
    - SERVERPOOL_DEBUG: Enable debug mode (true/false)
    - SERVERPOOL_NAMESPACE (or NAMESPACE): Namespace for game servers
    - SERVERPOOL_CAPACITY_PER_INSTANCE (or MAX_PLAYERS_PER_SERVER)
    - SERVERPOOL_MIN_INSTANCES (or MIN_SERVERS)
    - SERVERPOOL_MAX_INSTANCES (or MAX_SERVERS)
    - SERVERPOOL_SCALING_INTERVAL: Seconds between scaling ticks
    - SERVERPOOL_PROVISIONER: Provisioner backend (kubernetes/memory)
    - SERVERPOOL_IMAGE: Game server container image
    - SERVERPOOL_LOG_LEVEL: Logging level
    - SERVERPOOL_LOG_FORMAT: Logging format (json/text)
    - SERVERPOOL_HOST: Bind address
    - SERVERPOOL_PORT (or PORT): Listen port
    - SERVERPOOL_OTLP_ENDPOINT: Enables OTLP trace export

    Returns:
        Nested dictionary holding only the values that were set
    """
    config_data: dict[str, Any] = {}

    if env_val := _env("SERVERPOOL_ENVIRONMENT"):
        config_data["environment"] = env_val.lower()
    if env_val := _env("SERVERPOOL_DEBUG"):
        config_data["debug"] = env_val.lower() in ("true", "1", "yes", "on")

    pool_config: dict[str, Any] = {}
    if env_val := _env("SERVERPOOL_NAMESPACE", "NAMESPACE"):
        pool_config["namespace"] = env_val
    numeric_pool_fields = [
        (
            "capacity_per_instance",
            int,
            "SERVERPOOL_CAPACITY_PER_INSTANCE",
            "MAX_PLAYERS_PER_SERVER",
        ),
        ("min_instances", int, "SERVERPOOL_MIN_INSTANCES", "MIN_SERVERS"),
        ("max_instances", int, "SERVERPOOL_MAX_INSTANCES", "MAX_SERVERS"),
        ("scaling_interval_seconds", float, "SERVERPOOL_SCALING_INTERVAL"),
        ("scale_up_threshold", float, "SERVERPOOL_SCALE_UP_THRESHOLD"),
        ("provisioner_timeout_seconds", float, "SERVERPOOL_PROVISIONER_TIMEOUT"),
        ("shutdown_timeout_seconds", float, "SERVERPOOL_SHUTDOWN_TIMEOUT"),
    ]
    for field_name, kind, name, *fallbacks in numeric_pool_fields:
        value = _env_number(name, kind, *fallbacks)
        if value is not None:
            pool_config[field_name] = value
    if pool_config:
        config_data["pool"] = pool_config

    provisioner_config: dict[str, Any] = {}
    if env_val := _env("SERVERPOOL_PROVISIONER"):
        provisioner_config["backend"] = env_val.lower()
    if env_val := _env("SERVERPOOL_IMAGE"):
        provisioner_config["image"] = env_val
    if env_val := _env("SERVERPOOL_IN_CLUSTER"):
        provisioner_config["in_cluster"] = env_val.lower() in ("true", "1", "yes")
    if provisioner_config:
        config_data["provisioner"] = provisioner_config

    logging_config: dict[str, Any] = {}
    if env_val := _env("SERVERPOOL_LOG_LEVEL"):
        logging_config["level"] = env_val.upper()
    if env_val := _env("SERVERPOOL_LOG_FORMAT"):
        logging_config["format"] = env_val.lower()
    if logging_config:
        config_data["logging"] = logging_config

    server_config: dict[str, Any] = {}
    if env_val := _env("SERVERPOOL_HOST"):
        server_config["host"] = env_val
    port = _env_number("SERVERPOOL_PORT", int, "PORT")
    if port is not None:
        server_config["port"] = port
    if server_config:
        config_data["server"] = server_config

    if env_val := _env("SERVERPOOL_OTLP_ENDPOINT"):
        config_data["tracing"] = {"enabled": True, "otlp_endpoint": env_val}

    return config_data


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from file and environment variables.

    Configuration is loaded in the following order (later sources override earlier):
    1. Default values
    2. Configuration file (if provided)
    3. Environment variables

    Args:
        config_path: Optional path to configuration file

    Returns:
        Merged configuration

    Raises:
        ConfigError: If any source is invalid
    """
    config_data = Config().model_dump()

    if config_path and config_path.exists():
        file_config = load_config_from_file(config_path)
        config_data = _merge(config_data, file_config.model_dump(exclude_unset=True))

    config_data = _merge(config_data, load_config_from_env())

    try:
        return Config(**config_data)
    except ValidationError as e:
        raise ConfigError(f"Environment configuration validation failed: {e}") from e


def validate_config(config: Config) -> None:
    """Validate configuration for consistency and correctness.

    Args:
        config: Configuration to validate

    Raises:
        ConfigError: If configuration is invalid
    """
    pool = config.pool
    if pool.min_instances > pool.max_instances:
        raise ConfigError("pool.min_instances must not exceed pool.max_instances")

    if not 0 < pool.scale_up_threshold <= 1:
        raise ConfigError("pool.scale_up_threshold must be in (0, 1]")

    if pool.shutdown_timeout_seconds < 0:
        raise ConfigError("pool.shutdown_timeout_seconds must be non-negative")

    if not 0 < config.provisioner.container_port <= 65535:
        raise ConfigError("provisioner.container_port must be between 1 and 65535")

    if not config.provisioner.labels:
        raise ConfigError("provisioner.labels must not be empty")

    if not 0 < config.server.port <= 65535:
        raise ConfigError("server.port must be between 1 and 65535")

    if not config.metrics.path.startswith("/"):
        raise ConfigError("metrics.path must start with '/'")

    if config.environment == "production":
        if config.debug:
            raise ConfigError("Debug mode should not be enabled in production")

        if config.logging.level == "DEBUG":
            raise ConfigError("DEBUG logging should not be used in production")

        if config.provisioner.backend == "memory":
            raise ConfigError("The memory provisioner cannot be used in production")


def create_provisioner(config: Config) -> InstanceProvisioner:
    """Build the provisioner selected by ``config.provisioner.backend``."""
    if config.provisioner.backend == "memory":
        from serverpool.provisioners.memory import InMemoryProvisioner

        return InMemoryProvisioner(host_prefix="127.0.0.", auto_ready=True)

    from serverpool.provisioners.kubernetes import KubernetesProvisioner

    return KubernetesProvisioner(
        namespace=config.pool.namespace, in_cluster=config.provisioner.in_cluster
    )
