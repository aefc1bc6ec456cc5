"""Configuration management for serverpool.

This module provides configuration loading, validation and health check
settings for the game server pool controller.
"""

from .config import (
    Config,
    ConfigError,
    LoggingConfig,
    MetricsConfig,
    ProvisionerConfig,
    ServerConfig,
    TracingConfig,
    create_provisioner,
    load_config,
    load_config_from_env,
    load_config_from_file,
    validate_config,
)
from .deployment import GracefulShutdownHandler, HealthChecker, HealthCheckConfig
from .environment import Environment, get_config_file_path, get_environment

__all__ = [
    "Config",
    "ConfigError",
    "Environment",
    "GracefulShutdownHandler",
    "HealthCheckConfig",
    "HealthChecker",
    "LoggingConfig",
    "MetricsConfig",
    "ProvisionerConfig",
    "ServerConfig",
    "TracingConfig",
    "create_provisioner",
    "get_config_file_path",
    "get_environment",
    "load_config",
    "load_config_from_env",
    "load_config_from_file",
    "validate_config",
]
