"""Environment detection and configuration file lookup."""

import os
from enum import Enum
from pathlib import Path


class Environment(Enum):
    """Supported deployment environments."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


def get_environment() -> Environment:
    """Detect current environment from various sources.

    Environment is detected in the following order:
    1. SERVERPOOL_ENVIRONMENT environment variable
    2. NODE_ENV environment variable (for compatibility)
    3. Default to development

    Returns:
        Detected environment
    """
    env_str = os.getenv("SERVERPOOL_ENVIRONMENT", "").lower()
    if env_str:
        try:
            return Environment(env_str)
        except ValueError:
            pass

    node_env = os.getenv("NODE_ENV", "").lower()
    if node_env in {"production", "prod"}:
        return Environment.PRODUCTION
    elif node_env in {"staging", "stage"}:
        return Environment.STAGING
    elif node_env in {"test", "testing"}:
        return Environment.TESTING

    return Environment.DEVELOPMENT


def get_config_file_path(
    environment: Environment | None = None, base_dir: Path | None = None
) -> Path | None:
    """Get the configuration file path for the given environment.

    Args:
        environment: Environment to get config for (defaults to current)
        base_dir: Directory to search (defaults to the working directory)

    Returns:
        Path to configuration file, or None if not found
    """
    if environment is None:
        environment = get_environment()
    base = base_dir or Path.cwd()

    candidates = [
        f"config/{environment.value}.yaml",
        f"config/{environment.value}.yml",
        f"serverpool.{environment.value}.yaml",
        "config/serverpool.yaml",
        "serverpool.yaml",
    ]

    for candidate in candidates:
        path = base / candidate
        if path.exists():
            return path

    return None
