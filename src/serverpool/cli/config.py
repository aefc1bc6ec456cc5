"""Configuration management CLI commands."""

import json
import os
from pathlib import Path

import yaml

from serverpool.config import ConfigError, load_config, validate_config
from serverpool.config.environment import get_config_file_path, get_environment

ENV_VARS = [
    "SERVERPOOL_ENVIRONMENT",
    "SERVERPOOL_DEBUG",
    "SERVERPOOL_NAMESPACE",
    "SERVERPOOL_CAPACITY_PER_INSTANCE",
    "SERVERPOOL_MIN_INSTANCES",
    "SERVERPOOL_MAX_INSTANCES",
    "SERVERPOOL_SCALING_INTERVAL",
    "SERVERPOOL_SCALE_UP_THRESHOLD",
    "SERVERPOOL_PROVISIONER_TIMEOUT",
    "SERVERPOOL_SHUTDOWN_TIMEOUT",
    "SERVERPOOL_PROVISIONER",
    "SERVERPOOL_IMAGE",
    "SERVERPOOL_IN_CLUSTER",
    "SERVERPOOL_LOG_LEVEL",
    "SERVERPOOL_LOG_FORMAT",
    "SERVERPOOL_HOST",
    "SERVERPOOL_PORT",
    "SERVERPOOL_OTLP_ENDPOINT",
    "NAMESPACE",
    "MAX_PLAYERS_PER_SERVER",
    "MIN_SERVERS",
    "MAX_SERVERS",
    "PORT",
]


def config_validate_command(args: list[str]) -> int:
    """Validate a configuration file merged with environment variables.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    config_path = None
    if args and not args[0].startswith("-"):
        config_path = Path(args[0])
        if not config_path.exists():
            print(f"Error: Configuration file not found: {config_path}")
            return 1

    try:
        if config_path:
            print(f"Validating configuration file: {config_path}")
        else:
            print("Validating configuration from environment variables")
        validate_config(load_config(config_path))
    except ConfigError as e:
        print(f"✗ Configuration validation failed: {e}")
        return 1

    print("✓ Configuration is valid")
    return 0


def config_show_command(args: list[str]) -> int:
    """Show the effective configuration.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    format_type = "yaml"
    config_path = None

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ["--format", "-f"]:
            if i + 1 >= len(args):
                print("Error: --format requires a value")
                return 1
            format_type = args[i + 1]
            i += 2
        elif arg.startswith("--format="):
            format_type = arg.split("=", 1)[1]
            i += 1
        elif not arg.startswith("-"):
            config_path = Path(arg)
            i += 1
        else:
            print(f"Unknown argument: {arg}")
            return 1

    if format_type not in ["yaml", "json"]:
        print(f"Error: Invalid format '{format_type}'. Use 'yaml' or 'json'")
        return 1

    try:
        config = load_config(config_path or get_config_file_path())
    except ConfigError as e:
        print(f"Error loading configuration: {e}")
        return 1

    config_dict = config.model_dump(mode="json")
    if format_type == "json":
        print(json.dumps(config_dict, indent=2))
    else:
        print(yaml.safe_dump(config_dict, default_flow_style=False, sort_keys=True))
    return 0


def config_env_command(args: list[str]) -> int:
    """Show environment detection and the variables that affect configuration."""
    show_all = "--all" in args or "-a" in args

    print(f"Environment: {get_environment().value}")
    print(f"Config file: {get_config_file_path() or 'None found'}")
    print()

    print("Environment Variables:")
    for var in ENV_VARS:
        value = os.getenv(var)
        if value or show_all:
            print(f"  {var}={value or '(not set)'}")

    if not show_all:
        print("\nUse --all to show all variables (including unset)")
    return 0


def run_config_command(args: list[str]) -> int:
    """Run configuration management commands.

    Args:
        args: Command line arguments

    Returns:
        Exit code (0 for success, 1 for error)
    """
    if not args:
        print_config_help()
        return 0

    command = args[0]
    command_args = args[1:]

    if command == "validate":
        return config_validate_command(command_args)
    elif command == "show":
        return config_show_command(command_args)
    elif command == "env":
        return config_env_command(command_args)
    elif command in ["help", "-h", "--help"]:
        print_config_help()
        return 0
    else:
        print(f"Unknown config command: {command}")
        print_config_help()
        return 1


def print_config_help() -> None:
    """Print configuration command help."""
    print(
        """serverpool config - Configuration management

Usage:
    serverpool config <command> [options]

Commands:
    validate [file]     Validate configuration file and environment
    show [file]         Show effective configuration
                        Options: --format=yaml|json
    env                 Show environment variables
                        Options: --all
    help                Show this help message

Examples:
    serverpool config validate
    serverpool config validate config/production.yaml
    serverpool config show --format=json
"""
    )
