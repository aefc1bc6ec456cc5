"""Entry point for `python -m serverpool.cli` and the `serverpool` script."""

import sys


def main(args: list[str] | None = None) -> int:
    """Main entry point for the serverpool CLI."""
    if args is None:
        args = sys.argv[1:]

    if not args or args[0] in ["-h", "--help", "help"]:
        print_help()
        return 0

    command = args[0]

    if command == "version":
        print_version()
        return 0
    elif command == "web":
        return run_web(args[1:])
    elif command == "config":
        return run_config(args[1:])
    else:
        print(f"Unknown command: {command}")
        print_help()
        return 1


def print_help() -> None:
    """Print CLI help message."""
    print(
        """serverpool - Game server pool controller

Usage:
    serverpool <command> [options]

Commands:
    version     Show version information
    web         Run the controller with its HTTP/WebSocket API
    config      Configuration management
    help        Show this help message

Options:
    -h, --help  Show help message
"""
    )


def print_version() -> None:
    from serverpool import __version__

    print(f"serverpool {__version__}")


def run_web(args: list[str]) -> int:
    """Run the web adapter command."""
    import click

    from serverpool.adapters.web.cli import cli

    try:
        cli.main(args=args, prog_name="serverpool web", standalone_mode=False)
        return 0
    except click.ClickException as e:
        e.show()
        return e.exit_code
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 0
    except Exception as e:
        print(f"Web adapter error: {e}")
        return 1


def run_config(args: list[str]) -> int:
    """Run the config command."""
    from serverpool.cli.config import run_config_command

    return run_config_command(args)


if __name__ == "__main__":
    sys.exit(main())
