"""CLI for running the Web adapter server.

This module provides a command-line interface for starting the pool
controller behind the FastAPI Web adapter.
"""

from pathlib import Path

import click
import uvicorn

from serverpool.adapters.web.server import create_app
from serverpool.config import ConfigError, load_config
from serverpool.config.environment import get_config_file_path
from serverpool.utils.telemetry import get_logger


@click.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file (YAML)",
)
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", type=int, default=None, help="Port to bind to")
@click.option(
    "--provisioner",
    type=click.Choice(["kubernetes", "memory"]),
    default=None,
    help="Provisioner backend",
)
@click.option("--log-level", default=None, help="Log level")
def run_server(
    config_path: Path | None,
    host: str | None,
    port: int | None,
    provisioner: str | None,
    log_level: str | None,
) -> None:
    """Run the pool controller with its HTTP and WebSocket API."""
    try:
        config = load_config(config_path or get_config_file_path())
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    updates: dict[str, dict[str, object]] = {}
    if host is not None or port is not None:
        server = config.server.model_dump()
        server.update({k: v for k, v in (("host", host), ("port", port)) if v})
        updates["server"] = server
    if provisioner is not None:
        updates["provisioner"] = {
            **config.provisioner.model_dump(),
            "backend": provisioner,
        }
    if log_level is not None:
        updates["logging"] = {**config.logging.model_dump(), "level": log_level.upper()}
    if updates:
        config = config.model_validate({**config.model_dump(), **updates})

    try:
        app = create_app(config)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    logger = get_logger("serverpool.web_cli")
    logger.info(
        "Starting web server",
        host=config.server.host,
        port=config.server.port,
        provisioner=config.provisioner.backend,
        namespace=config.pool.namespace,
    )

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


@click.group()
def cli() -> None:
    """Web adapter CLI."""
    pass


cli.add_command(run_server, name="server")


if __name__ == "__main__":
    cli()
