"""Crowbar Server - Main entry point."""

import asyncio
import logging

import click
import structlog
from rich.console import Console

from crowbar.core.config import ServerConfig, load_config_from_file
from crowbar.core.exceptions import CrowbarError
from crowbar.server.relay import RelayServer

console = Console()

BANNER = """
  ___ _ __ _____      _| |__   __ _ _ __
 / __| '__/ _ \\ \\ /\\ / / '_ \\ / _` | '__|
| (__| | | (_) \\ V  V /| |_) | (_| | |
 \\___|_|  \\___/ \\_/\\_/ |_.__/ \\__,_|_|
              RELAY SERVER
"""


def configure_logging(level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
    )


@click.command()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option(
    "--listen",
    envvar="CROWBAR_LISTEN",
    default=None,
    help="Address to bind HTTP server to (default: 0.0.0.0:8080)",
)
@click.option(
    "--userfile",
    envvar="CROWBAR_USERFILE",
    default=None,
    help="Path of user config file (default: /etc/crowbard.conf)",
)
@click.option(
    "--pull-timeout",
    envvar="CROWBAR_PULL_TIMEOUT",
    type=float,
    default=None,
    help="Seconds a pull may wait before answering empty (default: indefinite)",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Log level (default: info)",
)
def main(
    config_file: str | None,
    listen: str | None,
    userfile: str | None,
    pull_timeout: float | None,
    log_level: str | None,
):
    """Run the Crowbar relay server."""
    console.print(BANNER, style="cyan")

    overrides = load_config_from_file(config_file) if config_file else {}
    if listen:
        overrides["listen"] = listen
    if userfile:
        overrides["userfile"] = userfile
    if pull_timeout is not None:
        overrides["pull_timeout"] = pull_timeout if pull_timeout > 0 else None
    if log_level:
        overrides["log_level"] = log_level

    config = ServerConfig(**overrides)
    configure_logging(config.log_level)

    console.print(f"Server starting on {config.listen}...", style="yellow")
    console.print(f"Accounts: {config.userfile}", style="dim")
    timeout_str = f"{config.pull_timeout}s" if config.pull_timeout else "indefinite"
    console.print(f"Pull timeout: {timeout_str}", style="dim")

    try:
        server = RelayServer(config)
    except (FileNotFoundError, CrowbarError) as e:
        console.print(f"Error: {e}", style="red")
        raise SystemExit(1) from e

    asyncio.run(run_server(server))


async def run_server(server: RelayServer):
    """Run the relay server."""
    try:
        await server.start()
        console.print("Server started, press Ctrl+C to stop", style="green")

        await asyncio.Event().wait()
    except KeyboardInterrupt:
        console.print("\nShutting down...", style="yellow")
    finally:
        await server.stop()


if __name__ == "__main__":
    main()
