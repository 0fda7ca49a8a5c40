"""Crowbar CLI - Command line interface."""

from __future__ import annotations

import asyncio
import contextlib
import json
import sys
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.table import Table

if TYPE_CHECKING:
    from crowbar.core.config import ClientConfig

console = Console()

BANNER = """
  ___ _ __ _____      _| |__   __ _ _ __
 / __| '__/ _ \\ \\ /\\ / / '_ \\ / _` | '__|
| (__| | | (_) \\ V  V /| |_) | (_| | |
 \\___|_|  \\___/ \\_/\\_/ |_.__/ \\__,_|_|
     TCP over plain HTTP, when that is all you get
"""


@click.group(invoke_without_command=True)
@click.pass_context
def main(ctx: click.Context):
    """Crowbar - tunnel TCP connections through HTTP."""
    if ctx.invoked_subcommand is None:
        console.print(BANNER, style="cyan")
        console.print("Usage:", style="bold")
        console.print("  crowbar forward example.org 22 --local-port 2222 --username alice")
        console.print("  crowbar status --server http://relay.example:8080")


@main.command()
@click.argument("remote_host")
@click.argument("remote_port", type=int)
@click.option("--local-port", "-p", type=int, default=0, help="Local port to listen on (default: random)")
@click.option("--local-host", default="127.0.0.1", help="Local address to listen on")
@click.option("--server", envvar="CROWBAR_SERVER", default="http://127.0.0.1:8080", help="Relay server URL")
@click.option("--username", "-u", envvar="CROWBAR_USERNAME", required=True, help="Account name")
@click.option("--secret", envvar="CROWBAR_SECRET", required=True, help="Account secret")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    help="Log level (default: warning)",
)
def forward(
    remote_host: str,
    remote_port: int,
    local_port: int,
    local_host: str,
    server: str,
    username: str,
    secret: str,
    log_level: str,
):
    """Forward a local port to REMOTE_HOST:REMOTE_PORT through the relay.

    Examples:

        crowbar forward example.org 80 --local-port 8000 -u alice

        CROWBAR_SECRET=s crowbar forward db.internal 5432 -p 5432 -u alice
    """
    from crowbar.core.config import ClientConfig
    from crowbar.server.main import configure_logging

    configure_logging(log_level)
    config = ClientConfig(server_url=server, username=username, secret=secret)

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run_forwarder(config, remote_host, remote_port, local_host, local_port))
    console.print("\nStopped.", style="yellow")


async def run_forwarder(
    config: ClientConfig,
    remote_host: str,
    remote_port: int,
    local_host: str,
    local_port: int,
) -> None:
    from crowbar.client.tunnel import Forwarder, TunnelClient

    async with TunnelClient(config) as client:
        forwarder = Forwarder(client, remote_host, remote_port, local_host, local_port)
        bound = await forwarder.start()
        console.print(
            f"Forwarding {local_host}:{bound} -> {remote_host}:{remote_port} via {config.server_url}",
            style="green",
        )
        try:
            await forwarder.serve_forever()
        finally:
            await forwarder.stop()


@main.command()
@click.option("--server", envvar="CROWBAR_SERVER", default="http://127.0.0.1:8080", help="Relay server URL")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def status(server: str, json_output: bool):
    """Show relay server health."""
    import httpx

    try:
        with httpx.Client(timeout=5.0) as client:
            health = client.get(f"{server.rstrip('/')}/health").json()
    except Exception as e:
        health = {"status": "unreachable", "error": str(e)}

    if json_output:
        click.echo(json.dumps(health))
        return

    table = Table(title="Relay Status")
    table.add_column("Server")
    table.add_column("Status")
    style = "green" if health.get("status") == "healthy" else "red"
    table.add_row(server, f"[{style}]{health.get('status', 'unknown')}[/{style}]")
    console.print(table)


@main.command()
def version():
    """Show version information."""
    from crowbar import __version__

    console.print(BANNER, style="cyan")
    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


if __name__ == "__main__":
    main()
