"""
Buttplug CLI — `buttplug` command.

Commands:
  buttplug devices            List devices known to the server
  buttplug scan               Scan for devices
  buttplug ping               Round-trip a Ping
  buttplug stop-all           Stop every device
  buttplug config show|set    Client settings
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional

try:
    import click
    from rich.console import Console
except ImportError:
    raise SystemExit("CLI requires extras: pip install buttplug-client[cli]")

from buttplug_client import __version__
from buttplug_client.client import AsyncButtplugClient
from buttplug_client.config import load_settings
from buttplug_client.errors import ButtplugError

console = Console()


def _get_client(address: Optional[str] = None) -> AsyncButtplugClient:
    settings = load_settings()
    if address:
        settings = settings.model_copy(update={"server_address": address})
    return AsyncButtplugClient(settings=settings)


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    try:
        return asyncio.run(coro)
    except ButtplugError as e:
        console.print(f"[red]{type(e).__name__}: {e}[/red]")
        raise SystemExit(1)


@click.group()
@click.version_option(__version__)
@click.option("-a", "--address", default=None, help="Server address, e.g. ws://127.0.0.1:12345")
@click.option("-v", "--verbose", is_flag=True, help="Log protocol traffic.")
@click.pass_context
def main(ctx: click.Context, address: Optional[str], verbose: bool):
    """Buttplug CLI — talk to a Buttplug server."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="[%(asctime)s] %(name)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["address"] = address


# Register subcommands from separate modules
from buttplug_client.cli.devices import devices_cmd, ping_cmd, scan_cmd, stop_all_cmd
from buttplug_client.cli.settings import config

main.add_command(devices_cmd)
main.add_command(scan_cmd)
main.add_command(ping_cmd)
main.add_command(stop_all_cmd)
main.add_command(config)


if __name__ == "__main__":
    main()
