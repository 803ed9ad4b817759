"""CLI: buttplug devices, scan, ping, stop-all"""

import asyncio
import time

import click
from rich.console import Console
from rich.table import Table

from buttplug_client.client import AsyncButtplugClient
from buttplug_client.devices import ClientDevice
from buttplug_client.events import ClientEvent

console = Console()


def _get_client(ctx: click.Context) -> AsyncButtplugClient:
    from buttplug_client.cli.main import _get_client
    return _get_client(ctx.obj.get("address") if ctx.obj else None)


def _run(coro):
    from buttplug_client.cli.main import _run
    return _run(coro)


def _device_table(devices: list[ClientDevice]) -> Table:
    table = Table(title="Devices")
    table.add_column("Index", justify="right")
    table.add_column("Name")
    table.add_column("Messages", style="dim")
    for device in devices:
        table.add_row(str(device.index), device.name, ", ".join(device.allowed_messages))
    return table


@click.command("devices")
@click.pass_context
def devices_cmd(ctx: click.Context):
    """List devices currently known to the server."""

    async def _devices():
        client = _get_client(ctx)
        with console.status("Connecting..."):
            info = await client.connect()
        try:
            console.print(f"[dim]Server: {info.server_name} (max ping {info.max_ping_time}ms)[/dim]")
            if client.devices:
                console.print(_device_table(client.devices))
            else:
                console.print("[yellow]No devices connected.[/yellow]")
        finally:
            await client.disconnect()

    _run(_devices())


@click.command("scan")
@click.option("-d", "--duration", default=5.0, show_default=True, help="Seconds to scan for.")
@click.pass_context
def scan_cmd(ctx: click.Context, duration: float):
    """Scan for devices and print them as they appear."""

    async def _scan():
        client = _get_client(ctx)
        finished = asyncio.Event()
        client.on(ClientEvent.DEVICE_ADDED, lambda d: console.print(f"[green]+ {d.index}: {d.name}[/green]"))
        client.on(ClientEvent.DEVICE_REMOVED, lambda d: console.print(f"[red]- {d.index}: {d.name}[/red]"))
        client.on(ClientEvent.ERROR_RECEIVED, lambda e: console.print(f"[red]{e}[/red]"))
        client.on(ClientEvent.SCANNING_FINISHED, finished.set)
        await client.connect()
        try:
            await client.start_scanning()
            try:
                await asyncio.wait_for(finished.wait(), timeout=duration)
            except asyncio.TimeoutError:
                pass
            if client.is_scanning:
                await client.stop_scanning()
            console.print(_device_table(client.devices))
        finally:
            await client.disconnect()

    _run(_scan())


@click.command("ping")
@click.pass_context
def ping_cmd(ctx: click.Context):
    """Send a Ping and report the round-trip time."""

    async def _ping():
        client = _get_client(ctx)
        await client.connect()
        try:
            start = time.perf_counter()
            await client.ping()
            console.print(f"Pong in {(time.perf_counter() - start) * 1000:.1f}ms")
        finally:
            await client.disconnect()

    _run(_ping())


@click.command("stop-all")
@click.pass_context
def stop_all_cmd(ctx: click.Context):
    """Stop every connected device."""

    async def _stop():
        client = _get_client(ctx)
        await client.connect()
        try:
            await client.stop_all_devices()
            console.print("[green]All devices stopped.[/green]")
        finally:
            await client.disconnect()

    _run(_stop())
