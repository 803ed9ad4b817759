"""CLI: buttplug config show, buttplug config set"""

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from buttplug_client.config import CONFIG_FILE, ClientSettings, load_settings, save_settings

console = Console()


@click.group()
def config():
    """Client settings."""


@config.command("show")
def show_cmd():
    """Show effective settings."""
    settings = load_settings()
    table = Table(title=str(CONFIG_FILE))
    table.add_column("Key")
    table.add_column("Value")
    for key, value in settings.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


@config.command("set")
@click.argument("key", type=click.Choice(sorted(ClientSettings.model_fields)))
@click.argument("value")
def set_cmd(key: str, value: str):
    """Persist one setting to the config file."""
    current = load_settings(environ={}).model_dump()
    current[key] = value
    try:
        settings = ClientSettings.model_validate(current)
    except ValidationError as e:
        console.print(f"[red]Invalid value for {key}: {e.errors()[0]['msg']}[/red]")
        raise SystemExit(1)
    save_settings(settings)
    console.print(f"[green]{key} = {getattr(settings, key)}[/green]")
