"""
Client settings.

Precedence: environment variables > ~/.buttplug/config.json > defaults.
"""

import json
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

CONFIG_FILE = Path.home() / ".buttplug" / "config.json"
DEFAULT_SERVER_ADDRESS = "ws://127.0.0.1:12345"
DEFAULT_CLIENT_NAME = "buttplug-client"

ENV_OVERRIDES = {
    "BUTTPLUG_SERVER_ADDRESS": "server_address",
    "BUTTPLUG_CLIENT_NAME": "client_name",
}


class ClientSettings(BaseModel):
    client_name: str = DEFAULT_CLIENT_NAME
    server_address: str = DEFAULT_SERVER_ADDRESS
    heartbeat_interval: float = Field(default=10.0, gt=0)  # s, used when the server sets no ping time
    connect_timeout: float = Field(default=10.0, gt=0)


def _load_file(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def load_settings(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> ClientSettings:
    values = _load_file(path or CONFIG_FILE)
    env = os.environ if environ is None else environ
    for var, field in ENV_OVERRIDES.items():
        if env.get(var):
            values[field] = env[var]
    return ClientSettings.model_validate(values)


def save_settings(settings: ClientSettings, path: Optional[Path] = None) -> None:
    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(settings.model_dump(), indent=2))
