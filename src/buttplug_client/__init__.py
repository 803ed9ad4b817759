"""
buttplug-client — Buttplug protocol client for Python.

WebSocket client for Buttplug servers (Intiface Central, buttplug-rs),
message spec version 2.
"""

__version__ = "0.1.0"

from buttplug_client.client import AsyncButtplugClient, ButtplugClient
from buttplug_client.config import ClientSettings, load_settings
from buttplug_client.devices import ClientDevice
from buttplug_client.errors import (
    ButtplugConnectionError,
    ButtplugError,
    DeviceError,
    ErrorCode,
    MessageError,
    ProtocolError,
    ServerReportedError,
    TeardownError,
    TransportError,
)
from buttplug_client.events import ClientEvent, ClientEventRecord

__all__ = [
    "AsyncButtplugClient",
    "ButtplugClient",
    "ClientSettings",
    "load_settings",
    "ClientDevice",
    "ButtplugError",
    "ProtocolError",
    "MessageError",
    "DeviceError",
    "ServerReportedError",
    "TransportError",
    "TeardownError",
    "ButtplugConnectionError",
    "ErrorCode",
    "ClientEvent",
    "ClientEventRecord",
]
