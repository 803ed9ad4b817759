"""Shared fixtures: an in-memory transport and a scripted Buttplug server."""

import asyncio
import inspect
from typing import Any, Callable, Iterable, Optional, Union

import pytest

from buttplug_client.correlator import MessageCorrelator
from buttplug_client.devices import ClientDevice, DeviceDirectory
from buttplug_client.dispatcher import EventDispatcher
from buttplug_client.models.messages import (
    BatteryLevelCmd,
    BatteryLevelReading,
    ButtplugMessage,
    DeviceInfo,
    DeviceList,
    Ok,
    RequestDeviceList,
    RequestServerInfo,
    ServerInfo,
)
from buttplug_client.transport.base import Transport
from buttplug_client.transport.envelope import build_frame, decode_frame


def device_info(index: int, name: str = "Test Vibrator", messages: Optional[dict[str, Any]] = None) -> DeviceInfo:
    if messages is None:
        messages = {"VibrateCmd": {"FeatureCount": 2}, "StopDeviceCmd": {}}
    return DeviceInfo.model_validate({"DeviceIndex": index, "DeviceName": name, "DeviceMessages": messages})


class FakeServer:
    """Answers the handshake and replies Ok to everything else, unless told to stay silent."""

    def __init__(self, max_ping_time: int = 0, devices: Iterable[DeviceInfo] = (), silent: Iterable[str] = ()):
        self.max_ping_time = max_ping_time
        self.devices = list(devices)
        self.silent = set(silent)
        self.received: list[ButtplugMessage] = []

    def __call__(self, message: ButtplugMessage) -> Optional[list[ButtplugMessage]]:
        self.received.append(message)
        if message.kind in self.silent:
            return None
        if isinstance(message, RequestServerInfo):
            return [ServerInfo(id=message.id, server_name="Fake Server", max_ping_time=self.max_ping_time)]
        if isinstance(message, RequestDeviceList):
            return [DeviceList(id=message.id, devices=self.devices)]
        if isinstance(message, BatteryLevelCmd):
            return [BatteryLevelReading(id=message.id, device_index=message.device_index, battery_level=0.75)]
        return [Ok(id=message.id)]

    def received_kinds(self) -> list[str]:
        return [m.kind for m in self.received]


class FakeTransport(Transport):
    def __init__(self, server: Optional[Callable[[ButtplugMessage], Optional[list[ButtplugMessage]]]] = None):
        super().__init__()
        self.server = server
        self.sent: list[str] = []
        self.heartbeats = 0
        self.close_calls = 0
        self.address: Optional[str] = None
        self.connect_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self, address: str) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.address = address
        self._connected = True

    async def send(self, frame: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(frame)
        if self.server is None:
            return
        loop = asyncio.get_running_loop()
        for message in decode_frame(frame):
            replies = self.server(message)
            if replies:
                loop.call_soon(self.feed, build_frame(replies))

    async def send_heartbeat(self) -> None:
        self.heartbeats += 1

    async def close(self) -> None:
        self.close_calls += 1
        self._connected = False

    def feed(self, frame: Union[str, bytes]) -> None:
        """Deliver a frame as if it came from the server."""
        assert self._on_message is not None
        self._on_message(frame)

    def push(self, *messages: ButtplugMessage) -> None:
        self.feed(build_frame(messages))

    async def drop(self, status: int = 1006, reason: str = "") -> None:
        """Simulate the server going away."""
        self._connected = False
        if self._on_disconnect is not None:
            result = self._on_disconnect(status, reason)
            if inspect.isawaitable(result):
                await result

    def sent_messages(self) -> list[ButtplugMessage]:
        return [m for frame in self.sent for m in decode_frame(frame)]


class Harness:
    """Correlator wired to a dispatcher that records every callback."""

    def __init__(self, transport: FakeTransport, heartbeat_interval: float = 10.0):
        self.transport = transport
        self.devices = DeviceDirectory()
        self.added: list[ClientDevice] = []
        self.removed: list[ClientDevice] = []
        self.errors: list[Exception] = []
        self.ping_timeouts = 0
        self.scanning_finished = 0
        self.disconnects: list[tuple[int, str]] = []

        self.dispatcher = EventDispatcher(
            self.devices,
            lambda info: ClientDevice(info, self.correlator.request),
            handle_device_added=self._added,
            handle_device_removed=self._removed,
            handle_scanning_finished=self._scanning_finished,
            handle_error=self.errors.append,
            handle_ping_timeout=self._ping_timeout,
        )
        self.correlator = MessageCorrelator(
            transport,
            self.dispatcher,
            "Test Client",
            heartbeat_interval=heartbeat_interval,
            handle_disconnect=lambda status, reason: self.disconnects.append((status, reason)),
        )

    def _added(self, device: ClientDevice) -> None:
        self.devices.add(device)
        self.added.append(device)

    def _removed(self, device: ClientDevice) -> None:
        self.devices.remove(device.index)
        self.removed.append(device)

    def _scanning_finished(self) -> None:
        self.scanning_finished += 1

    def _ping_timeout(self) -> None:
        self.ping_timeouts += 1


@pytest.fixture
def server() -> FakeServer:
    return FakeServer(devices=[device_info(0, "Lovense Edge")])


@pytest.fixture
def transport(server: FakeServer) -> FakeTransport:
    return FakeTransport(server)


@pytest.fixture
def harness(transport: FakeTransport) -> Harness:
    return Harness(transport)
