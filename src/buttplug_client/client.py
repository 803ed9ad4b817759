"""
AsyncButtplugClient / ButtplugClient — main client classes.
"""

import asyncio
import functools
import threading
from typing import Any, AsyncGenerator, Callable, Coroutine, Optional, TypeVar

from buttplug_client.config import ClientSettings
from buttplug_client.correlator import MessageCorrelator
from buttplug_client.devices import ClientDevice, DeviceDirectory
from buttplug_client.dispatcher import DUPLICATE_DEVICE_MESSAGE, EventDispatcher
from buttplug_client.errors import ButtplugConnectionError, ButtplugError, DeviceError
from buttplug_client.events import ClientEvent, ClientEventRecord, EventEmitter
from buttplug_client.models.messages import (
    ButtplugMessage,
    DeviceInfo,
    Ping,
    ServerInfo,
    StartScanning,
    StopAllDevices,
    StopScanning,
)
from buttplug_client.transport.base import Transport
from buttplug_client.transport.websocket import WebSocketTransport

T = TypeVar("T")
TransportFactory = Callable[[ClientSettings], Transport]


def _websocket_transport(settings: ClientSettings) -> Transport:
    return WebSocketTransport(open_timeout=settings.connect_timeout)


class AsyncButtplugClient:
    """Async Buttplug client (primary)."""

    def __init__(
        self,
        name: Optional[str] = None,
        settings: Optional[ClientSettings] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        self._settings = settings or ClientSettings()
        self.name = name or self._settings.client_name
        self._transport_factory = transport_factory or _websocket_transport

        self._devices = DeviceDirectory()
        self._events = EventEmitter()
        self._correlator: Optional[MessageCorrelator] = None
        self._connected = False
        self._is_scanning = False
        self._sessions = 0

    async def __aenter__(self) -> "AsyncButtplugClient":
        return self

    async def __aexit__(self, *_exc: Any) -> None:
        await self.disconnect()

    @property
    def connected(self) -> bool:
        return self._connected and self._correlator is not None and self._correlator.connected

    @property
    def is_scanning(self) -> bool:
        return self._is_scanning

    @property
    def devices(self) -> list[ClientDevice]:
        return self._devices.values()

    def device(self, index: int) -> Optional[ClientDevice]:
        return self._devices.get(index)

    @property
    def server_info(self) -> Optional[ServerInfo]:
        return self._correlator.server_info if self._correlator else None

    def on(self, event: str, handler: Callable[..., Any]) -> Callable[[], None]:
        """Register a listener for a ClientEvent. Returns a cleanup function."""
        return self._events.on(event, handler)

    async def connect(self, address: Optional[str] = None) -> ServerInfo:
        """Connect, handshake and load the server's current device list."""
        if self.connected:
            raise ButtplugConnectionError("Already connected. Call disconnect() first.")
        address = address or self._settings.server_address

        dispatcher = EventDispatcher(
            self._devices,
            self._make_device,
            handle_device_added=self._on_device_added,
            handle_device_removed=self._on_device_removed,
            handle_scanning_finished=self._on_scanning_finished,
            handle_error=self._on_error,
            handle_ping_timeout=self._on_ping_timeout,
        )
        correlator = MessageCorrelator(
            self._transport_factory(self._settings),
            dispatcher,
            self.name,
            heartbeat_interval=self._settings.heartbeat_interval,
        )
        correlator.handle_disconnect = functools.partial(self._on_server_disconnect, correlator)
        self._correlator = correlator

        try:
            info = await correlator.connect(address)
        except BaseException:
            self._correlator = None
            self._devices.clear()
            raise
        self._connected = True
        self._sessions += 1
        return info

    async def disconnect(self) -> None:
        correlator, self._correlator = self._correlator, None
        self._connected = False
        self._is_scanning = False
        self._devices.clear()
        if correlator is not None:
            await correlator.close()

    async def start_scanning(self) -> ButtplugMessage:
        self._ensure_connected()
        self._is_scanning = True
        try:
            return await self._request(StartScanning())
        except ButtplugError:
            self._is_scanning = False
            raise

    async def stop_scanning(self) -> ButtplugMessage:
        self._ensure_connected()
        self._is_scanning = False
        return await self._request(StopScanning())

    async def stop_all_devices(self) -> ButtplugMessage:
        return await self._request(StopAllDevices())

    async def ping(self) -> ButtplugMessage:
        return await self._request(Ping())

    async def subscribe(self) -> AsyncGenerator[ClientEventRecord, None]:
        """Event stream for this client. Ends once the connection is lost or closed.

        May be started before connect() to catch the initial device_added events;
        it then waits for a connection to come and go.
        """
        queue: asyncio.Queue[ClientEventRecord] = asyncio.Queue()
        remove = self._events.on_any(queue.put_nowait)
        started_connected, sessions = self.connected, self._sessions
        try:
            while True:
                try:
                    record = await asyncio.wait_for(queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    if not self.connected and (started_connected or self._sessions != sessions):
                        break
                    continue
                yield record
                if record.type == ClientEvent.SERVER_DISCONNECTED:
                    break
        finally:
            remove()

    async def _request(self, message: ButtplugMessage) -> ButtplugMessage:
        self._ensure_connected()
        return await self._correlator.request(message)  # type: ignore[union-attr]

    def _ensure_connected(self) -> None:
        if not self.connected:
            raise ButtplugConnectionError("Not connected. Call connect() first.")

    # --- dispatcher callbacks ---

    def _make_device(self, info: DeviceInfo) -> ClientDevice:
        return ClientDevice(info, self._request)

    def _on_device_added(self, device: ClientDevice) -> None:
        if not self._devices.add(device):
            self._on_error(DeviceError(DUPLICATE_DEVICE_MESSAGE, details={"device_index": device.index}))
            return
        self._events.emit(ClientEvent.DEVICE_ADDED, device)

    def _on_device_removed(self, device: ClientDevice) -> None:
        self._devices.remove(device.index)
        self._events.emit(ClientEvent.DEVICE_REMOVED, device)

    def _on_scanning_finished(self) -> None:
        self._is_scanning = False
        self._events.emit(ClientEvent.SCANNING_FINISHED)

    def _on_error(self, error: ButtplugError) -> None:
        self._events.emit(ClientEvent.ERROR_RECEIVED, error)

    def _on_ping_timeout(self) -> None:
        self._events.emit(ClientEvent.PING_TIMEOUT)

    def _on_server_disconnect(self, correlator: MessageCorrelator, status: int, reason: str) -> None:
        if correlator is not self._correlator:
            return
        self._correlator = None
        self._connected = False
        self._is_scanning = False
        self._devices.clear()
        self._events.emit(ClientEvent.SERVER_DISCONNECTED, status, reason)


class ButtplugClient:
    """Sync wrapper around AsyncButtplugClient. Runs the event loop on a background thread.

    Event handlers are called on that thread.
    """

    def __init__(self, **kwargs: Any):
        self._async = AsyncButtplugClient(**kwargs)
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name="buttplug-client", daemon=True)
        self._thread.start()

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run a coroutine (e.g. a device command) on the client loop and wait for it."""
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result()

    @property
    def connected(self) -> bool:
        return self._async.connected

    @property
    def is_scanning(self) -> bool:
        return self._async.is_scanning

    @property
    def devices(self) -> list[ClientDevice]:
        return self._async.devices

    def device(self, index: int) -> Optional[ClientDevice]:
        return self._async.device(index)

    def on(self, event: str, handler: Callable[..., Any]) -> Callable[[], None]:
        return self._async.on(event, handler)

    def connect(self, address: Optional[str] = None) -> ServerInfo:
        return self.run(self._async.connect(address))

    def disconnect(self) -> None:
        self.run(self._async.disconnect())

    def start_scanning(self) -> ButtplugMessage:
        return self.run(self._async.start_scanning())

    def stop_scanning(self) -> ButtplugMessage:
        return self.run(self._async.stop_scanning())

    def stop_all_devices(self) -> ButtplugMessage:
        return self.run(self._async.stop_all_devices())

    def ping(self) -> ButtplugMessage:
        return self.run(self._async.ping())

    def close(self) -> None:
        """Disconnect and stop the background loop."""
        if self._loop.is_closed():
            return
        self.run(self._async.disconnect())
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()
