"""
Message correlator. Matches server replies to outstanding requests.

Outgoing requests get a fresh non-zero `Id` and a pending slot. Inbound
messages with a non-zero `Id` settle that slot; `Id` 0 is a notification and
goes to the EventDispatcher.

Connection bootstrap:
  RequestServerInfo -> ServerInfo -> (keepalive starts) -> RequestDeviceList -> DeviceList

There is no per-request timeout. A request the server never answers stays
pending until the connection is torn down.
"""

import asyncio
import inspect
import logging
import threading
from typing import Any, Callable, Optional, Union

from buttplug_client.dispatcher import EventDispatcher
from buttplug_client.errors import (
    MessageError,
    ProtocolError,
    ServerReportedError,
    TeardownError,
    TransportError,
)
from buttplug_client.models.messages import (
    MAX_MESSAGE_ID,
    MESSAGE_VERSION,
    ButtplugMessage,
    DeviceList,
    Error,
    Ping,
    RequestDeviceList,
    RequestServerInfo,
    ServerInfo,
)
from buttplug_client.transport.base import Transport
from buttplug_client.transport.envelope import build_frame, parse_frame, parse_message

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL_S = 10.0
TEARDOWN_MESSAGE = (
    "Connection closed with requests still outstanding, most likely due to a disconnection."
)


def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False


class PendingRequest:
    """Single-assignment result slot for one outstanding request."""

    __slots__ = ("id", "kind", "future")

    def __init__(self, msg_id: int, kind: str, loop: asyncio.AbstractEventLoop):
        self.id = msg_id
        self.kind = kind
        self.future: asyncio.Future[ButtplugMessage] = loop.create_future()

    def resolve(self, message: ButtplugMessage) -> None:
        self._settle(message, None)

    def fail(self, error: BaseException) -> None:
        self._settle(None, error)

    def _settle(self, message: Optional[ButtplugMessage], error: Optional[BaseException]) -> None:
        loop = self.future.get_loop()
        if _on_loop(loop):
            self._apply(message, error)
        else:
            loop.call_soon_threadsafe(self._apply, message, error)

    def _apply(self, message: Optional[ButtplugMessage], error: Optional[BaseException]) -> None:
        if self.future.cancelled():
            logger.debug("Request %d (%s) was cancelled by its caller", self.id, self.kind)
            return
        if self.future.done():
            logger.error("Request %d (%s) already resolved; second resolution ignored", self.id, self.kind)
            return
        if error is not None:
            self.future.set_exception(error)
        else:
            self.future.set_result(message)  # type: ignore[arg-type]


class MessageCorrelator:
    def __init__(
        self,
        transport: Transport,
        dispatcher: EventDispatcher,
        client_name: str,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_S,
        handle_disconnect: Optional[Callable[[int, str], Any]] = None,
    ):
        self._transport = transport
        self.dispatcher = dispatcher
        self._client_name = client_name
        self._heartbeat_interval = heartbeat_interval
        self.handle_disconnect = handle_disconnect

        self._lock = threading.Lock()
        self._pending: dict[int, PendingRequest] = {}
        self._counter = 0
        self._closed = False
        self._keepalive: Optional[asyncio.Task[None]] = None
        self._server_info: Optional[ServerInfo] = None

        transport.set_message_handler(self.on_receive)
        transport.set_disconnect_handler(self._on_transport_disconnect)

    @property
    def connected(self) -> bool:
        return not self._closed and self._transport.connected

    @property
    def server_info(self) -> Optional[ServerInfo]:
        return self._server_info

    @property
    def max_ping_time(self) -> int:
        return self._server_info.max_ping_time if self._server_info else 0

    @property
    def keepalive_interval(self) -> float:
        """Seconds between keepalive frames: half the server's ping window."""
        if not self.max_ping_time:
            return self._heartbeat_interval
        return self.max_ping_time / 2000.0

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # --- bootstrap ---

    async def connect(self, address: str) -> ServerInfo:
        """Open the transport, handshake, start keepalive and sync the device list."""
        await self._transport.connect(address)
        try:
            reply = await self.request(RequestServerInfo(
                client_name=self._client_name,
                message_version=MESSAGE_VERSION,
            ))
            if not isinstance(reply, ServerInfo):
                raise MessageError(f"Expected ServerInfo during handshake, got {reply.kind}")
            self._server_info = reply
            logger.info(
                "Handshake complete: server=%r version=%d max_ping_time=%dms",
                reply.server_name, reply.message_version, reply.max_ping_time,
            )
            self._keepalive = asyncio.create_task(self._keepalive_loop())

            listing = await self.request(RequestDeviceList())
            if not isinstance(listing, DeviceList):
                raise MessageError(f"Expected DeviceList, got {listing.kind}")
            for info in listing.devices:
                self.dispatcher.add_device(info)
        except BaseException:
            await self.close("Connection bootstrap failed")
            raise
        return reply

    # --- outgoing ---

    async def send_request(self, message: ButtplugMessage) -> "asyncio.Future[ButtplugMessage]":
        """Stamp an Id on a copy of `message`, send it, and return the reply future.

        A transport failure removes the slot and fails the future with TransportError.
        """
        pending, stamped = self._register(message)
        try:
            await self._transport.send(build_frame([stamped]))
        except Exception as e:
            error = e if isinstance(e, TransportError) else TransportError(f"Send failed: {e}")
            if self._take(pending.id) is not None:
                pending.fail(error)
        return pending.future

    async def request(self, message: ButtplugMessage) -> ButtplugMessage:
        """Send `message` and wait for the correlated reply."""
        future = await self.send_request(message)
        return await future

    def _register(self, message: ButtplugMessage) -> tuple[PendingRequest, ButtplugMessage]:
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._closed:
                raise TransportError("Connection is closed")
            msg_id = self._next_id()
            pending = PendingRequest(msg_id, message.kind, loop)
            self._pending[msg_id] = pending
        return pending, message.model_copy(update={"id": msg_id})

    def _next_id(self) -> int:
        # Caller holds self._lock. Wraps at 2**32 - 1, never yields 0 or a pending Id.
        for _ in range(MAX_MESSAGE_ID):
            self._counter = self._counter % MAX_MESSAGE_ID + 1
            if self._counter not in self._pending:
                return self._counter
        raise MessageError("No free message identifiers")

    def _take(self, msg_id: int) -> Optional[PendingRequest]:
        with self._lock:
            return self._pending.pop(msg_id, None)

    # --- incoming ---

    def on_receive(self, raw: Union[str, bytes]) -> None:
        """Transport callback: decode a frame and dispatch each message in order."""
        try:
            envelopes = parse_frame(raw)
        except ProtocolError as e:
            self.dispatcher.report(e)
            return
        for envelope in envelopes:
            try:
                self.dispatch(parse_message(envelope))
            except ProtocolError as e:
                self.dispatcher.report(e)

    def dispatch(self, message: ButtplugMessage) -> None:
        if message.is_notification:
            self.dispatcher.notify(message)
            return

        pending = self._take(message.id)
        if pending is None:
            if isinstance(message, Error):
                # The slot may already be gone (failed send, cancelled caller); the server's report still counts.
                self.dispatcher.server_error(ServerReportedError.from_message(message))
            raise MessageError(
                f"Message with non-matching ID {message.id} received.",
                details={"id": message.id, "kind": message.kind},
            )

        if isinstance(message, Error):
            error = ServerReportedError.from_message(message)
            pending.fail(error)
            if error.is_ping_timeout:
                self.dispatcher.ping_timeout()
        else:
            pending.resolve(message)

    # --- keepalive ---

    async def _keepalive_loop(self) -> None:
        interval = self.keepalive_interval
        heartbeat = not self.max_ping_time
        logger.debug("Keepalive every %.3fs (%s)", interval, "heartbeat" if heartbeat else "Ping")
        while self.connected:
            try:
                if heartbeat:
                    await self._transport.send_heartbeat()
                else:
                    future = await self.send_request(Ping())
                    future.add_done_callback(self._retire_ping)
            except TransportError as e:
                logger.warning("Keepalive send failed: %s", e)
            await asyncio.sleep(interval)

    @staticmethod
    def _retire_ping(future: "asyncio.Future[ButtplugMessage]") -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None and not isinstance(error, TeardownError):
            logger.debug("Keepalive ping failed: %s", error)

    # --- teardown ---

    async def close(self, reason: str = "Client disconnected") -> None:
        """Fail every pending request and close the transport. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            pending = list(self._pending.values())
            self._pending.clear()

        keepalive, self._keepalive = self._keepalive, None
        if keepalive is not None and keepalive is not asyncio.current_task():
            keepalive.cancel()

        if pending:
            logger.warning("Closing with %d request(s) outstanding: %s", len(pending), reason)
        for request in pending:
            request.fail(TeardownError(TEARDOWN_MESSAGE, reason))

        await self._transport.close()

    async def _on_transport_disconnect(self, status: int, reason: str) -> None:
        await self.close(f"Server disconnected: {status} {reason}".rstrip())
        if self.handle_disconnect:
            result = self.handle_disconnect(status, reason)
            if inspect.isawaitable(result):
                await result
