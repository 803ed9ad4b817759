"""
WebSocket transport for Buttplug servers (Intiface Central, buttplug-rs).

Default address: ws://127.0.0.1:12345. Library-level pings are disabled;
keepalive is driven by the correlator.
"""

import asyncio
import inspect
import logging
from typing import Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.protocol import State

from buttplug_client.errors import TransportError
from buttplug_client.transport.base import Transport

logger = logging.getLogger(__name__)

ABNORMAL_CLOSURE = 1006


class WebSocketTransport(Transport):
    def __init__(self, open_timeout: float = 10.0):
        super().__init__()
        self._open_timeout = open_timeout
        self._ws: Optional[ClientConnection] = None
        self._reader: Optional[asyncio.Task[None]] = None
        self._closed = False

    @property
    def connected(self) -> bool:
        return not self._closed and self._ws is not None and self._ws.state is State.OPEN

    async def connect(self, address: str) -> None:
        if self._ws is not None:
            raise TransportError("Transport already used; create a new one per connection")
        try:
            self._ws = await connect(address, open_timeout=self._open_timeout, ping_interval=None)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise TransportError(f"Could not connect to {address}: {e}") from e
        logger.info("Connected to %s", address)
        self._reader = asyncio.create_task(self._read_loop(self._ws))

    async def send(self, frame: str) -> None:
        if not self.connected:
            raise TransportError("WebSocket not connected")
        logger.debug("-> %s", frame)
        try:
            await self._ws.send(frame)  # type: ignore[union-attr]
        except ConnectionClosed as e:
            raise TransportError(f"Send failed, connection closed: {e}") from e

    async def send_heartbeat(self) -> None:
        if not self.connected:
            raise TransportError("WebSocket not connected")
        try:
            # The pong waiter is ignored: the server only needs to see traffic.
            await self._ws.ping()  # type: ignore[union-attr]
        except ConnectionClosed as e:
            raise TransportError(f"Heartbeat failed, connection closed: {e}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        reader, self._reader = self._reader, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        if self._ws is not None:
            await self._ws.close()
        logger.info("Transport closed")

    async def _read_loop(self, ws: ClientConnection) -> None:
        try:
            async for frame in ws:
                # Binary frames go through as-is; the codec rejects undecodable bytes.
                logger.debug("<- %s", frame)
                if self._on_message is None:
                    continue
                try:
                    self._on_message(frame)
                except Exception:
                    logger.exception("Inbound frame handler failed")
        except ConnectionClosed:
            pass
        except Exception:
            logger.exception("WebSocket reader failed")
        finally:
            if not self._closed:
                await self._report_loss(ws)

    async def _report_loss(self, ws: ClientConnection) -> None:
        status = ws.close_code if ws.close_code is not None else ABNORMAL_CLOSURE
        reason = ws.close_reason or ""
        logger.info("Connection lost (%s %s)", status, reason)
        if self._on_disconnect is not None:
            result = self._on_disconnect(status, reason)
            if inspect.isawaitable(result):
                await result
