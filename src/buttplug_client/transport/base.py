"""Transport interface.

The correlator only needs a text channel it can open, write to and close,
plus two callbacks for inbound frames and connection loss. The loss callback
may be a coroutine function; it is awaited by the transport.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Union

MessageHandler = Callable[[Union[str, bytes]], None]
DisconnectHandler = Callable[[int, str], Any]  # may return an awaitable


class Transport(ABC):
    """Minimal contract for a bidirectional text transport."""

    def __init__(self) -> None:
        self._on_message: Optional[MessageHandler] = None
        self._on_disconnect: Optional[DisconnectHandler] = None

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._on_message = handler

    def set_disconnect_handler(self, handler: Optional[DisconnectHandler]) -> None:
        self._on_disconnect = handler

    @property
    @abstractmethod
    def connected(self) -> bool:
        """Whether frames can currently be sent."""

    @abstractmethod
    async def connect(self, address: str) -> None:
        """Open the channel. Raises TransportError on failure."""

    @abstractmethod
    async def send(self, frame: str) -> None:
        """Send one text frame. Raises TransportError on failure."""

    @abstractmethod
    async def send_heartbeat(self) -> None:
        """Send a transport-level keepalive frame that expects no structured reply."""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""
