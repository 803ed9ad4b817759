"""
Client events and multi-listener delivery.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class ClientEvent:
    """Event names emitted by the client."""

    DEVICE_ADDED = "device_added"              # (device)
    DEVICE_REMOVED = "device_removed"          # (device)
    ERROR_RECEIVED = "error_received"          # (error)
    SCANNING_FINISHED = "scanning_finished"    # ()
    PING_TIMEOUT = "ping_timeout"              # ()
    SERVER_DISCONNECTED = "server_disconnected"  # (status, reason)

    ALL = (
        DEVICE_ADDED,
        DEVICE_REMOVED,
        ERROR_RECEIVED,
        SCANNING_FINISHED,
        PING_TIMEOUT,
        SERVER_DISCONNECTED,
    )


class ClientEventRecord:
    __slots__ = ("type", "args")

    def __init__(self, type: str, args: tuple[Any, ...] = ()):
        self.type = type
        self.args = args

    def __repr__(self) -> str:
        return f"ClientEventRecord(type={self.type!r}, args={self.args!r})"


class EventEmitter:
    """Named-event fan-out. Handlers may be plain functions or coroutine functions."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {name: [] for name in ClientEvent.ALL}
        self._any_handlers: list[Callable[[ClientEventRecord], None]] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    def on(self, event: str, handler: Handler) -> Callable[[], None]:
        """Add a handler. Returns a cleanup function."""
        if event not in self._handlers:
            raise ValueError(f"Unknown event {event!r}")
        self._handlers[event].append(handler)

        def remove() -> None:
            try:
                self._handlers[event].remove(handler)
            except ValueError:
                pass
        return remove

    def on_any(self, handler: Callable[[ClientEventRecord], None]) -> Callable[[], None]:
        self._any_handlers.append(handler)

        def remove() -> None:
            try:
                self._any_handlers.remove(handler)
            except ValueError:
                pass
        return remove

    def emit(self, event: str, *args: Any) -> None:
        record = ClientEventRecord(event, args)
        for any_handler in list(self._any_handlers):
            self._call(any_handler, record)
        for handler in list(self._handlers.get(event, ())):
            self._call(handler, *args)

    def _call(self, handler: Handler, *args: Any) -> None:
        try:
            result = handler(*args)
        except Exception:
            logger.exception("Event handler %r failed", handler)
            return
        if inspect.isawaitable(result):
            self._schedule(result)

    def _schedule(self, awaitable: Any) -> None:
        loop: Optional[asyncio.AbstractEventLoop]
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is None:
            logger.error("Async event handler called outside an event loop; dropped")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        async def _run() -> None:
            try:
                await awaitable
            except Exception:
                logger.exception("Async event handler failed")

        task = loop.create_task(_run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
