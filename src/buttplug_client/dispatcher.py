"""
Notification routing for identifier-0 traffic.

The dispatcher reads the device directory but never writes it; insertion and
removal happen in the client's device-added/removed handlers.
"""

import logging
from typing import Callable, Optional

from buttplug_client.devices import ClientDevice, DeviceDirectory
from buttplug_client.errors import ButtplugError, DeviceError, ServerReportedError
from buttplug_client.models.messages import (
    ButtplugMessage,
    DeviceAdded,
    DeviceInfo,
    DeviceRemoved,
    Error,
    ScanningFinished,
)

logger = logging.getLogger(__name__)

DUPLICATE_DEVICE_MESSAGE = (
    "A duplicate device index was received. This is most likely a server bug."
)


class EventDispatcher:
    def __init__(
        self,
        devices: DeviceDirectory,
        device_factory: Callable[[DeviceInfo], ClientDevice],
        handle_device_added: Optional[Callable[[ClientDevice], None]] = None,
        handle_device_removed: Optional[Callable[[ClientDevice], None]] = None,
        handle_scanning_finished: Optional[Callable[[], None]] = None,
        handle_error: Optional[Callable[[ButtplugError], None]] = None,
        handle_ping_timeout: Optional[Callable[[], None]] = None,
    ):
        self._devices = devices
        self._device_factory = device_factory
        self.handle_device_added = handle_device_added
        self.handle_device_removed = handle_device_removed
        self.handle_scanning_finished = handle_scanning_finished
        self.handle_error = handle_error
        self.handle_ping_timeout = handle_ping_timeout

    def notify(self, message: ButtplugMessage) -> None:
        """Route one server notification."""
        if isinstance(message, DeviceAdded):
            self.add_device(message.info())
        elif isinstance(message, DeviceRemoved):
            self.remove_device(message.device_index)
        elif isinstance(message, ScanningFinished):
            self.scanning_finished()
        elif isinstance(message, Error):
            self.server_error(ServerReportedError.from_message(message))
        else:
            logger.debug("Ignoring notification %s", message.kind)

    def add_device(self, info: DeviceInfo) -> Optional[ClientDevice]:
        if info.device_index in self._devices:
            self.report(DeviceError(DUPLICATE_DEVICE_MESSAGE, details={"device_index": info.device_index}))
            return None
        device = self._device_factory(info)
        logger.info("Device added: %d %s", device.index, device.name)
        if self.handle_device_added:
            self.handle_device_added(device)
        return device

    def remove_device(self, index: int) -> Optional[ClientDevice]:
        device = self._devices.get(index)
        if device is None:
            self.report(DeviceError(
                f"Cannot remove device index {index}, device not found.",
                details={"device_index": index},
            ))
            return None
        logger.info("Device removed: %d %s", device.index, device.name)
        if self.handle_device_removed:
            self.handle_device_removed(device)
        return device

    def scanning_finished(self) -> None:
        if self.handle_scanning_finished:
            self.handle_scanning_finished()

    def server_error(self, error: ServerReportedError) -> None:
        """An uncorrelated server error: always reported, ping timeouts also signalled."""
        if error.is_ping_timeout:
            self.ping_timeout()
        self.report(error)

    def ping_timeout(self) -> None:
        logger.warning("Server reported ping timeout")
        if self.handle_ping_timeout:
            self.handle_ping_timeout()

    def report(self, error: ButtplugError) -> None:
        logger.warning("%s: %s", type(error).__name__, error)
        if self.handle_error:
            self.handle_error(error)
