"""
Device handles and the client-side device directory.
"""

import threading
from typing import Awaitable, Callable, Optional, Sequence, Union

from buttplug_client.errors import DeviceError, MessageError
from buttplug_client.models.messages import (
    BatteryLevelCmd,
    BatteryLevelReading,
    ButtplugMessage,
    DeviceInfo,
    LinearCmd,
    MessageAttributes,
    Ok,
    RotateCmd,
    RotateSubcommand,
    RSSILevelCmd,
    RSSILevelReading,
    SpeedSubcommand,
    StopDeviceCmd,
    VectorSubcommand,
    VibrateCmd,
)

RequestSender = Callable[[ButtplugMessage], Awaitable[ButtplugMessage]]
Level = Union[float, Sequence[float]]


class ClientDevice:
    """A device reported by the server. Commands go through the owning connection."""

    def __init__(self, info: DeviceInfo, send: RequestSender):
        self.index = info.device_index
        self.name = info.device_name
        self.messages: dict[str, MessageAttributes] = dict(info.device_messages)
        self._send = send

    def __repr__(self) -> str:
        return f"ClientDevice(index={self.index}, name={self.name!r})"

    @property
    def allowed_messages(self) -> list[str]:
        return sorted(self.messages)

    def supports(self, kind: str) -> bool:
        return kind in self.messages

    def feature_count(self, kind: str) -> int:
        self._require(kind)
        return self.messages[kind].feature_count or 1

    async def vibrate(self, speed: Level) -> None:
        """Set vibration speed (0.0-1.0). A scalar applies to every motor."""
        speeds = self._levels("VibrateCmd", speed)
        await self._command(VibrateCmd(
            device_index=self.index,
            speeds=[SpeedSubcommand(index=i, speed=s) for i, s in enumerate(speeds)],
        ))

    async def rotate(self, speed: Level, clockwise: bool = True) -> None:
        speeds = self._levels("RotateCmd", speed)
        await self._command(RotateCmd(
            device_index=self.index,
            rotations=[RotateSubcommand(index=i, speed=s, clockwise=clockwise) for i, s in enumerate(speeds)],
        ))

    async def linear(self, duration: int, position: Level) -> None:
        """Move to `position` (0.0-1.0) over `duration` milliseconds."""
        if duration < 0:
            raise DeviceError(f"Linear duration must be non-negative, got {duration}")
        positions = self._levels("LinearCmd", position)
        await self._command(LinearCmd(
            device_index=self.index,
            vectors=[VectorSubcommand(index=i, duration=duration, position=p) for i, p in enumerate(positions)],
        ))

    async def stop(self) -> None:
        await self._command(StopDeviceCmd(device_index=self.index))

    async def battery_level(self) -> float:
        self._require("BatteryLevelCmd")
        reply = await self._send(BatteryLevelCmd(device_index=self.index))
        if not isinstance(reply, BatteryLevelReading):
            raise MessageError(f"Expected BatteryLevelReading, got {reply.kind}")
        return reply.battery_level

    async def rssi_level(self) -> int:
        self._require("RSSILevelCmd")
        reply = await self._send(RSSILevelCmd(device_index=self.index))
        if not isinstance(reply, RSSILevelReading):
            raise MessageError(f"Expected RSSILevelReading, got {reply.kind}")
        return reply.rssi_level

    async def _command(self, message: ButtplugMessage) -> None:
        reply = await self._send(message)
        if not isinstance(reply, Ok):
            raise MessageError(f"{message.kind}: expected Ok, got {reply.kind}")

    def _require(self, kind: str) -> None:
        if not self.supports(kind):
            raise DeviceError(f"Device {self.index} ({self.name}) does not support {kind}")

    def _levels(self, kind: str, value: Level) -> list[float]:
        count = self.feature_count(kind)
        if isinstance(value, (int, float)):
            levels = [float(value)] * count
        else:
            levels = [float(v) for v in value]
            if not levels or len(levels) > count:
                raise DeviceError(f"{kind}: expected 1-{count} values, got {len(levels)}")
        for level in levels:
            if not 0.0 <= level <= 1.0:
                raise DeviceError(f"{kind}: value {level} outside 0.0-1.0")
        return levels


class DeviceDirectory:
    """Index -> ClientDevice map, written from dispatch and read from any thread."""

    def __init__(self) -> None:
        self._devices: dict[int, ClientDevice] = {}
        self._lock = threading.Lock()

    def __contains__(self, index: object) -> bool:
        with self._lock:
            return index in self._devices

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def get(self, index: int) -> Optional[ClientDevice]:
        with self._lock:
            return self._devices.get(index)

    def add(self, device: ClientDevice) -> bool:
        """Insert unless the index is taken. Returns False on a duplicate."""
        with self._lock:
            if device.index in self._devices:
                return False
            self._devices[device.index] = device
            return True

    def remove(self, index: int) -> Optional[ClientDevice]:
        with self._lock:
            return self._devices.pop(index, None)

    def clear(self) -> list[ClientDevice]:
        with self._lock:
            removed = list(self._devices.values())
            self._devices.clear()
            return removed

    def values(self) -> list[ClientDevice]:
        with self._lock:
            return [self._devices[i] for i in sorted(self._devices)]
