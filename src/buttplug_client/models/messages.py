"""
Buttplug protocol messages, message spec version 2.

Every message carries an `Id`; 0 is reserved for server notifications.
Field names are snake_case in Python and PascalCase on the wire.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_pascal

MESSAGE_VERSION = 2
MAX_MESSAGE_ID = 0xFFFFFFFF
NOTIFICATION_ID = 0


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True)


class ButtplugMessage(WireModel):
    id: int = Field(default=NOTIFICATION_ID, ge=0, le=MAX_MESSAGE_ID)

    @property
    def kind(self) -> str:
        return type(self).__name__

    @property
    def is_notification(self) -> bool:
        return self.id == NOTIFICATION_ID


# Status

class Ok(ButtplugMessage):
    pass


class Error(ButtplugMessage):
    error_message: str = ""
    error_code: int = 0


class Ping(ButtplugMessage):
    pass


# Handshake

class RequestServerInfo(ButtplugMessage):
    client_name: str
    message_version: int = MESSAGE_VERSION


class ServerInfo(ButtplugMessage):
    server_name: str = ""
    message_version: int = MESSAGE_VERSION
    max_ping_time: int = 0  # ms, 0 = no ping required


# Enumeration

class MessageAttributes(WireModel):
    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True, extra="allow")

    feature_count: Optional[int] = None
    step_count: Optional[list[int]] = None


class DeviceInfo(WireModel):
    device_index: int
    device_name: str = ""
    device_messages: dict[str, MessageAttributes] = {}


class StartScanning(ButtplugMessage):
    pass


class StopScanning(ButtplugMessage):
    pass


class ScanningFinished(ButtplugMessage):
    pass


class RequestDeviceList(ButtplugMessage):
    pass


class DeviceList(ButtplugMessage):
    devices: list[DeviceInfo] = []


class DeviceAdded(ButtplugMessage):
    device_index: int
    device_name: str = ""
    device_messages: dict[str, MessageAttributes] = {}

    def info(self) -> DeviceInfo:
        return DeviceInfo(
            device_index=self.device_index,
            device_name=self.device_name,
            device_messages=self.device_messages,
        )


class DeviceRemoved(ButtplugMessage):
    device_index: int


# Device commands

class StopDeviceCmd(ButtplugMessage):
    device_index: int


class StopAllDevices(ButtplugMessage):
    pass


class SpeedSubcommand(WireModel):
    index: int
    speed: float


class VibrateCmd(ButtplugMessage):
    device_index: int
    speeds: list[SpeedSubcommand]


class RotateSubcommand(WireModel):
    index: int
    speed: float
    clockwise: bool


class RotateCmd(ButtplugMessage):
    device_index: int
    rotations: list[RotateSubcommand]


class VectorSubcommand(WireModel):
    index: int
    duration: int  # ms
    position: float


class LinearCmd(ButtplugMessage):
    device_index: int
    vectors: list[VectorSubcommand]


class BatteryLevelCmd(ButtplugMessage):
    device_index: int


class BatteryLevelReading(ButtplugMessage):
    device_index: int
    battery_level: float


class RSSILevelCmd(ButtplugMessage):
    device_index: int


class RSSILevelReading(ButtplugMessage):
    device_index: int
    rssi_level: int = Field(alias="RSSILevel")


class UnknownMessage(ButtplugMessage):
    """Fallback for message kinds this client does not model."""

    wire_kind: str
    payload: dict[str, Any] = {}

    @property
    def kind(self) -> str:
        return self.wire_kind


MESSAGE_TYPES: dict[str, type[ButtplugMessage]] = {
    cls.__name__: cls
    for cls in (
        Ok, Error, Ping,
        RequestServerInfo, ServerInfo,
        StartScanning, StopScanning, ScanningFinished,
        RequestDeviceList, DeviceList, DeviceAdded, DeviceRemoved,
        StopDeviceCmd, StopAllDevices, VibrateCmd, RotateCmd, LinearCmd,
        BatteryLevelCmd, BatteryLevelReading, RSSILevelCmd, RSSILevelReading,
    )
}
