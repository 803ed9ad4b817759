"""
Buttplug client error types: wire error codes and client-side failures.
"""

from enum import IntEnum
from typing import Any, Optional


class ErrorCode(IntEnum):
    """Error codes carried by the server's `Error` message."""

    UNKNOWN = 0
    INIT = 1
    PING_TIMEOUT = 2
    MESSAGE = 3
    DEVICE = 4


class ButtplugError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class ProtocolError(ButtplugError):
    """Malformed or unexpected traffic. Reported, never fatal to the connection."""

    def __init__(self, message: str, code: str = "protocol_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class MessageError(ProtocolError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, "message_error", details)


class DeviceError(ProtocolError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message, "device_error", details)


class ServerReportedError(ButtplugError):
    """An `Error` message decoded from the server."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.UNKNOWN, msg_id: int = 0):
        super().__init__("server_error", message, {"error_code": int(error_code), "id": msg_id})
        self.error_code = error_code
        self.msg_id = msg_id

    @property
    def is_ping_timeout(self) -> bool:
        return self.error_code == ErrorCode.PING_TIMEOUT

    @classmethod
    def from_message(cls, error: Any) -> "ServerReportedError":
        try:
            code = ErrorCode(error.error_code)
        except ValueError:
            code = ErrorCode.UNKNOWN
        return cls(error.error_message, code, error.id)

    def __repr__(self) -> str:
        return f"ServerReportedError({self.error_code.name}, {self.message!r})"


class TransportError(ButtplugError):
    def __init__(self, message: str):
        super().__init__("transport_error", message)


class TeardownError(ButtplugError):
    """Applied to every request still pending when the connection closes."""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__("teardown_error", message, {"reason": reason} if reason else None)
        self.reason = reason


class ButtplugConnectionError(ButtplugError):
    def __init__(self, message: str):
        super().__init__("connection_error", message)
