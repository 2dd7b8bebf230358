"""
Exception types raised by libyeelight.

All library errors derive from YeelightError. Errors that have a natural
built-in counterpart also subclass it (ValidationError is a ValueError,
TransportError is a ConnectionError, CommandTimeoutError is a TimeoutError)
so callers can catch either family.
"""

from typing import Optional


class YeelightError(Exception):
    """Base class for all libyeelight errors."""


class ValidationError(YeelightError, ValueError):
    """A parameter is outside the range or set the protocol accepts."""


class UnsupportedCommandError(YeelightError):
    """The device did not advertise support for the requested method."""

    def __init__(self, method: str, device_id: Optional[str] = None):
        self.method = method
        self.device_id = device_id
        target = f"device {device_id}" if device_id else "device"
        super().__init__(f"{target} does not support method '{method}'")


class TransportError(YeelightError, ConnectionError):
    """The connection to the device failed or was closed."""


class CommandTimeoutError(YeelightError, TimeoutError):
    """No response arrived for a command within the caller's deadline."""

    def __init__(self, method: str, command_id: int, timeout: float):
        self.method = method
        self.command_id = command_id
        self.timeout = timeout
        super().__init__(
            f"No response to '{method}' (id {command_id}) within {timeout:g}s"
        )


class MalformedMessageError(YeelightError):
    """Bytes received from a device are neither a response nor a notification."""

    def __init__(self, reason: str, raw: bytes = b""):
        self.reason = reason
        self.raw = raw
        super().__init__(f"Malformed message: {reason}")


class DeviceError(YeelightError):
    """
    The device answered a command with an explicit error.

    Attributes:
        code: The error code reported by the device.
        message: The error message reported by the device.
        method: The method of the command that failed, when known.
    """

    def __init__(self, code: int, message: str, method: Optional[str] = None):
        self.code = code
        self.message = message
        self.method = method
        prefix = f"{method}: " if method else ""
        super().__init__(f"{prefix}device error {code}: {message}")
