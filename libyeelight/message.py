"""
Control channel message envelopes.

Requests are JSON objects ``{"id": ..., "method": ..., "params": [...]}``.
Inbound data is one of two shapes:

- a response, carrying the ``id`` of the request and either a ``result``
  list or an ``error`` object with ``code`` and ``message``
- a notification, carrying no ``id``, a ``method`` (``"props"``) and a
  ``params`` mapping of changed properties

parse_message() turns raw bytes into exactly one of Response, Notification
or ParseError. Framing (the line delimiter) belongs to the connection.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from .exceptions import DeviceError, MalformedMessageError


NOTIFICATION_METHOD = "props"


@dataclass(frozen=True)
class Command:
    """
    A request to a device.

    Attributes:
        id: Identifier unique within the connection that sends it.
        method: Protocol method name (e.g. "set_bright").
        params: Ordered parameter list.
    """
    id: int
    method: str
    params: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "method": self.method, "params": list(self.params)}

    def encode(self) -> bytes:
        """Encode the command as a compact UTF-8 JSON object."""
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")


def build(command_id: int, method: str, params: Optional[Sequence[Any]] = None) -> bytes:
    """
    Build the wire payload of a request.

    Args:
        command_id: The command identifier.
        method: Protocol method name.
        params: Ordered parameters (strings and numbers).

    Returns:
        The JSON payload without any framing.
    """
    return Command(command_id, method, list(params or [])).encode()


@dataclass(frozen=True)
class DeviceErrorInfo:
    """Error object carried by a failed response."""
    code: int
    message: str


@dataclass(frozen=True)
class Response:
    """
    A device's answer to a Command.

    Exactly one of ``result`` and ``error`` is set.
    """
    id: int
    result: Optional[List[Any]] = None
    error: Optional[DeviceErrorInfo] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def raise_for_error(self, method: Optional[str] = None) -> List[Any]:
        """
        Return the result list, or raise the device error.

        Raises:
            DeviceError: If the response carries an error.
        """
        if self.error is not None:
            raise DeviceError(self.error.code, self.error.message, method)
        return list(self.result or [])


@dataclass(frozen=True)
class Notification:
    """An unsolicited property change report."""
    method: str
    params: Dict[str, Any]


@dataclass(frozen=True)
class ParseError:
    """Bytes that are neither a Response nor a Notification."""
    raw: bytes
    reason: str

    def raise_error(self) -> None:
        raise MalformedMessageError(self.reason, self.raw)


Message = Union[Response, Notification, ParseError]


def _is_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_error_info(error: Dict[str, Any]) -> Optional[DeviceErrorInfo]:
    code = error.get("code", -1)
    message = error.get("message", "")
    if not _is_id(code) or not isinstance(message, str):
        return None
    return DeviceErrorInfo(code=code, message=message)


def parse_message(data: Union[bytes, str]) -> Message:
    """
    Parse one inbound message.

    Args:
        data: A single message without its line delimiter.

    Returns:
        A Response, a Notification, or a ParseError describing why the data
        matched neither shape.
    """
    raw = data.encode("utf-8") if isinstance(data, str) else bytes(data)

    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        return ParseError(raw, f"invalid JSON: {e}")

    if not isinstance(payload, dict):
        return ParseError(raw, "message is not a JSON object")

    if "id" in payload:
        command_id = payload["id"]
        if not _is_id(command_id):
            return ParseError(raw, f"invalid id: {command_id!r}")

        has_result = "result" in payload
        has_error = "error" in payload
        if has_result == has_error:
            return ParseError(raw, "response must carry exactly one of result or error")

        if has_result:
            result = payload["result"]
            if not isinstance(result, list):
                return ParseError(raw, "result is not a list")
            return Response(id=command_id, result=result)

        error = payload["error"]
        info = _parse_error_info(error) if isinstance(error, dict) else None
        if info is None:
            return ParseError(raw, "error is not an object with code and message")
        return Response(id=command_id, error=info)

    method = payload.get("method")
    params = payload.get("params")
    if isinstance(method, str) and isinstance(params, dict):
        return Notification(method=method, params=dict(params))

    return ParseError(raw, "message has neither an id nor a method with params")
