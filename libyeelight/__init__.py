"""
libyeelight - LAN control library for Yeelight smart lights.

Discover lights with multicast search, then control them over their
persistent JSON command channel.

Example:
    ```python
    import asyncio
    from libyeelight import Light, Transition, discover

    async def main():
        for descriptor in await discover(timeout=3.0):
            async with Light.from_discovered(descriptor) as light:
                await light.set_power("on", Transition.smooth(500))

    asyncio.run(main())
    ```
"""

from .connection import (
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    ConnectionState,
    DeviceConnection,
    PendingRequest,
)
from .discovery import (
    DEFAULT_DISCOVERY_TIMEOUT,
    DEFAULT_PORT,
    MULTICAST_ADDRESS,
    MULTICAST_PORT,
    DeviceDescriptor,
    DiscoveryService,
    build_search_message,
    discover,
    parse_advertisement,
)
from .exceptions import (
    CommandTimeoutError,
    DeviceError,
    MalformedMessageError,
    TransportError,
    UnsupportedCommandError,
    ValidationError,
    YeelightError,
)
from .fields import (
    MIN_TRANSITION_DURATION,
    AdjustAction,
    AdjustProperty,
    ColorMode,
    Effect,
    Power,
    PowerMode,
    Rgb,
    Transition,
    encode_adjust,
    encode_brightness,
    encode_color_temperature,
    encode_duration,
    encode_hsv,
    encode_name,
    encode_percentage,
    encode_power,
    encode_power_mode,
    encode_rgb,
    unpack_rgb,
)
from .light import DEFAULT_PROPERTIES, Light
from .message import (
    Command,
    DeviceErrorInfo,
    Notification,
    ParseError,
    Response,
    build,
    parse_message,
)

__version__ = "0.1.0"

__all__ = [
    # Discovery
    "DeviceDescriptor",
    "DiscoveryService",
    "build_search_message",
    "discover",
    "parse_advertisement",
    "DEFAULT_DISCOVERY_TIMEOUT",
    "DEFAULT_PORT",
    "MULTICAST_ADDRESS",
    "MULTICAST_PORT",
    # Connection
    "ConnectionState",
    "DeviceConnection",
    "PendingRequest",
    "DEFAULT_COMMAND_TIMEOUT",
    "DEFAULT_CONNECT_TIMEOUT",
    # Light
    "Light",
    "DEFAULT_PROPERTIES",
    # Fields
    "AdjustAction",
    "AdjustProperty",
    "ColorMode",
    "Effect",
    "Power",
    "PowerMode",
    "Rgb",
    "Transition",
    "MIN_TRANSITION_DURATION",
    "encode_adjust",
    "encode_brightness",
    "encode_color_temperature",
    "encode_duration",
    "encode_hsv",
    "encode_name",
    "encode_percentage",
    "encode_power",
    "encode_power_mode",
    "encode_rgb",
    "unpack_rgb",
    # Messages
    "Command",
    "DeviceErrorInfo",
    "Notification",
    "ParseError",
    "Response",
    "build",
    "parse_message",
    # Errors
    "YeelightError",
    "ValidationError",
    "UnsupportedCommandError",
    "TransportError",
    "CommandTimeoutError",
    "MalformedMessageError",
    "DeviceError",
]
