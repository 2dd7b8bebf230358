"""
Yeelight light representation and state management.

This module provides the Light class that represents a single device on the
network. It handles:

- Validating command parameters before anything is sent
- Sending commands over the device's connection and surfacing device errors
- Caching the last known properties, updated by command results and by the
  ``props`` notifications the device pushes on every state change
"""

import asyncio
import logging
import weakref
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Tuple, Union

from .connection import DEFAULT_COMMAND_TIMEOUT, DeviceConnection
from .discovery import DEFAULT_PORT, DeviceDescriptor
from .exceptions import UnsupportedCommandError, ValidationError
from .fields import (
    DEFAULT_CT_RANGE,
    DEFAULT_TRANSITION,
    AdjustAction,
    AdjustProperty,
    ColorMode,
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
from .message import NOTIFICATION_METHOD, Notification


# Properties requested by refresh()
DEFAULT_PROPERTIES = (
    "power",
    "bright",
    "ct",
    "rgb",
    "hue",
    "sat",
    "color_mode",
    "name",
)

# Default duration of adjust_* commands in milliseconds
DEFAULT_ADJUST_DURATION = 500


# Type alias for state change callbacks
StateChangeCallback = Union[
    Callable[["Light", Dict[str, Any]], None],
    Callable[["Light", Dict[str, Any]], Awaitable[None]]
]


def _forward_notifications(
    handler: "weakref.WeakMethod"
) -> Callable[[Notification], Optional[Awaitable[None]]]:
    """Wrap a weakly referenced handler so the connection does not keep its light alive."""
    def forward(notification: Notification) -> Optional[Awaitable[None]]:
        method = handler()
        if method is None:
            return None
        return method(notification)

    return forward


def _release_connection(connection: DeviceConnection) -> None:
    """Close the connection of a light that was dropped without close()."""
    try:
        connection.abort()
    except RuntimeError as e:
        # The event loop that owned the stream is already closed
        logging.getLogger("yeelight.light").debug(
            "Could not abort connection to %s: %s",
            connection.host,
            e
        )


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class Light:
    """
    A Yeelight device on the network.

    Each Light owns a DeviceConnection which is opened on the first command,
    or eagerly with connect() / ``async with``. The connection is closed by
    close(), on leaving ``async with``, or when the light is garbage collected.
    Every command validates its parameters first, so an invalid value never
    reaches the device.

    Create lights from discovery results with from_discovered(), or directly
    from an address.

    Example:
        ```python
        async def main():
            descriptors = await discover()
            async with Light.from_discovered(descriptors[0]) as light:
                await light.turn_on()
                await light.set_bright(40, Transition.smooth(500))
                print(light.properties)
        ```
    """

    def __init__(
        self,
        ip_address: str,
        port: int = DEFAULT_PORT,
        descriptor: Optional[DeviceDescriptor] = None,
        ct_range: Tuple[int, int] = DEFAULT_CT_RANGE,
        command_timeout: Optional[float] = DEFAULT_COMMAND_TIMEOUT,
        connection: Optional[DeviceConnection] = None
    ):
        """
        Initialize a light.

        Args:
            ip_address: The IP address of the device.
            port: The control channel port.
            descriptor: Discovery result for the device, if known. Seeds the
                cached properties and the supported method list.
            ct_range: Colour temperature range (kelvin) of the device class.
            command_timeout: Seconds to wait for each command's response.
            connection: Connection to use instead of creating one. The light
                takes ownership of it.
        """
        self._descriptor = descriptor
        self._ct_range = ct_range
        self._command_timeout = command_timeout

        self._connection = connection or DeviceConnection(ip_address, port)
        self._notification_forwarder = _forward_notifications(
            weakref.WeakMethod(self._on_notification)
        )
        self._connection.add_notification_callback(self._notification_forwarder)

        # A light owns its connection: dropping the light closes it
        self._finalizer = weakref.finalize(self, _release_connection, self._connection)
        self._finalizer.atexit = False

        self._properties: Dict[str, Any] = dict(descriptor.properties) if descriptor else {}
        self._state_callbacks: List[StateChangeCallback] = []

        self._logger = logging.getLogger(
            f"yeelight.light.{descriptor.id if descriptor else ip_address}"
        )

    @classmethod
    def from_discovered(cls, descriptor: DeviceDescriptor, **kwargs: Any) -> "Light":
        """
        Create a light from a discovery result.

        Args:
            descriptor: The discovered device.
            **kwargs: Further arguments for the constructor.

        Returns:
            A new Light for the device.
        """
        return cls(descriptor.ip_address, descriptor.port, descriptor=descriptor, **kwargs)

    @property
    def id(self) -> Optional[str]:
        return self._descriptor.id if self._descriptor else None

    @property
    def ip_address(self) -> str:
        return self._connection.host

    @property
    def port(self) -> int:
        return self._connection.port

    @property
    def descriptor(self) -> Optional[DeviceDescriptor]:
        return self._descriptor

    @property
    def connection(self) -> DeviceConnection:
        return self._connection

    @property
    def model(self) -> Optional[str]:
        return self._descriptor.model if self._descriptor else None

    @property
    def support(self) -> FrozenSet[str]:
        """Methods advertised by the device. Empty when unknown."""
        return self._descriptor.support if self._descriptor else frozenset()

    @property
    def properties(self) -> Dict[str, Any]:
        """
        Get the cached properties.

        Returns:
            A copy of the last known property values.
        """
        return dict(self._properties)

    @property
    def name(self) -> Optional[str]:
        return self._properties.get("name") or None

    @property
    def is_on(self) -> Optional[bool]:
        power = self._properties.get("power")
        if power is None:
            return None
        return power == Power.ON.value

    @property
    def brightness(self) -> Optional[int]:
        return _to_int(self._properties.get("bright"))

    @property
    def color_temperature(self) -> Optional[int]:
        return _to_int(self._properties.get("ct"))

    @property
    def rgb(self) -> Optional[Rgb]:
        value = _to_int(self._properties.get("rgb"))
        if value is None:
            return None
        try:
            return unpack_rgb(value)
        except ValidationError:
            return None

    @property
    def hue(self) -> Optional[int]:
        return _to_int(self._properties.get("hue"))

    @property
    def saturation(self) -> Optional[int]:
        return _to_int(self._properties.get("sat"))

    @property
    def color_mode(self) -> Optional[ColorMode]:
        value = _to_int(self._properties.get("color_mode"))
        try:
            return ColorMode(value) if value is not None else None
        except ValueError:
            return None

    def add_state_callback(self, callback: StateChangeCallback) -> None:
        """
        Register a callback for state changes reported by the device.

        The callback is invoked with (light, changes) for every notification,
        where changes holds only the properties in that notification.

        Args:
            callback: Function to call with (light, changes).
        """
        if callback not in self._state_callbacks:
            self._state_callbacks.append(callback)

    def remove_state_callback(self, callback: StateChangeCallback) -> bool:
        """
        Remove a state change callback.

        Args:
            callback: The callback to remove.

        Returns:
            True if the callback was removed, False if not found.
        """
        if callback in self._state_callbacks:
            self._state_callbacks.remove(callback)
            return True
        return False

    async def connect(self) -> None:
        """Open the connection to the device."""
        await self._connection.connect()

    async def close(self) -> None:
        """Close the connection. Pending commands fail with TransportError."""
        await self._connection.close()

    async def set_power(
        self,
        power: Union[Power, str, bool],
        transition: Optional[Transition] = None,
        mode: Optional[Union[PowerMode, int]] = None
    ) -> None:
        """
        Switch the light on or off.

        Args:
            power: Power.ON/Power.OFF, "on"/"off", or a bool.
            transition: How to fade. Defaults to sudden.
            mode: Mode to switch into when turning on.

        Raises:
            ValidationError: If a parameter is invalid.
            DeviceError: If the device rejected the command.
        """
        value = encode_power(power)
        params: List[Any] = [value, *self._encode_transition(transition)]
        if mode is not None:
            params.append(encode_power_mode(mode))

        await self._command("set_power", params, {"power": value})

    async def turn_on(self, transition: Optional[Transition] = None) -> None:
        """Switch the light on."""
        await self.set_power(Power.ON, transition)

    async def turn_off(self, transition: Optional[Transition] = None) -> None:
        """Switch the light off."""
        await self.set_power(Power.OFF, transition)

    async def toggle(self) -> None:
        """
        Toggle the power state.

        The cached power is flipped when it is known; otherwise the device's
        notification fills it in.
        """
        updates = None
        if "power" in self._properties:
            updates = {"power": Power.OFF.value if self.is_on else Power.ON.value}
        await self._command("toggle", [], updates)

    async def set_bright(
        self,
        brightness: int,
        transition: Optional[Transition] = None
    ) -> None:
        """
        Set the brightness.

        Args:
            brightness: Brightness from 1 to 100.
            transition: How to fade. Defaults to sudden.

        Raises:
            ValidationError: If the brightness is out of range.
        """
        value = encode_brightness(brightness)
        await self._command(
            "set_bright",
            [value, *self._encode_transition(transition)],
            {"bright": value}
        )

    async def set_ct_abx(
        self,
        ct: int,
        transition: Optional[Transition] = None
    ) -> None:
        """
        Set the colour temperature.

        Args:
            ct: Colour temperature in kelvin, within the light's ct_range.
            transition: How to fade. Defaults to sudden.

        Raises:
            ValidationError: If the temperature is out of range.
        """
        value = encode_color_temperature(ct, *self._ct_range)
        await self._command(
            "set_ct_abx",
            [value, *self._encode_transition(transition)],
            {"ct": value, "color_mode": int(ColorMode.COLOR_TEMPERATURE)}
        )

    async def set_rgb(
        self,
        red_or_value: Union[int, Rgb],
        green: Optional[int] = None,
        blue: Optional[int] = None,
        transition: Optional[Transition] = None
    ) -> None:
        """
        Set an RGB colour.

        Args:
            red_or_value: Packed 24-bit colour, an Rgb, or the red channel.
            green: Green channel when passing channels.
            blue: Blue channel when passing channels.
            transition: How to fade. Defaults to sudden.

        Raises:
            ValidationError: If the colour is out of range.
        """
        value = encode_rgb(red_or_value, green, blue)
        await self._command(
            "set_rgb",
            [value, *self._encode_transition(transition)],
            {"rgb": value, "color_mode": int(ColorMode.RGB)}
        )

    async def set_hsv(
        self,
        hue: int,
        saturation: int,
        transition: Optional[Transition] = None
    ) -> None:
        """
        Set a hue/saturation colour.

        Args:
            hue: Hue in degrees, 0 to 359.
            saturation: Saturation percentage, 0 to 100.
            transition: How to fade. Defaults to sudden.

        Raises:
            ValidationError: If either value is out of range.
        """
        hue, saturation = encode_hsv(hue, saturation)
        await self._command(
            "set_hsv",
            [hue, saturation, *self._encode_transition(transition)],
            {"hue": hue, "sat": saturation, "color_mode": int(ColorMode.HSV)}
        )

    async def adjust_bright(
        self,
        percentage: int,
        duration: int = DEFAULT_ADJUST_DURATION
    ) -> None:
        """
        Change the brightness by a relative amount.

        The device clamps and reports the resulting brightness; the cache is
        updated from its notification.

        Args:
            percentage: Signed change from -100 to 100.
            duration: Transition length in milliseconds (>= 30).
        """
        await self._command(
            "adjust_bright",
            [encode_percentage(percentage), encode_duration(duration)]
        )

    async def adjust_ct(
        self,
        percentage: int,
        duration: int = DEFAULT_ADJUST_DURATION
    ) -> None:
        """Change the colour temperature by a relative amount (-100 to 100)."""
        await self._command(
            "adjust_ct",
            [encode_percentage(percentage), encode_duration(duration)]
        )

    async def adjust_color(
        self,
        percentage: int,
        duration: int = DEFAULT_ADJUST_DURATION
    ) -> None:
        """Shift the colour by a relative amount (-100 to 100)."""
        await self._command(
            "adjust_color",
            [encode_percentage(percentage), encode_duration(duration)]
        )

    async def set_adjust(
        self,
        action: Union[AdjustAction, str],
        prop: Union[AdjustProperty, str]
    ) -> None:
        """
        Step a property without knowing its current value.

        Args:
            action: increase, decrease or circle.
            prop: bright, ct or color (color only with circle).
        """
        await self._command("set_adjust", list(encode_adjust(action, prop)))

    async def set_name(self, name: str) -> None:
        """Store a name on the device."""
        value = encode_name(name)
        await self._command("set_name", [value], {"name": value})

    async def set_default(self) -> None:
        """Save the current state as the device's power-on default."""
        await self._command("set_default", [])

    async def get_prop(self, *names: str) -> Dict[str, Any]:
        """
        Read properties from the device.

        Properties the device does not know are returned as empty strings
        and are not cached.

        Args:
            *names: Property names, e.g. "power", "bright".

        Returns:
            Mapping of each requested name to its value.

        Raises:
            ValidationError: If no names, or non-string names, are given.
        """
        if not names:
            raise ValidationError("get_prop requires at least one property name")
        for name in names:
            if not isinstance(name, str) or not name:
                raise ValidationError(f"Invalid property name: {name!r}")

        result = await self._command("get_prop", list(names))
        values = dict(zip(names, result))
        self._properties.update(
            {name: value for name, value in values.items() if value != ""}
        )
        return values

    async def refresh(self) -> Dict[str, Any]:
        """
        Re-read the common properties from the device.

        Returns:
            The updated cached properties.
        """
        await self.get_prop(*DEFAULT_PROPERTIES)
        return self.properties

    async def _command(
        self,
        method: str,
        params: List[Any],
        updates: Optional[Dict[str, Any]] = None
    ) -> List[Any]:
        """
        Send a validated command and apply the state it implies.

        Args:
            method: Protocol method name.
            params: Already encoded parameters.
            updates: Properties to cache once the device accepts the command.

        Returns:
            The result list of the response.

        Raises:
            UnsupportedCommandError: If the device did not advertise the method.
            DeviceError: If the device rejected the command.
            TransportError: If the connection failed.
            CommandTimeoutError: If the device did not answer in time.
        """
        support = self.support
        if support and method not in support:
            raise UnsupportedCommandError(method, self.id)

        result = await self._connection.request(method, params, timeout=self._command_timeout)

        if updates:
            self._properties.update(updates)

        self._logger.debug("%s %s -> %s", method, params, result)
        return result

    @staticmethod
    def _encode_transition(transition: Optional[Transition]) -> Tuple[str, int]:
        if transition is None:
            transition = DEFAULT_TRANSITION
        if not isinstance(transition, Transition):
            raise ValidationError(
                f"transition must be a Transition, got {type(transition).__name__}"
            )
        return transition.encode()

    def _on_notification(self, notification: Notification) -> Optional[Awaitable[None]]:
        """
        Merge a notification into the cached properties.

        Returns the coroutine invoking the state callbacks, which the
        connection schedules as a task, or None when there is nothing to run.
        """
        if notification.method != NOTIFICATION_METHOD:
            self._logger.debug("Ignoring notification %s", notification.method)
            return None

        changes = dict(notification.params)
        self._properties.update(changes)
        self._logger.debug("State updated: %s", changes)

        if not self._state_callbacks:
            return None
        return self._invoke_state_callbacks(changes)

    async def _invoke_state_callbacks(self, changes: Dict[str, Any]) -> None:
        """
        Invoke all registered state change callbacks.
        """
        for callback in list(self._state_callbacks):
            try:
                result = callback(self, dict(changes))
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self._logger.exception(
                    "State callback raised exception: %s",
                    e
                )

    async def __aenter__(self) -> "Light":
        """
        Async context manager entry.

        Returns:
            The light after connecting.
        """
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """
        Async context manager exit.

        Closes the connection.
        """
        await self.close()

    def __str__(self) -> str:
        name = self.name or self.model or "Unknown"
        return f"Light({name} @ {self.ip_address})"

    def __repr__(self) -> str:
        return (
            f"Light("
            f"ip={self.ip_address}, "
            f"port={self.port}, "
            f"id={self.id}, "
            f"model={self.model}, "
            f"state={self._connection.state.value})"
        )
