"""
Protocol field validation and encoding.

Every settable parameter of the control protocol has an encoder here that
checks the protocol's range or enum constraints and returns the value that
goes on the wire. Encoders never perform I/O; a value that fails validation
raises ValidationError before anything is sent to a device.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Optional, Tuple, Union

from .exceptions import ValidationError


# Shortest transition the device firmware will animate, in milliseconds
MIN_TRANSITION_DURATION = 30

BRIGHTNESS_RANGE = (1, 100)

# Colour temperature range of the white/colour bulbs in kelvin
DEFAULT_CT_RANGE = (1700, 6500)

RGB_MAX = 0xFFFFFF
CHANNEL_MAX = 255
HUE_MAX = 359
SATURATION_MAX = 100

# Signed percentage accepted by adjust_bright / adjust_ct / adjust_color
PERCENTAGE_RANGE = (-100, 100)

# Device names are stored in a fixed-size buffer on the bulb
MAX_NAME_LENGTH = 64


class Power(str, Enum):
    """Power state of a light."""
    ON = "on"
    OFF = "off"


class PowerMode(IntEnum):
    """Mode a light switches into when it is powered on."""
    NORMAL = 0
    COLOR_TEMPERATURE = 1
    RGB = 2
    HSV = 3
    COLOR_FLOW = 4
    NIGHT_LIGHT = 5


class ColorMode(IntEnum):
    """Colour mode reported by the ``color_mode`` property."""
    RGB = 1
    COLOR_TEMPERATURE = 2
    HSV = 3


class AdjustAction(str, Enum):
    """Action for the set_adjust command."""
    INCREASE = "increase"
    DECREASE = "decrease"
    CIRCLE = "circle"


class AdjustProperty(str, Enum):
    """Property targeted by the set_adjust command."""
    BRIGHT = "bright"
    CT = "ct"
    COLOR = "color"


class Effect(str, Enum):
    """Transition effect tag sent on the wire."""
    SUDDEN = "sudden"
    SMOOTH = "smooth"


def _require_int(name: str, value: Any) -> int:
    # bool is an int subclass but never a meaningful protocol number
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"{name} must be an integer, got {type(value).__name__}"
        )
    return value


def _require_range(name: str, value: Any, minimum: int, maximum: int) -> int:
    value = _require_int(name, value)
    if not minimum <= value <= maximum:
        raise ValidationError(
            f"{name} must be between {minimum} and {maximum}, got {value}"
        )
    return value


@dataclass(frozen=True)
class Transition:
    """
    How a light moves to a new visual state.

    Use the ``sudden()`` and ``smooth()`` constructors rather than building
    instances directly. A smooth transition shorter than
    MIN_TRANSITION_DURATION is rejected instead of being clamped.

    Attributes:
        effect: Either Effect.SUDDEN or Effect.SMOOTH.
        duration: Transition length in milliseconds (0 for sudden).
    """
    effect: Effect = Effect.SUDDEN
    duration: int = 0

    def __post_init__(self):
        """Validate the effect/duration combination."""
        try:
            effect = Effect(self.effect)
        except ValueError:
            raise ValidationError(f"Unknown transition effect: {self.effect!r}") from None
        object.__setattr__(self, "effect", effect)

        duration = _require_int("Transition duration", self.duration)
        if effect == Effect.SMOOTH and duration < MIN_TRANSITION_DURATION:
            raise ValidationError(
                f"Smooth transition duration must be at least "
                f"{MIN_TRANSITION_DURATION}ms, got {duration}ms"
            )
        if effect == Effect.SUDDEN and duration != 0:
            raise ValidationError("Sudden transitions have no duration")

    @classmethod
    def sudden(cls) -> "Transition":
        """Create an immediate transition."""
        return cls(Effect.SUDDEN, 0)

    @classmethod
    def smooth(cls, duration: int) -> "Transition":
        """
        Create a smooth transition.

        Args:
            duration: Transition length in milliseconds (>= 30).

        Returns:
            The transition.

        Raises:
            ValidationError: If the duration is below the protocol minimum.
        """
        return cls(Effect.SMOOTH, duration)

    @property
    def is_smooth(self) -> bool:
        return self.effect == Effect.SMOOTH

    def encode(self) -> Tuple[str, int]:
        """
        Encode the transition as the (effect, duration) parameter pair.

        The device ignores the duration of a sudden transition, so 0 is sent.
        """
        return self.effect.value, self.duration


DEFAULT_TRANSITION = Transition.sudden()


@dataclass(frozen=True)
class Rgb:
    """An RGB colour with 8-bit channels."""
    red: int
    green: int
    blue: int

    def __post_init__(self):
        for channel in ("red", "green", "blue"):
            _require_range(channel, getattr(self, channel), 0, CHANNEL_MAX)

    @property
    def value(self) -> int:
        """The colour packed into a single 24-bit integer."""
        return (self.red << 16) | (self.green << 8) | self.blue

    @classmethod
    def from_value(cls, value: int) -> "Rgb":
        value = _require_range("RGB value", value, 0, RGB_MAX)
        return cls((value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF)


def encode_power(power: Union[Power, str, bool]) -> str:
    """
    Encode a power state.

    Args:
        power: Power.ON/Power.OFF, "on"/"off", or a bool.

    Returns:
        "on" or "off".

    Raises:
        ValidationError: If the value is not a power state.
    """
    if isinstance(power, bool):
        return Power.ON.value if power else Power.OFF.value
    try:
        return Power(power).value
    except ValueError:
        raise ValidationError(f"Power must be 'on' or 'off', got {power!r}") from None


def encode_power_mode(mode: Union[PowerMode, int]) -> int:
    """Encode the optional mode argument of set_power."""
    mode = _require_int("Power mode", mode)
    try:
        return int(PowerMode(mode))
    except ValueError:
        raise ValidationError(f"Unknown power mode: {mode}") from None


def encode_brightness(brightness: int) -> int:
    """
    Encode a brightness percentage.

    Args:
        brightness: Brightness from 1 to 100.

    Returns:
        The brightness.

    Raises:
        ValidationError: If the brightness is out of range.
    """
    return _require_range("Brightness", brightness, *BRIGHTNESS_RANGE)


def encode_color_temperature(
    ct: int,
    minimum: int = DEFAULT_CT_RANGE[0],
    maximum: int = DEFAULT_CT_RANGE[1]
) -> int:
    """
    Encode a colour temperature.

    Args:
        ct: Colour temperature in kelvin.
        minimum: Lowest temperature the device class supports.
        maximum: Highest temperature the device class supports.

    Returns:
        The colour temperature.

    Raises:
        ValidationError: If the temperature is outside [minimum, maximum].
    """
    return _require_range("Color temperature", ct, minimum, maximum)


def encode_rgb(
    red_or_value: Union[int, Rgb],
    green: Optional[int] = None,
    blue: Optional[int] = None
) -> int:
    """
    Encode an RGB colour as the packed integer the protocol uses.

    Accepts either a packed value in [0, 0xFFFFFF], an Rgb instance, or three
    channel values in [0, 255].

    Raises:
        ValidationError: If any value is out of range or only some channels
            were given.
    """
    if isinstance(red_or_value, Rgb):
        return red_or_value.value

    if green is None and blue is None:
        return _require_range("RGB value", red_or_value, 0, RGB_MAX)

    if green is None or blue is None:
        raise ValidationError("RGB channels require red, green and blue")

    return Rgb(red_or_value, green, blue).value


def unpack_rgb(value: Union[int, str]) -> Rgb:
    """
    Decode an ``rgb`` property value as reported by the device.

    Raises:
        ValidationError: If the value is not a packed 24-bit colour.
    """
    if isinstance(value, str):
        try:
            value = int(value)
        except ValueError:
            raise ValidationError(f"Invalid RGB value: {value!r}") from None
    return Rgb.from_value(value)


def encode_hsv(hue: int, saturation: int) -> Tuple[int, int]:
    """
    Encode a hue/saturation pair.

    Args:
        hue: Hue in degrees, 0 to 359.
        saturation: Saturation percentage, 0 to 100.

    Returns:
        The (hue, saturation) pair.

    Raises:
        ValidationError: If either value is out of range.
    """
    return (
        _require_range("Hue", hue, 0, HUE_MAX),
        _require_range("Saturation", saturation, 0, SATURATION_MAX),
    )


def encode_percentage(delta: int) -> int:
    """
    Encode the signed percentage of an adjust_* command.

    The resulting absolute value is computed by the device, so only the delta
    itself is checked.
    """
    return _require_range("Adjust percentage", delta, *PERCENTAGE_RANGE)


def encode_duration(duration: int) -> int:
    """Encode the duration of an adjust_* command in milliseconds."""
    duration = _require_int("Duration", duration)
    if duration < MIN_TRANSITION_DURATION:
        raise ValidationError(
            f"Duration must be at least {MIN_TRANSITION_DURATION}ms, got {duration}ms"
        )
    return duration


def encode_adjust(
    action: Union[AdjustAction, str],
    prop: Union[AdjustProperty, str]
) -> Tuple[str, str]:
    """
    Encode the (action, prop) pair of set_adjust.

    The colour property can only be cycled, not increased or decreased.
    """
    try:
        action = AdjustAction(action)
    except ValueError:
        raise ValidationError(f"Unknown adjust action: {action!r}") from None
    try:
        prop = AdjustProperty(prop)
    except ValueError:
        raise ValidationError(f"Unknown adjust property: {prop!r}") from None

    if prop == AdjustProperty.COLOR and action != AdjustAction.CIRCLE:
        raise ValidationError("The color property only supports the circle action")

    return action.value, prop.value


def encode_name(name: str) -> str:
    """Encode a device name."""
    if not isinstance(name, str) or not name:
        raise ValidationError("Name must be a non-empty string")
    if len(name.encode("utf-8")) > MAX_NAME_LENGTH:
        raise ValidationError(f"Name must be at most {MAX_NAME_LENGTH} bytes")
    return name
