"""
Yeelight device discovery.

Discovery sends a single SSDP-style M-SEARCH datagram to the protocol's
multicast group and collects the replies that arrive during a fixed window.
Every reply is parsed on its own: malformed advertisements are dropped, and a
device that answers more than once is represented by its latest reply.

Example:
    ```python
    async def main():
        for descriptor in await discover(timeout=3.0):
            print(descriptor.id, descriptor.location, descriptor.model)
    ```
"""

import asyncio
import logging
import socket
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from .exceptions import TransportError
from .fields import ColorMode, Power


MULTICAST_ADDRESS = "239.255.255.250"
MULTICAST_PORT = 1982

# Search target identifying the control protocol
SEARCH_TARGET = "wifi_bulb"

# Default control channel port when an advertisement omits one
DEFAULT_PORT = 55443

DEFAULT_DISCOVERY_TIMEOUT = 2.0

LOCATION_SCHEME = "yeelight"

# SSDP headers that describe the advertisement rather than the device
_TRANSPORT_HEADERS = frozenset({
    "cache-control",
    "date",
    "ext",
    "host",
    "location",
    "nt",
    "nts",
    "server",
    "st",
    "usn",
})

_FIELD_HEADERS = frozenset({"id", "model", "support"})

_STATUS_LINES = ("HTTP/1.1 200 OK", "NOTIFY")

# Integer-valued property headers
_INTEGER_HEADERS = frozenset({"bright", "ct", "rgb", "hue", "sat", "color_mode", "fw_ver"})


def build_search_message(
    address: str = MULTICAST_ADDRESS,
    port: int = MULTICAST_PORT
) -> bytes:
    """Build the M-SEARCH datagram for the given multicast group."""
    return (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {address}:{port}\r\n"
        'MAN: "ssdp:discover"\r\n'
        f"ST: {SEARCH_TARGET}\r\n"
    ).encode("ascii")


@dataclass(frozen=True, eq=False)
class DeviceDescriptor:
    """
    A device as described by its discovery advertisement.

    Descriptors compare and hash by device id, so a set or dict of
    descriptors holds at most one entry per device.

    Attributes:
        id: The device's unique identifier (e.g. "0x000000000015243f").
        ip_address: Address of the control channel.
        port: Port of the control channel.
        model: Model name (e.g. "color", "mono", "stripe").
        support: Method names the device accepts.
        properties: Property snapshot from the advertisement (power, bright,
            ct, rgb, hue, sat, color_mode, name, fw_ver, ...).
    """
    id: str
    ip_address: str
    port: int = DEFAULT_PORT
    model: str = ""
    support: FrozenSet[str] = frozenset()
    properties: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "support", frozenset(self.support))
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DeviceDescriptor):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def location(self) -> str:
        return f"{self.ip_address}:{self.port}"

    @property
    def name(self) -> Optional[str]:
        return self.properties.get("name") or None

    @property
    def firmware_version(self) -> Optional[str]:
        return self.properties.get("fw_ver") or None

    def supports(self, method: str) -> bool:
        """Check whether the device advertised a method."""
        return method in self.support


def _parse_location(location: str) -> Optional[Tuple[str, int]]:
    try:
        parts = urlsplit(location)
        port = parts.port
    except ValueError:
        return None

    if parts.scheme and parts.scheme != LOCATION_SCHEME:
        return None
    if not parts.hostname:
        return None

    return parts.hostname, port or DEFAULT_PORT


def _invalid_field(headers: Mapping[str, str]) -> Optional[str]:
    """Return the name of the first property header that fails to parse."""
    power = headers.get("power")
    if power is not None and power not in (Power.ON.value, Power.OFF.value):
        return "power"

    for name in sorted(_INTEGER_HEADERS & headers.keys()):
        try:
            value = int(headers[name])
            if name == "color_mode":
                ColorMode(value)
        except ValueError:
            return name

    return None


def parse_advertisement(
    data: bytes,
    source_address: Optional[Tuple[str, int]] = None
) -> Optional[DeviceDescriptor]:
    """
    Parse a discovery reply or NOTIFY advertisement.

    Args:
        data: The raw datagram.
        source_address: Sender of the datagram, used only for logging.

    Returns:
        The descriptor, or None if the datagram is not a well-formed
        advertisement (bad encoding, unknown start line, missing ``id`` or
        ``Location``, an unusable location, or a property header such as
        ``power`` or ``bright`` whose value cannot be parsed).
    """
    logger = logging.getLogger("yeelight.discovery")

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        logger.debug("Dropping undecodable datagram from %s", source_address)
        return None

    lines = text.splitlines()
    if not lines or not lines[0].strip().startswith(_STATUS_LINES):
        logger.debug("Dropping non-advertisement datagram from %s", source_address)
        return None

    headers: Dict[str, str] = {}
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            continue
        headers[name.strip().lower()] = value.strip()

    device_id = headers.get("id")
    location = headers.get("location")
    if not device_id or not location:
        logger.debug(
            "Dropping advertisement from %s without id or location",
            source_address
        )
        return None

    address = _parse_location(location)
    if address is None:
        logger.debug(
            "Dropping advertisement from %s with bad location %r",
            source_address,
            location
        )
        return None

    invalid = _invalid_field(headers)
    if invalid is not None:
        logger.debug(
            "Dropping advertisement from %s with unparsable %s %r",
            source_address,
            invalid,
            headers[invalid]
        )
        return None

    properties = {
        key: value
        for key, value in headers.items()
        if key not in _TRANSPORT_HEADERS and key not in _FIELD_HEADERS
    }

    return DeviceDescriptor(
        id=device_id,
        ip_address=address[0],
        port=address[1],
        model=headers.get("model", ""),
        support=frozenset(headers.get("support", "").split()),
        properties=properties,
    )


class _DiscoveryProtocol(asyncio.DatagramProtocol):
    """Collects advertisements, keeping the latest one per device id."""

    def __init__(self, logger: logging.Logger):
        self._logger = logger
        self._devices: Dict[str, DeviceDescriptor] = {}

    @property
    def devices(self) -> List[DeviceDescriptor]:
        return list(self._devices.values())

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        descriptor = parse_advertisement(data, addr)
        if descriptor is None:
            return

        if descriptor.id in self._devices:
            self._logger.debug("Updated advertisement for %s", descriptor.id)
            del self._devices[descriptor.id]
        else:
            self._logger.debug(
                "Discovered %s (%s) at %s",
                descriptor.id,
                descriptor.model,
                descriptor.location
            )
        self._devices[descriptor.id] = descriptor

    def error_received(self, exc: Exception) -> None:
        self._logger.debug("Discovery socket error: %s", exc)


class DiscoveryService:
    """
    Finds devices on the local network.

    Each call to discover() opens its own UDP socket on an ephemeral port and
    closes it before returning, so a service instance holds no network
    resources between calls.
    """

    def __init__(
        self,
        multicast_address: str = MULTICAST_ADDRESS,
        multicast_port: int = MULTICAST_PORT,
        interface_ip: Optional[str] = None
    ):
        """
        Initialize the discovery service.

        Args:
            multicast_address: Multicast group to search.
            multicast_port: Port of the multicast group.
            interface_ip: Local address to send from. Defaults to all
                interfaces and the system's multicast route.
        """
        self._multicast_address = multicast_address
        self._multicast_port = multicast_port
        self._interface_ip = interface_ip
        self._logger = logging.getLogger("yeelight.discovery")

    async def discover(
        self,
        timeout: float = DEFAULT_DISCOVERY_TIMEOUT
    ) -> List[DeviceDescriptor]:
        """
        Search for devices.

        Listens for the whole timeout so that slow responders are included.

        Args:
            timeout: Length of the listening window in seconds.

        Returns:
            One descriptor per responding device. Empty if nothing answered.

        Raises:
            TransportError: If the discovery socket cannot be opened.
        """
        loop = asyncio.get_running_loop()

        try:
            transport, protocol = await loop.create_datagram_endpoint(
                lambda: _DiscoveryProtocol(self._logger),
                local_addr=(self._interface_ip or "0.0.0.0", 0),
            )
        except OSError as e:
            raise TransportError(f"Could not open discovery socket: {e}") from e

        try:
            try:
                self._configure_socket(transport.get_extra_info("socket"))
            except OSError as e:
                raise TransportError(f"Could not configure discovery socket: {e}") from e

            transport.sendto(
                build_search_message(self._multicast_address, self._multicast_port),
                (self._multicast_address, self._multicast_port)
            )
            self._logger.debug(
                "Sent discovery search to %s:%d, listening for %.1fs",
                self._multicast_address,
                self._multicast_port,
                timeout
            )

            await asyncio.sleep(timeout)
        finally:
            transport.close()

        devices = protocol.devices
        self._logger.info("Discovery found %d device(s)", len(devices))
        return devices

    async def find_light(
        self,
        light_id: str,
        timeout: float = DEFAULT_DISCOVERY_TIMEOUT
    ) -> Optional[DeviceDescriptor]:
        """
        Discover and return the device with the given id, if it answered.

        Args:
            light_id: The device id to look for.
            timeout: Length of the listening window in seconds.

        Returns:
            The descriptor, or None if the device did not respond.
        """
        for descriptor in await self.discover(timeout):
            if descriptor.id == light_id:
                return descriptor
        return None

    def _configure_socket(self, sock: Optional[socket.socket]) -> None:
        if sock is None:
            return

        # Keep the search on the local network segment
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 1)
        if self._interface_ip:
            sock.setsockopt(
                socket.IPPROTO_IP,
                socket.IP_MULTICAST_IF,
                socket.inet_aton(self._interface_ip)
            )


async def discover(
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    interface_ip: Optional[str] = None
) -> List[DeviceDescriptor]:
    """
    Search the local network for devices.

    Convenience wrapper around DiscoveryService.discover().
    """
    return await DiscoveryService(interface_ip=interface_ip).discover(timeout)
