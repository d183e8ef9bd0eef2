#!/usr/bin/env python3
"""
Yeelight Hub LAN Protocol Library

Shared protocol implementation for Yeelight hub communication.
Provides constants, data structures, command builders, status-line parsing
and the color conversions used to compute command parameters.

The hub speaks a line-based text protocol on TCP port 10003:

    GL\\r\\n                          -> GLB 3CB8,1,1,80,255,0,0,100,0;...;\\r\\n
    HB\\r\\n                          -> HACK\\r\\n
    C <id>,<r>,<g>,<b>,<level>,<effect>\\r\\n

An empty field in a C command leaves that attribute unchanged on the hub.
"""

import logging
import math
from dataclasses import dataclass, field, replace


_LOGGER = logging.getLogger(__name__)


# =============================================================================
# Protocol Constants
# =============================================================================

COMMAND_PORT = 10003
LINE_TERMINATOR = "\r\n"
MAX_LINE_LENGTH = 65536

DEFAULT_TIMEOUT = 2.0
DEFAULT_DISCOVERY_TIMEOUT = 3.0

# Discovery (SSDP)
SSDP_GROUP = "239.255.255.250"
SSDP_PORT = 1900
SERVICE_TYPE = "yeelink:yeebox"
LOCATION_MARKER = "LOCATION: "
MAC_MARKER = "MAC: "


# =============================================================================
# Commands
# =============================================================================

CMD_GET_LIGHTS = "GL"
CMD_HEARTBEAT = "HB"
CMD_CONTROL = "C"

HEARTBEAT_ACK = "HACK" + LINE_TERMINATOR
BROADCAST_ID = "G000"

# Header tokens seen in front of a GL reply, depending on hub firmware.
# Matched longest first.
RESPONSE_HEADERS = ("GLB", "GL")

ENTRY_SEPARATOR = ";"
FIELD_SEPARATOR = ","
LIGHT_FIELD_COUNT = 9  # id + 8 numeric fields

LEVEL_ON = 100
LEVEL_OFF = 0
EFFECT_NONE = 0


# =============================================================================
# Named Colors
# =============================================================================

# RGB triples (0-255) for CLI convenience
NAMED_COLORS = {
    'red': (255, 0, 0),
    'orange': (255, 128, 0),
    'yellow': (255, 255, 0),
    'lime': (128, 255, 0),
    'green': (0, 255, 0),
    'teal': (0, 255, 128),
    'cyan': (0, 255, 255),
    'sky': (0, 128, 255),
    'blue': (0, 0, 255),
    'purple': (128, 0, 255),
    'magenta': (255, 0, 255),
    'pink': (255, 0, 128),
    'white': (255, 255, 255),
}

# Named whites resolved through temperature_to_rgb
NAMED_TEMPERATURES = {
    'warm_white': 2700,
    'neutral_white': 4000,
    'cool_white': 6500,
    'daylight': 5600,
}


# =============================================================================
# Errors
# =============================================================================

class YeelightError(Exception):
    """Base error for Yeelight hub communication."""


class DiscoveryError(YeelightError):
    """Hub discovery failed: send error, no reply, or malformed reply."""


class HubConnectionError(YeelightError, ConnectionError):
    """Could not open a connection to the hub command port."""


class HubTimeoutError(YeelightError, TimeoutError):
    """A connect or read deadline expired."""


class DiscoveryTimeoutError(DiscoveryError, HubTimeoutError):
    """No discovery reply arrived before the deadline."""


class ProtocolError(YeelightError):
    """The hub reply was unterminated, unexpected or malformed."""


class ParseError(YeelightError):
    """A numeric field in a light record is not a valid integer."""

    def __init__(self, light_id: str, field_name: str, value: str):
        super().__init__(
            f"Light {light_id}: field '{field_name}' is not an integer: {value!r}"
        )
        self.light_id = light_id
        self.field_name = field_name
        self.value = value


class NotFoundError(YeelightError, LookupError):
    """The requested light id is not known to the hub."""

    def __init__(self, light_id: str):
        super().__init__(f"Light not found: {light_id}")
        self.light_id = light_id


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class Light:
    """One bulb as reported by the hub."""
    id: str
    kind: int            # device type, always 1 on current firmware
    online: int          # 0 or 1
    link_quality: int    # ZigBee LQI, 0-100
    red: int             # 0-255
    green: int           # 0-255
    blue: int            # 0-255
    level: int           # brightness, 0-100
    effect: int = 0      # reserved by the hub firmware

    def __str__(self) -> str:
        power_str = "ON" if self.is_on else "OFF"
        online_str = "online" if self.online else "offline"
        return (
            f"{self.id} - {power_str} {self.level}% "
            f"RGB({self.red},{self.green},{self.blue}) [{online_str}, LQI {self.link_quality}]"
        )

    @property
    def is_on(self) -> bool:
        return self.level != 0

    @property
    def rgb(self) -> tuple:
        return self.red, self.green, self.blue


@dataclass(frozen=True)
class Hub:
    """A discovered hub. Identified only by its network address."""
    address: str
    light_ids: tuple = field(default_factory=tuple)

    def __str__(self) -> str:
        if self.light_ids:
            return f"Yeelight hub @ {self.address} ({len(self.light_ids)} lights)"
        return f"Yeelight hub @ {self.address}"

    def with_address(self, address: str) -> 'Hub':
        """Return a copy pointing at a refreshed address."""
        return replace(self, address=address)


# =============================================================================
# Command Creation Functions
# =============================================================================

def create_discovery_request(service_type: str = SERVICE_TYPE) -> bytes:
    """Create the SSDP M-SEARCH datagram used to locate the hub."""
    return (
        "M-SEARCH * HTTP/1.1\r\n"
        f" HOST:{SSDP_GROUP}:{SSDP_PORT}\r\n"
        ' MAN:"ssdp:discover"\r\n'
        f" ST:{service_type}\r\n"
        " MAC:00000001\r\n"
        " MX:3\r\n"
        "\n\r\n"
    ).encode('ascii')


def create_get_lights_command() -> str:
    """Create GL, the status query for all lights."""
    return CMD_GET_LIGHTS + LINE_TERMINATOR


def create_heartbeat_command() -> str:
    """Create HB, answered by HACK when the hub is alive."""
    return CMD_HEARTBEAT + LINE_TERMINATOR


def _format_field(value) -> str:
    return "" if value is None else str(int(value))


def create_control_command(
    light_id: str,
    red: int = None,
    green: int = None,
    blue: int = None,
    level: int = None,
    effect: int = None
) -> str:
    """
    Create a C (control) command.

    Any field passed as None is emitted as an empty position, which the hub
    reads as "leave unchanged". Commas are never omitted.

    Args:
        light_id: Hex light address, or BROADCAST_ID for all lights
        red, green, blue: Color channels (0-255)
        level: Brightness (0-100)
        effect: Reserved, normally 0
    """
    fields = [light_id] + [_format_field(v) for v in (red, green, blue, level, effect)]
    return f"{CMD_CONTROL} {FIELD_SEPARATOR.join(fields)}{LINE_TERMINATOR}"


def create_set_light_command(light_id: str, red: int, green: int, blue: int, level: int) -> str:
    """Create a C command with every field populated and effect 0."""
    return create_control_command(light_id, red, green, blue, level, EFFECT_NONE)


def create_set_level_command(light_id: str, level: int) -> str:
    """Create a C command that only changes brightness."""
    return create_control_command(light_id, level=level)


def create_set_color_command(light_id: str, red: int, green: int, blue: int) -> str:
    """Create a C command that only changes color."""
    return create_control_command(light_id, red, green, blue)


def create_all_off_command() -> str:
    """Create a broadcast C command with zero color and zero brightness."""
    return create_control_command(BROADCAST_ID, 0, 0, 0, LEVEL_OFF, EFFECT_NONE)


# =============================================================================
# Response Parsing Functions
# =============================================================================

_LIGHT_FIELDS = (
    'kind', 'online', 'link_quality', 'red', 'green', 'blue', 'level', 'effect'
)


def _strip_header(response: str, header_prefixes) -> str:
    for prefix in sorted(header_prefixes, key=len, reverse=True):
        if response.startswith(prefix):
            return response[len(prefix):].lstrip()
    raise ProtocolError(f"Unexpected status reply header: {response[:16]!r}")


def parse_light_entry(entry: str) -> Light:
    """
    Parse one `id,kind,online,lqi,r,g,b,level,effect` entry.

    Raises ProtocolError on a wrong field count and ParseError when a
    numeric field is not an integer. Values are not range-checked.
    """
    parts = entry.split(FIELD_SEPARATOR)
    if len(parts) != LIGHT_FIELD_COUNT:
        raise ProtocolError(
            f"Expected {LIGHT_FIELD_COUNT} fields per light, got {len(parts)}: {entry!r}"
        )

    light_id = parts[0].strip()
    values = {}
    for name, raw in zip(_LIGHT_FIELDS, parts[1:]):
        try:
            values[name] = int(raw)
        except ValueError:
            raise ParseError(light_id, name, raw) from None
    return Light(id=light_id, **values)


def parse_lights(response: str, header_prefixes=RESPONSE_HEADERS) -> list[Light]:
    """
    Parse a GL status reply into Light records.

    Format: `<header> <entry>;<entry>;...;\\r\\n`

    Args:
        response: Raw reply line, terminator included or not
        header_prefixes: Accepted header tokens; the longest match is stripped

    Returns:
        A fresh list of Light objects. Empty input yields an empty list.
    """
    if not response.strip(LINE_TERMINATOR):
        _LOGGER.warning("Empty status reply from hub")
        return []

    body = _strip_header(response, header_prefixes)
    body = body.rstrip(LINE_TERMINATOR).rstrip(ENTRY_SEPARATOR)
    if not body:
        return []

    return [parse_light_entry(entry) for entry in body.split(ENTRY_SEPARATOR)]


# =============================================================================
# Color Conversion Functions
# =============================================================================

TEMPERATURE_MIN = 1000
TEMPERATURE_MAX = 40000


def _unit_to_byte(x: float) -> int:
    """Clamp to [0, 1] and scale to 0-255, rounding half up."""
    if x < 0:
        return 0
    if x > 1:
        return 255
    return int(x * 255 + 0.5)


def _clamp_byte(x: float) -> int:
    """Clamp to [0, 255] and truncate."""
    return int(min(max(x, 0.0), 255.0))


def hsv_to_rgb(h: float, s: float, v: float) -> tuple:
    """
    Convert HSV (each 0-1) to an 8-bit RGB triple.

    Standard six-sector conversion. h = 1.0 wraps to the red sector.
    """
    i = math.floor(h * 6)
    f = h * 6 - i
    p = v * (1.0 - s)
    q = v * (1.0 - f * s)
    t = v * (1.0 - (1.0 - f) * s)

    sector = int(i) % 6
    if sector == 0:
        r, g, b = v, t, p
    elif sector == 1:
        r, g, b = q, v, p
    elif sector == 2:
        r, g, b = p, v, t
    elif sector == 3:
        r, g, b = p, q, v
    elif sector == 4:
        r, g, b = t, p, v
    else:
        r, g, b = v, p, q

    return _unit_to_byte(r), _unit_to_byte(g), _unit_to_byte(b)


def temperature_to_rgb(kelvin: float) -> tuple:
    """
    Approximate the RGB color of a black body at `kelvin` (1000-40000).

    Curve fit by Tanner Helland:
    http://www.tannerhelland.com/4435/convert-temperature-rgb-algorithm-code/
    """
    if not TEMPERATURE_MIN <= kelvin <= TEMPERATURE_MAX:
        raise ValueError(
            f"Color temperature must be between {TEMPERATURE_MIN}K and {TEMPERATURE_MAX}K, got {kelvin}"
        )

    temp = kelvin / 100

    if temp <= 66:
        red = 255.0
        green = 99.4708025861 * math.log(temp) - 161.1195681661
    else:
        red = 329.698727446 * math.pow(temp - 60, -0.1332047592)
        green = 288.1221695283 * math.pow(temp - 60, -0.0755148492)

    if temp >= 66:
        blue = 255.0
    elif temp <= 19:
        blue = 0.0
    else:
        blue = 138.5177312231 * math.log(temp - 10) - 305.0447927307

    return _clamp_byte(red), _clamp_byte(green), _clamp_byte(blue)
