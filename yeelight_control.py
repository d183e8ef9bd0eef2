#!/usr/bin/env python3
"""
Yeelight Hub Controller

Queries and controls Yeelight bulbs through the hub's TCP command port.
Supports listing lights, heartbeat, power, brightness and color changes.

Every command opens its own connection, sends one line and reads one line
back. Connections are never pooled.
"""

import argparse
import json
import logging
import os
import re
import socket
import sys
import time
from decimal import Decimal
from typing import Optional

from yeelight_protocol import (
    # Constants
    COMMAND_PORT,
    DEFAULT_TIMEOUT,
    DEFAULT_DISCOVERY_TIMEOUT,
    HEARTBEAT_ACK,
    LEVEL_ON,
    LEVEL_OFF,
    MAX_LINE_LENGTH,
    NAMED_COLORS,
    NAMED_TEMPERATURES,
    RESPONSE_HEADERS,

    # Errors
    YeelightError,
    HubConnectionError,
    HubTimeoutError,
    NotFoundError,
    ProtocolError,

    # Data Classes
    Hub,
    Light,

    # Command Creation Functions
    create_all_off_command,
    create_get_lights_command,
    create_heartbeat_command,
    create_set_color_command,
    create_set_level_command,
    create_set_light_command,

    # Parsing and Colors
    parse_lights,
    hsv_to_rgb,
    temperature_to_rgb,
)
from yeelight_scanner import discover_hub


_LOGGER = logging.getLogger(__name__)

HUB_ENV = "YEELIGHT_HUB"


# =============================================================================
# Network Communication
# =============================================================================

class CommandChannel:
    """One-shot TCP exchange with the hub command port."""

    def __init__(
        self,
        port: int = COMMAND_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = 1,
        retry_delay: float = 0.25
    ):
        self.port = port
        self.timeout = timeout
        self.retries = max(retries, 1)
        self.retry_delay = retry_delay

    def send(self, command: str, address: str) -> str:
        """
        Send `command` verbatim and return the first reply line.

        Retries connect failures and timeouts up to `retries` attempts in
        total. Protocol errors are never retried.

        Raises:
            HubConnectionError: Connection could not be opened
            HubTimeoutError: Connect or read deadline expired
            ProtocolError: Stream ended before a line terminator
        """
        for attempt in range(self.retries):
            try:
                return self._exchange(command, address)
            except (HubConnectionError, HubTimeoutError) as exc:
                if attempt + 1 >= self.retries:
                    raise
                _LOGGER.debug(
                    "Attempt %d/%d to %s failed: %s", attempt + 1, self.retries, address, exc
                )
                time.sleep(self.retry_delay)

    def _exchange(self, command: str, address: str) -> str:
        _LOGGER.debug("Sending %r to %s:%d", command, address, self.port)
        try:
            sock = socket.create_connection((address, self.port), timeout=self.timeout)
        except socket.timeout as exc:
            raise HubTimeoutError(f"Timed out connecting to {address}:{self.port}") from exc
        except OSError as exc:
            raise HubConnectionError(f"Failed to connect to {address}:{self.port}: {exc}") from exc

        try:
            try:
                sock.sendall(command.encode('utf-8'))
            except socket.timeout as exc:
                raise HubTimeoutError(f"Timed out sending to {address}:{self.port}") from exc
            except OSError as exc:
                raise HubConnectionError(f"Error sending to {address}:{self.port}: {exc}") from exc

            with sock.makefile('rb') as stream:
                try:
                    line = stream.readline(MAX_LINE_LENGTH)
                except socket.timeout as exc:
                    raise HubTimeoutError(f"Timed out waiting for reply from {address}") from exc
                except OSError as exc:
                    raise ProtocolError(f"Error reading reply from {address}: {exc}") from exc
        finally:
            sock.close()

        if not line.endswith(b'\n'):
            raise ProtocolError(f"Reply from {address} ended before a line terminator: {line!r}")

        response = line.decode('utf-8', errors='replace')
        _LOGGER.debug("Received %r from %s", response, address)
        return response


class YeelightController:
    """Controller for a single Yeelight hub."""

    def __init__(
        self,
        hub: Hub,
        timeout: float = DEFAULT_TIMEOUT,
        port: int = COMMAND_PORT,
        retries: int = 1,
        retry_delay: float = 0.25,
        header_prefixes=RESPONSE_HEADERS,
        channel: Optional[CommandChannel] = None
    ):
        self.hub = hub
        self.header_prefixes = header_prefixes
        self.channel = channel or CommandChannel(
            port=port, timeout=timeout, retries=retries, retry_delay=retry_delay
        )

    def send_raw(self, command: str) -> str:
        """Send an arbitrary command line and return the reply."""
        return self.channel.send(command, self.hub.address)

    def get_lights(self) -> list[Light]:
        """Query the hub for the current state of every light."""
        response = self.send_raw(create_get_lights_command())
        return parse_lights(response, self.header_prefixes)

    def get_light(self, light_id: str) -> Light:
        """Return the current state of one light."""
        for light in self.get_lights():
            if light.id == light_id:
                return light
        raise NotFoundError(light_id)

    def get_hub(self) -> Hub:
        """Return a Hub carrying the light IDs the hub currently reports."""
        return Hub(address=self.hub.address, light_ids=tuple(light.id for light in self.get_lights()))

    def heartbeat(self) -> None:
        """
        Check the hub is alive.

        Raises:
            ProtocolError: The hub did not acknowledge with HACK
        """
        response = self.send_raw(create_heartbeat_command())
        if response != HEARTBEAT_ACK:
            raise ProtocolError(f"Hub not responding, expected {HEARTBEAT_ACK!r}, got {response!r}")

    def turn_off_all_lights(self) -> None:
        """Broadcast zero color and zero brightness to every light."""
        self.send_raw(create_all_off_command())

    def set_light(self, light_id: str, red: int, green: int, blue: int, brightness: int) -> None:
        """
        Set color and brightness of a light in one command.

        Args:
            red, green, blue: Color channels (0-255)
            brightness: Level (0-100)
        """
        _check_channels(red, green, blue)
        _check_level(brightness)
        self.send_raw(create_set_light_command(light_id, red, green, blue, brightness))

    def set_on_off(self, light_id: str, on: bool) -> None:
        """Turn a light fully on (level 100) or off, leaving color unchanged."""
        level = LEVEL_ON if on else LEVEL_OFF
        self.send_raw(create_set_level_command(light_id, level))

    def set_brightness(self, light_id: str, fraction: float) -> None:
        """
        Set brightness from a fraction (0-1), leaving color unchanged.

        The fraction maps to level 0-100, rounding half up.
        """
        if not 0.0 <= fraction <= 1.0:
            raise ValueError(f"Brightness fraction must be between 0 and 1, got {fraction}")
        level = int(Decimal(str(fraction)) * 100 + Decimal("0.5"))
        self.send_raw(create_set_level_command(light_id, level))

    def set_color(self, light_id: str, red: int, green: int, blue: int) -> None:
        """Set color (0-255 channels), leaving brightness unchanged."""
        _check_channels(red, green, blue)
        self.send_raw(create_set_color_command(light_id, red, green, blue))

    def set_hsv(self, light_id: str, hue: float, saturation: float, value: float) -> None:
        """Set color from HSV components (each 0-1)."""
        self.set_color(light_id, *hsv_to_rgb(hue, saturation, value))

    def set_temperature(self, light_id: str, kelvin: float, brightness: Optional[int] = None) -> None:
        """
        Set a white of the given color temperature (1000-40000K).

        Brightness is left unchanged unless given (0-100).
        """
        red, green, blue = temperature_to_rgb(kelvin)
        if brightness is None:
            self.set_color(light_id, red, green, blue)
        else:
            self.set_light(light_id, red, green, blue, brightness)

    def toggle_on_off(self, light_id: str) -> bool:
        """
        Flip a light between off and fully on.

        Any non-zero level counts as on. Returns the new on state.

        Raises:
            NotFoundError: The hub does not report `light_id`; nothing is sent
        """
        light = self.get_light(light_id)
        turn_on = light.level == 0
        self.set_on_off(light_id, turn_on)
        return turn_on


def _check_channels(*channels: int) -> None:
    for value in channels:
        if not 0 <= value <= 255:
            raise ValueError(f"Color channel must be between 0 and 255, got {value}")


def _check_level(level: int) -> None:
    if not 0 <= level <= 100:
        raise ValueError(f"Brightness level must be between 0 and 100, got {level}")


# =============================================================================
# Color Parsing Utilities
# =============================================================================

def parse_color(color_str: str) -> tuple:
    """
    Parse color string to an RGB triple.

    Supports:
    - Named colors: red, green, blue, white, warm_white, etc.
    - Hex: #FF0000 or FF0000
    - RGB: rgb(255, 0, 0)
    - HSV: hsv(0, 100, 100) - hue in degrees, sat/value in percent
    - Temperature: 2700k
    """
    color_str = color_str.strip().lower()

    if color_str in NAMED_COLORS:
        return NAMED_COLORS[color_str]

    if color_str in NAMED_TEMPERATURES:
        return temperature_to_rgb(NAMED_TEMPERATURES[color_str])

    hex_match = re.match(r'^#?([0-9a-f]{6})$', color_str)
    if hex_match:
        value = hex_match.group(1)
        return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)

    rgb_match = re.match(r'^rgb\s*\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)\s*\)$', color_str)
    if rgb_match:
        rgb = tuple(int(v) for v in rgb_match.groups())
        _check_channels(*rgb)
        return rgb

    hsv_match = re.match(r'^hsv\s*\(\s*([\d.]+)\s*,\s*([\d.]+)\s*,\s*([\d.]+)\s*\)$', color_str)
    if hsv_match:
        h, s, v = map(float, hsv_match.groups())
        return hsv_to_rgb((h % 360) / 360, s / 100, v / 100)

    kelvin_match = re.match(r'^(\d+)\s*k$', color_str)
    if kelvin_match:
        return temperature_to_rgb(int(kelvin_match.group(1)))

    raise ValueError(f"Unknown color format: {color_str}")


# =============================================================================
# CLI Interface
# =============================================================================

def unescape_command(text: str) -> str:
    """
    Turn CLI text into a protocol line.

    Only the literal escapes `\\r` and `\\n` are expanded; a CRLF is
    appended when the text does not already end in a newline.
    """
    command = text.replace('\\r', '\r').replace('\\n', '\n')
    if not command.endswith('\n'):
        command += '\r\n'
    return command


def _light_to_dict(light: Light) -> dict:
    return {
        'id': light.id,
        'kind': light.kind,
        'online': bool(light.online),
        'link_quality': light.link_quality,
        'red': light.red,
        'green': light.green,
        'blue': light.blue,
        'level': light.level,
        'effect': light.effect,
    }


def cmd_scan(args, controller: YeelightController):
    """Handle scan command."""
    hub = controller.get_hub()

    if args.json:
        print(json.dumps({'address': hub.address, 'light_ids': list(hub.light_ids)}, indent=2))
    else:
        print(f"Found {hub}")


def cmd_list(args, controller: YeelightController):
    """Handle list command."""
    lights = controller.get_lights()

    if args.json:
        print(json.dumps({'hub': controller.hub.address, 'lights': [_light_to_dict(light) for light in lights]}, indent=2))
    elif lights:
        print(f"Found {len(lights)} light(s) on {controller.hub.address}:")
        print("-" * 60)
        for light in sorted(lights, key=lambda light: light.id):
            print(f"  ID:      {light.id}")
            print(f"  Online:  {'yes' if light.online else 'no'} (LQI {light.link_quality})")
            print(f"  Power:   {'ON' if light.is_on else 'OFF'}")
            print(f"  Level:   {light.level}%")
            print(f"  Color:   R:{light.red} G:{light.green} B:{light.blue}")
            print("-" * 60)
    else:
        print("No lights reported by hub.")


def cmd_ping(args, controller: YeelightController):
    """Handle ping command."""
    controller.heartbeat()
    print(f"Hub {controller.hub.address} is responding")


def cmd_on(args, controller: YeelightController):
    """Handle on command."""
    controller.set_on_off(args.light, True)
    print(f"Turned ON: {args.light}")


def cmd_off(args, controller: YeelightController):
    """Handle off command."""
    controller.set_on_off(args.light, False)
    print(f"Turned OFF: {args.light}")


def cmd_toggle(args, controller: YeelightController):
    """Handle toggle command."""
    on = controller.toggle_on_off(args.light)
    print(f"Turned {'ON' if on else 'OFF'}: {args.light}")


def cmd_brightness(args, controller: YeelightController):
    """Handle brightness command."""
    controller.set_brightness(args.light, args.percent / 100)
    print(f"Set brightness {args.percent:g}% on: {args.light}")


def cmd_color(args, controller: YeelightController):
    """Handle color command."""
    red, green, blue = parse_color(args.color)

    if args.brightness is not None:
        controller.set_light(args.light, red, green, blue, args.brightness)
    else:
        controller.set_color(args.light, red, green, blue)
    print(f"Set color RGB({red},{green},{blue}) on: {args.light}")


def cmd_temperature(args, controller: YeelightController):
    """Handle temperature command."""
    controller.set_temperature(args.light, args.kelvin, args.brightness)
    print(f"Set {args.kelvin}K on: {args.light}")


def cmd_set(args, controller: YeelightController):
    """Handle set command."""
    controller.set_light(args.light, args.red, args.green, args.blue, args.level)
    print(f"Set RGB({args.red},{args.green},{args.blue}) {args.level}% on: {args.light}")


def cmd_all_off(args, controller: YeelightController):
    """Handle all-off command."""
    controller.turn_off_all_lights()
    print("Sent OFF to all lights")


def cmd_raw(args, controller: YeelightController):
    """Handle raw command."""
    command = unescape_command(args.text)
    print(repr(controller.send_raw(command)))


def main():
    parser = argparse.ArgumentParser(
        description='Yeelight Hub Controller - Query and control Yeelight lights through the hub.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  scan                        Discover the hub and list its light IDs
  list                        Show the state of every light
  ping                        Send a heartbeat to the hub
  on LIGHT / off LIGHT        Turn a light fully on or off
  toggle LIGHT                Flip a light between on and off
  brightness LIGHT PERCENT    Set brightness, keep color
  color LIGHT COLOR           Set color, keep brightness (unless -b)
  temperature LIGHT KELVIN    Set a white by color temperature
  set LIGHT R G B LEVEL       Set color and brightness together
  all-off                     Turn every light off
  raw TEXT                    Send a raw protocol line

Color formats:
  Named:   red, green, blue, cyan, magenta, yellow, orange, purple,
           pink, white, warm_white, neutral_white, cool_white, daylight
  Hex:     #FF0000 or FF0000
  RGB:     rgb(255, 0, 0)
  HSV:     hsv(hue, sat, value)  (hue degrees, saturation %%, value %%)
  Kelvin:  2700k

The hub address is taken from --hub, then $YEELIGHT_HUB, then discovery.

Examples:
  yeelight_control.py list
  yeelight_control.py --hub 192.168.1.59 on 3CB8
  yeelight_control.py color 50F5 "#FF6600" -b 80
  yeelight_control.py temperature 3CB8 2700 -b 40
  yeelight_control.py raw 'GL'
        """
    )

    # Global options
    parser.add_argument('--hub', default=os.environ.get(HUB_ENV),
                        help=f'Hub address (default: ${HUB_ENV}, else discover)')
    parser.add_argument('-t', '--timeout', type=float, default=DEFAULT_TIMEOUT,
                        help=f'Command timeout in seconds (default: {DEFAULT_TIMEOUT})')
    parser.add_argument('--discovery-timeout', type=float, default=DEFAULT_DISCOVERY_TIMEOUT,
                        help=f'Discovery timeout in seconds (default: {DEFAULT_DISCOVERY_TIMEOUT})')
    parser.add_argument('-r', '--retries', type=int, default=1,
                        help='Attempts per command and discovery (default: 1)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Verbose output')
    parser.add_argument('--json', action='store_true',
                        help='JSON output (for scan and list)')

    subparsers = parser.add_subparsers(dest='command', help='Command')

    subparsers.add_parser('scan', help='Discover the hub')
    subparsers.add_parser('list', help='List lights')
    subparsers.add_parser('ping', help='Heartbeat the hub')
    subparsers.add_parser('all-off', help='Turn all lights off')

    for name, help_text in (('on', 'Turn light on'), ('off', 'Turn light off'),
                            ('toggle', 'Toggle light')):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('light', help='Light ID (e.g. 3CB8)')

    brightness_parser = subparsers.add_parser('brightness', help='Set brightness')
    brightness_parser.add_argument('light', help='Light ID')
    brightness_parser.add_argument('percent', type=float, help='Brightness (0-100)')

    color_parser = subparsers.add_parser('color', help='Set light color')
    color_parser.add_argument('light', help='Light ID')
    color_parser.add_argument('color', help='Color (name, hex, rgb(), hsv(), 2700k)')
    color_parser.add_argument('-b', '--brightness', type=int,
                              help='Brightness override (0-100)')

    temp_parser = subparsers.add_parser('temperature', help='Set color temperature')
    temp_parser.add_argument('light', help='Light ID')
    temp_parser.add_argument('kelvin', type=int, help='Color temperature (1000-40000)')
    temp_parser.add_argument('-b', '--brightness', type=int,
                             help='Brightness override (0-100)')

    set_parser = subparsers.add_parser('set', help='Set color and brightness')
    set_parser.add_argument('light', help='Light ID')
    set_parser.add_argument('red', type=int)
    set_parser.add_argument('green', type=int)
    set_parser.add_argument('blue', type=int)
    set_parser.add_argument('level', type=int, help='Brightness (0-100)')

    raw_parser = subparsers.add_parser('raw', help='Send raw protocol line')
    raw_parser.add_argument('text', help='Command text; CRLF appended if missing')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(0)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s'
    )

    commands = {
        'scan': cmd_scan,
        'list': cmd_list,
        'ping': cmd_ping,
        'on': cmd_on,
        'off': cmd_off,
        'toggle': cmd_toggle,
        'brightness': cmd_brightness,
        'color': cmd_color,
        'temperature': cmd_temperature,
        'set': cmd_set,
        'all-off': cmd_all_off,
        'raw': cmd_raw,
    }

    try:
        if args.hub and args.command != 'scan':
            hub = Hub(address=args.hub)
        else:
            hub = discover_hub(timeout=args.discovery_timeout, retries=args.retries)

        controller = YeelightController(
            hub,
            timeout=args.timeout,
            retries=args.retries
        )
        commands[args.command](args, controller)
    except ValueError as e:
        print(f"Invalid argument: {e}", file=sys.stderr)
        sys.exit(1)
    except YeelightError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
