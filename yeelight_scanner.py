#!/usr/bin/env python3
"""
Yeelight Hub Scanner

Locates the Yeelight hub on the local network using SSDP.
Sends an M-SEARCH datagram to the SSDP multicast group and reads the hub
address from the LOCATION header of the first reply.
"""

import argparse
import json
import logging
import socket
import sys

from yeelight_protocol import (
    DEFAULT_DISCOVERY_TIMEOUT,
    LOCATION_MARKER,
    MAC_MARKER,
    SERVICE_TYPE,
    SSDP_GROUP,
    SSDP_PORT,
    DiscoveryError,
    DiscoveryTimeoutError,
    Hub,
    create_discovery_request,
)


_LOGGER = logging.getLogger(__name__)

MULTICAST_TTL = 2
RECV_BUFFER_SIZE = 1024


def extract_hub_address(reply: str) -> str:
    """
    Extract the hub address from an SSDP reply.

    The address is the text after `LOCATION: ` up to two characters
    (the CRLF) before `MAC: `.

    Raises:
        DiscoveryError: If either marker is missing or the slice is empty
    """
    location = reply.find(LOCATION_MARKER)
    mac = reply.find(MAC_MARKER)
    if location < 0 or mac < 0:
        raise DiscoveryError(
            f"Malformed discovery reply, missing {LOCATION_MARKER.strip()!r} or {MAC_MARKER.strip()!r}: {reply!r}"
        )

    start = location + len(LOCATION_MARKER)
    end = mac - 2
    if end <= start:
        raise DiscoveryError(f"Malformed discovery reply, no address between markers: {reply!r}")

    return reply[start:end]


def _create_socket(timeout: float) -> socket.socket:
    """
    Create and configure UDP socket for multicast search.

    Raises:
        DiscoveryError: The socket could not be created or configured
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError as exc:
        raise DiscoveryError(f"Error creating discovery socket: {exc}") from exc

    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, MULTICAST_TTL)
        sock.bind(('', 0))
        sock.settimeout(timeout)
    except OSError as exc:
        sock.close()
        raise DiscoveryError(f"Error configuring discovery socket: {exc}") from exc
    return sock


def discover_hub(
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    retries: int = 1,
    group: str = SSDP_GROUP,
    port: int = SSDP_PORT,
    service_type: str = SERVICE_TYPE
) -> Hub:
    """
    Discover the Yeelight hub.

    Sends one search datagram and waits for one reply per attempt.

    Args:
        timeout: Time to wait for a reply (seconds)
        retries: Number of search attempts (default 1, no retry)
        group: SSDP multicast group
        port: SSDP port
        service_type: ST value the hub answers to

    Returns:
        Hub for the first reply received

    Raises:
        DiscoveryTimeoutError: No reply within the deadline on any attempt
        DiscoveryError: Send failure or malformed reply
    """
    packet = create_discovery_request(service_type)
    retries = max(retries, 1)

    sock = _create_socket(timeout)
    try:
        for attempt in range(retries):
            _LOGGER.debug("Discovery attempt %d/%d to %s:%d", attempt + 1, retries, group, port)

            try:
                sock.sendto(packet, (group, port))
            except OSError as exc:
                raise DiscoveryError(f"Error sending discovery request: {exc}") from exc

            try:
                data, addr = sock.recvfrom(RECV_BUFFER_SIZE)
            except socket.timeout:
                _LOGGER.debug("No discovery reply within %.1fs", timeout)
                continue
            except OSError as exc:
                raise DiscoveryError(f"Error receiving discovery reply: {exc}") from exc

            reply = data.decode('utf-8', errors='replace')
            _LOGGER.debug("Discovery reply from %s: %r", addr[0], reply)
            address = extract_hub_address(reply)
            return Hub(address=address)
    finally:
        sock.close()

    raise DiscoveryTimeoutError(f"No hub replied within {timeout}s")


def main():
    parser = argparse.ArgumentParser(
        description='Locate the Yeelight hub on the local network using SSDP.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                  # Search once with the default timeout
  %(prog)s -t 5 -r 3        # Three attempts, 5 seconds each
  %(prog)s --json           # JSON output
        """
    )

    parser.add_argument(
        '-t', '--timeout',
        type=float,
        default=DEFAULT_DISCOVERY_TIMEOUT,
        help=f'Timeout in seconds to wait for a reply (default: {DEFAULT_DISCOVERY_TIMEOUT})'
    )

    parser.add_argument(
        '-r', '--retries',
        type=int,
        default=1,
        help='Number of search attempts (default: 1)'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    parser.add_argument(
        '--json',
        action='store_true',
        help='Output results in JSON format'
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s'
    )

    try:
        hub = discover_hub(timeout=args.timeout, retries=args.retries)
    except DiscoveryError as e:
        if args.json:
            print(json.dumps({'hub': None, 'error': str(e)}, indent=2))
        else:
            print(f"No Yeelight hub found: {e}", file=sys.stderr)
            print()
            print("Troubleshooting tips:")
            print("  - Make sure the hub is powered on and on the same network")
            print("  - Try increasing the timeout (-t) or retries (-r)")
            print("  - Check that UDP port 1900 multicast is not blocked by firewall")
        sys.exit(1)

    if args.json:
        print(json.dumps({'hub': {'address': hub.address}}, indent=2))
    else:
        print(f"Found {hub}")


if __name__ == '__main__':
    main()
