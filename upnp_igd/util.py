#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Simple utility functions used by this package
"""

from __future__ import annotations

from typing_extensions import SupportsIndex

import netifaces
import random
import socket
import re
import ipaddress
from ipaddress import IPv4Network, IPv6Address

from .internal_types import *
from .constants import RANDOM_PORT_RANGE

from email.parser import BytesHeaderParser
from email.message import Message as EmailParserMessage
from requests.structures import CaseInsensitiveDict

DOCKER_BRIDGE_NETWORK = IPv4Network("172.16.0.0/12")

def split_bytes_at_lf_or_crlf(data: bytes, maxsplit: SupportsIndex = -1) -> List[bytes]:
    """Split a byte string into lines ending in LF or CRLF, at most maxsplit times.
       The line terminators are removed."""
    parts = data.split(b'\n', maxsplit)
    for i in range(len(parts) - 1):
        if parts[i].endswith(b'\r'):
            parts[i] = parts[i][:-1]
    return parts

_EMPTY_LINE = re.compile(rb'\r?\n\r?\n')

def split_headers_and_body(data: bytes) -> Tuple[bytes, bytes]:
    """Splits HTTP-style text at the first empty line (LF or CRLF endings) into
       (header lines, body). Without an empty line, all of data is headers."""
    match = _EMPTY_LINE.search(data)
    if match is None:
        return (data, b'')
    return (data[:match.start()], data[match.end():])

def parse_http_headers(data: bytes) -> Tuple[CaseInsensitiveDict[str], bytes]:
    """Parse HTTP-style headers out of a byte string. Also returns the body of the message, if any.

    Lines may end with LF or CRLF, since SSDP responders are not consistent about it. The
    header block is handed to the email package's header parser with normalized CRLF endings.
    Names are matched case-insensitively and the first occurrence of a repeated name wins.

    Any preceding status line (e.g., "HTTP/1.1 200 OK") must already have been removed.

    Returns a tuple of (headers: CaseInsensitiveDict[str], body: bytes).
    """
    headers_data, body = split_headers_and_body(data)
    normalized = b''.join(line + b'\r\n' for line in split_bytes_at_lf_or_crlf(headers_data))
    msg: EmailParserMessage = BytesHeaderParser().parsebytes(normalized + b'\r\n')
    headers: CaseInsensitiveDict[str] = CaseInsensitiveDict()
    for name, value in msg.items():
        if name not in headers:
            headers[name] = str(value).strip()
    return (headers, body)

def format_host_and_port(addr: HostAndPort) -> str:
    """Formats an (ip, port) tuple as "ip:port", bracketing IPv6 addresses."""
    host, port = addr[0], addr[1]
    if ':' in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"

def parse_host_and_port(value: str, default_port: int=0) -> HostAndPort:
    """Parses "ip", "ip:port", "[ipv6]" or "[ipv6]:port" into an (ip, port) tuple.

    Raises ValueError if the host is not an IP literal or the port is out of range.
    """
    value = value.strip()
    port_str: Optional[str] = None
    if value.startswith('['):
        end = value.find(']')
        if end == -1:
            raise ValueError(f"Unterminated IPv6 address: {value!r}")
        host = value[1:end]
        rest = value[end + 1:]
        if rest != '':
            if not rest.startswith(':'):
                raise ValueError(f"Invalid address: {value!r}")
            port_str = rest[1:]
    elif value.count(':') == 1:
        host, port_str = value.split(':', 1)
    else:
        host = value
    ipaddress.ip_address(host)
    port = default_port if port_str is None else int(port_str)
    if not 0 <= port <= 65535:
        raise ValueError(f"Port out of range: {port}")
    return (host, port)

def address_family_of(host: str) -> socket.AddressFamily:
    """Returns AF_INET6 for IPv6 literals and AF_INET otherwise."""
    if isinstance(ipaddress.ip_address(host), IPv6Address):
        return socket.AF_INET6
    return socket.AF_INET

class RandomPortPicker:
    """Draws random external port numbers for port mapping attempts.

    Each picker owns its own generator, which is created and seeded the first
    time a port is requested.
    """

    _rng: Optional[random.Random] = None
    low: int
    high: int

    def __init__(self, low: int=RANDOM_PORT_RANGE[0], high: int=RANDOM_PORT_RANGE[1]):
        if not 0 < low < high <= 65536:
            raise ValueError(f"Invalid port range [{low}, {high})")
        self.low = low
        self.high = high

    def _get_rng(self) -> random.Random:
        if self._rng is None:
            self._rng = random.Random()
        return self._rng

    def seed(self, seed: Any) -> None:
        """Reseed the generator; useful for reproducible tests."""
        self._rng = random.Random(seed)

    def pick(self) -> int:
        return self._get_rng().randrange(self.low, self.high)


def _netifaces_family(address_family: Union[socket.AddressFamily, int]) -> int:
    if int(address_family) == int(socket.AF_INET):
        return netifaces.AF_INET
    if int(address_family) == int(socket.AF_INET6):
        return netifaces.AF_INET6
    raise ValueError(f"Unsupported address family: {address_family}")

def get_default_ip_gateway(address_family: Union[socket.AddressFamily, int]=socket.AF_INET) -> Tuple[Optional[str], Optional[str]]:
    """Returns (gateway_ip, interface_name) for the kernel's default route in the requested
       family, or (None, None) if there is none."""
    default_routes = netifaces.gateways().get("default", {})
    route = default_routes.get(_netifaces_family(address_family))
    if route is None:
        return (None, None)
    return (route[0], route[1])

def get_preferred_local_ip(address_family: Union[socket.AddressFamily, int]=socket.AF_INET) -> Optional[str]:
    """Returns the local address a search socket should bind to when the caller wants
       a specific interface rather than all of them, or None if the host has no
       non-loopback address in the family.

    Addresses on the default-route interface come first. Docker bridge addresses
    (172.16.0.0/12) come last, since a router is never found behind them.
    """
    family = _netifaces_family(address_family)
    _, default_ifname = get_default_ip_gateway(address_family)
    candidates: List[Tuple[int, str]] = []
    for ifname in netifaces.interfaces():
        for addrinfo in netifaces.ifaddresses(ifname).get(family, []):
            addr: str = addrinfo['addr']
            ip = ipaddress.ip_address(addr.split('%', 1)[0])
            if ip.is_loopback:
                continue
            if ifname == default_ifname:
                priority = 0
            elif ip.version == 4 and ip in DOCKER_BRIDGE_NETWORK:
                priority = 2
            else:
                priority = 1
            candidates.append((priority, addr))
    if len(candidates) == 0:
        return None
    # sorted() is stable, so interface order breaks ties
    return sorted(candidates, key=lambda c: c[0])[0][1]
