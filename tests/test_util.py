from __future__ import annotations

import socket
from types import SimpleNamespace

import netifaces
import pytest

from upnp_igd.internal_types import *

from upnp_igd import util
from upnp_igd.util import (
    RandomPortPicker,
    address_family_of,
    format_host_and_port,
    parse_host_and_port,
    parse_http_headers,
    split_bytes_at_lf_or_crlf,
  )

def test_split_lines() -> None:
    assert split_bytes_at_lf_or_crlf(b"a\r\nb\nc") == [b"a", b"b", b"c"]
    assert split_bytes_at_lf_or_crlf(b"a\r\nb\r\nc", 1) == [b"a", b"b\r\nc"]

def test_parse_headers_first_occurrence_wins() -> None:
    headers, body = parse_http_headers(b"Location: http://a/\r\nLOCATION: http://b/\r\nST:  x  \r\n\r\nbody")
    assert headers["location"] == "http://a/"
    assert headers["St"] == "x"
    assert body == b"body"

@pytest.mark.parametrize("addr, text", [
    (("192.168.1.1", 5000), "192.168.1.1:5000"),
    (("fe80::1", 1900), "[fe80::1]:1900"),
  ])
def test_format_and_parse_host_and_port(addr: Tuple[str, int], text: str) -> None:
    assert format_host_and_port(addr) == text
    assert parse_host_and_port(text) == addr

def test_parse_host_and_port_default_port() -> None:
    assert parse_host_and_port("10.0.0.1") == ("10.0.0.1", 0)
    assert parse_host_and_port("10.0.0.1", 1900) == ("10.0.0.1", 1900)
    assert parse_host_and_port("::1", 1900) == ("::1", 1900)

@pytest.mark.parametrize("value", ["router.local:80", "10.0.0.1:70000", "[::1", "[::1]x", "10.0.0.1:port"])
def test_parse_host_and_port_invalid(value: str) -> None:
    with pytest.raises(ValueError):
        parse_host_and_port(value)

def test_address_family() -> None:
    assert address_family_of("127.0.0.1") == socket.AF_INET
    assert address_family_of("::1") == socket.AF_INET6

def test_port_picker_range_and_seed() -> None:
    first = RandomPortPicker()
    first.seed(42)
    second = RandomPortPicker()
    second.seed(42)
    ports = [first.pick() for _ in range(100)]
    assert ports == [second.pick() for _ in range(100)]
    assert all(32768 <= p < 65535 for p in ports)

def test_port_picker_invalid_range() -> None:
    with pytest.raises(ValueError):
        RandomPortPicker(5000, 5000)

def _fake_netifaces(gateways: Dict[str, Any], interfaces: Dict[str, Dict[int, List[Dict[str, str]]]]) -> SimpleNamespace:
    return SimpleNamespace(
        AF_INET=netifaces.AF_INET,
        AF_INET6=netifaces.AF_INET6,
        gateways=lambda: gateways,
        interfaces=lambda: list(interfaces.keys()),
        ifaddresses=lambda ifname: interfaces[ifname],
      )

def test_preferred_local_ip(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _fake_netifaces(
        { "default": { netifaces.AF_INET: ("192.168.1.1", "eth1") } },
        {
            "lo": { netifaces.AF_INET: [{ "addr": "127.0.0.1" }] },
            "docker0": { netifaces.AF_INET: [{ "addr": "172.17.0.1" }] },
            "eth0": { netifaces.AF_INET: [{ "addr": "10.0.0.5" }] },
            "eth1": { netifaces.AF_INET: [{ "addr": "192.168.1.20" }] },
          },
      )
    monkeypatch.setattr(util, "netifaces", fake)
    assert util.get_default_ip_gateway() == ("192.168.1.1", "eth1")
    assert util.get_preferred_local_ip() == "192.168.1.20"

def test_preferred_local_ip_without_default_route(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _fake_netifaces(
        {},
        {
            "lo": { netifaces.AF_INET: [{ "addr": "127.0.0.1" }] },
            "docker0": { netifaces.AF_INET: [{ "addr": "172.17.0.1" }] },
            "eth0": { netifaces.AF_INET: [{ "addr": "10.0.0.5" }] },
          },
      )
    monkeypatch.setattr(util, "netifaces", fake)
    assert util.get_default_ip_gateway() == (None, None)
    assert util.get_preferred_local_ip() == "10.0.0.5"
    assert util.get_preferred_local_ip(socket.AF_INET6) is None

def test_parse_headers_mixed_line_endings() -> None:
    headers, body = parse_http_headers(b"CACHE-CONTROL: max-age=120\nLocation: http://10.0.0.1:80/desc.xml\r\nServer: x\n\nrest")
    assert headers["cache-control"] == "max-age=120"
    assert headers["LOCATION"] == "http://10.0.0.1:80/desc.xml"
    assert headers["server"] == "x"
    assert body == b"rest"

def test_parse_headers_without_body() -> None:
    headers, body = parse_http_headers(b"ST: upnp:rootdevice")
    assert headers["st"] == "upnp:rootdevice"
    assert body == b""
