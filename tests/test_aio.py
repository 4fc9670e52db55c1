from __future__ import annotations

import asyncio
import time
from ipaddress import IPv4Address

import pytest

from upnp_igd.internal_types import *
from upnp_igd.exceptions import HttpError, InvalidAddress, NoResponseWithinTimeout, SoapFault
from upnp_igd.messages import SEARCH_REQUEST
from upnp_igd.options import SearchConfig
from upnp_igd.search import SearchEngine, SearchState, GatewayLocation
from upnp_igd.constants import WAN_IP_CONNECTION_1
from upnp_igd.transport import BroadcastReply
from upnp_igd.actions import PortMappingProtocol
from upnp_igd.aio import AsyncGateway, search_gateway, run_search

from fakes import (
    CONTROL_URL,
    DEVICE_DESCRIPTION,
    ROOT_URL,
    SCPD_EXTERNAL_IP_ONLY,
    SCPD_FULL,
    SCPD_URL,
    FakeAsyncDatagramSocket,
    FakeAsyncTransport,
    search_reply,
    soap_fault,
    soap_response,
  )

GATEWAY_SSDP_ADDR = ("192.168.1.1", 1900)
OTHER_SSDP_ADDR = ("192.168.1.2", 1900)

@pytest.mark.asyncio
async def test_single_responder_resolves() -> None:
    sock = FakeAsyncDatagramSocket([BroadcastReply(GATEWAY_SSDP_ADDR, search_reply(ROOT_URL))])
    transport = FakeAsyncTransport({ ROOT_URL: DEVICE_DESCRIPTION, SCPD_URL: SCPD_EXTERNAL_IP_ONLY }, sock=sock)

    gateway = await search_gateway(transport)

    assert isinstance(gateway, AsyncGateway)
    assert gateway.transport is transport
    assert gateway.addr == ("192.168.1.1", 5000)
    assert gateway.control_url == "/ctl/IPConn"
    assert gateway.control_schema == { "GetExternalIPAddress": () }
    assert sock.sent == [(SEARCH_REQUEST, ("239.255.255.250", 1900))]
    assert sock.closed
    assert not transport.closed
    await gateway.close()
    assert transport.closed

@pytest.mark.asyncio
async def test_malformed_responder_is_skipped() -> None:
    sock = FakeAsyncDatagramSocket([
        BroadcastReply(OTHER_SSDP_ADDR, search_reply("http://gateway.invalid/rootDesc.xml")),
        BroadcastReply(GATEWAY_SSDP_ADDR, search_reply(ROOT_URL)),
      ])
    transport = FakeAsyncTransport({ ROOT_URL: DEVICE_DESCRIPTION, SCPD_URL: SCPD_FULL }, sock=sock)
    engine = SearchEngine(SearchConfig().with_timeout(5.0))

    location = await run_search(engine, sock, transport)

    assert engine.state == SearchState.DONE
    assert location.addr == ("192.168.1.1", 5000)
    assert [addr for addr, _ in engine.rejected] == [OTHER_SSDP_ADDR]
    assert isinstance(engine.rejected[0][1], InvalidAddress)

@pytest.mark.asyncio
async def test_failed_schema_fetch_waits_for_next_responder() -> None:
    other_root_url = "http://192.168.1.2:5000/rootDesc.xml"
    other_scpd_url = "http://192.168.1.2:5000/WANIPCn.xml"
    sock = FakeAsyncDatagramSocket([
        BroadcastReply(GATEWAY_SSDP_ADDR, search_reply(ROOT_URL)),
        BroadcastReply(OTHER_SSDP_ADDR, search_reply(other_root_url)),
      ])
    transport = FakeAsyncTransport({
        ROOT_URL: DEVICE_DESCRIPTION,
        SCPD_URL: HttpError(f"GET {SCPD_URL} returned HTTP status 404", status=404),
        other_root_url: DEVICE_DESCRIPTION,
        other_scpd_url: SCPD_FULL,
      }, sock=sock)

    async with await search_gateway(transport) as gateway:
        assert gateway.addr == ("192.168.1.2", 5000)
        assert "AddPortMapping" in gateway.control_schema
    assert transport.closed

@pytest.mark.asyncio
async def test_no_responder_fails_at_deadline() -> None:
    transport = FakeAsyncTransport()
    config = SearchConfig().with_timeout(0.2)

    start = time.monotonic()
    with pytest.raises(NoResponseWithinTimeout):
        await search_gateway(transport, config)
    elapsed = time.monotonic() - start

    # event loop timers may fire up to one clock tick early
    assert elapsed >= 0.2 - 0.01
    assert elapsed < 0.2 + 1.0
    assert transport.sock.closed
    assert not transport.closed

@pytest.mark.asyncio
async def test_per_reply_timeout_is_not_fatal() -> None:
    class SlowDatagramSocket(FakeAsyncDatagramSocket):
        async def receive(self, max_size: int) -> BroadcastReply:
            if len(self.sent) == 1 and not hasattr(self, "waited"):
                self.waited = True
                await asyncio.sleep(0.3)
            return await super().receive(max_size)

    sock = SlowDatagramSocket([BroadcastReply(GATEWAY_SSDP_ADDR, search_reply(ROOT_URL))])
    transport = FakeAsyncTransport({ ROOT_URL: DEVICE_DESCRIPTION, SCPD_URL: SCPD_FULL }, sock=sock)
    config = SearchConfig().with_timeout(2.0).with_single_search_timeout(0.1)

    gateway = await search_gateway(transport, config)
    assert gateway.addr == ("192.168.1.1", 5000)

@pytest.mark.asyncio
async def test_concurrent_searches_are_independent() -> None:
    def make_transport(ip: str) -> FakeAsyncTransport:
        root_url = f"http://{ip}:5000/rootDesc.xml"
        sock = FakeAsyncDatagramSocket([BroadcastReply((ip, 1900), search_reply(root_url))])
        return FakeAsyncTransport({
            root_url: DEVICE_DESCRIPTION,
            f"http://{ip}:5000/WANIPCn.xml": SCPD_FULL,
          }, sock=sock)

    gateways = await asyncio.gather(
        search_gateway(make_transport("10.0.0.1")),
        search_gateway(make_transport("10.0.1.1")),
      )
    assert [g.addr for g in gateways] == [("10.0.0.1", 5000), ("10.0.1.1", 5000)]

def _async_gateway(responses: List[bytes]) -> Tuple[AsyncGateway, FakeAsyncTransport]:
    pending = list(responses)

    def respond(method: str, url: str, headers: Mapping[str, str], body: Optional[bytes]) -> bytes:
        data = pending.pop(0)
        if b"<s:Fault>" in data:
            raise HttpError("returned HTTP status 500", status=500, body=data)
        return data

    transport = FakeAsyncTransport({ CONTROL_URL: respond })
    location = GatewayLocation(
        addr=("192.168.1.1", 5000),
        root_url="/rootDesc.xml",
        control_url="/ctl/IPConn",
        control_schema_url="/WANIPCn.xml",
        control_schema={ "AddPortMapping": [], "GetExternalIPAddress": [] },
        service_type=WAN_IP_CONNECTION_1,
      )
    return AsyncGateway(location, transport, request_timeout=1.0), transport

@pytest.mark.asyncio
async def test_async_gateway_actions() -> None:
    gateway, transport = _async_gateway([
        soap_response("GetExternalIPAddress", { "NewExternalIPAddress": "198.51.100.20" }),
        soap_fault(718, "ConflictInMappingEntry"),
        soap_response("AddPortMapping", {}),
        soap_response("DeletePortMapping", {}),
      ])
    async with gateway:
        assert await gateway.get_external_ip() == IPv4Address("198.51.100.20")
        port = await gateway.add_any_port(PortMappingProtocol.TCP, ("192.168.1.10", 22), 0, "ssh")
        assert 32768 <= port < 65535
        await gateway.remove_port(PortMappingProtocol.TCP, port)
    assert transport.closed
    assert [r.headers["SOAPAction"].split('#')[1] for r in transport.requests] == [
        'GetExternalIPAddress"', 'AddPortMapping"', 'AddPortMapping"', 'DeletePortMapping"',
      ]

@pytest.mark.asyncio
async def test_async_gateway_fault() -> None:
    gateway, _ = _async_gateway([soap_fault(606, "Action not authorized")])
    with pytest.raises(SoapFault) as exc_info:
        await gateway.get_external_ip()
    assert exc_info.value.error_code == 606
