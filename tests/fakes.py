"""
Scripted stand-ins for the transport capability, plus sample gateway documents.

FakeClock is shared by FakeDatagramSocket and SearchEngine so that deadline
behavior can be tested without sleeping.
"""

from __future__ import annotations

import asyncio

from upnp_igd.internal_types import *
from upnp_igd.exceptions import HttpError
from upnp_igd.transport import (
    BroadcastReply,
    DatagramSocket,
    Transport,
    AsyncDatagramSocket,
    AsyncTransport,
    check_body_size,
  )

GATEWAY_IP = "192.168.1.1"
GATEWAY_HTTP_PORT = 5000
ROOT_URL = f"http://{GATEWAY_IP}:{GATEWAY_HTTP_PORT}/rootDesc.xml"
SCPD_URL = f"http://{GATEWAY_IP}:{GATEWAY_HTTP_PORT}/WANIPCn.xml"
CONTROL_URL = f"http://{GATEWAY_IP}:{GATEWAY_HTTP_PORT}/ctl/IPConn"

def search_reply(location: Optional[str], location_header: str="LOCATION") -> bytes:
    lines = [
        "HTTP/1.1 200 OK",
        "CACHE-CONTROL: max-age=120",
        "ST: urn:schemas-upnp-org:device:InternetGatewayDevice:1",
        "USN: uuid:12345678-1234-1234-1234-123456789abc::urn:schemas-upnp-org:device:InternetGatewayDevice:1",
        "EXT:",
        "SERVER: Linux/5.4 UPnP/1.1 MiniUPnPd/2.2.1",
      ]
    if location is not None:
        lines.append(f"{location_header}: {location}")
    return ('\r\n'.join(lines) + '\r\n\r\n').encode('utf-8')

DEVICE_DESCRIPTION = b"""<?xml version="1.0"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <specVersion><major>1</major><minor>0</minor></specVersion>
  <device>
    <deviceType>urn:schemas-upnp-org:device:InternetGatewayDevice:1</deviceType>
    <friendlyName>Test Router</friendlyName>
    <serviceList>
      <service>
        <serviceType>urn:schemas-upnp-org:service:Layer3Forwarding:1</serviceType>
        <serviceId>urn:upnp-org:serviceId:L3Forwarding1</serviceId>
        <controlURL>/ctl/L3F</controlURL>
        <eventSubURL>/evt/L3F</eventSubURL>
        <SCPDURL>/L3F.xml</SCPDURL>
      </service>
    </serviceList>
    <deviceList>
      <device>
        <deviceType>urn:schemas-upnp-org:device:WANDevice:1</deviceType>
        <deviceList>
          <device>
            <deviceType>urn:schemas-upnp-org:device:WANConnectionDevice:1</deviceType>
            <serviceList>
              <service>
                <serviceType>urn:schemas-upnp-org:service:WANIPConnection:1</serviceType>
                <serviceId>urn:upnp-org:serviceId:WANIPConn1</serviceId>
                <controlURL>/ctl/IPConn</controlURL>
                <eventSubURL>/evt/IPConn</eventSubURL>
                <SCPDURL>/WANIPCn.xml</SCPDURL>
              </service>
            </serviceList>
          </device>
        </deviceList>
      </device>
    </deviceList>
  </device>
</root>
"""

SCPD_EXTERNAL_IP_ONLY = b"""<?xml version="1.0"?>
<scpd xmlns="urn:schemas-upnp-org:service-1-0">
  <specVersion><major>1</major><minor>0</minor></specVersion>
  <actionList>
    <action>
      <name>GetExternalIPAddress</name>
    </action>
  </actionList>
</scpd>
"""

SCPD_FULL = b"""<?xml version="1.0"?>
<scpd xmlns="urn:schemas-upnp-org:service-1-0">
  <actionList>
    <action>
      <name>AddPortMapping</name>
      <argumentList>
        <argument><name>NewRemoteHost</name><direction>in</direction></argument>
        <argument><name>NewExternalPort</name><direction>in</direction></argument>
        <argument><name>NewProtocol</name><direction>in</direction></argument>
        <argument><name>NewInternalPort</name><direction>in</direction></argument>
        <argument><name>NewInternalClient</name><direction>in</direction></argument>
        <argument><name>NewEnabled</name><direction>in</direction></argument>
        <argument><name>NewPortMappingDescription</name><direction>in</direction></argument>
        <argument><name>NewLeaseDuration</name><direction>in</direction></argument>
      </argumentList>
    </action>
    <action>
      <name>GetExternalIPAddress</name>
      <argumentList>
        <argument><name>NewExternalIPAddress</name><direction>out</direction></argument>
      </argumentList>
    </action>
    <action>
      <name>DeletePortMapping</name>
      <argumentList>
        <argument><name>NewRemoteHost</name><direction>in</direction></argument>
        <argument><name>NewExternalPort</name><direction>in</direction></argument>
        <argument><name>NewProtocol</name><direction>in</direction></argument>
      </argumentList>
    </action>
    <action>
      <name>ForceTermination</name>
      <argumentList></argumentList>
    </action>
  </actionList>
</scpd>
"""

def soap_response(action: str, out_args: Mapping[str, str]) -> bytes:
    args = ''.join(f"<{name}>{value}</{name}>" for name, value in out_args.items())
    return (
        '<?xml version="1.0"?>\r\n'
        '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
        's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
        '<s:Body>'
        f'<u:{action}Response xmlns:u="urn:schemas-upnp-org:service:WANIPConnection:1">{args}</u:{action}Response>'
        '</s:Body>'
        '</s:Envelope>\r\n'
      ).encode('utf-8')

def soap_fault(error_code: int, description: str) -> bytes:
    return (
        '<?xml version="1.0"?>\r\n'
        '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
        's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
        '<s:Body>'
        '<s:Fault>'
        '<faultcode>s:Client</faultcode>'
        '<faultstring>UPnPError</faultstring>'
        '<detail>'
        '<UPnPError xmlns="urn:schemas-upnp-org:control-1-0">'
        f'<errorCode>{error_code}</errorCode>'
        f'<errorDescription>{description}</errorDescription>'
        '</UPnPError>'
        '</detail>'
        '</s:Fault>'
        '</s:Body>'
        '</s:Envelope>\r\n'
      ).encode('utf-8')

class FakeClock:
    now: float

    def __init__(self, now: float=1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

class ScriptedReply:
    """A datagram that arrives delay seconds after the receive that picks it up starts waiting."""

    reply: BroadcastReply
    delay: float

    def __init__(self, src_addr: HostAndPort, data: bytes, delay: float=0.0):
        self.reply = BroadcastReply(src_addr, data)
        self.delay = delay

class FakeDatagramSocket(DatagramSocket):
    """Returns scripted replies, advancing a FakeClock instead of sleeping."""

    script: List[ScriptedReply]
    clock: FakeClock
    sent: List[Tuple[bytes, HostAndPort]]
    receive_timeouts: List[Optional[float]]
    send_error: Optional[OSError] = None
    closed: bool = False

    def __init__(self, script: Iterable[ScriptedReply], clock: FakeClock):
        self.script = list(script)
        self.clock = clock
        self.sent = []
        self.receive_timeouts = []

    @property
    def local_addr(self) -> HostAndPort:
        return ("0.0.0.0", 40000)

    def send(self, data: bytes, addr: HostAndPort) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((data, addr))

    def receive(self, max_size: int, timeout: Optional[float]) -> BroadcastReply:
        self.receive_timeouts.append(timeout)
        if len(self.script) > 0 and (timeout is None or self.script[0].delay <= timeout):
            item = self.script.pop(0)
            self.clock.advance(item.delay)
            return BroadcastReply(item.reply.src_addr, item.reply.data[:max_size], truncated=len(item.reply.data) > max_size)
        if timeout is None:
            raise AssertionError("receive() would block forever")
        self.clock.advance(timeout)
        if len(self.script) > 0:
            self.script[0].delay -= timeout
        raise TimeoutError()

    def close(self) -> None:
        self.closed = True

Responder = Union[bytes, BaseException, Callable[[str, str, Mapping[str, str], Optional[bytes]], bytes]]

class RecordedRequest:
    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[bytes]
    buffer_size: int
    timeout: Optional[float]

    def __init__(
            self,
            method: str,
            url: str,
            headers: Mapping[str, str],
            body: Optional[bytes],
            buffer_size: int,
            timeout: Optional[float]
          ):
        self.method = method
        self.url = url
        self.headers = dict(headers)
        self.body = body
        self.buffer_size = buffer_size
        self.timeout = timeout

def fetched_urls(requests: Iterable[RecordedRequest]) -> List[str]:
    """The urls requested, with back-to-back buffer-growth retries of one request counted once."""
    result: List[str] = []
    for request in requests:
        if len(result) == 0 or result[-1] != request.url:
            result.append(request.url)
    return result

class FakeTransport(Transport):
    """Serves HTTP responses from a url -> responder table. Unknown urls get a 404."""

    responders: Dict[str, Responder]
    requests: List[RecordedRequest]
    sock: Optional[DatagramSocket]
    closed: bool = False

    def __init__(self, responders: Optional[Mapping[str, Responder]]=None, sock: Optional[DatagramSocket]=None):
        self.responders = {} if responders is None else dict(responders)
        self.requests = []
        self.sock = sock

    def open_datagram_socket(self, bind_addr: HostAndPort) -> DatagramSocket:
        if self.sock is None:
            raise OSError("no socket available")
        return self.sock

    def send_request_once(
            self,
            method: str,
            url: str,
            headers: Mapping[str, str],
            body: Optional[bytes],
            buffer_size: int,
            timeout: Optional[float],
          ) -> bytes:
        self.requests.append(RecordedRequest(method, url, headers, body, buffer_size, timeout))
        return serve(self.responders, method, url, headers, body, buffer_size)

    def close(self) -> None:
        self.closed = True

def serve(
        responders: Mapping[str, Responder],
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Optional[bytes],
        buffer_size: int
      ) -> bytes:
    responder = responders.get(url)
    if responder is None:
        raise HttpError(f"{method} {url} returned HTTP status 404", status=404)
    if isinstance(responder, BaseException):
        raise responder
    data = responder if isinstance(responder, bytes) else responder(method, url, headers, body)
    check_body_size(data, buffer_size)
    return data

class FakeAsyncDatagramSocket(AsyncDatagramSocket):
    """Hands out queued datagrams; receive() waits forever once the queue is empty."""

    replies: List[BroadcastReply]
    sent: List[Tuple[bytes, HostAndPort]]
    closed: bool = False

    def __init__(self, replies: Iterable[BroadcastReply]=()):
        self.replies = list(replies)
        self.sent = []

    @property
    def local_addr(self) -> HostAndPort:
        return ("0.0.0.0", 40000)

    async def send(self, data: bytes, addr: HostAndPort) -> None:
        self.sent.append((data, addr))

    async def receive(self, max_size: int) -> BroadcastReply:
        if len(self.replies) == 0:
            await asyncio.Event().wait()
        return self.replies.pop(0)

    async def close(self) -> None:
        self.closed = True

class FakeAsyncTransport(AsyncTransport):
    responders: Dict[str, Responder]
    requests: List[RecordedRequest]
    sock: FakeAsyncDatagramSocket
    closed: bool = False

    def __init__(self, responders: Optional[Mapping[str, Responder]]=None, sock: Optional[FakeAsyncDatagramSocket]=None):
        self.responders = {} if responders is None else dict(responders)
        self.requests = []
        self.sock = FakeAsyncDatagramSocket() if sock is None else sock

    async def open_datagram_socket(self, bind_addr: HostAndPort) -> AsyncDatagramSocket:
        return self.sock

    async def send_request_once(
            self,
            method: str,
            url: str,
            headers: Mapping[str, str],
            body: Optional[bytes],
            buffer_size: int,
            timeout: Optional[float],
          ) -> bytes:
        self.requests.append(RecordedRequest(method, url, headers, body, buffer_size, timeout))
        return serve(self.responders, method, url, headers, body, buffer_size)

    async def close(self) -> None:
        self.closed = True
