#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
The blocking backend: a plain UDP socket with a socket-level read deadline, and
HTTP through a requests.Session whose connection pool lives as long as the transport.
"""

from __future__ import annotations

import socket
import time

import requests
import urllib3

from .internal_types import *
from .pkg_logging import logger
from .exceptions import HttpError, SearchIoError
from .options import SearchConfig
from .search import SearchEngine, run_search
from .gateway import Gateway
from .transport import BroadcastReply, DatagramSocket, Transport, body_grows_buffer, check_body_size
from .util import address_family_of, format_host_and_port

HTTP_CHUNK_SIZE = 1024

def _set_read_timeout(resp: requests.Response, timeout: float) -> None:
    # Bounds the next read of a streamed body
    connection = getattr(resp.raw, "connection", None)
    sock = getattr(connection, "sock", None)
    if sock is not None:
        sock.settimeout(timeout)

class UdpDatagramSocket(DatagramSocket):
    """A blocking UDP socket. The read deadline is re-armed before every receive."""

    sock: Optional[socket.socket]

    def __init__(self, sock: socket.socket):
        self.sock = sock

    @classmethod
    def bind(cls, bind_addr: HostAndPort) -> UdpDatagramSocket:
        sock = socket.socket(address_family_of(bind_addr[0]), socket.SOCK_DGRAM)
        try:
            sock.bind(bind_addr)
        except BaseException:
            sock.close()
            raise
        return cls(sock)

    @property
    def local_addr(self) -> HostAndPort:
        assert self.sock is not None
        addr = self.sock.getsockname()
        return (addr[0], addr[1])

    def send(self, data: bytes, addr: HostAndPort) -> None:
        assert self.sock is not None
        logger.debug(f"Sending {len(data)}-byte datagram from {format_host_and_port(self.local_addr)} to {format_host_and_port(addr)}")
        self.sock.sendto(data, addr)

    def receive(self, max_size: int, timeout: Optional[float]) -> BroadcastReply:
        assert self.sock is not None
        self.sock.settimeout(timeout)
        # One extra byte detects a datagram that did not fit
        data, addr = self.sock.recvfrom(max_size + 1)
        logger.debug(f"Received {len(data)}-byte datagram from {addr}")
        return BroadcastReply((addr[0], addr[1]), data[:max_size], truncated=len(data) > max_size)

    def close(self) -> None:
        if self.sock is not None:
            self.sock.close()
            self.sock = None

class SocketTransport(Transport):
    """Blocking transport built on the socket module and requests."""

    session: requests.Session

    def __init__(self, session: Optional[requests.Session]=None):
        self.session = requests.Session() if session is None else session

    def open_datagram_socket(self, bind_addr: HostAndPort) -> DatagramSocket:
        return UdpDatagramSocket.bind(bind_addr)

    def send_request_once(
            self,
            method: str,
            url: str,
            headers: Mapping[str, str],
            body: Optional[bytes],
            buffer_size: int,
            timeout: Optional[float],
          ) -> bytes:
        """timeout bounds the whole exchange. requests applies it per socket operation, so the
           body is read one socket read at a time with the read timeout re-armed to what is left."""
        deadline: Optional[float] = None
        if timeout is not None:
            if timeout <= 0.0:
                raise HttpError(f"{method} {url}: deadline elapsed before the request was sent")
            deadline = time.monotonic() + timeout
        data = bytearray()
        try:
            with self.session.request(method, url, headers=dict(headers), data=body, timeout=timeout, stream=True) as resp:
                status = resp.status_code
                grows = body_grows_buffer(status)
                while True:
                    if deadline is not None:
                        remaining = deadline - time.monotonic()
                        if remaining <= 0.0:
                            raise HttpError(f"{method} {url}: deadline elapsed while reading the response")
                        _set_read_timeout(resp, remaining)
                    chunk = resp.raw.read1(HTTP_CHUNK_SIZE, decode_content=True)
                    if not chunk:
                        break
                    data += chunk
                    if grows:
                        check_body_size(data, buffer_size)
                    elif len(data) >= buffer_size:
                        del data[buffer_size:]
                        break
        except (requests.RequestException, urllib3.exceptions.HTTPError) as e:
            raise HttpError(f"{method} {url} failed: {e}") from e
        if not 200 <= status < 300:
            raise HttpError(f"{method} {url} returned HTTP status {status}", status=status, body=bytes(data))
        return bytes(data)

    def close(self) -> None:
        self.session.close()

def search_gateway(
        config: Optional[SearchConfig]=None,
        transport: Optional[Transport]=None,
        request_timeout: Optional[float]=None,
      ) -> Gateway:
    """Search for a gateway, blocking until one resolves or the search times out.

    The returned Gateway owns the transport (a new SocketTransport unless one is given).
    A transport created here is closed if the search fails.

    Raises NoResponseWithinTimeout if no gateway resolves in time, SearchIoError if the
    search socket cannot be bound or used.

    Example:
        with search_gateway() as gateway:
            print(gateway.get_external_ip())
    """
    engine = SearchEngine(config)
    owns_transport = transport is None
    if transport is None:
        transport = SocketTransport()
    try:
        try:
            sock = transport.open_datagram_socket(engine.bind_addr)
        except OSError as e:
            raise SearchIoError(f"Unable to bind search socket to {format_host_and_port(engine.bind_addr)}: {e}") from e
        with sock:
            location = run_search(engine, sock, transport)
    except BaseException:
        if owns_transport:
            transport.close()
        raise
    return Gateway(location, transport, request_timeout=request_timeout)
