#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
AiohttpTransport -- an asyncio backend that receives datagrams through an asyncio
DatagramProtocol and performs HTTP with an aiohttp.ClientSession.

The ClientSession (and its connection pool) is created lazily inside the running
event loop and closed with the transport.
"""

from __future__ import annotations

import asyncio

import aiohttp

from ..internal_types import *
from ..pkg_logging import logger
from ..exceptions import HttpError
from ..transport import BroadcastReply, AsyncDatagramSocket, AsyncTransport, body_grows_buffer, check_body_size
from ..util import address_family_of, format_host_and_port

MAX_QUEUE_SIZE = 1000

class _SearchSocketProtocol(asyncio.DatagramProtocol):
    """An adapter between the asyncio datagram transport and ProtocolDatagramSocket.

    Received datagrams and transport errors are queued in arrival order."""

    queue: asyncio.Queue[Union[Tuple[bytes, HostAndPort], BaseException]]
    transport: Optional[asyncio.DatagramTransport] = None

    def __init__(self, max_queue_size: int=MAX_QUEUE_SIZE):
        self.queue = asyncio.Queue(max_queue_size)

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        """Called when a connection is made."""
        self.transport = transport # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        """Called when some datagram is received."""
        try:
            self.queue.put_nowait((data, (addr[0], addr[1])))
        except asyncio.QueueFull:
            logger.warning(f"Queue full, dropping datagram from {addr}")

    def error_received(self, exc: Exception) -> None:
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        logger.info(f"Error received from search socket: {exc}")
        try:
            self.queue.put_nowait(exc)
        except asyncio.QueueFull:
            pass

    def connection_lost(self, exc: Optional[Exception]) -> None:
        """Called when the connection is lost or closed."""
        logger.debug(f"Search socket closed, exc={exc}")
        self.transport = None
        try:
            self.queue.put_nowait(OSError("Search socket closed") if exc is None else exc)
        except asyncio.QueueFull:
            pass

class ProtocolDatagramSocket(AsyncDatagramSocket):
    """A UDP socket served by the event loop's datagram transport machinery."""

    protocol: _SearchSocketProtocol
    _local_addr: HostAndPort

    def __init__(self, protocol: _SearchSocketProtocol, local_addr: HostAndPort):
        self.protocol = protocol
        self._local_addr = local_addr

    @classmethod
    async def bind(cls, bind_addr: HostAndPort) -> ProtocolDatagramSocket:
        loop = asyncio.get_running_loop()
        untyped_transport, protocol = await loop.create_datagram_endpoint(
            _SearchSocketProtocol,
            local_addr=bind_addr,
            family=address_family_of(bind_addr[0]),
          )
        assert isinstance(protocol, _SearchSocketProtocol)
        sockname = untyped_transport.get_extra_info('sockname')
        local_addr = bind_addr if sockname is None else (sockname[0], sockname[1])
        logger.debug(f"Bound search socket to {format_host_and_port(local_addr)}")
        return cls(protocol, local_addr)

    @property
    def local_addr(self) -> HostAndPort:
        return self._local_addr

    async def send(self, data: bytes, addr: HostAndPort) -> None:
        transport = self.protocol.transport
        if transport is None:
            raise OSError("Search socket is closed")
        logger.debug(f"Sending {len(data)}-byte datagram from {format_host_and_port(self._local_addr)} to {format_host_and_port(addr)}")
        transport.sendto(data, addr)

    async def receive(self, max_size: int) -> BroadcastReply:
        item = await self.protocol.queue.get()
        if isinstance(item, BaseException):
            raise item
        data, addr = item
        logger.debug(f"Received {len(data)}-byte datagram from {addr}")
        return BroadcastReply(addr, data[:max_size], truncated=len(data) > max_size)

    async def close(self) -> None:
        transport = self.protocol.transport
        if transport is not None:
            transport.close()

class AiohttpTransport(AsyncTransport):
    """Async transport built on asyncio datagram endpoints and aiohttp."""

    _session: Optional[aiohttp.ClientSession] = None
    _owns_session: bool = True

    def __init__(self, session: Optional[aiohttp.ClientSession]=None):
        if session is not None:
            self._session = session
            self._owns_session = False

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def open_datagram_socket(self, bind_addr: HostAndPort) -> AsyncDatagramSocket:
        return await ProtocolDatagramSocket.bind(bind_addr)

    async def send_request_once(
            self,
            method: str,
            url: str,
            headers: Mapping[str, str],
            body: Optional[bytes],
            buffer_size: int,
            timeout: Optional[float],
          ) -> bytes:
        if timeout is not None and timeout <= 0.0:
            raise HttpError(f"{method} {url}: deadline elapsed before the request was sent")
        session = self._get_session()
        data = bytearray()
        try:
            async with session.request(
                    method,
                    url,
                    headers=dict(headers),
                    data=body,
                    timeout=aiohttp.ClientTimeout(total=timeout),
                  ) as resp:
                status = resp.status
                grows = body_grows_buffer(status)
                while True:
                    chunk = await resp.content.read(buffer_size + 1 - len(data))
                    if not chunk:
                        break
                    data += chunk
                    if grows:
                        check_body_size(data, buffer_size)
                    elif len(data) >= buffer_size:
                        del data[buffer_size:]
                        break
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise HttpError(f"{method} {url} failed: {e!r}") from e
        if not 200 <= status < 300:
            raise HttpError(f"{method} {url} returned HTTP status {status}", status=status, body=bytes(data))
        return bytes(data)

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
        self._owns_session = True
