#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
HttpxTransport -- an asyncio backend that awaits a non-blocking socket directly
(loop.sock_sendto / loop.sock_recvfrom) and performs HTTP with an httpx.AsyncClient.
"""

from __future__ import annotations

import asyncio
import socket

import httpx

from ..internal_types import *
from ..pkg_logging import logger
from ..exceptions import HttpError
from ..transport import BroadcastReply, AsyncDatagramSocket, AsyncTransport, body_grows_buffer, check_body_size
from ..util import address_family_of, format_host_and_port

class LoopDatagramSocket(AsyncDatagramSocket):
    """A non-blocking UDP socket awaited through the running event loop."""

    sock: Optional[socket.socket]

    def __init__(self, sock: socket.socket):
        sock.setblocking(False)
        self.sock = sock

    @classmethod
    async def bind(cls, bind_addr: HostAndPort) -> LoopDatagramSocket:
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

    async def send(self, data: bytes, addr: HostAndPort) -> None:
        if self.sock is None:
            raise OSError("Search socket is closed")
        logger.debug(f"Sending {len(data)}-byte datagram from {format_host_and_port(self.local_addr)} to {format_host_and_port(addr)}")
        await asyncio.get_running_loop().sock_sendto(self.sock, data, addr)

    async def receive(self, max_size: int) -> BroadcastReply:
        if self.sock is None:
            raise OSError("Search socket is closed")
        # One extra byte detects a datagram that did not fit
        data, addr = await asyncio.get_running_loop().sock_recvfrom(self.sock, max_size + 1)
        logger.debug(f"Received {len(data)}-byte datagram from {addr}")
        return BroadcastReply((addr[0], addr[1]), data[:max_size], truncated=len(data) > max_size)

    async def close(self) -> None:
        if self.sock is not None:
            self.sock.close()
            self.sock = None

class HttpxTransport(AsyncTransport):
    """Async transport built on event-loop socket operations and httpx."""

    _client: Optional[httpx.AsyncClient] = None
    _owns_client: bool = True

    def __init__(self, client: Optional[httpx.AsyncClient]=None):
        if client is not None:
            self._client = client
            self._owns_client = False

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def open_datagram_socket(self, bind_addr: HostAndPort) -> AsyncDatagramSocket:
        return await LoopDatagramSocket.bind(bind_addr)

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
        client = self._get_client()
        data = bytearray()
        try:
            # httpx applies timeout per network operation; the outer scope bounds the whole exchange
            async with asyncio.timeout(timeout):
                async with client.stream(method, url, headers=dict(headers), content=body, timeout=timeout) as resp:
                    status = resp.status_code
                    grows = body_grows_buffer(status)
                    async for chunk in resp.aiter_bytes():
                        data += chunk
                        if grows:
                            check_body_size(data, buffer_size)
                        elif len(data) >= buffer_size:
                            del data[buffer_size:]
                            break
        except TimeoutError as e:
            raise HttpError(f"{method} {url}: deadline elapsed while reading the response") from e
        except httpx.HTTPError as e:
            raise HttpError(f"{method} {url} failed: {e!r}") from e
        if not 200 <= status < 300:
            raise HttpError(f"{method} {url} returned HTTP status {status}", status=status, body=bytes(data))
        return bytes(data)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
        self._owns_client = True
