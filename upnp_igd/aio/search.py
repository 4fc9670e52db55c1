#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
The asyncio driver for SearchEngine, and search_gateway() for any AsyncTransport.
"""

from __future__ import annotations

import asyncio

from ..internal_types import *
from ..pkg_logging import logger
from ..exceptions import IgdError, SearchIoError
from ..options import SearchConfig
from ..search import (
    SearchEngine,
    GatewayLocation,
    SendSearchRequest,
    ReceiveReply,
    FetchDocument,
  )
from ..transport import AsyncDatagramSocket, AsyncTransport
from ..util import format_host_and_port
from .gateway import AsyncGateway

async def run_search(engine: SearchEngine, sock: AsyncDatagramSocket, transport: AsyncTransport) -> GatewayLocation:
    """Drive a SearchEngine with asyncio I/O. Each suspension point is bounded by the
       timeout the engine computed for it."""
    steps = engine.steps()
    result: Any = None
    exc: Optional[BaseException] = None
    try:
        while True:
            if exc is None:
                request = steps.send(result)
            else:
                request = steps.throw(exc)
            result = None
            exc = None
            if isinstance(request, SendSearchRequest):
                try:
                    await sock.send(request.data, request.addr)
                except OSError as e:
                    exc = SearchIoError(f"Unable to send search request: {e}")
            elif isinstance(request, ReceiveReply):
                try:
                    result = await asyncio.wait_for(sock.receive(request.max_size), request.timeout)
                except asyncio.TimeoutError:
                    result = None
                except OSError as e:
                    exc = SearchIoError(f"Unable to receive search reply: {e}")
            elif isinstance(request, FetchDocument):
                try:
                    result = await transport.http_request("GET", request.url, timeout=request.timeout)
                except IgdError as e:
                    exc = e
            else:
                raise TypeError(f"Unknown I/O request: {request}")
    except StopIteration as e:
        return cast(GatewayLocation, e.value)
    finally:
        steps.close()

async def search_gateway(
        transport: AsyncTransport,
        config: Optional[SearchConfig]=None,
        request_timeout: Optional[float]=None,
      ) -> AsyncGateway:
    """Search for a gateway using an async transport.

    The whole search runs under the overall deadline; when it expires the pending
    operation is cancelled and NoResponseWithinTimeout is raised. On success the
    returned AsyncGateway owns the transport.

    Example:
        async with await search_gateway(AiohttpTransport()) as gateway:
            print(await gateway.get_external_ip())
    """
    engine = SearchEngine(config)

    async def search() -> GatewayLocation:
        try:
            sock = await transport.open_datagram_socket(engine.bind_addr)
        except OSError as e:
            raise SearchIoError(f"Unable to bind search socket to {format_host_and_port(engine.bind_addr)}: {e}") from e
        async with sock:
            return await run_search(engine, sock, transport)

    try:
        location = await asyncio.wait_for(search(), engine.timeout)
    except asyncio.TimeoutError:
        logger.debug(f"Search deadline of {engine.timeout}s expired")
        raise engine.timed_out() from None
    return AsyncGateway(location, transport, request_timeout=request_timeout)
