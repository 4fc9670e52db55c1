#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Asyncio support: the same discovery engine and gateway operations as the blocking API,
over either of two async backends (aiohttp or httpx).

Usage:
    from upnp_igd.aio import search_gateway, AiohttpTransport

    async with await search_gateway(AiohttpTransport()) as gateway:
        print(await gateway.get_external_ip())
"""

from .gateway import AsyncGateway
from .search import search_gateway, run_search
from .aiohttp_transport import AiohttpTransport, ProtocolDatagramSocket
from .httpx_transport import HttpxTransport, LoopDatagramSocket

__all__ = [
    'AsyncGateway',
    'search_gateway', 'run_search',
    'AiohttpTransport', 'ProtocolDatagramSocket',
    'HttpxTransport', 'LoopDatagramSocket',
]
