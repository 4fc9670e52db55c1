#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
AsyncGateway -- a resolved Internet Gateway Device bound to an AsyncTransport.
"""

from __future__ import annotations

from ipaddress import IPv4Address, IPv6Address

from ..internal_types import *
from ..pkg_logging import logger
from ..exceptions import HttpError, RequestError
from ..search import GatewayLocation
from ..transport import AsyncTransport
from ..parsing import parse_soap_response
from ..soap import soap_headers, format_action_request, body_from_http_error, decode_response
from ..actions import ActionProgram, PortMappingEntry, PortMappingProtocol, SoapCall
from ..gateway import GatewayBase
from ..util import RandomPortPicker
from .. import actions

class AsyncGateway(GatewayBase, AsyncContextManager['AsyncGateway']):
    """A resolved gateway for use from asyncio code. Owns its transport.

    Concurrent invocations on one AsyncGateway share the transport's connection pool;
    any further serialization is up to the caller.
    """

    transport: AsyncTransport
    request_timeout: Optional[float]

    def __init__(
            self,
            location: GatewayLocation,
            transport: AsyncTransport,
            request_timeout: Optional[float]=None,
            port_picker: Optional[RandomPortPicker]=None,
          ) -> None:
        super().__init__(location, port_picker=port_picker)
        self.transport = transport
        self.request_timeout = request_timeout

    async def invoke(self, action: str, body_xml: str) -> str:
        """POST a complete SOAP envelope to the control URL and return the response text."""
        url = self.full_control_url
        logger.debug(f"Invoking {action} at {url}")
        try:
            data = await self.transport.http_request(
                "POST", url, headers=soap_headers(self.service_type, action), body=body_xml.encode('utf-8'), timeout=self.request_timeout
              )
        except HttpError as e:
            data = body_from_http_error(action, e)
        return decode_response(data)

    async def call_action(self, action: str, arguments: Iterable[Tuple[str, Any]]=()) -> Dict[str, str]:
        text = await self.invoke(action, format_action_request(self.service_type, action, arguments))
        return parse_soap_response(text, action)

    async def _run(self, program: ActionProgram) -> Any:
        result: Any = None
        exc: Optional[RequestError] = None
        try:
            while True:
                call: SoapCall = program.send(result) if exc is None else program.throw(exc)
                result = None
                exc = None
                try:
                    result = await self.call_action(call.action, call.arguments)
                except RequestError as e:
                    exc = e
        except StopIteration as e:
            return e.value
        finally:
            program.close()

    async def get_external_ip(self) -> Union[IPv4Address, IPv6Address]:
        return await self._run(actions.get_external_ip())

    async def add_port(
            self,
            protocol: PortMappingProtocol,
            external_port: int,
            local_addr: HostAndPort,
            lease_duration: int,
            description: str,
          ) -> None:
        await self._run(actions.add_port(protocol, external_port, local_addr, lease_duration, description))

    async def add_any_port(
            self,
            protocol: PortMappingProtocol,
            local_addr: HostAndPort,
            lease_duration: int,
            description: str,
          ) -> int:
        return await self._run(actions.add_any_port(
            self.control_schema, self.port_picker, protocol, local_addr, lease_duration, description
          ))

    async def remove_port(self, protocol: PortMappingProtocol, external_port: int) -> None:
        await self._run(actions.remove_port(protocol, external_port))

    async def get_generic_port_mapping_entry(self, index: int) -> PortMappingEntry:
        return await self._run(actions.get_generic_port_mapping_entry(index))

    async def list_port_mappings(self) -> List[PortMappingEntry]:
        return await self._run(actions.list_port_mappings())

    async def close(self) -> None:
        await self.transport.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.close()
        return False
