#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Gateway -- a resolved Internet Gateway Device bound to a blocking Transport.

All communication with the device goes through Gateway.invoke(); the port-mapping
methods are thin wrappers that run the action programs in upnp_igd.actions.
"""

from __future__ import annotations

from ipaddress import IPv4Address, IPv6Address

from .internal_types import *
from .pkg_logging import logger
from .exceptions import HttpError, RequestError
from .search import GatewayLocation, make_url
from .transport import Transport
from .parsing import parse_soap_response
from .soap import soap_headers, format_action_request, body_from_http_error, decode_response
from .actions import ActionProgram, PortMappingEntry, PortMappingProtocol, SoapCall
from .util import RandomPortPicker, format_host_and_port
from . import actions

class GatewayBase:
    """The resolved, immutable description of a gateway, shared by Gateway and AsyncGateway."""

    location: GatewayLocation
    port_picker: RandomPortPicker
    """Source of random external ports for add_any_port; owned by this gateway."""

    def __init__(self, location: GatewayLocation, port_picker: Optional[RandomPortPicker]=None):
        self.location = location
        self.port_picker = RandomPortPicker() if port_picker is None else port_picker

    @property
    def addr(self) -> HostAndPort:
        return self.location.addr

    @property
    def root_url(self) -> str:
        return self.location.root_url

    @property
    def control_url(self) -> str:
        return self.location.control_url

    @property
    def control_schema_url(self) -> str:
        return self.location.control_schema_url

    @property
    def control_schema(self) -> Mapping[str, Tuple[str, ...]]:
        return self.location.control_schema

    @property
    def service_type(self) -> str:
        return self.location.service_type

    @property
    def full_control_url(self) -> str:
        return make_url(self.location.addr, self.location.control_url)

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({format_host_and_port(self.addr)}{self.root_url})"

    def __repr__(self) -> str:
        return str(self)

class Gateway(GatewayBase, ContextManager['Gateway']):
    """A resolved gateway. Owns its transport; close() (or leaving a with block) closes it.

    A Gateway is not thread-safe; serialize calls made from different threads.
    """

    transport: Transport
    request_timeout: Optional[float]

    def __init__(
            self,
            location: GatewayLocation,
            transport: Transport,
            request_timeout: Optional[float]=None,
            port_picker: Optional[RandomPortPicker]=None,
          ) -> None:
        super().__init__(location, port_picker=port_picker)
        self.transport = transport
        self.request_timeout = request_timeout

    def invoke(self, action: str, body_xml: str) -> str:
        """POST a complete SOAP envelope to the control URL and return the response text.

        A SOAP fault is returned as text like any other response. Raises RequestError
        on transport failure or an unexpected HTTP status, DecodeError if the response
        is not UTF-8."""
        url = self.full_control_url
        logger.debug(f"Invoking {action} at {url}")
        try:
            data = self.transport.http_request(
                "POST", url, headers=soap_headers(self.service_type, action), body=body_xml.encode('utf-8'), timeout=self.request_timeout
              )
        except HttpError as e:
            data = body_from_http_error(action, e)
        return decode_response(data)

    def call_action(self, action: str, arguments: Iterable[Tuple[str, Any]]=()) -> Dict[str, str]:
        """Invoke an action with ordered arguments and return its out-arguments.

        Raises SoapFault (or a subclass) if the gateway answers with a fault."""
        text = self.invoke(action, format_action_request(self.service_type, action, arguments))
        return parse_soap_response(text, action)

    def _run(self, program: ActionProgram) -> Any:
        result: Any = None
        exc: Optional[RequestError] = None
        try:
            while True:
                call: SoapCall = program.send(result) if exc is None else program.throw(exc)
                result = None
                exc = None
                try:
                    result = self.call_action(call.action, call.arguments)
                except RequestError as e:
                    exc = e
        except StopIteration as e:
            return e.value
        finally:
            program.close()

    def get_external_ip(self) -> Union[IPv4Address, IPv6Address]:
        """Get the external IP address of the gateway."""
        return self._run(actions.get_external_ip())

    def add_port(
            self,
            protocol: PortMappingProtocol,
            external_port: int,
            local_addr: HostAndPort,
            lease_duration: int,
            description: str,
          ) -> None:
        """Map external_port on the gateway to local_addr. A lease_duration of 0 is permanent."""
        self._run(actions.add_port(protocol, external_port, local_addr, lease_duration, description))

    def add_any_port(
            self,
            protocol: PortMappingProtocol,
            local_addr: HostAndPort,
            lease_duration: int,
            description: str,
          ) -> int:
        """Map some free external port to local_addr and return the external port."""
        return self._run(actions.add_any_port(
            self.control_schema, self.port_picker, protocol, local_addr, lease_duration, description
          ))

    def remove_port(self, protocol: PortMappingProtocol, external_port: int) -> None:
        self._run(actions.remove_port(protocol, external_port))

    def get_generic_port_mapping_entry(self, index: int) -> PortMappingEntry:
        return self._run(actions.get_generic_port_mapping_entry(index))

    def list_port_mappings(self) -> List[PortMappingEntry]:
        return self._run(actions.list_port_mappings())

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self.close()
        return False
