#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Port-mapping actions of the WAN connection service, built on the single SOAP
invocation primitive of a gateway.

Each action is written once as a generator that yields SoapCall requests and is
resumed with the decoded out-arguments of each call (SoapFault errors are thrown
back into it). Gateway and AsyncGateway each drive these generators with their own
call_action(), so retries and fallbacks behave identically on both.
"""

from __future__ import annotations

import ipaddress
from enum import Enum

from .internal_types import *
from .pkg_logging import logger
from .constants import MAX_ADD_RANDOM_PORT_ATTEMPTS
from .messages import (
    GET_EXTERNAL_IP_ADDRESS,
    ADD_PORT_MAPPING,
    ADD_ANY_PORT_MAPPING,
    DELETE_PORT_MAPPING,
    GET_GENERIC_PORT_MAPPING_ENTRY,
  )
from .exceptions import (
    InvalidResponse,
    NoPortsAvailable,
    NoSuchPortMapping,
    OnlyPermanentLeasesSupported,
    PortInUse,
    SamePortValuesRequired,
    SpecifiedArrayIndexInvalid,
    ExternalPortZeroInvalid,
    InternalPortZeroInvalid,
  )
from .util import RandomPortPicker

MAX_PORT_MAPPING_ENTRIES = 1024
"""list_port_mappings stops after this many entries even if the gateway keeps answering."""

class PortMappingProtocol(Enum):
    """The protocols available for port mapping."""
    TCP = "TCP"
    UDP = "UDP"

    def __str__(self) -> str:
        return self.value

class SoapCall:
    """A request to invoke one SOAP action with ordered (name, value) arguments."""

    action: str
    arguments: List[Tuple[str, Any]]

    def __init__(self, action: str, arguments: Iterable[Tuple[str, Any]]=()):
        self.action = action
        self.arguments = list(arguments)

    def __str__(self) -> str:
        return f"SoapCall({self.action}, {self.arguments})"

    def __repr__(self) -> str:
        return str(self)

ActionProgram = Generator[SoapCall, Dict[str, str], Any]

class PortMappingEntry:
    """One entry of the gateway's port mapping table."""

    remote_host: str
    external_port: int
    protocol: PortMappingProtocol
    internal_port: int
    internal_client: str
    enabled: bool
    port_mapping_description: str
    lease_duration: int

    def __init__(
            self,
            remote_host: str,
            external_port: int,
            protocol: PortMappingProtocol,
            internal_port: int,
            internal_client: str,
            enabled: bool,
            port_mapping_description: str,
            lease_duration: int,
          ) -> None:
        self.remote_host = remote_host
        self.external_port = external_port
        self.protocol = protocol
        self.internal_port = internal_port
        self.internal_client = internal_client
        self.enabled = enabled
        self.port_mapping_description = port_mapping_description
        self.lease_duration = lease_duration

    def to_jsonable(self) -> JsonableDict:
        return {
            "remote_host": self.remote_host,
            "external_port": self.external_port,
            "protocol": self.protocol.value,
            "internal_port": self.internal_port,
            "internal_client": self.internal_client,
            "enabled": self.enabled,
            "port_mapping_description": self.port_mapping_description,
            "lease_duration": self.lease_duration,
          }

    def __str__(self) -> str:
        return (
            f"PortMappingEntry({self.protocol} {self.remote_host or '*'}:{self.external_port} -> "
            f"{self.internal_client}:{self.internal_port}, enabled={self.enabled}, "
            f"lease_duration={self.lease_duration}, description={self.port_mapping_description!r})"
          )

    def __repr__(self) -> str:
        return str(self)

def _out_arg(out: Mapping[str, str], name: str, action: str) -> str:
    value = out.get(name)
    if value is None:
        raise InvalidResponse(f"{action} response has no {name}")
    return value

def _out_int(out: Mapping[str, str], name: str, action: str) -> int:
    value = _out_arg(out, name, action)
    try:
        return int(value)
    except ValueError as e:
        raise InvalidResponse(f"{action} response has non-integer {name}: {value!r}") from e

def get_external_ip() -> ActionProgram:
    out = yield SoapCall(GET_EXTERNAL_IP_ADDRESS)
    value = _out_arg(out, "NewExternalIPAddress", GET_EXTERNAL_IP_ADDRESS)
    try:
        return ipaddress.ip_address(value)
    except ValueError as e:
        raise InvalidResponse(f"Gateway returned an invalid external IP address: {value!r}") from e

def _add_port_mapping_args(
        protocol: PortMappingProtocol,
        external_port: int,
        local_addr: HostAndPort,
        lease_duration: int,
        description: str,
      ) -> List[Tuple[str, Any]]:
    return [
        ("NewRemoteHost", ""),
        ("NewExternalPort", external_port),
        ("NewProtocol", protocol.value),
        ("NewInternalPort", local_addr[1]),
        ("NewInternalClient", local_addr[0]),
        ("NewEnabled", 1),
        ("NewPortMappingDescription", description),
        ("NewLeaseDuration", lease_duration),
      ]

def _add_port_mapping(
        action: str,
        protocol: PortMappingProtocol,
        external_port: int,
        local_addr: HostAndPort,
        lease_duration: int,
        description: str,
      ) -> ActionProgram:
    """Invokes AddPortMapping or AddAnyPortMapping, retrying once with a permanent
       lease if the gateway supports nothing else."""
    try:
        return (yield SoapCall(action, _add_port_mapping_args(protocol, external_port, local_addr, lease_duration, description)))
    except OnlyPermanentLeasesSupported:
        if lease_duration == 0:
            raise
        logger.debug(f"Gateway only supports permanent leases; retrying {action} with lease duration 0")
    return (yield SoapCall(action, _add_port_mapping_args(protocol, external_port, local_addr, 0, description)))

def add_port(
        protocol: PortMappingProtocol,
        external_port: int,
        local_addr: HostAndPort,
        lease_duration: int,
        description: str,
      ) -> ActionProgram:
    if external_port == 0:
        raise ExternalPortZeroInvalid("External port 0 is invalid; use add_any_port to let the gateway choose")
    if local_addr[1] == 0:
        raise InternalPortZeroInvalid("Internal port 0 is invalid")
    yield from _add_port_mapping(ADD_PORT_MAPPING, protocol, external_port, local_addr, lease_duration, description)
    return None

def add_any_port(
        control_schema: Mapping[str, Sequence[str]],
        port_picker: RandomPortPicker,
        protocol: PortMappingProtocol,
        local_addr: HostAndPort,
        lease_duration: int,
        description: str,
      ) -> ActionProgram:
    """Maps some free external port to local_addr and returns the external port.

    Uses AddAnyPortMapping when the service declares it; otherwise tries
    AddPortMapping with random external ports."""
    if local_addr[1] == 0:
        raise InternalPortZeroInvalid("Internal port 0 is invalid")

    if ADD_ANY_PORT_MAPPING in control_schema:
        out = yield from _add_port_mapping(
            ADD_ANY_PORT_MAPPING, protocol, port_picker.pick(), local_addr, lease_duration, description
          )
        return _out_int(out, "NewReservedPort", ADD_ANY_PORT_MAPPING)

    for _ in range(MAX_ADD_RANDOM_PORT_ATTEMPTS):
        external_port = port_picker.pick()
        try:
            yield from _add_port_mapping(ADD_PORT_MAPPING, protocol, external_port, local_addr, lease_duration, description)
            return external_port
        except PortInUse:
            logger.debug(f"External port {external_port} is in use; trying another")
        except SamePortValuesRequired:
            logger.debug("Gateway requires identical external and internal ports")
            yield from _add_port_mapping(ADD_PORT_MAPPING, protocol, local_addr[1], local_addr, lease_duration, description)
            return local_addr[1]
    raise NoPortsAvailable(None, f"No free external port found after {MAX_ADD_RANDOM_PORT_ATTEMPTS} attempts")

def remove_port(protocol: PortMappingProtocol, external_port: int) -> ActionProgram:
    yield SoapCall(DELETE_PORT_MAPPING, [
        ("NewRemoteHost", ""),
        ("NewExternalPort", external_port),
        ("NewProtocol", protocol.value),
      ])
    return None

def get_generic_port_mapping_entry(index: int) -> ActionProgram:
    action = GET_GENERIC_PORT_MAPPING_ENTRY
    out = yield SoapCall(action, [("NewPortMappingIndex", index)])
    protocol_str = _out_arg(out, "NewProtocol", action).upper()
    try:
        protocol = PortMappingProtocol(protocol_str)
    except ValueError as e:
        raise InvalidResponse(f"{action} response has unknown protocol {protocol_str!r}") from e
    return PortMappingEntry(
        remote_host=out.get("NewRemoteHost", ""),
        external_port=_out_int(out, "NewExternalPort", action),
        protocol=protocol,
        internal_port=_out_int(out, "NewInternalPort", action),
        internal_client=_out_arg(out, "NewInternalClient", action),
        enabled=_out_arg(out, "NewEnabled", action).lower() in ("1", "true", "yes"),
        port_mapping_description=out.get("NewPortMappingDescription", ""),
        lease_duration=_out_int(out, "NewLeaseDuration", action),
      )

def list_port_mappings() -> ActionProgram:
    """Reads the port mapping table by index until the gateway reports the end of it."""
    entries: List[PortMappingEntry] = []
    for index in range(MAX_PORT_MAPPING_ENTRIES):
        try:
            entry = yield from get_generic_port_mapping_entry(index)
        except (SpecifiedArrayIndexInvalid, NoSuchPortMapping):
            break
        entries.append(entry)
    return entries
