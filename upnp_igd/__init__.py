# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package upnp_igd discovers a UPnP Internet Gateway Device (IGD) on the local network
and manages its port mappings.

Discovery multicasts an SSDP search request, then for each responder fetches the
device description, selects its WAN connection service (WANIPConnection or
WANPPPConnection), and fetches that service's description. The first responder that
resolves completely becomes the Gateway, on which SOAP actions can be invoked:
getting the external IP address, adding, removing and listing port mappings.

The same discovery state machine and action logic run over a blocking backend
(sockets and requests, in this module) and two asyncio backends (aiohttp and httpx,
in upnp_igd.aio).

"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict, HostAndPort, ControlSchema

from .exceptions import (
    IgdError,
    SearchError,
    SearchIoError,
    NoResponseWithinTimeout,
    ParseError,
    MissingLocation,
    InvalidAddress,
    ServiceNotFound,
    MalformedXml,
    InvalidResponse,
    DecodeError,
    HttpError,
    ResponseTooLarge,
    RequestError,
    SoapFault,
    ActionNotAuthorized,
    SpecifiedArrayIndexInvalid,
    NoSuchPortMapping,
    PortInUse,
    SamePortValuesRequired,
    OnlyPermanentLeasesSupported,
    NoPortsAvailable,
    PortMappingError,
    ExternalPortZeroInvalid,
    InternalPortZeroInvalid,
  )

from .options import SearchConfig
from .transport import BroadcastReply, DatagramSocket, Transport, AsyncDatagramSocket, AsyncTransport
from .parsing import (
    ControlEndpoint,
    parse_search_result,
    find_control_service,
    parse_control_urls,
    parse_schemas,
    parse_soap_response,
  )
from .search import SearchEngine, SearchState, GatewayLocation
from .actions import PortMappingProtocol, PortMappingEntry
from .gateway import Gateway
from .blocking import SocketTransport, search_gateway
from .util import RandomPortPicker
from .constants import SSDP_MULTICAST_ADDRESS, SSDP_PORT

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict', 'HostAndPort', 'ControlSchema',
    'IgdError', 'SearchError', 'SearchIoError', 'NoResponseWithinTimeout',
    'ParseError', 'MissingLocation', 'InvalidAddress', 'ServiceNotFound', 'MalformedXml',
    'InvalidResponse', 'DecodeError', 'HttpError', 'ResponseTooLarge',
    'RequestError', 'SoapFault', 'ActionNotAuthorized', 'SpecifiedArrayIndexInvalid',
    'NoSuchPortMapping', 'PortInUse', 'SamePortValuesRequired', 'OnlyPermanentLeasesSupported',
    'NoPortsAvailable', 'PortMappingError', 'ExternalPortZeroInvalid', 'InternalPortZeroInvalid',
    'SearchConfig',
    'BroadcastReply', 'DatagramSocket', 'Transport', 'AsyncDatagramSocket', 'AsyncTransport',
    'ControlEndpoint', 'parse_search_result', 'find_control_service', 'parse_control_urls',
    'parse_schemas', 'parse_soap_response',
    'SearchEngine', 'SearchState', 'GatewayLocation',
    'PortMappingProtocol', 'PortMappingEntry',
    'Gateway', 'SocketTransport', 'search_gateway',
    'RandomPortPicker',
    'SSDP_MULTICAST_ADDRESS', 'SSDP_PORT',
]
