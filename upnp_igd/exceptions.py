#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

from __future__ import annotations

from typing import Optional

class IgdError(Exception):
  """Base class for all error exceptions defined by this package."""
  pass

# ======================= Search

class SearchError(IgdError):
  """A gateway search failed."""
  pass

class SearchIoError(SearchError):
  """The local search socket could not be bound, or a datagram could not be sent or received.

  This is fatal to a search: the local socket is assumed to be broken."""
  pass

class NoResponseWithinTimeout(SearchError):
  """No responder was fully resolved before the overall search deadline."""

  def __init__(self, msg: str="No gateway responded within the search timeout"):
    super().__init__(msg)

# ======================= Parsing

class ParseError(IgdError):
  """A search reply, device description or SOAP response from a gateway could not be understood."""
  pass

class MissingLocation(ParseError):
  """A search reply had no Location header."""

  def __init__(self, msg: str="Search reply has no Location header"):
    super().__init__(msg)

class InvalidAddress(ParseError):
  """The Location header of a search reply did not contain a usable http://<ip>[:<port>]<path> URL."""
  pass

class ServiceNotFound(ParseError):
  """A device description lists no recognized WAN connection service."""

  def __init__(self, msg: str="Device description has no WAN connection service"):
    super().__init__(msg)

class MalformedXml(ParseError):
  """An XML document could not be parsed at all."""
  pass

class InvalidResponse(ParseError):
  """A SOAP response was well-formed XML but did not have the expected content."""
  pass

class DecodeError(IgdError):
  """A response was not valid UTF-8 text."""
  pass

# ======================= HTTP

class HttpError(IgdError):
  """An HTTP request failed, either at the transport level (status is None) or with a non-2xx status."""

  status: Optional[int]
  """The HTTP status code, or None if no response was received."""

  body: bytes
  """The (possibly truncated) response body, if any."""

  def __init__(self, msg: str, status: Optional[int]=None, body: bytes=b''):
    super().__init__(msg)
    self.status = status
    self.body = body

class ResponseTooLarge(HttpError):
  """An HTTP response body exceeded the largest buffer this package is willing to allocate."""
  pass

class BufferTooSmall(IgdError):
  """Raised by a transport backend when a response body does not fit in the offered buffer.

  The request will be reissued with a larger buffer; this never escapes a Transport."""

  buffer_size: int

  def __init__(self, buffer_size: int):
    super().__init__(f"Response body does not fit in {buffer_size} bytes")
    self.buffer_size = buffer_size

# ======================= SOAP requests and port mappings

class RequestError(IgdError):
  """A SOAP request to a resolved gateway failed."""
  pass

class SoapFault(RequestError):
  """The gateway answered a SOAP request with a UPnP fault."""

  error_code: Optional[int]
  description: str

  def __init__(self, error_code: Optional[int], description: str=""):
    super().__init__(f"UPnP error {error_code}: {description}")
    self.error_code = error_code
    self.description = description

class ActionNotAuthorized(SoapFault):
  """The gateway refused the action (UPnP error 606)."""
  pass

class SpecifiedArrayIndexInvalid(SoapFault):
  """The port mapping index is out of range (UPnP error 713)."""
  pass

class NoSuchPortMapping(SoapFault):
  """The port mapping to delete does not exist (UPnP error 714)."""
  pass

class PortInUse(SoapFault):
  """The external port is already mapped to another client (UPnP error 718)."""
  pass

class SamePortValuesRequired(SoapFault):
  """The gateway requires external and internal ports to be equal (UPnP error 724)."""
  pass

class OnlyPermanentLeasesSupported(SoapFault):
  """The gateway does not support lease durations other than 0 (UPnP error 725)."""
  pass

class NoPortsAvailable(SoapFault):
  """The gateway has no free external port to offer (UPnP error 728)."""
  pass

class PortMappingError(IgdError):
  """A port mapping request was rejected before it was sent."""
  pass

class ExternalPortZeroInvalid(PortMappingError):
  """External port 0 is not allowed for add_port; use add_any_port instead."""
  pass

class InternalPortZeroInvalid(PortMappingError):
  """Internal (local) port 0 is not allowed."""
  pass
