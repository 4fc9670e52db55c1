#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Pure parsers for everything a gateway sends back: search replies, device
descriptions, service descriptions (SCPD) and SOAP responses.

None of these functions perform I/O or keep state between calls. Malformed input
is reported with a ParseError subclass.
"""

from __future__ import annotations

import ipaddress
from urllib.parse import urlsplit
from xml.etree.ElementTree import Element, ParseError as XmlParseError

import defusedxml.ElementTree as ET
from defusedxml import DefusedXmlException

from .internal_types import *
from .pkg_logging import logger
from .constants import WAN_CONNECTION_SERVICE_TYPES
from .exceptions import (
    MissingLocation,
    InvalidAddress,
    ServiceNotFound,
    MalformedXml,
    InvalidResponse,
    SoapFault,
    ActionNotAuthorized,
    SpecifiedArrayIndexInvalid,
    NoSuchPortMapping,
    PortInUse,
    SamePortValuesRequired,
    OnlyPermanentLeasesSupported,
    NoPortsAvailable,
  )
from .util import split_bytes_at_lf_or_crlf, parse_http_headers

FAULT_CLASSES: Dict[int, Type[SoapFault]] = {
    606: ActionNotAuthorized,
    713: SpecifiedArrayIndexInvalid,
    714: NoSuchPortMapping,
    718: PortInUse,
    724: SamePortValuesRequired,
    725: OnlyPermanentLeasesSupported,
    728: NoPortsAvailable,
  }
"""UPnP error codes with a dedicated SoapFault subclass."""

class ControlEndpoint:
    """The control URL and SCPD URL of the WAN connection service selected from a device description."""

    control_url: str
    """Path of the SOAP control endpoint, relative to the device root."""

    scpd_url: str
    """Path of the service description (SCPD) document."""

    service_type: str
    """The service type URN, used to qualify SOAP action names."""

    def __init__(self, control_url: str, scpd_url: str, service_type: str):
        self.control_url = control_url
        self.scpd_url = scpd_url
        self.service_type = service_type

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ControlEndpoint):
            return NotImplemented
        return (self.control_url, self.scpd_url, self.service_type) == (other.control_url, other.scpd_url, other.service_type)

    def __str__(self) -> str:
        return f"ControlEndpoint(control_url={self.control_url!r}, scpd_url={self.scpd_url!r}, service_type={self.service_type!r})"

    def __repr__(self) -> str:
        return str(self)

def _local_name(tag: Any) -> str:
    """Strips any "{namespace}" prefix from an ElementTree tag."""
    if not isinstance(tag, str):
        return ''
    return tag.rsplit('}', 1)[-1]

def _children(element: Element, name: str) -> List[Element]:
    return [child for child in element if _local_name(child.tag) == name]

def _child(element: Element, name: str) -> Optional[Element]:
    for child in element:
        if _local_name(child.tag) == name:
            return child
    return None

def _child_text(element: Element, name: str) -> Optional[str]:
    child = _child(element, name)
    if child is None or child.text is None:
        return None
    return child.text.strip()

def _parse_xml(xml_data: bytes) -> Element:
    try:
        return ET.fromstring(xml_data)
    except (XmlParseError, DefusedXmlException) as e:
        raise MalformedXml(f"Unable to parse XML document: {e}") from e

def _normalize_path(url: str) -> str:
    """Reduces an absolute URL to its path and query, and makes a relative path absolute."""
    url = url.strip()
    if '://' in url:
        parts = urlsplit(url)
        path = parts.path if parts.path != '' else '/'
        if parts.query != '':
            path = f"{path}?{parts.query}"
        return path
    if not url.startswith('/'):
        url = '/' + url
    return url

def parse_search_result(text: str) -> Tuple[HostAndPort, str]:
    """Extracts the responder address and device description path from a search reply.

    The reply is HTTP-response-like text; the Location header (matched
    case-insensitively) must hold http://<ip>[:<port>]<path>.

    Returns ((ip, port), path).

    Raises MissingLocation if there is no Location header, InvalidAddress if it
    cannot be interpreted.
    """
    statement_and_remainder = split_bytes_at_lf_or_crlf(text.encode('utf-8'), 1)
    remainder = b'' if len(statement_and_remainder) < 2 else statement_and_remainder[1]
    headers, _ = parse_http_headers(remainder)
    location = headers.get('Location')
    if location is None or location == '':
        raise MissingLocation()

    try:
        parts = urlsplit(location)
        port = parts.port
    except ValueError as e:
        raise InvalidAddress(f"Invalid Location URL {location!r}: {e}") from e
    if parts.scheme.lower() != 'http':
        raise InvalidAddress(f"Location URL {location!r} is not an http URL")
    host = parts.hostname
    if host is None or host == '':
        raise InvalidAddress(f"Location URL {location!r} has no host")
    try:
        ip = ipaddress.ip_address(host)
    except ValueError as e:
        raise InvalidAddress(f"Location URL {location!r} host is not an IP address") from e
    if port is None:
        port = 80
    path = parts.path if parts.path != '' else '/'
    if parts.query != '':
        path = f"{path}?{parts.query}"
    return ((str(ip), port), path)

def find_control_service(
        xml_data: bytes,
        service_types: Sequence[str]=WAN_CONNECTION_SERVICE_TYPES
      ) -> ControlEndpoint:
    """Selects the preferred WAN connection service from a device description document.

    Every <service> element in the (possibly nested) device tree is considered. The
    service whose type appears earliest in service_types wins; among services of the
    same type, the first in document order wins.

    Raises MalformedXml if the document cannot be parsed, ServiceNotFound if no
    recognized service with both a controlURL and an SCPDURL is present.
    """
    root = _parse_xml(xml_data)
    candidates: Dict[str, ControlEndpoint] = {}
    for service in root.iter():
        if _local_name(service.tag) != 'service':
            continue
        service_type = _child_text(service, 'serviceType')
        if service_type is None or service_type not in service_types or service_type in candidates:
            continue
        control_url = _child_text(service, 'controlURL')
        scpd_url = _child_text(service, 'SCPDURL')
        if control_url is None or control_url == '' or scpd_url is None or scpd_url == '':
            logger.debug(f"Ignoring {service_type} service without controlURL/SCPDURL")
            continue
        candidates[service_type] = ControlEndpoint(_normalize_path(control_url), _normalize_path(scpd_url), service_type)
    for service_type in service_types:
        if service_type in candidates:
            return candidates[service_type]
    raise ServiceNotFound()

def parse_control_urls(xml_data: bytes) -> Tuple[str, str]:
    """Returns (scpd_path, control_path) of the preferred WAN connection service in a device description.

    See find_control_service.
    """
    endpoint = find_control_service(xml_data)
    return (endpoint.scpd_url, endpoint.control_url)

def parse_schemas(xml_data: bytes) -> ControlSchema:
    """Maps each action of a service description (SCPD) document to its argument names.

    Actions appear in document order, and so do their arguments; an action without
    an argumentList maps to an empty list. An empty or absent actionList yields an
    empty mapping.

    Raises MalformedXml if the document cannot be parsed.
    """
    root = _parse_xml(xml_data)
    result: ControlSchema = {}
    for action_list in _children(root, 'actionList'):
        for action in _children(action_list, 'action'):
            name = _child_text(action, 'name')
            if name is None or name == '':
                logger.debug("Ignoring unnamed action in service description")
                continue
            if name in result:
                logger.debug(f"Ignoring duplicate declaration of action {name}")
                continue
            arguments: List[str] = []
            for argument_list in _children(action, 'argumentList'):
                for argument in _children(argument_list, 'argument'):
                    arg_name = _child_text(argument, 'name')
                    if arg_name is not None and arg_name != '':
                        arguments.append(arg_name)
            result[name] = arguments
    return result

def parse_soap_response(text: str, action: str) -> Dict[str, str]:
    """Decodes the envelope returned by a SOAP action.

    Returns the out-arguments of the <{action}Response> element as a dict of
    name to text value (empty elements map to '').

    Raises SoapFault if the envelope holds a fault, MalformedXml if it is not XML
    and InvalidResponse if it holds neither a fault nor the expected response.
    """
    root = _parse_xml(text.encode('utf-8'))
    body = _child(root, 'Body')
    if body is None:
        raise InvalidResponse(f"{action} response has no SOAP Body")
    fault = _child(body, 'Fault')
    if fault is not None:
        raise parse_soap_fault(fault)
    response = _child(body, f"{action}Response")
    if response is None:
        raise InvalidResponse(f"{action} response has no {action}Response element")
    return { _local_name(child.tag): (child.text or '').strip() for child in response }

def parse_soap_fault(fault: Element) -> SoapFault:
    """Builds (but does not raise) a SoapFault from a SOAP <Fault> element.

    UPnP places the error code and description under detail/UPnPError. Known codes
    map to the SoapFault subclasses in FAULT_CLASSES.
    """
    error_code: Optional[int] = None
    description = _child_text(fault, 'faultstring') or ''
    detail = _child(fault, 'detail')
    if detail is not None:
        upnp_error = _child(detail, 'UPnPError')
        if upnp_error is not None:
            code_text = _child_text(upnp_error, 'errorCode')
            if code_text is not None:
                try:
                    error_code = int(code_text)
                except ValueError:
                    pass
            description = _child_text(upnp_error, 'errorDescription') or description
    fault_class = SoapFault if error_code is None else FAULT_CLASSES.get(error_code, SoapFault)
    return fault_class(error_code, description)
