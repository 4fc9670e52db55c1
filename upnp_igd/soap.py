#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Request building and response handling for SOAP control requests.

Every control request, whatever the action, goes through the same steps: POST the
envelope to the control URL with a namespace-qualified SOAPAction header, accept a
2xx response or a 500 response (the status UPnP uses to carry SOAP faults), and
decode the body as UTF-8. The blocking and async gateways both use these helpers
around their transport's http_request().
"""

from __future__ import annotations

from xml.sax.saxutils import escape

from .internal_types import *
from .constants import HEADER_NAME, SOAP_CONTENT_TYPE, SOAP_FAULT_STATUS
from .messages import SOAP_ENVELOPE_TEMPLATE, ACTION_TEMPLATE, ARGUMENT_TEMPLATE
from .exceptions import DecodeError, HttpError, RequestError

def action_header(service_type: str, action: str) -> str:
    """The SOAPAction header value for an action, e.g. '"urn:...:WANIPConnection:1#GetExternalIPAddress"'"""
    return f'"{service_type}#{action}"'

def soap_headers(service_type: str, action: str) -> Dict[str, str]:
    return {
        HEADER_NAME: action_header(service_type, action),
        "Content-Type": SOAP_CONTENT_TYPE,
      }

def format_action_request(
        service_type: str,
        action: str,
        arguments: Iterable[Tuple[str, Any]]=(),
      ) -> str:
    """Builds the complete SOAP envelope for an action. Argument values are converted
       with str() and XML-escaped; argument order is preserved."""
    args_xml = ''.join(
        ARGUMENT_TEMPLATE.format(name=name, value=escape(str(value)))
        for name, value in arguments
      )
    body = ACTION_TEMPLATE.format(action=action, service_type=service_type, arguments=args_xml)
    return SOAP_ENVELOPE_TEMPLATE.format(body=body)

def body_from_http_error(action: str, e: HttpError) -> bytes:
    """Returns the body of a SOAP fault response, or raises RequestError for any other HTTP failure."""
    if e.status == SOAP_FAULT_STATUS and len(e.body) > 0:
        return e.body
    raise RequestError(f"{action} request failed: {e}") from e

def decode_response(data: bytes) -> str:
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError as e:
        raise DecodeError(f"SOAP response is not valid UTF-8: {e}") from e
