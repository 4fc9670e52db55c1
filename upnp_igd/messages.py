# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Fixed message content: the SSDP search request and the SOAP envelope used for
every control request.
"""

SEARCH_REQUEST = (
    b"M-SEARCH * HTTP/1.1\r\n"
    b"Host:239.255.255.250:1900\r\n"
    b"ST:urn:schemas-upnp-org:device:InternetGatewayDevice:1\r\n"
    b'Man:"ssdp:discover"\r\n'
    b"MX:3\r\n"
    b"\r\n"
  )
"""The multicast search datagram. Byte content is dictated by UPnP and must not change."""

SOAP_ENVELOPE_TEMPLATE = (
    '<?xml version="1.0"?>\r\n'
    '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
    's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">\r\n'
    '<s:Body>\r\n'
    '{body}\r\n'
    '</s:Body>\r\n'
    '</s:Envelope>\r\n'
  )

ACTION_TEMPLATE = '<u:{action} xmlns:u="{service_type}">{arguments}</u:{action}>'

ARGUMENT_TEMPLATE = '<{name}>{value}</{name}>'

# Action names
GET_EXTERNAL_IP_ADDRESS = "GetExternalIPAddress"
ADD_PORT_MAPPING = "AddPortMapping"
ADD_ANY_PORT_MAPPING = "AddAnyPortMapping"
DELETE_PORT_MAPPING = "DeletePortMapping"
GET_GENERIC_PORT_MAPPING_ENTRY = "GetGenericPortMappingEntry"
