# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

SSDP_MULTICAST_ADDRESS = "239.255.255.250"
"""The multicast address used by SSDP for UDP multicast."""

SSDP_PORT = 1900
"""The port number used by SSDP for UDP multicast."""

DEFAULT_BIND_ADDRESS = "0.0.0.0"
"""The local address the search socket binds to by default (all interfaces)."""

DEFAULT_TIMEOUT = 10.0
"""The default overall time (in seconds) allowed for a gateway search."""

RESPONSE_TIMEOUT = 5.0
"""The default time (in seconds) to wait for any single broadcast reply."""

MAX_RESPONSE_SIZE = 1500
"""The receive buffer size for a single search reply datagram. Longer datagrams are truncated."""

INITIAL_BUFFER_SIZE = 1024
"""The initial receive buffer size for an HTTP response body."""

MAX_BUFFER_SIZE = 1024 * 1024
"""The largest HTTP response body that will be buffered before giving up."""

HEADER_NAME = "SOAPAction"
"""The HTTP header that carries the namespace-qualified SOAP action."""

SOAP_CONTENT_TYPE = "text/xml"
"""The content type of SOAP request bodies."""

WAN_IP_CONNECTION_1 = "urn:schemas-upnp-org:service:WANIPConnection:1"
WAN_IP_CONNECTION_2 = "urn:schemas-upnp-org:service:WANIPConnection:2"
WAN_PPP_CONNECTION_1 = "urn:schemas-upnp-org:service:WANPPPConnection:1"

WAN_CONNECTION_SERVICE_TYPES = (
    WAN_IP_CONNECTION_1,
    WAN_IP_CONNECTION_2,
    WAN_PPP_CONNECTION_1,
  )
"""Recognized WAN connection service types, in order of preference."""

RANDOM_PORT_RANGE = (32768, 65535)
"""The half-open range from which random external ports are drawn."""

MAX_ADD_RANDOM_PORT_ATTEMPTS = 20
"""How many random external ports add_any_port will try before giving up."""

MAX_REJECTED_RESPONDERS = 64
"""How many rejected responders a search remembers for diagnostics; older entries are dropped."""

SOAP_FAULT_STATUS = 500
"""The HTTP status UPnP devices use to return a SOAP fault. Its body is read like a success body."""
