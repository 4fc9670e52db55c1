#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SearchEngine -- the gateway discovery state machine:

  1. Send the SSDP search request to the multicast address
  2. Wait for replies, bounded by the overall and per-reply deadlines
  3. Resolve each reply: fetch the device description, select the WAN connection
     service, fetch its service description
  4. Finish with the first responder that resolves completely

The state machine performs no I/O itself. SearchEngine.steps() is a generator that
yields I/O requests (SendSearchRequest, ReceiveReply, FetchDocument) and is resumed
with their results, so the same protocol runs under the blocking driver in this
module and the asyncio driver in upnp_igd.aio.search.
"""

from __future__ import annotations

import time
from collections import deque
from enum import Enum
from types import MappingProxyType

from .internal_types import *
from .pkg_logging import logger
from .constants import MAX_RESPONSE_SIZE, MAX_REJECTED_RESPONDERS
from .messages import SEARCH_REQUEST
from .options import SearchConfig
from .exceptions import (
    IgdError,
    DecodeError,
    NoResponseWithinTimeout,
    SearchIoError,
  )
from .parsing import parse_search_result, find_control_service, parse_schemas
from .transport import BroadcastReply, DatagramSocket, Transport
from .util import format_host_and_port

class SearchState(Enum):
    """The states a SearchEngine moves through."""
    IDLE = "idle"
    SEARCHING = "searching"
    AWAITING_REPLY = "awaiting_reply"
    RESOLVING = "resolving"
    DONE = "done"
    FAILED = "failed"

class IoRequest:
    """Base class for the I/O operations requested by SearchEngine.steps()."""
    pass

class SendSearchRequest(IoRequest):
    """Send data to addr on the search socket. Resumed with None."""

    data: bytes
    addr: HostAndPort

    def __init__(self, data: bytes, addr: HostAndPort):
        self.data = data
        self.addr = addr

    def __str__(self) -> str:
        return f"SendSearchRequest(addr={self.addr})"

class ReceiveReply(IoRequest):
    """Receive one datagram of at most max_size bytes, waiting at most timeout seconds
       (forever if None). Resumed with a BroadcastReply, or with None on timeout."""

    max_size: int
    timeout: Optional[float]

    def __init__(self, max_size: int, timeout: Optional[float]):
        self.max_size = max_size
        self.timeout = timeout

    def __str__(self) -> str:
        return f"ReceiveReply(max_size={self.max_size}, timeout={self.timeout})"

class FetchDocument(IoRequest):
    """HTTP GET url within timeout seconds. Resumed with the body bytes; a failure is
       thrown into the generator as an IgdError (typically HttpError)."""

    url: str
    timeout: Optional[float]

    def __init__(self, url: str, timeout: Optional[float]):
        self.url = url
        self.timeout = timeout

    def __str__(self) -> str:
        return f"FetchDocument(url={self.url!r}, timeout={self.timeout})"

class GatewayLocation:
    """A fully resolved gateway: where it is, and what its WAN connection service offers.

    Only produced once the device description and the service description of one
    responder have both been fetched and parsed.
    """

    addr: HostAndPort
    """The address of the responder's HTTP server"""

    root_url: str
    """Path of the device description document"""

    control_url: str
    """Path of the SOAP control endpoint"""

    control_schema_url: str
    """Path of the service description (SCPD) document"""

    control_schema: Mapping[str, Tuple[str, ...]]
    """Action name -> argument names, as declared by the service description. Read-only."""

    service_type: str
    """The service type URN of the selected WAN connection service"""

    def __init__(
            self,
            addr: HostAndPort,
            root_url: str,
            control_url: str,
            control_schema_url: str,
            control_schema: Mapping[str, Sequence[str]],
            service_type: str,
          ) -> None:
        self.addr = addr
        self.root_url = root_url
        self.control_url = control_url
        self.control_schema_url = control_schema_url
        self.control_schema = MappingProxyType({ name: tuple(args) for name, args in control_schema.items() })
        self.service_type = service_type

    def to_jsonable(self) -> JsonableDict:
        return {
            "addr": format_host_and_port(self.addr),
            "root_url": self.root_url,
            "control_url": self.control_url,
            "control_schema_url": self.control_schema_url,
            "service_type": self.service_type,
            "control_schema": { name: list(args) for name, args in self.control_schema.items() },
          }

    def __str__(self) -> str:
        return f"GatewayLocation(addr={format_host_and_port(self.addr)}, root_url={self.root_url!r}, control_url={self.control_url!r})"

    def __repr__(self) -> str:
        return str(self)

def make_url(addr: HostAndPort, path: str) -> str:
    return f"http://{format_host_and_port(addr)}{path}"

class SearchEngine:
    """One run of the discovery state machine.

    The configuration is copied when the engine is created. An engine runs once;
    create a new one for each search.
    """

    state: SearchState = SearchState.IDLE

    bind_addr: HostAndPort
    broadcast_address: HostAndPort
    timeout: Optional[float]
    single_search_timeout: Optional[float]
    max_response_size: int

    rejected: deque[Tuple[HostAndPort, IgdError]]
    """The most recent responders that replied but could not be resolved, with the reason."""

    _clock: Callable[[], float]
    _deadline: Optional[float] = None

    def __init__(
            self,
            config: Optional[SearchConfig]=None,
            clock: Callable[[], float]=time.monotonic,
            max_response_size: int=MAX_RESPONSE_SIZE,
          ) -> None:
        if config is None:
            config = SearchConfig()
        self.bind_addr = config.bind_addr
        self.broadcast_address = config.broadcast_address
        self.timeout = config.timeout
        self.single_search_timeout = config.single_search_timeout
        self.max_response_size = max_response_size
        self.rejected = deque(maxlen=MAX_REJECTED_RESPONDERS)
        self._clock = clock

    def remaining(self) -> Optional[float]:
        """Seconds left before the overall deadline; None if there is no overall deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def _set_state(self, state: SearchState) -> None:
        if state != self.state:
            logger.debug(f"SearchEngine: {self.state.value} -> {state.value}")
            self.state = state

    def _fail(self, exc: IgdError) -> IgdError:
        self._set_state(SearchState.FAILED)
        return exc

    def timed_out(self) -> NoResponseWithinTimeout:
        """Record that an external deadline cancelled the search. Returns the error to raise."""
        exc = NoResponseWithinTimeout()
        self._fail(exc)
        return exc

    def _reject(self, addr: HostAndPort, exc: IgdError) -> None:
        logger.debug(f"Ignoring responder {format_host_and_port(addr)}: {exc}")
        self.rejected.append((addr, exc))

    def steps(self) -> Generator[IoRequest, Any, GatewayLocation]:
        """The state machine. Yields IoRequests; returns the resolved GatewayLocation.

        Raises SearchIoError (thrown in by the driver) if the search request cannot be
        sent, and NoResponseWithinTimeout if the overall deadline passes first.
        """
        if self.state != SearchState.IDLE:
            raise RuntimeError("SearchEngine can only be run once")
        if self.timeout is not None:
            self._deadline = self._clock() + self.timeout

        self._set_state(SearchState.SEARCHING)
        logger.debug(f"Sending search request to {format_host_and_port(self.broadcast_address)}")
        try:
            yield SendSearchRequest(SEARCH_REQUEST, self.broadcast_address)
        except SearchIoError as e:
            raise self._fail(e)

        while True:
            remaining = self.remaining()
            if remaining is not None and remaining <= 0.0:
                raise self._fail(NoResponseWithinTimeout())
            wait_time = remaining
            if self.single_search_timeout is not None and (wait_time is None or self.single_search_timeout < wait_time):
                wait_time = self.single_search_timeout

            self._set_state(SearchState.AWAITING_REPLY)
            try:
                reply: Optional[BroadcastReply] = yield ReceiveReply(self.max_response_size, wait_time)
            except SearchIoError as e:
                raise self._fail(e)
            if reply is None:
                logger.debug("Timed out waiting for a search reply")
                continue

            self._set_state(SearchState.RESOLVING)
            try:
                location = yield from self._resolve(reply)
            except IgdError as e:
                self._reject(reply.src_addr, e)
                continue

            remaining = self.remaining()
            if remaining is not None and remaining <= 0.0:
                logger.debug(f"Resolved {location} after the search deadline; discarding it")
                raise self._fail(NoResponseWithinTimeout())

            self._set_state(SearchState.DONE)
            logger.debug(f"Resolved gateway {location}")
            return location

    def _resolve(self, reply: BroadcastReply) -> Generator[IoRequest, Any, GatewayLocation]:
        logger.debug(f"Handling search reply from {format_host_and_port(reply.src_addr)}")
        if reply.truncated:
            logger.warning(f"Search reply from {format_host_and_port(reply.src_addr)} filled the {self.max_response_size}-byte buffer and may be truncated")
        try:
            text = reply.data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecodeError(f"Search reply is not valid UTF-8: {e}") from e

        addr, root_url = parse_search_result(text)

        url = make_url(addr, root_url)
        logger.debug(f"Requesting device description from {url}")
        device_description: bytes = yield FetchDocument(url, self.remaining())
        endpoint = find_control_service(device_description)

        url = make_url(addr, endpoint.scpd_url)
        logger.debug(f"Requesting service description from {url}")
        service_description: bytes = yield FetchDocument(url, self.remaining())
        control_schema = parse_schemas(service_description)

        return GatewayLocation(
            addr=addr,
            root_url=root_url,
            control_url=endpoint.control_url,
            control_schema_url=endpoint.scpd_url,
            control_schema=control_schema,
            service_type=endpoint.service_type,
          )

def run_search(engine: SearchEngine, sock: DatagramSocket, transport: Transport) -> GatewayLocation:
    """Drive a SearchEngine with blocking I/O.

    Each receive is armed with the deadline the engine computed, which never exceeds the
    remaining overall budget.
    """
    steps = engine.steps()
    result: Any = None
    exc: Optional[BaseException] = None
    try:
        while True:
            if exc is None:
                request = steps.send(result)
            else:
                request = steps.throw(exc)
            result = None
            exc = None
            if isinstance(request, SendSearchRequest):
                try:
                    sock.send(request.data, request.addr)
                except OSError as e:
                    exc = SearchIoError(f"Unable to send search request: {e}")
            elif isinstance(request, ReceiveReply):
                try:
                    result = sock.receive(request.max_size, request.timeout)
                except TimeoutError:
                    result = None
                except OSError as e:
                    exc = SearchIoError(f"Unable to receive search reply: {e}")
            elif isinstance(request, FetchDocument):
                try:
                    result = transport.http_request("GET", request.url, timeout=request.timeout)
                except IgdError as e:
                    exc = e
            else:
                raise TypeError(f"Unknown I/O request: {request}")
    except StopIteration as e:
        return cast(GatewayLocation, e.value)
    finally:
        steps.close()
