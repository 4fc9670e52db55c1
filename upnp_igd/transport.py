#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
The transport capability -- the minimal set of I/O operations the discovery engine and
the SOAP layer need from an I/O backend:

  1. Bind a datagram socket, send a datagram, and receive a datagram with its sender address
  2. Perform an HTTP request/response round trip with custom headers and a body

Two flavors are defined with the same method set: Transport (blocking) and AsyncTransport
(suspend-on-I/O). Backends implement only send_request_once(); the buffer-growth discipline
in http_request() is shared by all of them.
"""

from __future__ import annotations

from abc import abstractmethod

from .internal_types import *
from .pkg_logging import logger
from .constants import INITIAL_BUFFER_SIZE, MAX_BUFFER_SIZE, SOAP_FAULT_STATUS
from .exceptions import BufferTooSmall, ResponseTooLarge

class BroadcastReply:
    """A datagram received in reply to the search request."""

    src_addr: HostAndPort
    """The address of the sender"""

    data: bytes
    """The raw payload, truncated to the receive buffer size"""

    truncated: bool
    """True if the payload filled the receive buffer and may have been cut short"""

    def __init__(self, src_addr: HostAndPort, data: bytes, truncated: bool=False):
        self.src_addr = src_addr
        self.data = data
        self.truncated = truncated

    def __str__(self) -> str:
        return f"BroadcastReply(src_addr={self.src_addr}, data={self.data!r})"

    def __repr__(self) -> str:
        return str(self)

def next_buffer_size(buffer_size: int, max_buffer_size: int, url: str) -> int:
    """Returns the doubled buffer size for a retry, or raises ResponseTooLarge past the ceiling."""
    if buffer_size >= max_buffer_size:
        raise ResponseTooLarge(f"Response from {url} exceeds {max_buffer_size} bytes")
    return min(buffer_size * 2, max_buffer_size)

def check_body_size(body: Union[bytes, bytearray], buffer_size: int) -> None:
    """Helper for backends: raises BufferTooSmall if body does not fit in buffer_size."""
    if len(body) > buffer_size:
        raise BufferTooSmall(buffer_size)

def body_grows_buffer(status: int) -> bool:
    """True if a response with this status is worth re-requesting with a larger buffer:
       a success, or a SOAP fault. Backends read at most buffer_size bytes of any other
       error body and raise HttpError without a retry."""
    return 200 <= status < 300 or status == SOAP_FAULT_STATUS

# ======================= Blocking

class DatagramSocket(ContextManager['DatagramSocket']):
    """A bound datagram socket owned by exactly one search."""

    @property
    @abstractmethod
    def local_addr(self) -> HostAndPort:
        raise NotImplementedError()

    @abstractmethod
    def send(self, data: bytes, addr: HostAndPort) -> None:
        """Send one datagram. Raises OSError on failure."""
        raise NotImplementedError()

    @abstractmethod
    def receive(self, max_size: int, timeout: Optional[float]) -> BroadcastReply:
        """Wait up to timeout seconds (forever if None) for one datagram of at most max_size bytes.

        Raises TimeoutError if none arrives in time, OSError on socket failure."""
        raise NotImplementedError()

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError()

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

class Transport(ContextManager['Transport']):
    """A blocking I/O backend.

    A Transport may own long-lived resources such as a connection pool; once a
    Gateway is resolved it owns its transport and closes it when it is closed.
    Transports are not assumed to be thread-safe.
    """

    initial_buffer_size: int = INITIAL_BUFFER_SIZE
    max_buffer_size: int = MAX_BUFFER_SIZE

    @abstractmethod
    def open_datagram_socket(self, bind_addr: HostAndPort) -> DatagramSocket:
        """Create a datagram socket bound to bind_addr. Raises OSError on failure."""
        raise NotImplementedError()

    @abstractmethod
    def send_request_once(
            self,
            method: str,
            url: str,
            headers: Mapping[str, str],
            body: Optional[bytes],
            buffer_size: int,
            timeout: Optional[float],
          ) -> bytes:
        """Perform one HTTP round trip and return the response body.

        Raises BufferTooSmall if the body is longer than buffer_size, HttpError on a
        transport failure or non-2xx status."""
        raise NotImplementedError()

    def http_request(
            self,
            method: str,
            url: str,
            headers: Optional[Mapping[str, str]]=None,
            body: Optional[bytes]=None,
            timeout: Optional[float]=None,
          ) -> bytes:
        """Perform an HTTP round trip, reissuing the request with a doubled buffer
           each time the response body does not fit."""
        buffer_size = self.initial_buffer_size
        while True:
            try:
                return self.send_request_once(method, url, {} if headers is None else headers, body, buffer_size, timeout)
            except BufferTooSmall:
                buffer_size = next_buffer_size(buffer_size, self.max_buffer_size, url)
                logger.debug(f"Response from {url} did not fit; retrying {method} with {buffer_size}-byte buffer")

    def close(self) -> None:
        pass

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

# ======================= Suspend-on-I/O

class AsyncDatagramSocket(AsyncContextManager['AsyncDatagramSocket']):
    """A bound datagram socket owned by exactly one async search."""

    @property
    @abstractmethod
    def local_addr(self) -> HostAndPort:
        raise NotImplementedError()

    @abstractmethod
    async def send(self, data: bytes, addr: HostAndPort) -> None:
        raise NotImplementedError()

    @abstractmethod
    async def receive(self, max_size: int) -> BroadcastReply:
        """Suspend until one datagram arrives. Deadlines are applied by the caller."""
        raise NotImplementedError()

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError()

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

class AsyncTransport(AsyncContextManager['AsyncTransport']):
    """A suspend-on-I/O backend. Same contract as Transport, with coroutines."""

    initial_buffer_size: int = INITIAL_BUFFER_SIZE
    max_buffer_size: int = MAX_BUFFER_SIZE

    @abstractmethod
    async def open_datagram_socket(self, bind_addr: HostAndPort) -> AsyncDatagramSocket:
        raise NotImplementedError()

    @abstractmethod
    async def send_request_once(
            self,
            method: str,
            url: str,
            headers: Mapping[str, str],
            body: Optional[bytes],
            buffer_size: int,
            timeout: Optional[float],
          ) -> bytes:
        raise NotImplementedError()

    async def http_request(
            self,
            method: str,
            url: str,
            headers: Optional[Mapping[str, str]]=None,
            body: Optional[bytes]=None,
            timeout: Optional[float]=None,
          ) -> bytes:
        buffer_size = self.initial_buffer_size
        while True:
            try:
                return await self.send_request_once(method, url, {} if headers is None else headers, body, buffer_size, timeout)
            except BufferTooSmall:
                buffer_size = next_buffer_size(buffer_size, self.max_buffer_size, url)
                logger.debug(f"Response from {url} did not fit; retrying {method} with {buffer_size}-byte buffer")

    async def close(self) -> None:
        pass

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
