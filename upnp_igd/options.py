#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SearchConfig -- the sole input to a gateway search.
"""

from __future__ import annotations

from .internal_types import *
from .constants import (
    SSDP_MULTICAST_ADDRESS,
    SSDP_PORT,
    DEFAULT_BIND_ADDRESS,
    DEFAULT_TIMEOUT,
    RESPONSE_TIMEOUT,
  )
from .util import format_host_and_port, parse_host_and_port

_UNSET: Any = object()

class SearchConfig:
    """Gateway search configuration.

    SearchConfig() should suffice for most situations. Instances are immutable;
    use the with_*() methods to derive a modified copy:

        config = SearchConfig().with_timeout(3.0).with_single_search_timeout(1.0)
    """

    _bind_addr: HostAndPort
    _broadcast_address: HostAndPort
    _timeout: Optional[float]
    _single_search_timeout: Optional[float]

    def __init__(
            self,
            bind_addr: HostAndPort=(DEFAULT_BIND_ADDRESS, 0),
            broadcast_address: HostAndPort=(SSDP_MULTICAST_ADDRESS, SSDP_PORT),
            timeout: Optional[float]=DEFAULT_TIMEOUT,
            single_search_timeout: Optional[float]=_UNSET,
          ) -> None:
        """Create a search configuration.

        Parameters:
            bind_addr:              The local (ip, port) to bind the search socket to. Defaults to
                                        all interfaces with an ephemeral port.
            broadcast_address:      The (ip, port) the search request is sent to. Defaults to
                                        239.255.255.250:1900.
            timeout:                The overall search deadline in seconds, or None to wait forever.
                                        Defaults to 10 seconds.
            single_search_timeout:  The deadline in seconds for any one reply, or None for no
                                        per-reply deadline. Defaults to 5 seconds, or to timeout
                                        if that is smaller. An explicit value must not exceed timeout.
        """
        if single_search_timeout is _UNSET:
            single_search_timeout = RESPONSE_TIMEOUT
            if timeout is not None and 0 < timeout < single_search_timeout:
                single_search_timeout = timeout
        if timeout is not None and timeout <= 0:
            raise ValueError(f"Search timeout must be positive: {timeout}")
        if single_search_timeout is not None and single_search_timeout <= 0:
            raise ValueError(f"Single search timeout must be positive: {single_search_timeout}")
        if timeout is not None and single_search_timeout is not None and single_search_timeout > timeout:
            raise ValueError(
                f"Single search timeout {single_search_timeout} exceeds overall timeout {timeout}"
              )
        self._bind_addr = (str(bind_addr[0]), int(bind_addr[1]))
        self._broadcast_address = (str(broadcast_address[0]), int(broadcast_address[1]))
        self._timeout = None if timeout is None else float(timeout)
        self._single_search_timeout = None if single_search_timeout is None else float(single_search_timeout)

    @property
    def bind_addr(self) -> HostAndPort:
        """Bind address for the search socket (defaults to 0.0.0.0:0)"""
        return self._bind_addr

    @property
    def broadcast_address(self) -> HostAndPort:
        """Broadcast address for discovery packets (defaults to 239.255.255.250:1900)"""
        return self._broadcast_address

    @property
    def timeout(self) -> Optional[float]:
        """Overall search deadline in seconds (defaults to 10s)"""
        return self._timeout

    @property
    def single_search_timeout(self) -> Optional[float]:
        """Deadline for a single search reply in seconds (defaults to 5s)"""
        return self._single_search_timeout

    def _replace(
            self,
            bind_addr: Any=_UNSET,
            broadcast_address: Any=_UNSET,
            timeout: Any=_UNSET,
            single_search_timeout: Any=_UNSET,
          ) -> SearchConfig:
        # A new overall deadline shrinks an inherited per-reply deadline that no longer fits
        if timeout is not _UNSET and single_search_timeout is _UNSET:
            if timeout is not None and self._single_search_timeout is not None and self._single_search_timeout > timeout:
                single_search_timeout = timeout
        return SearchConfig(
            bind_addr=self._bind_addr if bind_addr is _UNSET else bind_addr,
            broadcast_address=self._broadcast_address if broadcast_address is _UNSET else broadcast_address,
            timeout=self._timeout if timeout is _UNSET else timeout,
            single_search_timeout=self._single_search_timeout if single_search_timeout is _UNSET else single_search_timeout,
          )

    def with_bind_addr(self, bind_addr: HostAndPort) -> SearchConfig:
        return self._replace(bind_addr=bind_addr)

    def with_broadcast_address(self, broadcast_address: HostAndPort) -> SearchConfig:
        return self._replace(broadcast_address=broadcast_address)

    def with_timeout(self, timeout: Optional[float]) -> SearchConfig:
        return self._replace(timeout=timeout)

    def with_single_search_timeout(self, single_search_timeout: Optional[float]) -> SearchConfig:
        return self._replace(single_search_timeout=single_search_timeout)

    def to_jsonable(self) -> JsonableDict:
        return {
            "bind_addr": format_host_and_port(self._bind_addr),
            "broadcast_address": format_host_and_port(self._broadcast_address),
            "timeout": self._timeout,
            "single_search_timeout": self._single_search_timeout,
          }

    @classmethod
    def from_jsonable(cls, data: Mapping[str, Jsonable]) -> SearchConfig:
        """Build a SearchConfig from a JSON-style dict. Missing keys take their defaults;
           unknown keys raise ValueError."""
        unknown = set(data.keys()) - { "bind_addr", "broadcast_address", "timeout", "single_search_timeout" }
        if len(unknown) > 0:
            raise ValueError(f"Unknown search configuration keys: {sorted(unknown)}")
        result = cls()
        if "bind_addr" in data:
            result = result.with_bind_addr(parse_host_and_port(cast(str, data["bind_addr"])))
        if "broadcast_address" in data:
            result = result.with_broadcast_address(parse_host_and_port(cast(str, data["broadcast_address"]), SSDP_PORT))
        if "timeout" in data:
            result = result.with_timeout(cast(Optional[float], data["timeout"]))
        if "single_search_timeout" in data:
            result = result.with_single_search_timeout(cast(Optional[float], data["single_search_timeout"]))
        return result

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SearchConfig):
            return NotImplemented
        return self.to_jsonable() == other.to_jsonable()

    def __hash__(self) -> int:
        return hash((self._bind_addr, self._broadcast_address, self._timeout, self._single_search_timeout))

    def __str__(self) -> str:
        return (
            f"SearchConfig(bind_addr={format_host_and_port(self._bind_addr)}, "
            f"broadcast_address={format_host_and_port(self._broadcast_address)}, "
            f"timeout={self._timeout}, single_search_timeout={self._single_search_timeout})"
          )

    def __repr__(self) -> str:
        return str(self)
