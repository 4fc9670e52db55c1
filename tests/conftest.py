from __future__ import annotations

import pytest

from upnp_igd.internal_types import *

from loopback import LoopbackGateway

@pytest.fixture
def loopback_gateway() -> Iterator[LoopbackGateway]:
    gateway = LoopbackGateway()
    gateway.start()
    try:
        yield gateway
    finally:
        gateway.stop()

@pytest.fixture
def slow_loopback_gateway() -> Iterator[LoopbackGateway]:
    """A loopback gateway whose search reply points at a document served one byte at a time."""
    gateway = LoopbackGateway(location_path="/slow.xml")
    gateway.start()
    try:
        yield gateway
    finally:
        gateway.stop()
