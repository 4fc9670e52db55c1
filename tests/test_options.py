from __future__ import annotations

import pytest

from upnp_igd.options import SearchConfig

def test_defaults() -> None:
    config = SearchConfig()
    assert config.bind_addr == ("0.0.0.0", 0)
    assert config.broadcast_address == ("239.255.255.250", 1900)
    assert config.timeout == 10.0
    assert config.single_search_timeout == 5.0

def test_with_methods_copy() -> None:
    config = SearchConfig()
    changed = config.with_bind_addr(("192.168.1.10", 0)).with_single_search_timeout(1.0)
    assert changed.bind_addr == ("192.168.1.10", 0)
    assert changed.single_search_timeout == 1.0
    assert config == SearchConfig()
    assert changed != config

def test_smaller_timeout_shrinks_per_reply_timeout() -> None:
    config = SearchConfig().with_timeout(2.0)
    assert config.timeout == 2.0
    assert config.single_search_timeout == 2.0

def test_no_deadlines() -> None:
    config = SearchConfig(timeout=None, single_search_timeout=None)
    assert config.timeout is None
    assert config.single_search_timeout is None
    assert SearchConfig().with_timeout(None).single_search_timeout == 5.0

def test_per_reply_timeout_must_fit() -> None:
    with pytest.raises(ValueError):
        SearchConfig(timeout=1.0, single_search_timeout=2.0)
    with pytest.raises(ValueError):
        SearchConfig().with_single_search_timeout(11.0)

@pytest.mark.parametrize("timeout", [0.0, -1.0])
def test_timeouts_must_be_positive(timeout: float) -> None:
    with pytest.raises(ValueError):
        SearchConfig(timeout=timeout, single_search_timeout=None)
    with pytest.raises(ValueError):
        SearchConfig(single_search_timeout=timeout)

def test_jsonable_round_trip() -> None:
    config = SearchConfig(bind_addr=("192.168.1.10", 4000), timeout=3.0, single_search_timeout=1.5)
    data = config.to_jsonable()
    assert data == {
        "bind_addr": "192.168.1.10:4000",
        "broadcast_address": "239.255.255.250:1900",
        "timeout": 3.0,
        "single_search_timeout": 1.5,
      }
    assert SearchConfig.from_jsonable(data) == config
    assert hash(SearchConfig.from_jsonable(data)) == hash(config)

def test_from_jsonable_partial() -> None:
    config = SearchConfig.from_jsonable({ "broadcast_address": "[ff02::c]", "timeout": 4.0 })
    assert config.broadcast_address == ("ff02::c", 1900)
    assert config.timeout == 4.0
    assert config.single_search_timeout == 4.0
    assert config.bind_addr == ("0.0.0.0", 0)

def test_from_jsonable_unknown_key() -> None:
    with pytest.raises(ValueError):
        SearchConfig.from_jsonable({ "retries": 3 })

def test_str() -> None:
    text = str(SearchConfig(bind_addr=("::1", 0), timeout=None, single_search_timeout=None))
    assert text == "SearchConfig(bind_addr=[::1]:0, broadcast_address=239.255.255.250:1900, timeout=None, single_search_timeout=None)"

def test_small_timeout_shrinks_default_per_reply_timeout() -> None:
    config = SearchConfig(timeout=0.2)
    assert config.timeout == 0.2
    assert config.single_search_timeout == 0.2
    assert config == SearchConfig().with_timeout(0.2)
    assert SearchConfig(timeout=None).single_search_timeout == 5.0
    assert SearchConfig(timeout=30.0).single_search_timeout == 5.0
