#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Type hints used internally by this package. Intended to be star-imported.
"""

from __future__ import annotations

from typing import (
    Any, Awaitable, AsyncIterator, AsyncIterable, Callable, Dict, Generator,
    Iterable, Iterator, List, Mapping, MutableMapping, Optional, Sequence,
    Set, Tuple, Type, TypeVar, Union, cast,
  )
from typing import AsyncContextManager, ContextManager
from types import TracebackType
from typing_extensions import Self, TypeAlias

HostAndPort: TypeAlias = Tuple[str, int]
"""An (ip_address, port) tuple as used by the socket module."""

Jsonable: TypeAlias = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]
"""A value that can be serialized with json.dumps."""

JsonableDict: TypeAlias = Dict[str, Jsonable]
"""A dict that can be serialized with json.dumps."""

ControlSchema: TypeAlias = Dict[str, List[str]]
"""Maps each action name declared by a service to its ordered argument names."""
