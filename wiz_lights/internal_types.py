#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Type hints used internally by this package. Modules in the package pull these in with

    from .internal_types import *
"""

from __future__ import annotations

from typing import (
    Dict, List, Deque, Optional, Union, Any, Tuple, Set, Type, TypeVar, Generic, NamedTuple,
    Iterable, Iterator, AsyncIterable, AsyncIterator, Mapping, MutableMapping, Sequence,
    Callable, Awaitable, Coroutine, AsyncContextManager, cast, TYPE_CHECKING,
  )

from types import TracebackType
from typing_extensions import Self, TypeAlias


Jsonable: TypeAlias = Union[str, int, float, bool, None, Dict[str, Any], List[Any]]
"""A value that can be converted to/from JSON with json.dumps/json.loads"""

JsonableDict: TypeAlias = Dict[str, Jsonable]
"""A JSON object"""

HostAndPort: TypeAlias = Tuple[str, int]
"""An IP address (or hostname) and port number"""
