#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Bounded record of recent messages exchanged with fixtures, for diagnostics.
"""

from __future__ import annotations

import time
from collections import deque
from enum import Enum

from .internal_types import *

class WizMessageType(str, Enum):
    SEND = "send"
    RECEIVE = "receive"
    PUSH = "push"

class WizHistoryEntry(NamedTuple):
    msg_type: WizMessageType
    method: str
    message: JsonableDict
    timestamp: float
    """Seconds since the history was created"""

class WizMessageHistory:
    """Keeps the most recent max_entries messages, plus the latest message per (type, method)
       and the most recent error string."""

    DEFAULT_MAX_ENTRIES = 100

    max_entries: int
    _entries: Deque[WizHistoryEntry]
    _latest: Dict[WizMessageType, Dict[str, JsonableDict]]
    _last_error: Optional[str] = None
    _start_time: float

    def __init__(self, max_entries: int=DEFAULT_MAX_ENTRIES):
        self.max_entries = max_entries
        self._entries = deque(maxlen=max_entries)
        self._latest = { t: {} for t in WizMessageType }
        self._start_time = time.monotonic()

    def record(self, msg_type: WizMessageType, message: Mapping[str, Jsonable]) -> None:
        """Records a message. Messages without a string "method" field are ignored."""
        method = message.get("method")
        if not isinstance(method, str):
            return
        msg = dict(message)
        self._latest[msg_type][method] = msg
        self._entries.append(WizHistoryEntry(msg_type, method, msg, time.monotonic() - self._start_time))

    def record_error(self, error: Union[str, BaseException]) -> None:
        self._last_error = str(error)

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def entries(self) -> List[WizHistoryEntry]:
        return list(self._entries)

    def last_message(self, msg_type: WizMessageType, method: str) -> Optional[JsonableDict]:
        return self._latest[msg_type].get(method)

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        for latest in self._latest.values():
            latest.clear()
        self._entries.clear()
        self._last_error = None

    def summary(self) -> JsonableDict:
        return {
            "send_count": len(self._latest[WizMessageType.SEND]),
            "receive_count": len(self._latest[WizMessageType.RECEIVE]),
            "push_count": len(self._latest[WizMessageType.PUSH]),
            "total_entries": len(self._entries),
            "last_error": self._last_error,
          }
