# serialdbg/runtime/activity_log.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

DEFAULT_MAX_ENTRIES = 1000


class LogCategory(str, Enum):
    DATA = "data"
    SYSTEM = "system"
    ERROR = "error"


@dataclass(frozen=True)
class LogEntry:
    category: LogCategory
    text: str
    timestamp: Optional[str] = None

    def render(self) -> str:
        if self.timestamp:
            return f"[{self.timestamp}] {self.text}"
        return self.text

    def as_dict(self) -> dict:
        d = {"category": self.category.value, "text": self.text}
        if self.timestamp:
            d["timestamp"] = self.timestamp
        return d


EntryCallback = Callable[[LogEntry], None]


def format_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return now.strftime("%H:%M:%S.") + f"{now.microsecond // 1000:03d}"


class ActivityLog:
    """
    Bounded, ordered log of rendered lines.

    When an append pushes the count past `max_entries`, the oldest half is
    dropped in one step. Subscribers are called once per appended entry,
    outside the internal lock.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        *,
        clock: Callable[[], datetime] = datetime.now,
        logger: Optional[logging.Logger] = None,
    ):
        if max_entries < 2:
            raise ValueError("max_entries must be >= 2")
        self._max = int(max_entries)
        self._clock = clock
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._entries: List[LogEntry] = []
        self._cbs: List[EntryCallback] = []
        self._compactions = 0

    @property
    def max_entries(self) -> int:
        return self._max

    @property
    def compactions(self) -> int:
        return self._compactions

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def append(self, category: LogCategory, text: str, with_timestamp: bool = False) -> LogEntry:
        ts = format_timestamp(self._clock()) if with_timestamp else None
        entry = LogEntry(category=LogCategory(category), text=text, timestamp=ts)

        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self._max:
                del self._entries[: len(self._entries) - self._max // 2]
                self._compactions += 1
            cbs = list(self._cbs)

        for cb in cbs:
            try:
                cb(entry)
            except Exception:
                self._log.exception("LOG_SUBSCRIBER_ERROR category=%s", entry.category.value)
        return entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def entries(self) -> List[LogEntry]:
        with self._lock:
            return list(self._entries)

    def export_text(self) -> str:
        return "".join(e.render() + "\n" for e in self.entries())

    def subscribe(self, cb: EntryCallback) -> Callable[[], None]:
        with self._lock:
            self._cbs.append(cb)

        def _unsubscribe() -> None:
            with self._lock:
                if cb in self._cbs:
                    self._cbs.remove(cb)

        return _unsubscribe
