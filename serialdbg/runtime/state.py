# serialdbg/runtime/state.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from serialdbg.model.codec import DEFAULT_TERMINATOR, DataMode
from serialdbg.runtime.auto_send import AutoSendState
from serialdbg.runtime.statistics import StatisticsSnapshot


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


@dataclass(frozen=True)
class SessionOptions:
    """
    Operator-facing switches of a session. Replaced as a whole on update.
    """
    send_mode: DataMode = DataMode.TEXT
    receive_mode: DataMode = DataMode.TEXT
    show_timestamp: bool = False
    append_newline: bool = False
    terminator: str = DEFAULT_TERMINATOR
    max_log_entries: int = 1000
    # raw bytes retained while receive is paused
    max_held_bytes: int = 1 << 20
    read_chunk_size: int = 4096


@dataclass(frozen=True)
class SessionStatus:
    """
    A snapshot of the full session status, safe to share across threads.
    """
    state: SessionState
    port: Optional[str]
    line_format: Optional[str]
    receive_paused: bool
    held_bytes: int
    statistics: StatisticsSnapshot
    auto_send: AutoSendState
    last_error: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED
