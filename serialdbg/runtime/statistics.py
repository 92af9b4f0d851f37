# serialdbg/runtime/statistics.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

RATE_EPSILON_S = 1e-3


@dataclass(frozen=True)
class StatisticsSnapshot:
    """
    Point-in-time view of link counters, safe to share across threads.
    """
    bytes_received: int
    bytes_sent: int
    rate_bps: float
    elapsed_s: float
    live: bool

    @property
    def elapsed_text(self) -> str:
        return format_elapsed(self.elapsed_s)


def format_elapsed(seconds: float) -> str:
    total = int(max(0.0, seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


class Statistics:
    """
    Byte counters for one connection plus a throughput rate.

    The rate is (received + sent) / elapsed-since-reset, recomputed at most
    once per `tick_s` so per-chunk reads don't produce noisy values.
    """

    def __init__(
        self,
        *,
        tick_s: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._tick_s = float(tick_s)
        self._clock = clock
        self._lock = threading.Lock()

        self._rx = 0
        self._tx = 0
        self._live = False
        self._t0: Optional[float] = None
        self._last_activity: Optional[float] = None

        self._rate = 0.0
        self._rate_sampled_at: Optional[float] = None

    # ---------------- counters ----------------
    def reset(self) -> None:
        now = self._clock()
        with self._lock:
            self._rx = 0
            self._tx = 0
            self._live = True
            self._t0 = now
            self._last_activity = None
            self._rate = 0.0
            self._rate_sampled_at = None

    def stop(self) -> None:
        with self._lock:
            self._live = False
            self._rate = 0.0
            self._rate_sampled_at = None

    def record_received(self, n: int) -> None:
        if n <= 0:
            return
        now = self._clock()
        with self._lock:
            self._rx += int(n)
            self._last_activity = now

    def record_sent(self, n: int) -> None:
        if n <= 0:
            return
        now = self._clock()
        with self._lock:
            self._tx += int(n)
            self._last_activity = now

    # ---------------- reads ----------------
    @property
    def bytes_received(self) -> int:
        with self._lock:
            return self._rx

    @property
    def bytes_sent(self) -> int:
        with self._lock:
            return self._tx

    @property
    def live(self) -> bool:
        with self._lock:
            return self._live

    @property
    def last_activity(self) -> Optional[float]:
        with self._lock:
            return self._last_activity

    def elapsed(self) -> float:
        now = self._clock()
        with self._lock:
            if not self._live or self._t0 is None:
                return 0.0
            return max(0.0, now - self._t0)

    def current_rate(self) -> float:
        now = self._clock()
        with self._lock:
            if not self._live or self._t0 is None:
                return 0.0
            due = self._rate_sampled_at is None or (now - self._rate_sampled_at) >= self._tick_s
            if due:
                elapsed = max(now - self._t0, RATE_EPSILON_S)
                self._rate = (self._rx + self._tx) / elapsed
                self._rate_sampled_at = now
            return self._rate

    def snapshot(self) -> StatisticsSnapshot:
        rate = self.current_rate()
        elapsed = self.elapsed()
        with self._lock:
            return StatisticsSnapshot(
                bytes_received=self._rx,
                bytes_sent=self._tx,
                rate_bps=rate,
                elapsed_s=elapsed,
                live=self._live,
            )
