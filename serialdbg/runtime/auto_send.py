# serialdbg/runtime/auto_send.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from serialdbg.core.errors import NotConnectedError, SerialDebugError
from serialdbg.model.codec import DataMode


@dataclass(frozen=True)
class OutboundFrame:
    """Payload as typed by the operator, plus how to encode it."""
    text: str
    mode: DataMode = DataMode.TEXT


@dataclass(frozen=True)
class AutoSendState:
    enabled: bool
    interval_ms: Optional[int]
    payload: Optional[str]


FrameProducer = Callable[[], OutboundFrame]
FrameSender = Callable[[OutboundFrame], object]


class AutoSendScheduler:
    """
    Re-sends the current outbound payload every `interval_ms`.

    Ticks follow a fixed-rate schedule. A send that overruns its slot makes the
    ticks that came due meanwhile get skipped, so there is never more than one
    send in flight. `produce` is called on every tick, so edits to the payload
    apply from the next tick on.
    """

    def __init__(
        self,
        send: FrameSender,
        *,
        is_connected: Callable[[], bool],
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._send = send
        self._is_connected = is_connected
        self._log = logger or logging.getLogger(__name__)
        self._clock = clock

        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._interval_ms: Optional[int] = None
        self._last_payload: Optional[str] = None

        self.sent = 0
        self.skipped = 0

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def state(self) -> AutoSendState:
        with self._lock:
            return AutoSendState(
                enabled=self._thread is not None and not self._stop_event.is_set(),
                interval_ms=self._interval_ms,
                payload=self._last_payload,
            )

    def start(self, interval_ms: int, produce: FrameProducer) -> None:
        if isinstance(interval_ms, bool) or not isinstance(interval_ms, int) or interval_ms <= 0:
            raise ValueError(f"interval_ms must be a positive integer, got {interval_ms!r}")
        if not self._is_connected():
            raise NotConnectedError(
                "Auto-send needs a live connection.",
                hint="Connect first, then enable auto-send.",
            )

        self.stop()

        with self._lock:
            self._stop_event = threading.Event()
            self._interval_ms = interval_ms
            self.sent = 0
            self.skipped = 0
            self._thread = threading.Thread(
                target=self._run,
                args=(interval_ms / 1000.0, produce, self._stop_event),
                name="auto-send",
                daemon=True,
            )
            self._thread.start()

        self._log.info("AUTO_SEND_START interval_ms=%d", interval_ms)

    def stop(self) -> None:
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            self._thread = None

        if thread is not threading.current_thread():
            thread.join()
        with self._lock:
            sent, skipped = self.sent, self.skipped
        self._log.info("AUTO_SEND_STOP sent=%d skipped=%d", sent, skipped)

    # ---------------- worker ----------------
    def _run(self, interval_s: float, produce: FrameProducer, stop_event: threading.Event) -> None:
        next_due = self._clock() + interval_s
        while not stop_event.wait(max(0.0, next_due - self._clock())):
            if not self._is_connected():
                self._log.info("AUTO_SEND_LINK_DOWN")
                stop_event.set()
                break

            self._tick(produce, stop_event)

            # drop ticks that came due while the send was in flight
            next_due += interval_s
            now = self._clock()
            if now > next_due:
                missed = int((now - next_due) // interval_s) + 1
                with self._lock:
                    self.skipped += missed
                next_due += missed * interval_s

        with self._lock:
            if self._stop_event is stop_event:
                self._thread = None

    def _tick(self, produce: FrameProducer, stop_event: threading.Event) -> None:
        try:
            frame = produce()
        except Exception:
            self._log.exception("AUTO_SEND_PRODUCE_FAILED")
            return

        with self._lock:
            self._last_payload = frame.text

        try:
            self._send(frame)
            with self._lock:
                self.sent += 1
        except NotConnectedError:
            stop_event.set()
        except SerialDebugError as e:
            # the session already logged it; keep ticking
            self._log.warning("AUTO_SEND_TICK_FAILED code=%s msg=%s", e.code, e.message)
        except Exception:
            self._log.exception("AUTO_SEND_TICK_ERROR")
