# serialdbg/runtime/port_monitor.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Protocol, Set

from serialdbg.transport.ports import list_candidates


@dataclass(frozen=True)
class DeviceEvent:
    kind: str    # "connect" | "disconnect"
    device: str


DeviceEventCallback = Callable[[DeviceEvent], None]


class DeviceEventSource(Protocol):
    def on_device_event(self, cb: DeviceEventCallback) -> Callable[[], None]: ...


def _default_scan() -> Set[str]:
    return {p.device for p in list_candidates()}


class PortMonitor:
    """
    Polls the host's serial port list and reports devices appearing or vanishing.
    """

    def __init__(
        self,
        *,
        interval_s: float = 0.5,
        scan: Callable[[], Iterable[str]] = _default_scan,
        logger: Optional[logging.Logger] = None,
    ):
        self._interval_s = float(interval_s)
        self._scan = scan
        self._log = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._cbs: List[DeviceEventCallback] = []
        self._known: Optional[Set[str]] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def on_device_event(self, cb: DeviceEventCallback) -> Callable[[], None]:
        with self._lock:
            self._cbs.append(cb)

        def _unsubscribe() -> None:
            with self._lock:
                if cb in self._cbs:
                    self._cbs.remove(cb)

        return _unsubscribe

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._known = None
        self._thread = threading.Thread(target=self._run, name="port-monitor", daemon=True)
        self._thread.start()
        self._log.info("PORT_MONITOR_STARTED interval_s=%.2f", self._interval_s)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._thread = None

    def poll(self) -> List[DeviceEvent]:
        """Scan once and emit events for the difference since the last scan."""
        current = set(self._scan())
        previous = self._known
        self._known = current
        if previous is None:
            return []

        events = [DeviceEvent("disconnect", d) for d in sorted(previous - current)]
        events += [DeviceEvent("connect", d) for d in sorted(current - previous)]
        for ev in events:
            self.emit(ev)
        return events

    def emit(self, event: DeviceEvent) -> None:
        with self._lock:
            cbs = list(self._cbs)
        self._log.info("DEVICE_EVENT kind=%s device=%s", event.kind, event.device)
        for cb in cbs:
            try:
                cb(event)
            except Exception:
                self._log.exception("DEVICE_EVENT_CALLBACK_ERROR")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception:
                self._log.exception("PORT_MONITOR_SCAN_FAILED")
            self._stop_event.wait(self._interval_s)
