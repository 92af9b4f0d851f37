# serialdbg/runtime/rx_worker.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from serialdbg.transport.endpoints import ReadEndpoint

ChunkCallback = Callable[[bytes], None]
# (reason, error) with reason "eof" | "error"
ExitCallback = Callable[[str, Optional[BaseException]], None]


class RxWorker(threading.Thread):
    """
    Thread that continuously drains the read endpoint of one connection.

    It is the only reader of that endpoint. A clean end-of-stream or a read
    failure ends the loop and is reported once through `on_exit`; a stop()
    request ends it silently. Nothing raised inside the loop escapes run().
    """

    def __init__(
        self,
        reader: ReadEndpoint,
        *,
        on_chunk: ChunkCallback,
        on_exit: ExitCallback,
        chunk_size: int = 4096,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(name="serial-rx", daemon=True)
        self._reader = reader
        self._on_chunk = on_chunk
        self._on_exit = on_exit
        self._chunk_size = int(chunk_size)
        self._log = logger or logging.getLogger(__name__)
        self._stop_event = threading.Event()
        self.chunks = 0

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def run(self) -> None:
        reason: Optional[str] = None
        error: Optional[BaseException] = None

        while not self._stop_event.is_set():
            try:
                chunk = self._reader.read(self._chunk_size)
            except Exception as e:
                if self._stop_event.is_set():
                    # read interrupted by cancellation
                    break
                reason, error = "error", e
                break

            if chunk is None:
                reason = "eof"
                break
            if not chunk:
                continue

            self.chunks += 1
            try:
                self._on_chunk(chunk)
            except Exception:
                self._log.exception("RX_CHUNK_HANDLER_ERROR len=%d", len(chunk))

        if reason is None or self._stop_event.is_set():
            self._log.debug("RX_WORKER_STOPPED chunks=%d", self.chunks)
            return

        self._log.info("RX_WORKER_EXIT reason=%s err=%s", reason, error)
        try:
            self._on_exit(reason, error)
        except Exception:
            self._log.exception("RX_EXIT_HANDLER_ERROR reason=%s", reason)

    def stop(self) -> None:
        self._stop_event.set()
