# serialdbg/transport/endpoints.py
from __future__ import annotations

import threading
from typing import Optional

from .base import Transport
from .errors import EndpointReleasedError, TransportIOError


class _Endpoint:
    """One half of a transport's byte stream, released independently of the handle."""

    kind = "endpoint"

    def __init__(self, transport: Transport):
        self._transport = transport
        self._released = threading.Event()

    @property
    def released(self) -> bool:
        return self._released.is_set()

    def _require_live(self) -> Transport:
        if self._released.is_set():
            raise EndpointReleasedError(f"{self.kind} endpoint already released")
        return self._transport

    def release(self) -> None:
        if self._released.is_set():
            raise EndpointReleasedError(f"{self.kind} endpoint already released")
        self._released.set()
        self._on_release()

    def _on_release(self) -> None:
        return None


class ReadEndpoint(_Endpoint):
    """Inbound half. Only the receive worker reads from it."""

    kind = "read"

    def read(self, n: int) -> Optional[bytes]:
        return self._require_live().read(n)

    def _on_release(self) -> None:
        # wake a reader blocked in the driver
        self._transport.cancel_read()


class WriteEndpoint(_Endpoint):
    """
    Outbound half.

    write() keeps writing until every byte is accepted; a driver that accepts
    zero bytes is treated as an I/O failure instead of spinning.
    """

    kind = "write"

    def write(self, data: bytes) -> int:
        transport = self._require_live()
        view = memoryview(bytes(data))
        total = 0
        while total < len(view):
            n = transport.write(view[total:].tobytes())
            if n <= 0:
                raise TransportIOError(f"short write: {total}/{len(view)} bytes accepted")
            total += n
        transport.flush()
        return total

    def _on_release(self) -> None:
        try:
            self._transport.flush()
        except TransportIOError:
            pass
