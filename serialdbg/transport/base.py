from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional


class Transport(ABC):
    """
    Abstract byte transport (UART, USB CDC, loopback URL, ...).

    Contract:
      - open()/close() manage the underlying device handle.
      - read(n) returns 0..n bytes. It returns b"" when the read timed out with
        no data, and None once the producer has closed the stream cleanly.
      - write(data) returns the number of bytes accepted, which may be fewer
        than len(data).
      - flush() forces pending output to be transmitted.
      - cancel_read() unblocks a read() in progress from another thread.
    """

    @abstractmethod
    def open(self) -> None: ...

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def read(self, n: int) -> Optional[bytes]: ...

    @abstractmethod
    def write(self, data: bytes) -> int: ...

    @abstractmethod
    def flush(self) -> None: ...

    def cancel_read(self) -> None:
        return None

    @property
    def name(self) -> str:
        return type(self).__name__

    def __enter__(self) -> "Transport":
        self.open()
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        self.close()
