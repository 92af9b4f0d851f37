# serialdbg/transport/uart.py
from __future__ import annotations

import errno
import os
import sys
from typing import Optional

import serial
from serial import SerialException

from serialdbg.core.errors import UnsupportedPlatformError
from serialdbg.model.link_config import LinkConfig

from .base import Transport
from .errors import (
    TransportConfigError,
    TransportIOError,
    TransportOpenError,
    TransportPermissionError,
)

# pyserial only ships native backends for these
SUPPORTED_OS_NAMES = ("nt", "posix")

BYTESIZES = {7: serial.SEVENBITS, 8: serial.EIGHTBITS}
STOPBITS = {
    1: serial.STOPBITS_ONE,
    1.5: serial.STOPBITS_ONE_POINT_FIVE,
    2: serial.STOPBITS_TWO,
}
PARITIES = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
    "mark": serial.PARITY_MARK,
    "space": serial.PARITY_SPACE,
}


def ensure_platform_supported() -> None:
    if os.name not in SUPPORTED_OS_NAMES:
        raise UnsupportedPlatformError(
            f"Serial ports are not supported on this platform ({os.name}).",
            hint="Run on Windows, Linux or macOS.",
            details={"os_name": os.name, "platform": sys.platform},
        )


def _is_permission_error(e: BaseException) -> bool:
    if isinstance(e, PermissionError):
        return True
    if getattr(e, "errno", None) in (errno.EACCES, errno.EPERM):
        return True
    msg = str(e).lower()
    return "permission" in msg or "access is denied" in msg


class UARTTransport(Transport):
    """
    UART transport implemented via pyserial.

    The port may be a device path or any pyserial URL (loop://, socket://, rfc2217://).
    read(n) waits up to `timeout` for the first byte, then returns whatever else is
    already buffered (at most n bytes), so chunk boundaries follow the driver.
    """

    def __init__(
        self,
        port: str,
        baudrate: int = 115200,
        *,
        bytesize: int = 8,
        stopbits: float = 1,
        parity: str = "none",
        rtscts: bool = False,
        xonxoff: bool = False,
        timeout: float = 0.05,
        exclusive: Optional[bool] = None,
    ):
        self.port = port
        self.baudrate = baudrate
        self.bytesize = bytesize
        self.stopbits = stopbits
        self.parity = parity
        self.rtscts = rtscts
        self.xonxoff = xonxoff
        self.timeout = timeout
        # asks the OS for exclusive access; Windows doesn't support the flag
        self.exclusive = (sys.platform != "win32") if exclusive is None else exclusive
        self.ser: Optional[serial.SerialBase] = None

    @classmethod
    def from_config(cls, config: LinkConfig, *, timeout: float = 0.05) -> "UARTTransport":
        if not config.port:
            raise TransportOpenError("no port given")
        return cls(
            config.port,
            baudrate=config.baud_rate,
            bytesize=config.data_bits,
            stopbits=config.stop_bits,
            parity=config.parity,
            rtscts=config.flow_control == "hardware",
            xonxoff=config.flow_control == "software",
            timeout=timeout,
        )

    @property
    def name(self) -> str:
        return self.port

    def open(self) -> None:
        ensure_platform_supported()
        try:
            kwargs = dict(
                baudrate=self.baudrate,
                bytesize=BYTESIZES[self.bytesize],
                stopbits=STOPBITS[self.stopbits],
                parity=PARITIES[self.parity],
                rtscts=self.rtscts,
                xonxoff=self.xonxoff,
                timeout=self.timeout,
                write_timeout=max(self.timeout, 1.0),
            )
            if self.exclusive:
                kwargs["exclusive"] = True
            self.ser = serial.serial_for_url(self.port, **kwargs)
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()
        except (KeyError, ValueError) as e:
            self.ser = None
            raise TransportConfigError(f"settings rejected for {self.port!r}: {e}") from None
        except (SerialException, OSError) as e:
            self.ser = None
            if _is_permission_error(e):
                raise TransportPermissionError(f"access to {self.port!r} denied: {e}") from None
            raise TransportOpenError(f"could not open {self.port!r}: {e}") from None

    def close(self) -> None:
        if self.ser is not None:
            try:
                self.ser.close()
            finally:
                self.ser = None

    def is_open(self) -> bool:
        return self.ser is not None and self.ser.is_open

    def read(self, n: int) -> bytes:
        ser = self.ser
        if ser is None:
            raise TransportIOError("read while transport not open")

        try:
            first = ser.read(1)
            if not first:
                # timeout reached with nothing pending
                return b""
            pending = min(ser.in_waiting, max(0, n - 1))
            return first + ser.read(pending) if pending else first
        except (SerialException, OSError) as e:
            raise TransportIOError(f"UART read failed: {e}") from None

    def write(self, data: bytes) -> int:
        ser = self.ser
        if ser is None:
            raise TransportIOError("write while transport not open")

        try:
            written = ser.write(data)
            return len(data) if written is None else int(written)
        except (SerialException, OSError) as e:
            raise TransportIOError(f"UART write failed: {e}") from None

    def flush(self) -> None:
        ser = self.ser
        if ser is None:
            raise TransportIOError("flush while transport not open")

        try:
            ser.flush()
        except (SerialException, OSError) as e:
            raise TransportIOError(f"UART flush failed: {e}") from None

    def cancel_read(self) -> None:
        ser = self.ser
        cancel = getattr(ser, "cancel_read", None)
        if cancel is None:
            return
        try:
            cancel()
        except (SerialException, OSError):
            pass
