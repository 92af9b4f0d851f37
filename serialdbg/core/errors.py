# serialdbg/core/errors.py
from __future__ import annotations


class SerialDebugError(Exception):
    """
    Base class for all expected operational errors in the serial debugger.
    """

    #: Stable machine-readable identifier (for CLI exit mapping, log entries, etc.)
    code: str = "unknown"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Host / device selection errors (nothing opened yet)
# ---------------------------------------------------------------------------

class UnsupportedPlatformError(SerialDebugError):
    """
    Serial capability is not available on this host.

    Examples:
      - pyserial has no backend for the running OS
    """
    code = "unsupported_platform"


class NoPortSelectedError(SerialDebugError):
    """
    No device was chosen and none could be auto-detected.
    """
    code = "no_port_selected"


class PermissionDeniedError(SerialDebugError):
    """
    The OS refused access to the selected device.

    Examples:
      - user not in the dialout/uucp group
      - device locked exclusively by another process
    """
    code = "permission_denied"


class ConfigurationRejectedError(SerialDebugError):
    """
    The requested line settings are invalid or were refused by the device.

    Examples:
      - data bits outside {7, 8}
      - unknown parity / flow control name
      - baud rate the driver cannot program
    """
    code = "configuration_rejected"


# ---------------------------------------------------------------------------
# Session lifecycle errors
# ---------------------------------------------------------------------------

class AlreadyConnectedError(SerialDebugError):
    """
    connect() was called while a connection is being opened or is live.
    """
    code = "already_connected"


class NotConnectedError(SerialDebugError):
    """
    An operation that needs a live connection was called without one.
    """
    code = "not_connected"


# ---------------------------------------------------------------------------
# Data / transport errors
# ---------------------------------------------------------------------------

class InvalidHexFormatError(SerialDebugError):
    """
    Outbound hex input contains non-hex characters or an odd number of digits.
    """
    code = "invalid_hex_format"


class DeviceIOError(SerialDebugError):
    """
    Read or write failure from the underlying transport.

    Examples:
      - USB adapter unplugged mid-read
      - write timeout
      - device busy when opening
    """
    code = "device_io_error"


class ExportError(SerialDebugError):
    """
    The export sink could not store the exported log.
    """
    code = "export_failed"
