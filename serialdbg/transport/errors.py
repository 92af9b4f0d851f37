# serialdbg/transport/errors.py
from __future__ import annotations

class TransportError(Exception):
    """Base class for transport-layer failures."""

class TransportOpenError(TransportError):
    pass

class TransportPermissionError(TransportOpenError):
    """The OS refused access to the device."""

class TransportConfigError(TransportOpenError):
    """The driver refused the requested line settings."""

class TransportIOError(TransportError):
    pass

class EndpointReleasedError(TransportError):
    """An endpoint was used or released after it had already been released."""
