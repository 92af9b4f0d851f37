# serialdbg/model/link_config.py
from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Mapping, Optional

from serialdbg.core.errors import ConfigurationRejectedError

DATA_BITS = (7, 8)
STOP_BITS = (1, 1.5, 2)
PARITIES = ("none", "even", "odd", "mark", "space")
FLOW_CONTROLS = ("none", "hardware", "software")


@dataclass(frozen=True)
class LinkConfig:
    """
    Line settings for one serial connection.

    Attributes:
        port: Device path (COM5, /dev/ttyUSB0) or pyserial URL (loop://).
              None means "auto-detect on connect".
        baud_rate: Positive integer bits/s.
        data_bits: 7 or 8.
        stop_bits: 1, 1.5 or 2.
        parity: none | even | odd | mark | space.
        flow_control: none | hardware (RTS/CTS) | software (XON/XOFF).
    """

    port: Optional[str] = None
    baud_rate: int = 115200
    data_bits: int = 8
    stop_bits: float = 1
    parity: str = "none"
    flow_control: str = "none"

    def validate(self) -> "LinkConfig":
        if isinstance(self.baud_rate, bool) or not isinstance(self.baud_rate, int) or self.baud_rate <= 0:
            raise ConfigurationRejectedError(
                f"Invalid baud rate {self.baud_rate!r}.",
                hint="Baud rate must be a positive integer, e.g. 9600 or 115200.",
                details={"param": "baud_rate", "value": self.baud_rate},
            )
        if self.data_bits not in DATA_BITS:
            raise ConfigurationRejectedError(
                f"Invalid data bits {self.data_bits!r}.",
                hint=f"Valid values: {list(DATA_BITS)}",
                details={"param": "data_bits", "value": self.data_bits},
            )
        if self.stop_bits not in STOP_BITS:
            raise ConfigurationRejectedError(
                f"Invalid stop bits {self.stop_bits!r}.",
                hint=f"Valid values: {list(STOP_BITS)}",
                details={"param": "stop_bits", "value": self.stop_bits},
            )
        if self.parity not in PARITIES:
            raise ConfigurationRejectedError(
                f"Invalid parity '{self.parity}'.",
                hint=f"Valid values: {list(PARITIES)}",
                details={"param": "parity", "value": self.parity},
            )
        if self.flow_control not in FLOW_CONTROLS:
            raise ConfigurationRejectedError(
                f"Invalid flow control '{self.flow_control}'.",
                hint=f"Valid values: {list(FLOW_CONTROLS)}",
                details={"param": "flow_control", "value": self.flow_control},
            )
        return self

    def with_port(self, port: str) -> "LinkConfig":
        return replace(self, port=port)

    @property
    def line_format(self) -> str:
        """Compact notation, e.g. '115200 8N1'."""
        stop = "1.5" if self.stop_bits == 1.5 else str(int(self.stop_bits))
        return f"{self.baud_rate} {self.data_bits}{self.parity[0].upper()}{stop}"

    def as_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "LinkConfig":
        """
        Build from a loose settings mapping (strings allowed, missing keys defaulted).
        Validation is left to validate().
        """
        defaults = cls()

        def _get(key: str, cast, default):
            value = data.get(key)
            if value is None or value == "":
                return default
            try:
                return cast(value)
            except (TypeError, ValueError):
                raise ConfigurationRejectedError(
                    f"Invalid value for '{key}'.",
                    hint=f"Got {value!r}",
                    details={"param": key, "value": value},
                ) from None

        stop = _get("stop_bits", float, defaults.stop_bits)
        if stop in (1.0, 2.0):
            stop = int(stop)

        return cls(
            port=data.get("port") or None,
            baud_rate=_get("baud_rate", int, defaults.baud_rate),
            data_bits=_get("data_bits", int, defaults.data_bits),
            stop_bits=stop,
            parity=_get("parity", lambda v: str(v).lower(), defaults.parity),
            flow_control=_get("flow_control", lambda v: str(v).lower(), defaults.flow_control),
        )
