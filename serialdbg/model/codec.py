# serialdbg/model/codec.py
from __future__ import annotations

import re
from enum import Enum
from typing import Optional

from serialdbg.core.errors import InvalidHexFormatError

_WS = re.compile(r"\s+")
_HEX = re.compile(r"[0-9A-Fa-f]*")

DEFAULT_TERMINATOR = "\r\n"


class DataMode(str, Enum):
    TEXT = "text"
    HEX = "hex"

    @classmethod
    def parse(cls, value: "DataMode | str") -> "DataMode":
        if isinstance(value, DataMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown data mode '{value}' (use text/hex)") from None


def strip_whitespace(text: str) -> str:
    return _WS.sub("", text)


def encode_outbound(text: str, mode: DataMode | str, *, terminator: Optional[str] = None) -> bytes:
    """
    Convert operator input into the bytes to put on the wire.

    text mode: UTF-8, with `terminator` appended when given.
    hex mode:  whitespace is ignored; the rest must be an even number of hex digits.
    """
    mode = DataMode.parse(mode)

    if mode is DataMode.TEXT:
        data = text.encode("utf-8")
        if terminator:
            data += terminator.encode("utf-8")
        return data

    cleaned = strip_whitespace(text)
    if not _HEX.fullmatch(cleaned):
        raise InvalidHexFormatError(
            "Invalid hex format.",
            hint="Use pairs of 0-9/A-F digits, e.g. '41 54 0D 0A'.",
            details={"input": text},
        )
    if len(cleaned) % 2 != 0:
        raise InvalidHexFormatError(
            "Hex input must have an even number of digits.",
            hint="Every byte needs two hex digits.",
            details={"input": text, "digits": len(cleaned)},
        )
    return bytes.fromhex(cleaned)


def decode_inbound(data: bytes, mode: DataMode | str) -> str:
    mode = DataMode.parse(mode)
    if mode is DataMode.TEXT:
        return bytes(data).decode("utf-8", errors="replace")
    return " ".join(f"{b:02X}" for b in bytes(data))


def normalize_hex(text: str) -> str:
    """Uppercase, space-separated pairs; a trailing nibble stays on its own."""
    cleaned = strip_whitespace(text).upper()
    return " ".join(cleaned[i:i + 2] for i in range(0, len(cleaned), 2))


def byte_length(text: str, mode: DataMode | str) -> int:
    mode = DataMode.parse(mode)
    if mode is DataMode.HEX:
        return len(strip_whitespace(text)) // 2
    return len(text)


def has_unpaired_nibble(text: str) -> bool:
    return len(strip_whitespace(text)) % 2 == 1
