# serialdbg/transport/ports.py
from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from serial.tools import list_ports


def list_candidates():
    """Return a list of pyserial port info objects (for error messages/UI)."""
    return list(list_ports.comports())


def describe_port(p) -> str:
    if p.vid is not None and p.pid is not None:
        return (
            f"- {p.device} "
            f"[{p.vid:04X}:{p.pid:04X}] "
            f"{(p.manufacturer or '')} {(p.product or '')} {(p.description or '')}"
        ).strip()
    return f"- {p.device} {(p.description or '')}".strip()


def format_candidates(ports) -> str:
    return "\n".join(describe_port(p) for p in ports) or "(no serial ports found)"


def autodetect_port(
    prefer_vid_pid: Sequence[Tuple[int, int]] = (),
    prefer_substrings: Sequence[str] = ("USB", "UART", "CDC", "Serial", "CH340", "CP210", "FTDI"),
    ports: Optional[List] = None,
) -> Optional[str]:
    """
    Return a likely USB-serial device path, or None if not confidently found.
    Strategy: (1) VID:PID exact match, (2) descriptor substring match,
    (3) the only port present. No other fallback.
    """
    ports = list_candidates() if ports is None else list(ports)
    if not ports:
        return None

    # exact VID:PID
    for p in ports:
        if p.vid is not None and p.pid is not None:
            for vid, pid in prefer_vid_pid:
                if p.vid == vid and p.pid == pid:
                    return p.device

    # descriptor/manufacturer/product substrings
    for p in ports:
        desc = " ".join(filter(None, [p.manufacturer, p.product, p.description]))
        if any(s.lower() in desc.lower() for s in prefer_substrings):
            return p.device

    if len(ports) == 1:
        return ports[0].device

    return None
