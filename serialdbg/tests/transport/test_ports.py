from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import serialdbg.transport.ports as ports_mod


@dataclass
class FakePort:
    device: str
    vid: Optional[int] = None
    pid: Optional[int] = None
    manufacturer: Optional[str] = None
    product: Optional[str] = None
    description: Optional[str] = None


def test_autodetect_none_when_no_ports():
    assert ports_mod.autodetect_port(ports=[]) is None


def test_autodetect_prefers_vid_pid():
    ports = [
        FakePort("/dev/ttyUSB0", 0x1A86, 0x7523, description="USB Serial"),
        FakePort("/dev/ttyACM0", 0x0483, 0x5740, description="board"),
    ]
    assert ports_mod.autodetect_port(prefer_vid_pid=[(0x0483, 0x5740)], ports=ports) == "/dev/ttyACM0"


def test_autodetect_by_descriptor_substring():
    ports = [
        FakePort("/dev/ttyS0", description="n/a"),
        FakePort("/dev/ttyUSB0", manufacturer="Silicon Labs", product="CP2102 USB to UART"),
    ]
    assert ports_mod.autodetect_port(ports=ports) == "/dev/ttyUSB0"


def test_autodetect_single_port_fallback():
    assert ports_mod.autodetect_port(ports=[FakePort("COM3", description="Communications Port")]) == "COM3"


def test_autodetect_ambiguous_returns_none():
    ports = [FakePort("/dev/ttyS0", description="n/a"), FakePort("/dev/ttyS1", description="n/a")]
    assert ports_mod.autodetect_port(ports=ports) is None


def test_list_candidates_uses_comports(monkeypatch):
    monkeypatch.setattr(ports_mod.list_ports, "comports", lambda: iter([FakePort("COM9")]))
    assert [p.device for p in ports_mod.list_candidates()] == ["COM9"]


def test_format_candidates():
    text = ports_mod.format_candidates([FakePort("COM1", 0x10C4, 0xEA60, "SiLabs", "CP2102", "UART")])
    assert text.startswith("- COM1 [10C4:EA60]")
    assert ports_mod.format_candidates([]) == "(no serial ports found)"
