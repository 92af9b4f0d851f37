from __future__ import annotations

import queue
import threading
import re
import time

import pytest

from serialdbg.core.errors import (
    AlreadyConnectedError,
    ConfigurationRejectedError,
    DeviceIOError,
    ExportError,
    InvalidHexFormatError,
    NoPortSelectedError,
    NotConnectedError,
    PermissionDeniedError,
)
from serialdbg.model.codec import DataMode
from serialdbg.model.link_config import LinkConfig
from serialdbg.runtime.activity_log import LogCategory
from serialdbg.runtime.auto_send import OutboundFrame
from serialdbg.runtime.port_monitor import DeviceEvent
import serialdbg.runtime.session as session_mod
from serialdbg.runtime.session import SerialLinkSession
from serialdbg.runtime.state import SessionOptions, SessionState
from serialdbg.transport.base import Transport
from serialdbg.transport.errors import (
    TransportIOError,
    TransportOpenError,
    TransportPermissionError,
)


class FakeTransport(Transport):
    def __init__(self, port: str = "FAKE0"):
        self.port = port
        self.opened = False
        self.closed = False
        self.events = []
        self.written = bytearray()
        self._rx = queue.Queue()

        self.accept = None
        self.raise_on_open = None
        self.raise_on_write = None

    def feed(self, item) -> None:
        """Queue bytes, None (end of stream) or an exception for the reader."""
        self._rx.put(item)

    def open(self):
        if self.raise_on_open is not None:
            raise self.raise_on_open
        self.opened = True

    def close(self):
        self.events.append("close")
        self.closed = True

    def read(self, n):
        try:
            item = self._rx.get(timeout=0.01)
        except queue.Empty:
            return b""
        if isinstance(item, BaseException):
            raise item
        return item

    def write(self, data):
        if self.raise_on_write is not None:
            raise self.raise_on_write
        n = len(data) if self.accept is None else min(self.accept, len(data))
        self.written += data[:n]
        return n

    def flush(self):
        self.events.append("flush")

    def cancel_read(self):
        self.events.append("cancel_read")


class FakeMonitor:
    def __init__(self):
        self.cbs = []

    def on_device_event(self, cb):
        self.cbs.append(cb)
        return lambda: self.cbs.remove(cb)

    def fire(self, kind, device):
        for cb in list(self.cbs):
            cb(DeviceEvent(kind, device))


class ListSink:
    def __init__(self, error=None):
        self.blobs = {}
        self.error = error

    def export_blob(self, filename, content):
        if self.error is not None:
            raise self.error
        self.blobs[filename] = content


def wait_until(pred, timeout: float = 1.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if pred():
            return True
        time.sleep(0.005)
    return pred()


def make_session(transport=None, **kw):
    transport = transport or FakeTransport()
    created = []

    def factory(config):
        created.append(config)
        return transport

    s = SerialLinkSession(transport_factory=factory, **kw)
    return s, transport, created


def texts(session, category=None):
    return [e.text for e in session.log.entries() if category is None or e.category is category]


def test_connect_logs_and_resets_stats():
    s, t, created = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        assert s.state is SessionState.CONNECTED
        assert t.opened
        assert created[0].port == "FAKE0"
        assert (s.stats.bytes_received, s.stats.bytes_sent) == (0, 0)
        assert texts(s) == ["Connected to FAKE0 (115200 8N1)"]
        st = s.status()
        assert st.connected and st.port == "FAKE0" and st.line_format == "115200 8N1"
    finally:
        s.disconnect()


def test_send_text_with_newline():
    s, t, _ = make_session(options=SessionOptions(append_newline=True))
    s.connect(LinkConfig(port="FAKE0"))
    try:
        assert s.send("AT", "text") == 4
        assert bytes(t.written) == bytes.fromhex("41540D0A")
        assert s.stats.bytes_sent == 4
        assert texts(s, LogCategory.SYSTEM)[-1] == ">> AT"
    finally:
        s.disconnect()


def test_send_hex_and_partial_writes():
    t = FakeTransport()
    t.accept = 1
    s, _, _ = make_session(t)
    s.connect(LinkConfig(port="FAKE0"))
    try:
        assert s.send("DE AD be ef", DataMode.HEX) == 4
        assert bytes(t.written) == b"\xde\xad\xbe\xef"
    finally:
        s.disconnect()


def test_send_empty_is_noop():
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        before = len(s.log)
        assert s.send("   ") == 0
        assert t.written == b""
        assert len(s.log) == before
    finally:
        s.disconnect()


def test_invalid_hex_writes_nothing_and_logs_one_error():
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        with pytest.raises(InvalidHexFormatError):
            s.send("41 5", DataMode.HEX)
        assert t.written == b""
        assert len(texts(s, LogCategory.ERROR)) == 1
        assert s.stats.bytes_sent == 0
    finally:
        s.disconnect()


def test_send_when_disconnected():
    s, _, _ = make_session()
    with pytest.raises(NotConnectedError):
        s.send("AT")
    assert len(texts(s, LogCategory.ERROR)) == 1


def test_write_failure_reports_and_keeps_connection():
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        t.raise_on_write = TransportIOError("write timeout")
        with pytest.raises(DeviceIOError):
            s.send("AT")
        assert s.state is SessionState.CONNECTED
        assert texts(s, LogCategory.ERROR) == ["Write failed: write timeout"]
    finally:
        s.disconnect()


def test_receive_text_and_hex():
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        t.feed(b"OK\r\n")
        assert wait_until(lambda: texts(s, LogCategory.DATA) == ["OK\r\n"])

        s.update_options(receive_mode="hex")
        t.feed(b"\x01\xff")
        assert wait_until(lambda: texts(s, LogCategory.DATA)[-1:] == ["01 FF"])
        assert s.stats.bytes_received == 6
    finally:
        s.disconnect()


def test_timestamps_prefix_entries():
    s, t, _ = make_session(options=SessionOptions(show_timestamp=True))
    s.connect(LinkConfig(port="FAKE0"))
    try:
        t.feed(b"x")
        assert wait_until(lambda: texts(s, LogCategory.DATA) == ["x"])
        rendered = [e.render() for e in s.log.entries() if e.category is LogCategory.DATA]
        assert re.fullmatch(r"\[\d\d:\d\d:\d\d\.\d{3}\] x", rendered[0])
    finally:
        s.disconnect()


def test_paused_receive_counts_but_holds_until_resume():
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        assert s.toggle_pause() is True
        t.feed(bytes([0x41, 0x42]))
        assert wait_until(lambda: s.stats.bytes_received == 2)
        assert texts(s, LogCategory.DATA) == []
        assert s.status().held_bytes == 2

        assert s.toggle_pause() is False
        assert texts(s, LogCategory.DATA) == ["AB"]
        assert s.status().held_bytes == 0
    finally:
        s.disconnect()


def test_held_bytes_are_bounded():
    s, t, _ = make_session(options=SessionOptions(max_held_bytes=4))
    s.connect(LinkConfig(port="FAKE0"))
    try:
        s.toggle_pause()
        t.feed(b"123456")
        assert wait_until(lambda: s.stats.bytes_received == 6)
        s.toggle_pause()
        assert texts(s, LogCategory.DATA) == ["3456"]
    finally:
        s.disconnect()


def test_clear_receive_keeps_counters():
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        t.feed(b"abc")
        assert wait_until(lambda: texts(s, LogCategory.DATA) == ["abc"])
        s.clear_receive()
        assert s.log.entries() == []
        assert s.stats.bytes_received == 3
    finally:
        s.disconnect()


def test_disconnect_is_idempotent_and_releases_in_order():
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    s.disconnect()
    s.disconnect()

    assert s.state is SessionState.DISCONNECTED
    assert t.closed
    assert t.events[-3:] == ["flush", "cancel_read", "close"]
    assert t.events.count("close") == 1
    assert texts(s, LogCategory.SYSTEM)[-1] == "Disconnected (FAKE0)"
    assert s.stats.live is False


def test_connect_twice_is_rejected():
    s, _, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        with pytest.raises(AlreadyConnectedError):
            s.connect(LinkConfig(port="FAKE0"))
        assert s.state is SessionState.CONNECTED
        assert len(texts(s, LogCategory.ERROR)) == 1
    finally:
        s.disconnect()


def test_invalid_config_never_reaches_transport():
    s, t, created = make_session()
    with pytest.raises(ConfigurationRejectedError):
        s.connect(LinkConfig(port="FAKE0", data_bits=9))
    assert created == []
    assert s.state is SessionState.DISCONNECTED
    assert len(texts(s, LogCategory.ERROR)) == 1


def test_no_port_and_no_autodetect(monkeypatch):
    monkeypatch.setattr(session_mod, "list_candidates", lambda: [])
    s, _, created = make_session(port_resolver=lambda: None)
    with pytest.raises(NoPortSelectedError) as ei:
        s.connect(LinkConfig())
    assert created == []
    assert "(no serial ports found)" in ei.value.hint


def test_autodetected_port_is_used():
    s, _, created = make_session(port_resolver=lambda: "/dev/ttyUSB0")
    s.connect(LinkConfig())
    try:
        assert created[0].port == "/dev/ttyUSB0"
        assert s.config.port == "/dev/ttyUSB0"
    finally:
        s.disconnect()


def test_permission_denied_maps_and_closes():
    t = FakeTransport()
    t.raise_on_open = TransportPermissionError("access to '/dev/ttyACM0' denied")
    s, _, _ = make_session(t)

    with pytest.raises(PermissionDeniedError):
        s.connect(LinkConfig(port="/dev/ttyACM0"))
    assert t.closed
    assert s.state is SessionState.DISCONNECTED
    assert s.status().last_error == "Permission denied for /dev/ttyACM0."


def test_open_failure_maps_to_device_io_error():
    t = FakeTransport()
    t.raise_on_open = TransportOpenError("could not open 'COM9'")
    s, _, _ = make_session(t)

    with pytest.raises(DeviceIOError):
        s.connect(LinkConfig(port="COM9"))
    assert s.state is SessionState.DISCONNECTED
    # a later attempt can still succeed
    t.raise_on_open = None
    s.connect(LinkConfig(port="COM9"))
    s.disconnect()


def test_disconnect_during_connect_cancels():
    t = FakeTransport()
    holder = {}

    def factory(config):
        holder["session"].disconnect()
        return t

    s = SerialLinkSession(transport_factory=factory)
    holder["session"] = s

    with pytest.raises(NotConnectedError):
        s.connect(LinkConfig(port="FAKE0"))
    assert s.state is SessionState.DISCONNECTED
    assert t.closed


def test_read_error_tears_down_with_error_entry():
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    t.feed(TransportIOError("device reports readiness to read but returned no data"))

    assert wait_until(lambda: s.state is SessionState.DISCONNECTED)
    errors = texts(s, LogCategory.ERROR)
    assert len(errors) == 1
    assert errors[0].startswith("Read failed, link lost:")
    assert t.closed
    assert s.status().last_error.startswith("Read failed")


def test_end_of_stream_tears_down_quietly():
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    t.feed(None)

    assert wait_until(lambda: s.state is SessionState.DISCONNECTED)
    assert texts(s, LogCategory.ERROR) == []
    assert texts(s, LogCategory.SYSTEM)[-1] == "Device closed the stream (FAKE0)"


def test_device_removal_disconnects_and_stops_auto_send():
    mon = FakeMonitor()
    s, t, _ = make_session(device_events=mon)
    s.connect(LinkConfig(port="FAKE0"))
    s.start_auto_send(10_000, lambda: OutboundFrame("PING"))
    assert s.auto_send.running

    mon.fire("disconnect", "OTHER")
    assert s.state is SessionState.CONNECTED

    before = len(s.log)
    mon.fire("disconnect", "FAKE0")

    assert s.state is SessionState.DISCONNECTED
    assert s.auto_send.running is False
    assert len(s.log) == before + 1
    assert s.log.entries()[-1].text == "Device removed (FAKE0)"
    assert t.closed

    s.close()
    assert mon.cbs == []


def test_auto_send_writes_payload_repeatedly():
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        s.start_auto_send(30, lambda: OutboundFrame("AA55", DataMode.HEX))
        assert wait_until(lambda: len(t.written) >= 4)
        s.stop_auto_send()
        assert bytes(t.written[:4]) == b"\xaa\x55\xaa\x55"
        assert "Auto-send stopped" in texts(s, LogCategory.SYSTEM)
    finally:
        s.disconnect()


def test_auto_send_needs_connection_and_valid_interval():
    s, _, _ = make_session()
    with pytest.raises(NotConnectedError):
        s.start_auto_send(100, lambda: OutboundFrame("x"))

    s.connect(LinkConfig(port="FAKE0"))
    try:
        with pytest.raises(ConfigurationRejectedError):
            s.start_auto_send(0, lambda: OutboundFrame("x"))
    finally:
        s.disconnect()


def test_history_is_most_recent_first_without_duplicates():
    s, _, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        for cmd in ("AT", "AT+GMR", "AT"):
            s.send(cmd)
        assert s.history == ["AT", "AT+GMR"]
        for i in range(60):
            s.send(f"cmd{i}")
        assert len(s.history) == 50
        assert s.history[0] == "cmd59"
    finally:
        s.disconnect()


def test_export_log():
    s, _, _ = make_session()
    sink = ListSink()
    assert s.export_log(sink) is None

    s.connect(LinkConfig(port="FAKE0"))
    s.disconnect()
    name = s.export_log(sink, prefix="serial_data")

    assert re.fullmatch(r"serial_data_\d{4}-\d\d-\d\dT\d\d-\d\d-\d\d\.txt", name)
    assert sink.blobs[name] == "Connected to FAKE0 (115200 8N1)\nDisconnected (FAKE0)\n"


def test_export_failure_is_reported():
    s, _, _ = make_session()
    s.log.append(LogCategory.DATA, "x")
    with pytest.raises(ExportError):
        s.export_log(ListSink(error=OSError("disk full")))
    assert len(texts(s, LogCategory.ERROR)) == 1


def test_loopback_echo_end_to_end():
    s = SerialLinkSession(port_resolver=lambda: None)
    s.connect(LinkConfig(port="loop://"))
    try:
        s.send("hello")
        assert wait_until(lambda: "".join(texts(s, LogCategory.DATA)) == "hello")
        assert s.stats.bytes_sent == 5
        assert wait_until(lambda: s.stats.bytes_received == 5)
    finally:
        s.close()
    assert s.state is SessionState.DISCONNECTED


def test_unexpected_open_error_returns_to_disconnected():
    t = FakeTransport()
    t.raise_on_open = OSError("device busy")
    s, _, _ = make_session(t)

    with pytest.raises(DeviceIOError):
        s.connect(LinkConfig(port="FAKE0"))
    assert s.state is SessionState.DISCONNECTED
    assert len(texts(s, LogCategory.ERROR)) == 1
    assert t.closed

    t.raise_on_open = None
    s.connect(LinkConfig(port="FAKE0"))
    assert s.state is SessionState.CONNECTED
    s.disconnect()


def test_unexpected_factory_error_returns_to_disconnected():
    def factory(config):
        raise RuntimeError("driver missing")

    s = SerialLinkSession(transport_factory=factory)
    with pytest.raises(DeviceIOError):
        s.connect(LinkConfig(port="FAKE0"))
    assert s.state is SessionState.DISCONNECTED
    assert len(texts(s, LogCategory.ERROR)) == 1


def test_unknown_send_mode_is_reported():
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        with pytest.raises(ConfigurationRejectedError):
            s.send("AT", mode="bin")
        assert t.written == b""
        assert len(texts(s, LogCategory.ERROR)) == 1
    finally:
        s.disconnect()


def test_resume_delivers_held_bytes_before_newer_chunks(monkeypatch):
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        s.toggle_pause()
        t.feed(b"OLD")
        assert wait_until(lambda: s.stats.bytes_received == 3)

        original = s._append_data

        def slow_append(data):
            if data == b"OLD":
                # a newer chunk arrives while the held bytes are being delivered
                t.feed(b"NEW")
                wait_until(lambda: s.stats.bytes_received == 6)
                time.sleep(0.02)
            original(data)

        monkeypatch.setattr(s, "_append_data", slow_append)
        s.toggle_pause()

        assert wait_until(lambda: len(texts(s, LogCategory.DATA)) == 2)
        assert texts(s, LogCategory.DATA) == ["OLD", "NEW"]
    finally:
        s.disconnect()


def test_concurrent_sends_do_not_interleave():
    t = FakeTransport()
    t.accept = 1
    s, _, _ = make_session(t)
    s.connect(LinkConfig(port="FAKE0"))
    try:
        payloads = [c * 16 for c in "ABCDEFGH"]
        threads = [threading.Thread(target=s.send, args=(p,)) for p in payloads]
        for th in threads:
            th.start()
        for th in threads:
            th.join(timeout=2.0)

        data = bytes(t.written).decode("ascii")
        pieces = [data[i:i + 16] for i in range(0, len(data), 16)]
        assert sorted(pieces) == payloads
        assert s.stats.bytes_sent == 16 * len(payloads)
        assert sorted(s.history) == payloads
    finally:
        s.disconnect()


def test_utf8_character_split_across_reads():
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        t.feed(b"caf\xc3")
        t.feed(b"\xa9")
        assert wait_until(lambda: "".join(texts(s, LogCategory.DATA)) == "café")
        assert "�" not in "".join(texts(s, LogCategory.DATA))
    finally:
        s.disconnect()


def test_receive_mode_change_drops_partial_character():
    s, t, _ = make_session()
    s.connect(LinkConfig(port="FAKE0"))
    try:
        t.feed(b"\xc3")
        assert wait_until(lambda: s.stats.bytes_received == 1)
        s.update_options(receive_mode=DataMode.HEX)
        s.update_options(receive_mode=DataMode.TEXT)
        t.feed(b"A")
        assert wait_until(lambda: texts(s, LogCategory.DATA) == ["A"])
    finally:
        s.disconnect()
