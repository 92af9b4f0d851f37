# serialdbg/runtime/session.py
from __future__ import annotations

import codecs
import logging
import threading
from dataclasses import replace
from typing import Callable, List, Optional

from serialdbg.core.errors import (
    AlreadyConnectedError,
    ConfigurationRejectedError,
    DeviceIOError,
    ExportError,
    InvalidHexFormatError,
    NoPortSelectedError,
    NotConnectedError,
    PermissionDeniedError,
    SerialDebugError,
)
from serialdbg.interfaces.export_sink import ExportSink, export_filename
from serialdbg.model.codec import DataMode, decode_inbound, encode_outbound
from serialdbg.model.link_config import LinkConfig
from serialdbg.runtime.activity_log import ActivityLog, EntryCallback, LogCategory
from serialdbg.runtime.auto_send import AutoSendScheduler, FrameProducer, OutboundFrame
from serialdbg.runtime.port_monitor import DeviceEvent, DeviceEventSource
from serialdbg.runtime.rx_worker import RxWorker
from serialdbg.runtime.state import SessionOptions, SessionState, SessionStatus
from serialdbg.runtime.statistics import Statistics
from serialdbg.transport.base import Transport
from serialdbg.transport.endpoints import ReadEndpoint, WriteEndpoint
from serialdbg.transport.errors import (
    EndpointReleasedError,
    TransportConfigError,
    TransportError,
    TransportOpenError,
    TransportPermissionError,
)
from serialdbg.transport.ports import autodetect_port, format_candidates, list_candidates
from serialdbg.transport.uart import UARTTransport

TransportFactory = Callable[[LinkConfig], Transport]
PortResolver = Callable[[], Optional[str]]

SEND_HISTORY_MAX = 50
OUTPUT_MARKER = ">> "


class SerialLinkSession:
    """
    Owns one serial connection at a time: its device handle, the endpoint
    pair, the receive worker and the auto-send timer.

    Every failure reported to a caller also lands in the activity log as a
    single `error` entry. Link loss detected by the receive worker or by a
    device-removal event goes through the same teardown as disconnect().
    """

    def __init__(
        self,
        *,
        options: Optional[SessionOptions] = None,
        transport_factory: Optional[TransportFactory] = None,
        port_resolver: Optional[PortResolver] = None,
        device_events: Optional[DeviceEventSource] = None,
        activity_log: Optional[ActivityLog] = None,
        statistics: Optional[Statistics] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._options = options or SessionOptions()
        self._transport_factory = transport_factory or UARTTransport.from_config
        self._resolve_port = port_resolver or autodetect_port
        self._log = logger or logging.getLogger(__name__)

        self.log = activity_log or ActivityLog(self._options.max_log_entries, logger=self._log)
        self.stats = statistics or Statistics()
        self.auto_send = AutoSendScheduler(
            self._send_frame,
            is_connected=lambda: self.state is SessionState.CONNECTED,
            logger=self._log,
        )

        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        # orders log delivery between the rx worker and pause/resume
        self._deliver_lock = threading.RLock()

        self._state = SessionState.DISCONNECTED
        self._config: Optional[LinkConfig] = None
        self._transport: Optional[Transport] = None
        self._reader: Optional[ReadEndpoint] = None
        self._writer: Optional[WriteEndpoint] = None
        self._rx: Optional[RxWorker] = None
        self._connect_cancelled = False

        self._paused = False
        self._held = bytearray()
        self._held_dropped = 0
        self._text_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        self._history: List[str] = []
        self._last_error: Optional[str] = None

        self._unsubscribe_device: Optional[Callable[[], None]] = None
        if device_events is not None:
            self._unsubscribe_device = device_events.on_device_event(self._on_device_event)

    # ---------------- properties ----------------
    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    @property
    def config(self) -> Optional[LinkConfig]:
        with self._lock:
            return self._config

    @property
    def options(self) -> SessionOptions:
        with self._lock:
            return self._options

    @property
    def receive_paused(self) -> bool:
        with self._lock:
            return self._paused

    @property
    def history(self) -> List[str]:
        with self._lock:
            return list(self._history)

    def update_options(self, **changes) -> SessionOptions:
        if "send_mode" in changes:
            changes["send_mode"] = DataMode.parse(changes["send_mode"])
        if "receive_mode" in changes:
            changes["receive_mode"] = DataMode.parse(changes["receive_mode"])
        with self._deliver_lock:
            with self._lock:
                previous = self._options.receive_mode
                self._options = replace(self._options, **changes)
                options = self._options
            if options.receive_mode is not previous:
                self._text_decoder.reset()
        return options

    def subscribe_entries(self, cb: EntryCallback) -> Callable[[], None]:
        return self.log.subscribe(cb)

    # ---------------- lifecycle ----------------
    def connect(self, config: LinkConfig) -> None:
        with self._lock:
            if self._state is not SessionState.DISCONNECTED:
                err = AlreadyConnectedError(
                    "A connection is already open or being opened.",
                    hint="Disconnect first.",
                    details={"state": self._state.value},
                )
                self._report(err)
                raise err
            self._state = SessionState.CONNECTING
            self._connect_cancelled = False

        try:
            config = self._resolve_config(config)
            transport = self._open_transport(config)
        except SerialDebugError as e:
            with self._lock:
                self._state = SessionState.DISCONNECTED
            self._report(e)
            raise
        except Exception as e:
            self._log.exception("CONNECT_UNEXPECTED port=%s", config.port)
            err = DeviceIOError(
                f"Could not connect to {config.port or 'an auto-detected port'}.",
                hint=repr(e),
                details={"port": config.port},
            )
            with self._lock:
                self._state = SessionState.DISCONNECTED
            self._report(err)
            raise err from e

        reader = ReadEndpoint(transport)
        writer = WriteEndpoint(transport)
        rx = RxWorker(
            reader,
            on_chunk=self._on_chunk,
            on_exit=self._on_rx_exit,
            chunk_size=self._options.read_chunk_size,
            logger=self._log,
        )

        with self._lock:
            cancelled = self._connect_cancelled
            if not cancelled:
                self._transport = transport
                self._reader = reader
                self._writer = writer
                self._rx = rx
                self._config = config
                self._held.clear()
                self._held_dropped = 0
                self._text_decoder.reset()
                self.stats.reset()
                self._state = SessionState.CONNECTED
            else:
                self._state = SessionState.DISCONNECTED

        if cancelled:
            self._close_quietly(transport)
            err = NotConnectedError(
                "Connection attempt was cancelled.",
                details={"port": config.port},
            )
            self._report(err)
            raise err

        self._log.info("SESSION_CONNECTED port=%s line=%s flow=%s", config.port, config.line_format, config.flow_control)
        self.log.append(
            LogCategory.SYSTEM,
            f"Connected to {config.port} ({config.line_format})",
            self._options.show_timestamp,
        )
        rx.start()

    def disconnect(self) -> None:
        self._teardown(LogCategory.SYSTEM, "Disconnected")

    def close(self) -> None:
        """Disconnect and detach from the device event source."""
        try:
            self.disconnect()
        finally:
            if self._unsubscribe_device is not None:
                self._unsubscribe_device()
                self._unsubscribe_device = None

    def __enter__(self) -> "SerialLinkSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _resolve_config(self, config: LinkConfig) -> LinkConfig:
        config = config.validate()
        if config.port:
            return config

        port = self._resolve_port()
        if not port:
            candidates = list_candidates()
            raise NoPortSelectedError(
                "No serial port selected and none could be auto-detected.",
                hint="Pass a port explicitly. Available:\n" + format_candidates(candidates),
                details={"candidates": [p.device for p in candidates]},
            )
        self._log.info("PORT_AUTODETECTED port=%s", port)
        return config.with_port(port)

    def _open_raw(self, config: LinkConfig) -> Transport:
        transport: Optional[Transport] = None
        try:
            transport = self._transport_factory(config)
            transport.open()
            return transport
        except (SerialDebugError, TransportError):
            if transport is not None:
                self._close_quietly(transport)
            raise
        except Exception as e:
            # custom transports may raise anything from open()
            self._log.exception("TRANSPORT_OPEN_UNEXPECTED port=%s", config.port)
            if transport is not None:
                self._close_quietly(transport)
            raise TransportOpenError(f"could not open {config.port!r}: {e!r}") from e

    def _open_transport(self, config: LinkConfig) -> Transport:
        try:
            return self._open_raw(config)
        except TransportPermissionError as e:
            raise PermissionDeniedError(
                f"Permission denied for {config.port}.",
                hint=str(e),
                details={"port": config.port},
            ) from None
        except TransportConfigError as e:
            raise ConfigurationRejectedError(
                f"Device refused settings {config.line_format}.",
                hint=str(e),
                details=config.as_dict(),
            ) from None
        except TransportError as e:
            self._log.warning("TRANSPORT_OPEN_FAILED port=%s err=%s", config.port, e)
            raise DeviceIOError(
                f"Could not open {config.port}.",
                hint=str(e),
                details={"port": config.port},
            ) from None

    def _teardown(self, category: LogCategory, text: str) -> bool:
        """
        Close the live connection in order: auto-send, receive worker, write
        endpoint, read endpoint, device handle. Returns False when there was
        nothing to close.
        """
        with self._lock:
            if self._state is SessionState.CONNECTING:
                self._connect_cancelled = True
                return False
            if self._state is not SessionState.CONNECTED:
                return False
            self._state = SessionState.DISCONNECTING
            rx, reader, writer, transport = self._rx, self._reader, self._writer, self._transport
            config = self._config
            self._rx = self._reader = self._writer = self._transport = None

        self.auto_send.stop()

        if rx is not None:
            rx.stop()
            if transport is not None:
                transport.cancel_read()
            # a worker that was never started has nothing to wait for
            if rx.ident is not None and rx is not threading.current_thread():
                rx.join()

        unexpected: List[BaseException] = []
        # waits for an in-flight write to finish
        with self._write_lock:
            self._release(writer, unexpected)
        self._release(reader, unexpected)
        if transport is not None:
            try:
                transport.close()
            except TransportError as e:
                self._log.debug("TRANSPORT_ALREADY_CLOSED err=%s", e)
            except Exception as e:
                self._log.exception("TRANSPORT_CLOSE_FAILED")
                unexpected.append(e)

        self.stats.stop()
        with self._lock:
            self._state = SessionState.DISCONNECTED

        port = config.port if config else None
        self._log.info("SESSION_DISCONNECTED port=%s reason=%s", port, text)
        self.log.append(category, text if port is None else f"{text} ({port})", self._options.show_timestamp)

        if unexpected:
            err = DeviceIOError(
                "Unexpected failure while closing the device.",
                hint=str(unexpected[0]),
                details={"port": port, "errors": [repr(e) for e in unexpected]},
            )
            self._report(err)
            raise err
        return True

    def _release(self, endpoint, unexpected: List[BaseException]) -> None:
        if endpoint is None:
            return
        try:
            endpoint.release()
        except EndpointReleasedError:
            pass
        except TransportError as e:
            self._log.debug("ENDPOINT_RELEASE_IGNORED kind=%s err=%s", endpoint.kind, e)
        except Exception as e:
            self._log.exception("ENDPOINT_RELEASE_FAILED kind=%s", endpoint.kind)
            unexpected.append(e)

    def _close_quietly(self, transport: Transport) -> None:
        try:
            transport.close()
        except Exception:
            self._log.exception("TRANSPORT_CLEANUP_FAILED")

    # ---------------- outbound ----------------
    def send(self, text: str, mode: DataMode | str | None = None) -> int:
        """
        Encode `text` and write it to the device. Returns the number of bytes written.
        An empty payload is ignored.
        """
        opts = self.options
        try:
            mode = opts.send_mode if mode is None else DataMode.parse(mode)
        except ValueError as e:
            err = ConfigurationRejectedError(
                "Invalid send mode.",
                hint=str(e),
                details={"mode": mode},
            )
            self._report(err)
            raise err from None

        with self._lock:
            writer = self._writer if self._state is SessionState.CONNECTED else None
        if writer is None:
            err = NotConnectedError("Not connected.", hint="Connect before sending.")
            self._report(err)
            raise err

        if not text or not text.strip():
            self._log.debug("SEND_SKIPPED_EMPTY")
            return 0

        try:
            data = encode_outbound(
                text,
                mode,
                terminator=opts.terminator if opts.append_newline else None,
            )
        except InvalidHexFormatError as e:
            self._report(e)
            raise

        try:
            with self._write_lock:
                written = writer.write(data)
        except EndpointReleasedError:
            err = NotConnectedError("Connection closed before the write.")
            self._report(err)
            raise err from None
        except TransportError as e:
            err = DeviceIOError(
                f"Write failed: {e}",
                details={"bytes": len(data), "mode": mode.value},
            )
            self._report(err)
            raise err from None

        self.stats.record_sent(written)
        self._remember(text)
        self._log.debug("SENT len=%d mode=%s raw=%s", written, mode.value, data.hex())
        self.log.append(LogCategory.SYSTEM, OUTPUT_MARKER + text, opts.show_timestamp)
        return written

    def _send_frame(self, frame: OutboundFrame) -> int:
        return self.send(frame.text, frame.mode)

    def _remember(self, text: str) -> None:
        with self._lock:
            if text in self._history:
                self._history.remove(text)
            self._history.insert(0, text)
            del self._history[SEND_HISTORY_MAX:]

    def start_auto_send(self, interval_ms: int, produce: FrameProducer) -> None:
        try:
            self.auto_send.start(interval_ms, produce)
        except ValueError as e:
            err = ConfigurationRejectedError(
                "Invalid auto-send interval.",
                hint=str(e),
                details={"interval_ms": interval_ms},
            )
            self._report(err)
            raise err from None
        except NotConnectedError as e:
            self._report(e)
            raise
        self.log.append(LogCategory.SYSTEM, f"Auto-send every {interval_ms} ms", self._options.show_timestamp)

    def stop_auto_send(self) -> None:
        if not self.auto_send.running:
            return
        self.auto_send.stop()
        self.log.append(LogCategory.SYSTEM, "Auto-send stopped", self._options.show_timestamp)

    # ---------------- inbound ----------------
    def _on_chunk(self, chunk: bytes) -> None:
        self.stats.record_received(len(chunk))
        with self._deliver_lock:
            with self._lock:
                if self._paused:
                    self._hold(chunk)
                    return
            self._append_data(chunk)

    def _hold(self, chunk: bytes) -> None:
        self._held += chunk
        overflow = len(self._held) - self._options.max_held_bytes
        if overflow > 0:
            del self._held[:overflow]
            self._held_dropped += overflow
            self._log.warning("RX_HOLD_OVERFLOW dropped=%d total_dropped=%d", overflow, self._held_dropped)

    def _append_data(self, data: bytes) -> None:
        # caller holds _deliver_lock
        opts = self.options
        if opts.receive_mode is DataMode.TEXT:
            # a character split across reads is completed by the next chunk
            text = self._text_decoder.decode(data)
            if not text:
                return
        else:
            text = decode_inbound(data, opts.receive_mode)
        self.log.append(LogCategory.DATA, text, opts.show_timestamp)

    def _on_rx_exit(self, reason: str, error: Optional[BaseException]) -> None:
        try:
            if reason == "eof":
                self._teardown(LogCategory.SYSTEM, "Device closed the stream")
            else:
                with self._lock:
                    self._last_error = f"Read failed: {error}"
                self._teardown(LogCategory.ERROR, f"Read failed, link lost: {error}")
        except SerialDebugError as e:
            self._log.warning("IMPLICIT_DISCONNECT_FAILED code=%s msg=%s", e.code, e.message)

    def _on_device_event(self, event: DeviceEvent) -> None:
        if event.kind != "disconnect":
            return
        with self._lock:
            ours = self._state is SessionState.CONNECTED and self._config is not None and self._config.port == event.device
        if not ours:
            return
        try:
            self._teardown(LogCategory.SYSTEM, "Device removed")
        except SerialDebugError as e:
            self._log.warning("IMPLICIT_DISCONNECT_FAILED code=%s msg=%s", e.code, e.message)

    def toggle_pause(self) -> bool:
        """
        Flip receive pause. While paused, bytes are still drained and counted but
        held back from the log; resuming delivers them as one entry.
        """
        # held bytes reach the log before any chunk read after the resume
        with self._deliver_lock:
            with self._lock:
                self._paused = not self._paused
                paused = self._paused
                held = b""
                if not paused:
                    held = bytes(self._held)
                    self._held.clear()

            self._log.info("RX_PAUSE paused=%s released=%d", paused, len(held))
            if held:
                self._append_data(held)
        return paused

    def clear_receive(self) -> None:
        with self._deliver_lock:
            with self._lock:
                self._held.clear()
            self._text_decoder.reset()
            self.log.clear()

    # ---------------- reporting ----------------
    def _report(self, err: SerialDebugError) -> None:
        with self._lock:
            self._last_error = err.message
        self._log.warning("SESSION_ERROR code=%s msg=%s", err.code, err.message)
        text = err.message if not err.hint else f"{err.message} ({err.hint})"
        self.log.append(LogCategory.ERROR, text, self._options.show_timestamp)

    def status(self) -> SessionStatus:
        snap = self.stats.snapshot()
        auto = self.auto_send.state()
        with self._lock:
            return SessionStatus(
                state=self._state,
                port=self._config.port if self._config else None,
                line_format=self._config.line_format if self._config else None,
                receive_paused=self._paused,
                held_bytes=len(self._held),
                statistics=snap,
                auto_send=auto,
                last_error=self._last_error,
            )

    def export_log(self, sink: ExportSink, *, prefix: str = "serial_data") -> Optional[str]:
        """Hand the rendered log to `sink`. Returns the filename, or None if the log is empty."""
        content = self.log.export_text()
        if not content.strip():
            self._log.warning("EXPORT_SKIPPED_EMPTY")
            return None
        filename = export_filename(prefix)
        try:
            sink.export_blob(filename, content)
        except OSError as e:
            err = ExportError(
                f"Could not export {filename}.",
                hint=str(e),
                details={"filename": filename},
            )
            self._report(err)
            raise err from None
        self._log.info("EXPORTED filename=%s bytes=%d", filename, len(content))
        return filename
