# serialdbg/cli/terminal.py
from __future__ import annotations

import logging
from typing import Callable, Optional

from serialdbg.app.settings import YamlSettingsStore
from serialdbg.core.errors import SerialDebugError
from serialdbg.interfaces.export_sink import ExportSink
from serialdbg.model.codec import DataMode, byte_length, has_unpaired_nibble, normalize_hex
from serialdbg.runtime.auto_send import OutboundFrame
from serialdbg.runtime.session import SerialLinkSession
from serialdbg.runtime.statistics import format_elapsed

HELP = """\
Type text and press Enter to send it. Commands:
  /hex | /text          send mode
  /rx hex|text          receive display mode
  /ts | /nl             toggle timestamps / CR LF append
  /pause                pause or resume receive display
  /auto <ms> [payload]  repeat a payload (default: last sent line)
  /payload <text>       change the auto-send payload
  /stop                 stop auto-send
  /stats | /status      counters and link state
  /count <text>         byte count of <text> in the current send mode
  /history              recent sends
  /cmds                 custom commands; /cmd add|rm <text>; /run <n>
  /clear | /save        clear or export the log
  /quit                 disconnect and exit
Start a line with // to send a literal '/'."""


class Terminal:
    """
    Line-oriented front end over a SerialLinkSession.

    Session failures are already reported through the activity log, so the
    terminal only swallows SerialDebugError and keeps reading.
    """

    def __init__(
        self,
        session: SerialLinkSession,
        *,
        out: Callable[[str], None] = print,
        export_sink: Optional[ExportSink] = None,
        settings: Optional[YamlSettingsStore] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.session = session
        self._out = out
        self._export_sink = export_sink
        self._settings = settings
        self._log = logger or logging.getLogger(__name__)
        self.payload: Optional[str] = None

    # ---------------- dispatch ----------------
    def handle_line(self, line: str) -> bool:
        """Process one input line. Returns False when the terminal should exit."""
        line = line.rstrip("\r\n")
        if line.startswith("//"):
            return self._send(line[1:])
        if not line.startswith("/"):
            return self._send(line)

        cmd, _, rest = line[1:].partition(" ")
        handler = getattr(self, f"_cmd_{cmd.lower()}", None)
        if handler is None:
            self._out(f"Unknown command '/{cmd}'. Type /help.")
            return True
        try:
            return handler(rest.strip()) is not False
        except SerialDebugError as e:
            self._log.debug("COMMAND_FAILED cmd=%s code=%s", cmd, e.code)
            return True

    def _send(self, text: str) -> bool:
        try:
            if self.session.send(text):
                self.payload = text
        except SerialDebugError:
            pass
        return True

    def produce(self) -> OutboundFrame:
        return OutboundFrame(self.payload or "", self.session.options.send_mode)

    # ---------------- commands ----------------
    def _cmd_help(self, _rest: str) -> None:
        self._out(HELP)

    def _cmd_quit(self, _rest: str) -> bool:
        return False

    _cmd_exit = _cmd_quit

    def _cmd_hex(self, _rest: str) -> None:
        self.session.update_options(send_mode=DataMode.HEX)
        self._out("send mode: hex")

    def _cmd_text(self, _rest: str) -> None:
        self.session.update_options(send_mode=DataMode.TEXT)
        self._out("send mode: text")

    def _cmd_rx(self, rest: str) -> None:
        try:
            mode = DataMode.parse(rest)
        except ValueError as e:
            self._out(str(e))
            return
        self.session.update_options(receive_mode=mode)
        self._out(f"receive mode: {mode.value}")

    def _cmd_ts(self, _rest: str) -> None:
        opts = self.session.update_options(show_timestamp=not self.session.options.show_timestamp)
        self._out(f"timestamps: {'on' if opts.show_timestamp else 'off'}")

    def _cmd_nl(self, _rest: str) -> None:
        opts = self.session.update_options(append_newline=not self.session.options.append_newline)
        self._out(f"append CR LF: {'on' if opts.append_newline else 'off'}")

    def _cmd_pause(self, _rest: str) -> None:
        paused = self.session.toggle_pause()
        self._out("receive paused" if paused else "receive resumed")

    def _cmd_auto(self, rest: str) -> None:
        interval, _, payload = rest.partition(" ")
        try:
            interval_ms = int(interval)
        except ValueError:
            self._out("usage: /auto <ms> [payload]")
            return
        if payload:
            self.payload = payload
        if not self.payload:
            self._out("nothing to send yet; give a payload")
            return
        self.session.start_auto_send(interval_ms, self.produce)

    def _cmd_payload(self, rest: str) -> None:
        self.payload = rest
        self._out(f"payload: {rest!r}")

    def _cmd_stop(self, _rest: str) -> None:
        self.session.stop_auto_send()

    def _cmd_stats(self, _rest: str) -> None:
        s = self.session.stats.snapshot()
        self._out(
            f"RX {s.bytes_received} B  TX {s.bytes_sent} B  "
            f"rate {s.rate_bps:.1f} B/s  up {format_elapsed(s.elapsed_s)}"
        )

    def _cmd_status(self, _rest: str) -> None:
        st = self.session.status()
        opts = self.session.options
        self._out(f"Link:      {st.state.value} {st.port or '-'} {st.line_format or ''}".rstrip())
        self._out(f"Modes:     send={opts.send_mode.value} receive={opts.receive_mode.value}")
        self._out(f"Receive:   paused={st.receive_paused} held={st.held_bytes} B")
        if st.auto_send.enabled:
            self._out(f"Auto-send: every {st.auto_send.interval_ms} ms payload={st.auto_send.payload!r}")
        if st.last_error:
            self._out(f"Last err:  {st.last_error}")

    def _cmd_count(self, rest: str) -> None:
        mode = self.session.options.send_mode
        n = byte_length(rest, mode)
        if mode is not DataMode.HEX:
            self._out(f"{n} chars")
            return
        suffix = " (+ unpaired digit)" if has_unpaired_nibble(rest) else ""
        self._out(f"{n} bytes{suffix}: {normalize_hex(rest)}")

    def _cmd_history(self, _rest: str) -> None:
        for i, text in enumerate(self.session.history, 1):
            self._out(f"{i:2d}  {text}")

    def _cmd_cmds(self, _rest: str) -> None:
        commands = (self._settings.load_settings().get("custom_commands") if self._settings else None) or []
        for i, cmd in enumerate(commands, 1):
            self._out(f"{i:2d}  {cmd}")

    def _cmd_cmd(self, rest: str) -> None:
        if self._settings is None:
            self._out("no settings file")
            return
        action, _, text = rest.partition(" ")
        if action == "add" and text:
            self._settings.add_custom_command(text)
        elif action == "rm" and text:
            self._settings.remove_custom_command(text)
        else:
            self._out("usage: /cmd add|rm <text>")
            return
        self._cmd_cmds("")

    def _cmd_run(self, rest: str) -> None:
        commands = (self._settings.load_settings().get("custom_commands") if self._settings else None) or []
        try:
            index = int(rest)
            if index < 1:
                raise IndexError(index)
            cmd = commands[index - 1]
        except (ValueError, IndexError):
            self._out("usage: /run <n> (see /cmds)")
            return
        self._send(cmd)

    def _cmd_clear(self, _rest: str) -> None:
        self.session.clear_receive()

    def _cmd_save(self, _rest: str) -> None:
        if self._export_sink is None:
            self._out("no export directory configured")
            return
        name = self.session.export_log(self._export_sink)
        self._out(f"saved {name}" if name else "log is empty, nothing saved")
