# serialdbg/cli/commands.py
from __future__ import annotations

import argparse
import logging
import sys
from typing import Callable, Iterable, Optional

from serialdbg.app.config import AppConfig
from serialdbg.app.settings import (
    YamlSettingsStore,
    settings_to_config,
    settings_to_options,
    snapshot_settings,
)
from serialdbg.app.sinks import FileExportSink, PrintEntrySink
from serialdbg.cli.args import settings_overrides
from serialdbg.cli.terminal import Terminal
from serialdbg.interfaces import SettingsStore
from serialdbg.runtime.port_monitor import PortMonitor
from serialdbg.runtime.session import SerialLinkSession
from serialdbg.transport.ports import describe_port, list_candidates


# ---------------- Commands ----------------

def cmd_ports() -> int:
    ports = list_candidates()
    if not ports:
        print("No serial ports found.")
        return 0
    print("Available ports:\n")
    for p in ports:
        print(describe_port(p))
    return 0


def cmd_term(
    args: argparse.Namespace,
    cfg: AppConfig,
    *,
    lines: Optional[Iterable[str]] = None,
    out: Callable[[str], None] = print,
) -> int:
    log = logging.getLogger(__name__)

    store: SettingsStore = YamlSettingsStore(cfg.settings_path)
    settings = store.load_settings()
    settings.update(settings_overrides(args))

    config = settings_to_config(settings)
    options = settings_to_options(settings)

    monitor = PortMonitor(interval_s=cfg.monitor_interval_s) if cfg.monitor_ports and not args.no_monitor else None

    session = SerialLinkSession(options=options, device_events=monitor, logger=log)
    session.subscribe_entries(PrintEntrySink(write=out))

    terminal = Terminal(
        session,
        out=out,
        export_sink=FileExportSink(cfg.export_dir),
        settings=store,
    )

    if monitor is not None:
        monitor.start()
    try:
        with session:
            session.connect(config)

            if args.save_settings:
                store.save_settings(snapshot_settings(settings, session.config, session.options))

            if args.auto_send_ms:
                terminal.payload = args.payload
                if terminal.payload:
                    session.start_auto_send(args.auto_send_ms, terminal.produce)

            out("Type /help for commands, /quit to exit.")
            for line in (lines if lines is not None else _stdin_lines()):
                if not terminal.handle_line(line):
                    break
                if not session.is_connected:
                    out("Link closed.")
                    break
        return 0
    except KeyboardInterrupt:
        return 0
    finally:
        if monitor is not None:
            monitor.stop()


def _stdin_lines() -> Iterable[str]:
    for line in sys.stdin:
        yield line
