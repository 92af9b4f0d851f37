# serialdbg/cli/args.py
from __future__ import annotations

import argparse
from typing import Any, Dict, Optional

from serialdbg.model.link_config import DATA_BITS, FLOW_CONTROLS, PARITIES


def _stop_bits(v: str) -> float:
    try:
        f = float(v)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid stop bits '{v}' (use 1, 1.5 or 2)") from None
    if f not in (1, 1.5, 2):
        raise argparse.ArgumentTypeError(f"Invalid stop bits '{v}' (use 1, 1.5 or 2)")
    return int(f) if f in (1, 2) else f


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="serialdbg", description="Serial port debugging terminal")
    parser.add_argument("--settings", default=None, help="Settings YAML file (default: ~/.serialdbg/settings.yml).")
    parser.add_argument("--log-file", default=None, help="Application log file (default: ~/.serialdbg/logs/serialdbg.log).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level.")

    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("ports", help="List serial ports.")

    t = sub.add_parser("term", help="Open an interactive terminal on a port.")
    t.add_argument("-p", "--port", default=None, help="Serial port or pyserial URL (auto-detect if omitted).")
    t.add_argument("-b", "--baud", dest="baud_rate", type=int, default=None)
    t.add_argument("--data-bits", type=int, choices=DATA_BITS, default=None)
    t.add_argument("--stop-bits", type=_stop_bits, default=None)
    t.add_argument("--parity", choices=PARITIES, default=None)
    t.add_argument("--flow-control", choices=FLOW_CONTROLS, default=None)

    t.add_argument("--hex-send", action="store_true", default=None, help="Interpret typed input as hex bytes.")
    t.add_argument("--hex-display", action="store_true", default=None, help="Show received bytes as hex.")
    t.add_argument("--newline", dest="append_newline", action="store_true", default=None,
                   help="Append CR LF to text sends.")
    t.add_argument("--timestamp", dest="show_timestamp", action="store_true", default=None,
                   help="Prefix log lines with a timestamp.")
    t.add_argument("--auto-send", dest="auto_send_ms", type=int, default=None,
                   help="Repeat --payload every N milliseconds.")
    t.add_argument("--payload", default=None, help="Payload for --auto-send.")
    t.add_argument("--no-monitor", action="store_true", help="Don't watch for device removal.")
    t.add_argument("--save-settings", action="store_true", help="Persist the effective settings on connect.")

    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def settings_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """CLI values that override stored settings (only those actually given)."""
    names = (
        "port", "baud_rate", "data_bits", "stop_bits", "parity", "flow_control",
        "hex_send", "hex_display", "append_newline", "show_timestamp",
    )
    out = {name: getattr(args, name) for name in names if getattr(args, name, None) is not None}
    if getattr(args, "auto_send_ms", None) is not None:
        out["auto_send_interval_ms"] = args.auto_send_ms
    return out
