# serialdbg/cli/main.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from serialdbg.app.config import AppConfig
from serialdbg.common.logging_config import (
    DEFAULTS,
    app_home,
    configure_file_logging,
    make_log_path,
)
from serialdbg.core.errors import SerialDebugError

from serialdbg.cli.args import parse_args
from serialdbg.cli.commands import cmd_ports, cmd_term


def build_app_config(args) -> AppConfig:
    home = app_home()
    return AppConfig(
        settings_path=Path(args.settings) if args.settings else home / DEFAULTS.settings_filename,
        export_dir=home / DEFAULTS.export_dirname,
        log_path=Path(args.log_file) if args.log_file else make_log_path(),
    )


def main(argv: Optional[list[str]] = None) -> int:
    try:
        args = parse_args(argv)
        cfg = build_app_config(args)
        if cfg.log_path is not None:
            configure_file_logging(cfg.log_path, level=logging.DEBUG if args.verbose else logging.INFO)

        if args.cmd == "ports":
            return cmd_ports()
        if args.cmd == "term":
            return cmd_term(args, cfg)

        return 2
    except SerialDebugError as e:
        print(f"ERROR: {e.message}")
        if e.hint:
            print(f"Hint: {e.hint}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
