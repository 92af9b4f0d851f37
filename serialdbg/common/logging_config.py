from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import logging
import os

@dataclass(frozen=True)
class LogDefaults:
    app_log_filename: str = "serialdbg.log"
    settings_filename: str = "settings.yml"
    export_dirname:   str = "exports"
    log_format:       str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

DEFAULTS = LogDefaults()

def app_home() -> Path:
    # SERIALDBG_HOME overrides ~/.serialdbg
    env = os.environ.get("SERIALDBG_HOME")
    return Path(env).expanduser() if env else Path.home() / ".serialdbg"

def logs_root() -> Path:
    root = app_home() / "logs"
    root.mkdir(parents=True, exist_ok=True)
    return root

def make_log_path(*, directory: Path | None = None) -> Path:
    root = directory if directory else logs_root()
    return root / DEFAULTS.app_log_filename

def configure_file_logging(app_log_path: Path, level: int = logging.INFO) -> None:
    """
    Add a file handler to the root logger (idempotent).
    """
    root = logging.getLogger()
    app_log_path.parent.mkdir(parents=True, exist_ok=True)
    target = str(app_log_path.resolve())

    for h in root.handlers:
        if isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == target:
            return

    fh = logging.FileHandler(app_log_path, encoding="utf-8", delay=True)
    fh.setLevel(level)
    fh.setFormatter(logging.Formatter(DEFAULTS.log_format))
    root.addHandler(fh)

    if root.level > level or root.level == logging.NOTSET:
        root.setLevel(level)
