from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class AppConfig:
    settings_path: Path
    export_dir: Path
    log_path: Optional[Path] = None
    monitor_ports: bool = True
    monitor_interval_s: float = 0.5
