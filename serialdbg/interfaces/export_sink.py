# serialdbg/interfaces/export_sink.py
from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol


class ExportSink(Protocol):
    def export_blob(self, filename: str, content: str) -> None: ...


def export_filename(prefix: str, *, now: Optional[datetime] = None, ext: str = ".txt") -> str:
    """e.g. serial_data_2024-05-01T13-45-10.txt"""
    now = now or datetime.now()
    return f"{prefix}_{now.strftime('%Y-%m-%dT%H-%M-%S')}{ext}"
