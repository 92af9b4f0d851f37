# serialdbg/app/sinks.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, TextIO
import sys

from serialdbg.runtime.activity_log import LogCategory, LogEntry


class FileExportSink:
    """Writes exported blobs as UTF-8 text files under `directory`."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.last_path: Optional[Path] = None
        self._log = logging.getLogger(__name__)

    def export_blob(self, filename: str, content: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / filename
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        self.last_path = path
        self._log.info("EXPORT_WRITTEN path=%s", path)


class PrintEntrySink:
    """Render callback printing log entries to a text stream."""

    PREFIX = {
        LogCategory.DATA: "",
        LogCategory.SYSTEM: "-- ",
        LogCategory.ERROR: "!! ",
    }

    def __init__(self, stream: Optional[TextIO] = None, *, write: Optional[Callable[[str], None]] = None):
        self._stream = stream
        self._write = write

    def __call__(self, entry: LogEntry) -> None:
        line = self.PREFIX.get(entry.category, "") + entry.render()
        if self._write is not None:
            self._write(line)
            return
        stream = self._stream or sys.stdout
        stream.write(line + "\n")
        stream.flush()
