# serialdbg/app/settings.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping

import yaml

from serialdbg.model.codec import DataMode
from serialdbg.model.link_config import LinkConfig
from serialdbg.runtime.state import SessionOptions

_log = logging.getLogger(__name__)

DEFAULT_CUSTOM_COMMANDS = ["AT", "AT+GMR", "AT+RST", "AT+CWMODE?", "AT+CWLAP"]

DEFAULT_SETTINGS: Dict[str, Any] = {
    "port": None,
    "baud_rate": 115200,
    "data_bits": 8,
    "stop_bits": 1,
    "parity": "none",
    "flow_control": "none",
    "show_timestamp": False,
    "auto_scroll": True,
    "append_newline": False,
    "hex_send": False,
    "hex_display": False,
    "auto_send_interval_ms": 1000,
    "custom_commands": DEFAULT_CUSTOM_COMMANDS,
}


def with_defaults(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Fill missing fields from DEFAULT_SETTINGS. Unknown keys are kept as-is."""
    merged: Dict[str, Any] = {k: (list(v) if isinstance(v, list) else v) for k, v in DEFAULT_SETTINGS.items()}
    for key, value in data.items():
        if value is None and key in DEFAULT_SETTINGS:
            continue
        merged[key] = value
    return merged


class YamlSettingsStore:
    """
    Key-value settings persisted as one YAML document.

    load_settings() never fails on a missing or corrupt file; it logs and
    falls back to defaults.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load_settings(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            return with_defaults({})
        except yaml.YAMLError as e:
            _log.warning("SETTINGS_CORRUPT path=%s error=%s", self.path, e)
            return with_defaults({})

        if not isinstance(data, dict):
            _log.warning("SETTINGS_NOT_A_MAPPING path=%s type=%s", self.path, type(data).__name__)
            return with_defaults({})
        return with_defaults(data)

    def save_settings(self, settings: Mapping[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(dict(settings), f, sort_keys=True, allow_unicode=True)

    # ---------------- custom commands ----------------
    def add_custom_command(self, cmd: str) -> List[str]:
        cmd = cmd.strip()
        settings = self.load_settings()
        commands = list(settings.get("custom_commands") or [])
        if cmd and cmd not in commands:
            commands.append(cmd)
            settings["custom_commands"] = commands
            self.save_settings(settings)
        return commands

    def remove_custom_command(self, cmd: str) -> List[str]:
        settings = self.load_settings()
        commands = [c for c in (settings.get("custom_commands") or []) if c != cmd]
        settings["custom_commands"] = commands
        self.save_settings(settings)
        return commands


def settings_to_config(settings: Mapping[str, Any]) -> LinkConfig:
    return LinkConfig.from_mapping(settings)


def settings_to_options(settings: Mapping[str, Any], base: SessionOptions | None = None) -> SessionOptions:
    base = base or SessionOptions()
    return SessionOptions(
        send_mode=DataMode.HEX if settings.get("hex_send") else DataMode.TEXT,
        receive_mode=DataMode.HEX if settings.get("hex_display") else DataMode.TEXT,
        show_timestamp=bool(settings.get("show_timestamp", base.show_timestamp)),
        append_newline=bool(settings.get("append_newline", base.append_newline)),
        terminator=base.terminator,
        max_log_entries=base.max_log_entries,
        max_held_bytes=base.max_held_bytes,
        read_chunk_size=base.read_chunk_size,
    )


def snapshot_settings(
    settings: Mapping[str, Any],
    config: LinkConfig,
    options: SessionOptions,
) -> Dict[str, Any]:
    """Merge the live config/options back into a settings blob for saving."""
    out = dict(settings)
    out.update(config.as_dict())
    out.update(
        {
            "show_timestamp": options.show_timestamp,
            "append_newline": options.append_newline,
            "hex_send": options.send_mode is DataMode.HEX,
            "hex_display": options.receive_mode is DataMode.HEX,
        }
    )
    return out
