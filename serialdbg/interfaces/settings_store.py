# serialdbg/interfaces/settings_store.py
from typing import Any, Dict, Mapping, Protocol


class SettingsStore(Protocol):
    def load_settings(self) -> Dict[str, Any]: ...
    def save_settings(self, settings: Mapping[str, Any]) -> None: ...
