from .export_sink import ExportSink, export_filename
from .settings_store import SettingsStore

__all__ = ["ExportSink", "SettingsStore", "export_filename"]
