"""Connector settings: YAML file first, environment variables on top."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from zotero_connector.formats import CitationFormat, ExportFormat

logger = logging.getLogger("zotero_connector")

DEFAULT_UPDATE_CHANNEL_URL = "ws://localhost:5555"
_REQUEST_TIMEOUT_DEFAULT = 30.0
_LIVENESS_TTL_DEFAULT = 30.0
NOTE_SELECTIONS = ("first-imported-note", "last-imported-note", "all-imported-notes")

_KNOWN_PORTS = {
    "Zotero": 23119,
    "Juris-M": 24119,
}


def get_port(database: str, port: int | str | None = None) -> int:
    """Map a database name to the port its Better BibTeX server listens on."""
    if database in _KNOWN_PORTS:
        return _KNOWN_PORTS[database]
    if port in (None, ""):
        raise ValueError(f"No port configured for database '{database}'")
    return int(port)


@dataclass(frozen=True)
class DatabaseWithPort:
    database: str = "Zotero"
    port: int | None = None

    @property
    def resolved_port(self) -> int:
        return get_port(self.database, self.port)


def _as_bool(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def _as_float(value: Any, default: float | None) -> float | None:
    try:
        v = float(value)
        if v > 0:
            return v
    except (TypeError, ValueError):
        pass
    return default


def _note_selection(value: Any) -> str:
    if value in NOTE_SELECTIONS:
        return value
    if value not in (None, ""):
        logger.warning(f"unknown note selection {value!r}; opening the first imported note")
    return NOTE_SELECTIONS[0]


@dataclass
class ConnectorSettings:
    database: str = "Zotero"
    port: int | None = None
    note_import_folder: str = ""
    cite_formats: list[CitationFormat] = field(default_factory=list)
    export_formats: list[ExportFormat] = field(default_factory=list)
    auto_import: bool = True
    update_channel_url: str = DEFAULT_UPDATE_CHANNEL_URL
    request_timeout: float = _REQUEST_TIMEOUT_DEFAULT
    liveness_ttl: float = _LIVENESS_TTL_DEFAULT
    picker_timeout: float | None = None
    open_note_after_import: bool = False
    which_notes_to_open_after_import: str = "first-imported-note"

    @property
    def db(self) -> DatabaseWithPort:
        return DatabaseWithPort(self.database, self.port)

    def cite_format(self, name: str) -> CitationFormat | None:
        return next((f for f in self.cite_formats if f.name == name), None)

    def export_format(self, name: str) -> ExportFormat | None:
        return next((f for f in self.export_formats if f.name == name), None)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ConnectorSettings":
        """Build settings from a mapping; plugin-style camelCase keys are accepted."""

        def pick(*names: str) -> Any:
            for n in names:
                if n in data:
                    return data[n]
            return None

        port = pick("port")
        return cls(
            database=str(pick("database") or "Zotero"),
            port=int(port) if port not in (None, "") else None,
            note_import_folder=str(pick("note_import_folder", "noteImportFolder") or ""),
            cite_formats=[CitationFormat.from_dict(f) for f in pick("cite_formats", "citeFormats") or []],
            export_formats=[ExportFormat.from_dict(f) for f in pick("export_formats", "exportFormats") or []],
            auto_import=_as_bool(pick("auto_import", "autoImport"), True),
            update_channel_url=str(pick("update_channel_url", "updateChannelUrl") or DEFAULT_UPDATE_CHANNEL_URL),
            request_timeout=_as_float(pick("request_timeout", "requestTimeout"), _REQUEST_TIMEOUT_DEFAULT),
            liveness_ttl=_as_float(pick("liveness_ttl", "livenessTtl"), _LIVENESS_TTL_DEFAULT),
            picker_timeout=_as_float(pick("picker_timeout", "pickerTimeout"), None),
            open_note_after_import=_as_bool(pick("open_note_after_import", "openNoteAfterImport"), False),
            which_notes_to_open_after_import=_note_selection(
                pick("which_notes_to_open_after_import", "whichNotesToOpenAfterImport")
            ),
        )


def load_settings(path: str | Path | None = None, env: Mapping[str, str] | None = None) -> ConnectorSettings:
    """Load settings from an optional YAML file, then apply environment overrides.

    The file is named by ``path`` or ``ZOTERO_CONNECTOR_SETTINGS``. Supported
    environment overrides: ZOTERO_DATABASE, ZOTERO_PORT, ZOTERO_NOTE_FOLDER,
    ZOTERO_AUTO_IMPORT, ZOTERO_UPDATE_URL, ZOTERO_REQUEST_TIMEOUT,
    ZOTERO_LIVENESS_TTL and ZOTERO_PICKER_TIMEOUT.
    """
    import yaml

    env = os.environ if env is None else env
    data: dict[str, Any] = {}
    path = path or env.get("ZOTERO_CONNECTOR_SETTINGS")
    if path:
        p = Path(path).expanduser()
        try:
            loaded = yaml.safe_load(p.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.warning(f"settings file not found: {p}")
            loaded = None
        except yaml.YAMLError as e:
            logger.error(f"settings file {p} is not valid YAML: {e}")
            loaded = None
        if isinstance(loaded, dict):
            data.update(loaded)

    overrides = {
        "database": env.get("ZOTERO_DATABASE"),
        "port": env.get("ZOTERO_PORT"),
        "note_import_folder": env.get("ZOTERO_NOTE_FOLDER"),
        "auto_import": env.get("ZOTERO_AUTO_IMPORT"),
        "update_channel_url": env.get("ZOTERO_UPDATE_URL"),
        "request_timeout": env.get("ZOTERO_REQUEST_TIMEOUT"),
        "liveness_ttl": env.get("ZOTERO_LIVENESS_TTL"),
        "picker_timeout": env.get("ZOTERO_PICKER_TIMEOUT"),
    }
    for k, v in overrides.items():
        if v not in (None, ""):
            data.pop(k, None)
            data[k] = v
    if "port" in data and str(data["port"]).strip() and not str(data["port"]).strip().isdigit():
        logger.warning(f"ignoring non-numeric port: {data['port']!r}")
        data.pop("port")
    return ConnectorSettings.from_mapping(data)
