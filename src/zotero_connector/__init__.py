import os
import time
import logging
import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

# Structured logger
logger = logging.getLogger("zotero_connector")
if not logger.handlers:
    h = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] zotero_connector: %(message)s", "%Y-%m-%dT%H:%M:%SZ")
    h.setFormatter(formatter)
    logger.addHandler(h)
    # Allow LOG_LEVEL env to control verbosity; default INFO
    _lvl = os.getenv("LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, _lvl, logging.INFO))
    # Ensure UTC timestamps
    for handler in logger.handlers:
        if handler.formatter is not None:
            handler.formatter.converter = time.gmtime

from mcp.server.fastmcp import FastMCP

from zotero_connector.cayw import CitationProtocolClient, CiteKey, cite_key_from_any
from zotero_connector.errors import ZoteroConnectorError
from zotero_connector.export import (
    ExportContext,
    export_to_markdown,
    render_notes,
    run_import,
    select_notes_to_open,
)
from zotero_connector.formats import CitationFormat, ExportFormat, get_query_params
from zotero_connector.host import HeadlessHost
from zotero_connector.liveness import LivenessCache
from zotero_connector.queue import RequestQueue
from zotero_connector.settings import ConnectorSettings, DatabaseWithPort, get_port, load_settings
from zotero_connector.templates import apply_basic_templates
from zotero_connector.update_channel import UpdateChannel

__all__ = [
    "CitationFormat",
    "CitationProtocolClient",
    "CiteKey",
    "ConnectorSettings",
    "DatabaseWithPort",
    "ExportFormat",
    "LivenessCache",
    "RequestQueue",
    "UpdateChannel",
    "apply_basic_templates",
    "cite_key_from_any",
    "get_port",
    "get_query_params",
    "logger",
    "mcp",
]

_SETTINGS: ConnectorSettings | None = None
_CLIENT: CitationProtocolClient | None = None
_CHANNEL: UpdateChannel | None = None


def get_settings() -> ConnectorSettings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = load_settings()
    return _SETTINGS


def get_client() -> CitationProtocolClient:
    """Process-wide client; one queue and one liveness cache for every tool."""
    global _CLIENT
    if _CLIENT is None:
        s = get_settings()
        _CLIENT = CitationProtocolClient(
            host=HeadlessHost(),
            timeout=s.request_timeout,
            liveness_ttl=s.liveness_ttl,
            picker_timeout=s.picker_timeout,
        )
    return _CLIENT


def reset_state(settings: ConnectorSettings | None = None) -> None:
    """Drop cached settings and client (tests, settings reloads)."""
    global _SETTINGS, _CLIENT
    _SETTINGS = settings
    _CLIENT = None


def _compact_json_block(label: str, obj: dict[str, Any]) -> str:
    import json as _json

    return f"\n\n### {label}\n```json\n{_json.dumps(obj, ensure_ascii=False, separators=(',', ':'))}\n```"


def _format_error(prefix: str, e: Exception) -> str:
    status = getattr(e, "status", None)
    if isinstance(e, ZoteroConnectorError) and status:
        return f"{prefix}: Better BibTeX answered HTTP {status}. {e}"
    if isinstance(e, ZoteroConnectorError):
        return f"{prefix}: {e}"
    return f"{prefix}: {type(e).__name__}: {e}"


def _pop_notices() -> list[str]:
    host = get_client().host
    notices = list(getattr(host, "notices", []))
    if hasattr(host, "notices"):
        host.notices.clear()
    return notices


def _import_result(paths: list[str], settings: ConnectorSettings) -> dict[str, Any]:
    result: dict[str, Any] = {"paths": paths, "notices": _pop_notices()}
    if settings.open_note_after_import:
        result["open"] = select_notes_to_open(paths, settings.which_notes_to_open_after_import)
    return result


def _import_callback(settings: ConnectorSettings):
    async def _on_cite_keys(cite_keys: list[CiteKey]) -> list[str]:
        fmt = settings.export_formats[0] if settings.export_formats else None
        ctx = ExportContext(get_client(), settings.db, fmt, settings.note_import_folder)
        return await export_to_markdown(ctx, cite_keys)

    return _on_cite_keys


@asynccontextmanager
async def _lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Run the update channel next to the server when auto-import is on."""
    global _CHANNEL
    settings = get_settings()
    task = None
    if settings.auto_import and _CHANNEL is None:
        logger.info("auto import running")
        _CHANNEL = UpdateChannel(settings.update_channel_url, _import_callback(settings))
        task = asyncio.create_task(_CHANNEL.run())
    try:
        yield
    finally:
        if task is not None and _CHANNEL is not None:
            await _CHANNEL.stop()
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            _CHANNEL = None


# Create an MCP server
mcp = FastMCP("Zotero Connector", lifespan=_lifespan)


@mcp.tool(
    name="zotero_health",
    description="Report whether Better BibTeX is reachable and the key connector settings.",
)
async def zotero_health() -> str:
    """Return a compact health summary for quick diagnostics."""
    _t0 = time.perf_counter()
    s = get_settings()
    info: dict[str, Any] = {"database": s.database}
    try:
        info["port"] = s.db.resolved_port
        running = await get_client().liveness.is_running(s.db, silent=True)
        info["betterBibtex"] = "ready" if running else "unreachable"
    except ValueError as e:
        info["port"] = None
        info["betterBibtex"] = f"error: {e}"
    info["autoImport"] = s.auto_import
    info["updateChannelUrl"] = s.update_channel_url
    info["noteImportFolder"] = s.note_import_folder or "."
    info["citeFormats"] = [f.name for f in s.cite_formats]
    info["exportFormats"] = [f.name for f in s.export_formats]
    info["requestTimeout"] = s.request_timeout
    info["logLevel"] = logging.getLevelName(logger.level)
    info["elapsedMs"] = round((time.perf_counter() - _t0) * 1000, 1)
    return "# Zotero connector health" + _compact_json_block("result", info)


@mcp.tool(
    name="zotero_insert_citation",
    description=(
        "Open the Zotero picker and return citation text. Use formatName for a configured format, "
        "or format (formatted-citation, pandoc, latex, biblatex, template) with its options."
    ),
)
async def insert_citation(
    formatName: str | None = None,
    format: str | None = None,
    cslStyle: str | None = None,
    brackets: bool | None = None,
    command: str | None = None,
    template: str | None = None,
) -> str:
    s = get_settings()
    try:
        if formatName:
            fmt = s.cite_format(formatName)
            if fmt is None:
                return f'Citation format "{formatName}" not found.'
        else:
            fmt = CitationFormat(
                format=format or "pandoc",  # type: ignore[arg-type]
                csl_style=cslStyle,
                brackets=bool(brackets),
                command=command,
                template=template,
            )
        res = await get_client().retrieve_formatted_citation(fmt, s.db)
    except Exception as e:  # noqa: BLE001
        return _format_error("Error inserting citation", e)
    notices = _pop_notices()
    if res is None:
        return "# Citation\nNo citation returned." + _compact_json_block("result", {"citation": None, "notices": notices})
    return res


@mcp.tool(
    name="zotero_insert_bibliography",
    description="Pick items in Zotero and return a formatted bibliography (optionally in a CSL style).",
)
async def insert_bibliography(cslStyle: str | None = None) -> str:
    fmt = CitationFormat(format="formatted-bibliography", csl_style=cslStyle)
    res = await get_client().retrieve_formatted_citation(fmt, get_settings().db)
    notices = _pop_notices()
    if res is None:
        return "# Bibliography\nNo bibliography returned." + _compact_json_block(
            "result", {"bibliography": None, "notices": notices}
        )
    return res


@mcp.tool(
    name="zotero_pick_citekeys",
    description="Open the Zotero picker and return the citekeys of the selected items.",
)
async def pick_citekeys() -> str:
    keys = await get_client().retrieve_cite_keys(get_settings().db)
    notices = _pop_notices()
    header = ["# Picked citekeys", f"Total: {len(keys)}"]
    return "\n".join(header) + _compact_json_block(
        "result", {"citekeys": [{"key": k.key, "library": k.library} for k in keys], "notices": notices}
    )


@mcp.tool(
    name="zotero_import_notes",
    description=(
        "Import Zotero items as Markdown notes. Without citekeys the Zotero picker opens. "
        "Re-importing appends only annotations made since the last import."
    ),
)
async def import_notes(
    formatName: str | None = None,
    citekeys: list[str] | None = None,
    library: int = 1,
) -> str:
    s = get_settings()
    fmt = s.export_format(formatName) if formatName else (s.export_formats[0] if s.export_formats else None)
    if formatName and fmt is None:
        return f'Import format "{formatName}" not found.'
    ctx = ExportContext(get_client(), s.db, fmt, s.note_import_folder)
    keys = [CiteKey(k[1:] if k.startswith("@") else k, library) for k in citekeys] if citekeys else None
    try:
        paths = await export_to_markdown(ctx, keys)
    except Exception as e:  # noqa: BLE001
        logger.exception("import_notes: error")
        return _format_error("Error importing notes", e)
    header = ["# Imported notes", f"Written: {len(paths)}"]
    return "\n".join(header) + _compact_json_block("result", _import_result(paths, s))


@mcp.tool(
    name="zotero_insert_notes",
    description=(
        "Return rendered Markdown notes for Zotero items without writing files. "
        "Without citekeys the Zotero picker opens."
    ),
)
async def insert_notes(citekeys: list[str] | None = None, library: int = 1) -> str:
    s = get_settings()
    ctx = ExportContext(get_client(), s.db, None, s.note_import_folder)
    keys = [CiteKey(k[1:] if k.startswith("@") else k, library) for k in citekeys] if citekeys else None
    try:
        res = await render_notes(ctx, keys)
    except Exception as e:  # noqa: BLE001
        logger.exception("insert_notes: error")
        return _format_error("Error inserting notes", e)
    notices = _pop_notices()
    if res is None:
        return "# Notes\nNo notes returned." + _compact_json_block("result", {"notes": None, "notices": notices})
    return res


@mcp.tool(
    name="zotero_run_import",
    description="Import a single citekey (leading @ allowed) with a named import format.",
)
async def run_import_tool(formatName: str, citekey: str, library: int = 1) -> str:
    s = get_settings()
    try:
        paths = await run_import(get_client(), s, formatName, citekey, library)
    except Exception as e:  # noqa: BLE001
        return _format_error("Error running import", e)
    header = ["# Imported notes", f"Written: {len(paths)}"]
    return "\n".join(header) + _compact_json_block("result", _import_result(paths, s))
