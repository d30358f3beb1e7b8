"""Import Zotero items as Markdown notes.

A note lives at ``<folder>/<citekey>.md``. Its YAML front matter records
when it was last imported (``zotero-last-import``); re-importing appends
only the annotations made since then.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import yaml

from zotero_connector.cayw import CitationProtocolClient, CiteKey, cite_key_from_any
from zotero_connector.formats import CitationFormat, ExportFormat
from zotero_connector.settings import ConnectorSettings, DatabaseWithPort
from zotero_connector.templates import apply_basic_templates, interpolate, parse_date

logger = logging.getLogger("zotero_connector")

LAST_IMPORT_KEY = "zotero-last-import"
_FRONT_MATTER = re.compile(r"^---\n(.*?)\n---\n?(.*)$", flags=re.DOTALL)
_ITEM_KEY = re.compile(r"/items/([A-Z0-9]{8})")


@dataclass
class ExportContext:
    client: CitationProtocolClient
    database: DatabaseWithPort
    export_format: ExportFormat | None = None
    note_folder: str = ""

    @property
    def folder(self) -> Path:
        raw = (self.export_format.output_folder if self.export_format else None) or self.note_folder or "."
        return Path(raw).expanduser()


def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    content = (text or "").lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    m = _FRONT_MATTER.match(content)
    if not m:
        return {}, content
    try:
        fm = yaml.safe_load(m.group(1)) if m.group(1).strip() else {}
    except yaml.YAMLError:
        logger.warning("unreadable front matter; treating note as new")
        return {}, m.group(2)
    return (fm if isinstance(fm, dict) else {}), m.group(2)


def join_front_matter(fm: dict[str, Any], body: str) -> str:
    dumped = yaml.safe_dump(fm, sort_keys=False, allow_unicode=True).strip()
    return f"---\n{dumped}\n---\n{body}"


def _safe_filename(key: str) -> str:
    return re.sub(r"[\\/:*?\"<>|]", "_", key)


def normalize_annotation(raw: dict[str, Any], attachment: dict[str, Any]) -> dict[str, Any]:
    """Map a Better BibTeX attachment annotation to the shape the enricher expects."""
    if "annotatedText" in raw or "attachment" in raw:
        return dict(raw)
    item_key = raw.get("parentItem") or ""
    if not item_key:
        m = _ITEM_KEY.search(str(attachment.get("open") or ""))
        item_key = m.group(1) if m else ""
    page = raw.get("annotationPageLabel")
    if not page:
        pos = raw.get("annotationPosition") or {}
        if isinstance(pos, dict) and isinstance(pos.get("pageIndex"), int):
            page = pos["pageIndex"] + 1
    out = {
        "date": raw.get("dateModified") or raw.get("dateAdded") or raw.get("date"),
        "annotatedText": raw.get("annotationText"),
        "comment": raw.get("annotationComment"),
        "color": raw.get("annotationColor"),
        "type": raw.get("annotationType"),
        "page": page or "",
        "attachment": {"itemKey": item_key},
    }
    if raw.get("imageRelativePath"):
        out["imageRelativePath"] = raw["imageRelativePath"]
    return out


async def _collect_annotations(ctx: ExportContext, cite_key: CiteKey) -> list[dict[str, Any]]:
    try:
        attachments = await ctx.client.rpc.get_attachments(cite_key, ctx.database)
    except Exception as e:  # noqa: BLE001
        logger.warning(f"could not fetch annotations for {cite_key.key}: {e}")
        return []
    out: list[dict[str, Any]] = []
    for att in attachments:
        for raw in att.get("annotations") or []:
            if isinstance(raw, dict):
                out.append(normalize_annotation(raw, att))
    return out


def render_note(item: dict[str, Any], cite_key: str) -> str:
    lines = [f"# {item.get('title') or cite_key}", ""]
    if item.get("authors"):
        lines.append(f"**Authors:** {item['authors']}")
    if item.get("pdfLink"):
        pdf = item["pdfLink"]
        if item.get("pdfZoteroLink"):
            pdf += f" ([open in Zotero]({item['pdfZoteroLink']}))"
        lines.append(f"**PDF:** {pdf}")
    if item.get("hashTags"):
        lines.append(f"**Tags:** {item['hashTags']}")
    if item.get("markdownNotes"):
        lines.extend(["", "## Notes", "", item["markdownNotes"]])
    if item.get("formattedAnnotations"):
        lines.extend(["", "## Annotations", "", item["formattedAnnotations"]])
    return "\n".join(lines).strip() + "\n"


def write_note(path: Path, item: dict[str, Any], cite_key: str, now: datetime) -> None:
    """Create the note, or append new annotations to the existing one."""
    existing = path.exists()
    if existing:
        fm, body = split_front_matter(path.read_text(encoding="utf-8"))
        last = parse_date(fm.get(LAST_IMPORT_KEY))
    else:
        fm, body, last = {}, "", None

    apply_basic_templates(item, last_export_date=last, export_date=now)

    fm.setdefault("citekey", cite_key)
    if not existing:
        fm["title"] = item.get("title") or cite_key
        body = render_note(item, cite_key)
    elif item.get("formattedAnnotationsNew"):
        body = body.rstrip() + "\n\n" + item["formattedAnnotationsNew"] + "\n"
    fm[LAST_IMPORT_KEY] = now.isoformat()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(join_front_matter(fm, body), encoding="utf-8")


async def export_to_markdown(
    ctx: ExportContext,
    cite_keys: Iterable[CiteKey | None] | None = None,
    now: datetime | None = None,
) -> list[str]:
    """Write one note per citekey and return the paths written."""
    now = now or datetime.now(timezone.utc)
    written: list[str] = []
    for k, item in await _fetch_records(ctx, cite_keys):
        path = ctx.folder / f"{_safe_filename(k.key)}.md"
        write_note(path, item, k.key, now)
        logger.info(f"exported {k.key} -> {path}")
        written.append(str(path))
    return written


async def render_notes(
    ctx: ExportContext,
    cite_keys: Iterable[CiteKey | None] | None = None,
    now: datetime | None = None,
) -> str | None:
    """Render notes for insertion into an open document; nothing is written."""
    now = now or datetime.now(timezone.utc)
    rendered = []
    for k, item in await _fetch_records(ctx, cite_keys):
        apply_basic_templates(item, export_date=now)
        rendered.append(render_note(item, k.key).strip())
    return "\n\n".join(rendered) + "\n" if rendered else None


def select_notes_to_open(paths: list[str], which: str) -> list[str]:
    """Pick the imported notes to open: first, last or all of them."""
    if not paths:
        return []
    if which == "first-imported-note":
        return paths[:1]
    if which == "last-imported-note":
        return paths[-1:]
    if which == "all-imported-notes":
        return list(paths)
    raise ValueError(f"Unknown note selection: {which!r}")


async def _fetch_records(
    ctx: ExportContext, cite_keys: Iterable[CiteKey | None] | None
) -> list[tuple[CiteKey, dict[str, Any]]]:
    """Item records (annotations included) for ``cite_keys``, in request order."""
    if not await ctx.client.liveness.is_running(ctx.database):
        return []
    if cite_keys is None:
        cite_keys = await ctx.client.retrieve_cite_keys(ctx.database)
    keys = [k for k in cite_keys if k is not None]
    if not keys:
        return []

    by_library: dict[int, list[CiteKey]] = {}
    for k in keys:
        by_library.setdefault(k.library, []).append(k)

    records: dict[tuple[int, str], dict[str, Any]] = {}
    for library, lib_keys in by_library.items():
        try:
            items = await ctx.client.rpc.get_item_json_from_cite_keys(lib_keys, ctx.database)
        except Exception as e:  # noqa: BLE001
            logger.exception("item export failed")
            ctx.client.host.notice(f"Error exporting items from Zotero: {e}")
            continue
        for it in items:
            ck = cite_key_from_any(it)
            if ck is not None:
                records[(library, ck.key)] = it

    out: list[tuple[CiteKey, dict[str, Any]]] = []
    for k in keys:
        item = records.get((k.library, k.key))
        if item is None:
            logger.warning(f"no item data for citekey {k.key} (library {k.library})")
            continue
        if not item.get("annotations"):
            item["annotations"] = await _collect_annotations(ctx, k)
        out.append((k, item))
    return out


async def render_cite_template(
    client: CitationProtocolClient, fmt: CitationFormat, database: DatabaseWithPort
) -> str | None:
    """Pick items and render ``fmt.template`` once per item, space-joined."""
    if not (fmt.template or "").strip():
        return None
    items = await client.get_cayw_json(database)
    if not items:
        return None
    out = []
    for it in items:
        if not isinstance(it, dict):
            continue
        apply_basic_templates(it)
        rendered = interpolate(fmt.template, it).strip()
        if rendered:
            out.append(rendered)
    return " ".join(out) if out else None


async def run_import(
    client: CitationProtocolClient,
    settings: ConnectorSettings,
    name: str,
    citekey: str,
    library: int = 1,
) -> list[str]:
    """Import one citekey with the export format called ``name``."""
    fmt = settings.export_format(name)
    if fmt is None:
        raise ValueError(f'Import format "{name}" not found')
    if citekey.startswith("@"):
        citekey = citekey[1:]
    ctx = ExportContext(client, settings.db, fmt, settings.note_import_folder)
    return await export_to_markdown(ctx, [CiteKey(citekey, library)])
