"""Reshape a Better BibTeX item record into fields note templates can use.

``apply_basic_templates`` adds derived fields to the record in place:

- ``authors``, ``editors``, ... one comma-joined string per creator type
- ``pdfLink`` / ``pdfZoteroLink`` for the first PDF attachment
- ``markdownNotes``, ``allTags``, ``hashTags``
- ``formattedAnnotations`` (every annotation) and ``formattedAnnotationsNew``
  (only annotations dated after ``last_export_date``)

Fields whose input is missing or renders empty are left unset.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

DERIVED_FIELDS = (
    "pdfLink",
    "pdfZoteroLink",
    "markdownNotes",
    "allTags",
    "hashTags",
    "formattedAnnotations",
    "formattedAnnotationsNew",
)

# Zotero's annotation palette
COLOR_CATEGORIES = {
    "#ffd400": "Yellow",
    "#ff6666": "Red",
    "#5fb236": "Green",
    "#2ea8e5": "Blue",
    "#a28ae5": "Purple",
    "#e56eee": "Magenta",
    "#f19837": "Orange",
    "#aaaaaa": "Gray",
}

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


def parse_date(value: Any) -> datetime | None:
    """Parse ISO-ish timestamps; naive values are taken as UTC."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _creator_name(creator: dict[str, Any]) -> str:
    if creator.get("name"):
        return str(creator["name"])
    parts = [creator.get("firstName"), creator.get("lastName")]
    return " ".join(str(p) for p in parts if p)


def group_creators(creators: list[Any]) -> dict[str, str]:
    by_type: dict[str, list[str]] = {}
    for c in creators:
        if not isinstance(c, dict) or not c.get("creatorType"):
            continue
        by_type.setdefault(str(c["creatorType"]), []).append(_creator_name(c))
    return {f"{ctype}s": ", ".join(names).strip() for ctype, names in by_type.items()}


def first_pdf(attachments: list[Any]) -> dict[str, Any] | None:
    for a in attachments:
        if isinstance(a, dict) and isinstance(a.get("path"), str) and a["path"].endswith(".pdf"):
            return a
    return None


def color_category(annotation: dict[str, Any]) -> str:
    if annotation.get("colorCategory"):
        return str(annotation["colorCategory"])
    color = annotation.get("color")
    if not isinstance(color, str):
        return ""
    return COLOR_CATEGORIES.get(color.lower(), "")


def _is_after(value: Any, since: datetime) -> bool:
    dt = parse_date(value)
    if dt is None:
        # undated annotations only show up in the full rendering
        return since <= EPOCH
    return dt > since


def _format_annotation(annotation: dict[str, Any]) -> list[str]:
    lines: list[str] = []
    page = annotation.get("page", "")
    item_key = (annotation.get("attachment") or {}).get("itemKey", "")
    kind = str(annotation.get("type") or "").capitalize()
    if annotation.get("annotatedText"):
        label = f" {color_category(annotation)} {kind} " if annotation.get("color") else f" {kind} "
        link = f"[Page {page}](zotero://open-pdf/library/items/{item_key}?page={page})"
        lines.append(f"> “{annotation['annotatedText']}”{label}{link}")
    if annotation.get("imageRelativePath"):
        lines.append(f"> ![[{annotation['imageRelativePath']}]]")
    if annotation.get("comment"):
        lines.extend(["", str(annotation["comment"])])
    lines.append("")
    return lines


def format_annotations(annotations: list[Any], since: datetime, export_date: datetime) -> str:
    """Render annotations dated strictly after ``since``; '' when none qualify."""
    selected = [a for a in annotations if isinstance(a, dict) and _is_after(a.get("date"), since)]
    if not selected:
        return ""
    lines = [f"**Exported: {export_date:%Y-%m-%d}**", ""]
    for a in selected:
        lines.extend(_format_annotation(a))
    return "\n".join(lines).strip()


def apply_basic_templates(
    item: dict[str, Any],
    last_export_date: Any = None,
    export_date: datetime | None = None,
) -> dict[str, Any]:
    if not item:
        return item
    for k in DERIVED_FIELDS:
        item.pop(k, None)
    export_date = export_date or datetime.now(timezone.utc)

    item.update(group_creators(item.get("creators") or []))

    pdf = first_pdf(item.get("attachments") or [])
    if pdf is not None:
        item["pdfLink"] = f"[{pdf.get('title', '')}](file://{pdf['path'].replace(' ', '%20')})"
        if pdf.get("desktopURI"):
            item["pdfZoteroLink"] = pdf["desktopURI"]

    notes = "\n\n".join(
        str(n["note"]).strip() for n in item.get("notes") or [] if isinstance(n, dict) and n.get("note")
    ).strip()
    if notes:
        item["markdownNotes"] = notes

    tags = [str(t["tag"]) for t in item.get("tags") or [] if isinstance(t, dict) and t.get("tag")]
    if tags:
        item["allTags"] = ", ".join(tags)
        item["hashTags"] = ", ".join("#" + re.sub(r"\s+", "-", t.strip()) for t in tags)

    annotations = item.get("annotations") or []
    if annotations:
        since = parse_date(last_export_date) or EPOCH
        fresh = format_annotations(annotations, since, export_date)
        if fresh:
            item["formattedAnnotationsNew"] = fresh
        everything = format_annotations(annotations, EPOCH, export_date)
        if everything:
            item["formattedAnnotations"] = everything

    return item


def _lookup(data: Any, path: str) -> Any:
    cur = data
    for part in path.split("."):
        if isinstance(cur, dict):
            cur = cur.get(part)
        elif isinstance(cur, list) and part.isdigit() and int(part) < len(cur):
            cur = cur[int(part)]
        else:
            return None
    return cur


def interpolate(template: str, data: dict[str, Any]) -> str:
    """Fill ``{{ field }}`` and ``{{ a.b }}`` placeholders; missing values render empty."""

    def repl(m: re.Match[str]) -> str:
        path = m.group(1)
        value = _lookup(data, path)
        if value is None and path == "citekey":
            value = data.get("citationKey")
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(repl, template)
