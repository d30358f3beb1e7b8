"""Citation and export formats, and the picker query each citation format maps to."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping
from urllib.parse import quote

FormatName = Literal[
    "formatted-bibliography",
    "formatted-citation",
    "pandoc",
    "latex",
    "biblatex",
    "template",
]

FORMAT_NAMES: tuple[str, ...] = (
    "formatted-bibliography",
    "formatted-citation",
    "pandoc",
    "latex",
    "biblatex",
    "template",
)


@dataclass(frozen=True)
class CitationFormat:
    format: FormatName
    name: str = ""
    csl_style: str | None = None
    brackets: bool = False
    command: str | None = None
    template: str | None = None

    def __post_init__(self) -> None:
        if self.format not in FORMAT_NAMES:
            raise ValueError(f"Unknown citation format: {self.format!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CitationFormat":
        return cls(
            format=data["format"],
            name=str(data.get("name") or data["format"]),
            csl_style=data.get("csl_style") or data.get("cslStyle") or None,
            brackets=bool(data.get("brackets", False)),
            command=data.get("command") or None,
            template=data.get("template"),
        )


@dataclass(frozen=True)
class ExportFormat:
    name: str
    output_folder: str | None = None
    image_folder: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExportFormat":
        return cls(
            name=str(data["name"]),
            output_folder=data.get("output_folder") or data.get("outputPathTemplate") or data.get("outputFolder"),
            image_folder=data.get("image_folder") or data.get("imageOutputPathTemplate") or data.get("imageFolder"),
        )


def get_query_params(fmt: CitationFormat) -> str:
    """Return the CAYW query string for a citation format.

    >>> get_query_params(CitationFormat("latex"))
    'format=latex&command=cite'
    """
    kind = fmt.format
    if kind == "formatted-bibliography":
        return "format=formatted-bibliography"
    if kind == "formatted-citation":
        return "format=formatted-citation" + (f"&style={quote(fmt.csl_style, safe='')}" if fmt.csl_style else "")
    if kind == "pandoc":
        return "format=pandoc" + ("&brackets=true" if fmt.brackets else "")
    if kind == "latex":
        return f"format=latex&command={quote(fmt.command or 'cite', safe='')}"
    if kind == "biblatex":
        return f"format=biblatex&command={quote(fmt.command or 'autocite', safe='')}"
    raise ValueError("Template citations are rendered locally and have no picker query")
