"""Tests for citation format -> picker query mapping"""

from __future__ import annotations

import pytest

from zotero_connector.formats import CitationFormat, ExportFormat, get_query_params


@pytest.mark.parametrize(
    "fmt, expected",
    [
        (CitationFormat("latex"), "format=latex&command=cite"),
        (CitationFormat("latex", command="textcite"), "format=latex&command=textcite"),
        (CitationFormat("biblatex"), "format=biblatex&command=autocite"),
        (CitationFormat("biblatex", command="parencite"), "format=biblatex&command=parencite"),
        (CitationFormat("pandoc"), "format=pandoc"),
        (CitationFormat("pandoc", brackets=True), "format=pandoc&brackets=true"),
        (CitationFormat("formatted-citation"), "format=formatted-citation"),
        (CitationFormat("formatted-citation", csl_style="apa"), "format=formatted-citation&style=apa"),
        (CitationFormat("formatted-bibliography"), "format=formatted-bibliography"),
    ],
)
def test_query_params(fmt: CitationFormat, expected: str) -> None:
    assert get_query_params(fmt) == expected


def test_template_has_no_picker_query() -> None:
    with pytest.raises(ValueError):
        get_query_params(CitationFormat("template", template="[[{{citekey}}]]"))


def test_unknown_format_rejected() -> None:
    with pytest.raises(ValueError):
        CitationFormat("mla")  # type: ignore[arg-type]


def test_from_dict_accepts_plugin_keys() -> None:
    fmt = CitationFormat.from_dict({"name": "APA", "format": "formatted-citation", "cslStyle": "apa"})
    assert fmt.name == "APA"
    assert fmt.csl_style == "apa"
    exp = ExportFormat.from_dict({"name": "Notes", "outputPathTemplate": "refs"})
    assert exp.output_folder == "refs"
