"""Tests for the cite-as-you-write protocol client"""

from __future__ import annotations

import json
import time
import urllib.request
from urllib.error import HTTPError

import pytest

from zotero_connector.cayw import CitationProtocolClient, CiteKey, cite_key_from_any
from zotero_connector.formats import CitationFormat
from zotero_connector.liveness import NOT_RUNNING_NOTICE
from zotero_connector.settings import DatabaseWithPort


def test_cite_key_synonyms() -> None:
    assert cite_key_from_any({"citationKey": "smith2020", "libraryID": 1}) == CiteKey("smith2020", 1)
    assert cite_key_from_any({"citekey": "jones2021", "libraryID": 3}) == CiteKey("jones2021", 3)
    assert cite_key_from_any({"title": "No key"}) is None
    assert cite_key_from_any({"citekey": ""}) is None
    assert cite_key_from_any(None) is None
    # library defaults to the user library
    assert cite_key_from_any({"citekey": "k"}) == CiteKey("k", 1)


@pytest.mark.asyncio
async def test_pandoc_citation_returned_verbatim(bbt, client, host, db) -> None:
    bbt.routes["probe=true"] = "ready"
    bbt.routes["format=pandoc"] = "[@smith2020; @jones2021]"

    res = await client.retrieve_formatted_citation(CitationFormat("pandoc", brackets=True), db)
    assert res == "[@smith2020; @jones2021]"
    assert bbt.requests[-1][1] == "http://127.0.0.1:23119/better-bibtex/cayw?format=pandoc&brackets=true"
    assert host.window_raises >= 2
    assert client.queue.active is None


@pytest.mark.asyncio
async def test_latex_default_command(bbt, client, db) -> None:
    bbt.routes["probe=true"] = "ready"
    bbt.routes["format=latex"] = "\\cite{smith2020}"
    res = await client.retrieve_formatted_citation(CitationFormat("latex"), db)
    assert res == "\\cite{smith2020}"
    assert bbt.requests[-1][1].endswith("cayw?format=latex&command=cite")


@pytest.mark.asyncio
async def test_transport_error_returns_none_with_notice(bbt, client, host, db) -> None:
    bbt.routes["probe=true"] = "ready"
    bbt.routes["format=pandoc"] = HTTPError("http://127.0.0.1", 500, "boom", hdrs=None, fp=None)

    res = await client.retrieve_formatted_citation(CitationFormat("pandoc"), db)
    assert res is None
    assert len(host.notices) == 1
    assert host.notices[0].startswith("Error processing citation:")
    assert "500" in host.notices[0]
    assert client.queue.active is None


@pytest.mark.asyncio
async def test_server_down_returns_none_quietly(bbt, client, host, db) -> None:
    res = await client.retrieve_formatted_citation(CitationFormat("pandoc"), db)
    assert res is None
    assert host.notices == [NOT_RUNNING_NOTICE]
    assert bbt.count("format=pandoc") == 0


@pytest.mark.asyncio
async def test_retrieve_cite_keys_skips_keyless_items(bbt, client, db) -> None:
    bbt.routes["probe=true"] = "ready"
    items = [
        {"citationKey": "smith2020", "libraryID": 1},
        {"title": "Keyless"},
        {"citekey": "jones2021", "libraryID": 2},
    ]
    bbt.routes["format=translate"] = json.dumps({"items": items})

    keys = await client.retrieve_cite_keys(db)
    assert keys == [CiteKey("smith2020", 1), CiteKey("jones2021", 2)]
    url = bbt.requests[-1][1]
    assert "translator=36a3b0b5-bad0-4a04-b79b-441c7cef77db" in url
    assert "exportNotes=false" in url


@pytest.mark.asyncio
async def test_retrieve_cite_keys_malformed_json(bbt, client, host, db) -> None:
    bbt.routes["probe=true"] = "ready"
    bbt.routes["format=translate"] = "not json"
    assert await client.retrieve_cite_keys(db) == []
    assert host.notices and host.notices[0].startswith("Error retrieving cite key:")


@pytest.mark.asyncio
async def test_retrieve_cite_keys_empty_selection(bbt, client, host, db) -> None:
    bbt.routes["probe=true"] = "ready"
    bbt.routes["format=translate"] = ""
    assert await client.retrieve_cite_keys(db) == []
    assert host.notices == []


@pytest.mark.asyncio
async def test_formatted_bibliography_uses_picked_keys(bbt, client, db) -> None:
    bbt.routes["probe=true"] = "ready"
    bbt.routes["format=translate"] = json.dumps({"items": [{"citekey": "smith2020", "libraryID": 1}]})
    bbt.rpc["item.bibliography"] = "Smith, A. (2020). A paper."

    res = await client.retrieve_formatted_citation(CitationFormat("formatted-bibliography", csl_style="apa"), db)
    assert res == "Smith, A. (2020). A paper."
    call = bbt.rpc_calls("item.bibliography")[0]
    assert call["params"] == [["smith2020"], {"contentType": "text", "id": "apa"}, 1]
    assert bbt.count("format=formatted-bibliography") == 0


@pytest.mark.asyncio
async def test_formatted_bibliography_quick_copy_without_style(bbt, client, db) -> None:
    bbt.routes["probe=true"] = "ready"
    bbt.routes["format=translate"] = json.dumps({"items": [{"citekey": "smith2020", "libraryID": 1}]})
    bbt.rpc["item.bibliography"] = "Smith 2020"

    await client.retrieve_formatted_citation(CitationFormat("formatted-bibliography"), db)
    params = bbt.rpc_calls("item.bibliography")[0]["params"]
    assert params[1] == {"contentType": "text", "quickCopy": True}


@pytest.mark.asyncio
async def test_template_format_renders_each_item(bbt, client, db) -> None:
    bbt.routes["probe=true"] = "ready"
    items = [
        {"citationKey": "smith2020", "title": "A", "creators": [{"creatorType": "author", "name": "Smith"}]},
        {"citationKey": "jones2021", "title": "B"},
    ]
    bbt.routes["format=translate"] = json.dumps({"items": items})

    fmt = CitationFormat("template", template="[[{{citekey}}]] {{authors}}")
    res = await client.retrieve_formatted_citation(fmt, db)
    assert res == "[[smith2020]] Smith [[jones2021]]"


@pytest.mark.asyncio
async def test_picker_outlasts_request_timeout(bbt, monkeypatch, host, db) -> None:
    bbt.routes["probe=true"] = "ready"
    bbt.routes["format=pandoc"] = "[@smith2020]"

    def slow_urlopen(req, timeout=None):  # noqa: ANN001
        if "format=pandoc" in req.full_url:
            time.sleep(0.5)  # someone browsing the picker
        return bbt.urlopen(req, timeout=timeout)

    monkeypatch.setattr(urllib.request, "urlopen", slow_urlopen)
    client = CitationProtocolClient(host=host, timeout=0.2)

    res = await client.retrieve_formatted_citation(CitationFormat("pandoc"), db)
    assert res == "[@smith2020]"
    assert host.notices == []


@pytest.mark.asyncio
async def test_missing_custom_port_degrades(bbt, client, host) -> None:
    custom = DatabaseWithPort("Custom")

    assert await client.retrieve_formatted_citation(CitationFormat("pandoc"), custom) is None
    assert await client.get_cayw_json(custom) is None
    assert await client.retrieve_cite_keys(custom) == []
    assert host.notices and all(n == NOT_RUNNING_NOTICE for n in host.notices)
    assert bbt.requests == []
    assert client.queue.active is None
