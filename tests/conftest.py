from __future__ import annotations

import json
import urllib.request
from typing import Any
from urllib.error import URLError

import pytest

from zotero_connector.cayw import CitationProtocolClient
from zotero_connector.host import HeadlessHost
from zotero_connector.settings import DatabaseWithPort


class _Resp:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False

    def read(self) -> bytes:
        return self._body


class FakeBBT:
    """Stand-in for Better BibTeX behind urllib.request.urlopen.

    ``routes`` maps a URL substring to a response body (str/bytes) or an
    exception to raise. ``rpc`` maps a JSON-RPC method to its result (or an
    exception). Unmatched URLs behave like a closed port.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Any] = {}
        self.rpc: dict[str, Any] = {}
        self.requests: list[tuple[str, str, Any]] = []

    def urlopen(self, req, timeout=None):  # noqa: ANN001
        url = req.full_url
        method = req.get_method()
        body = json.loads(req.data) if req.data else None
        self.requests.append((method, url, body))
        if url.endswith("/json-rpc") and body and body.get("method") in self.rpc:
            res = self.rpc[body["method"]]
            if isinstance(res, Exception):
                raise res
            return _Resp(json.dumps({"jsonrpc": "2.0", "result": res}).encode("utf-8"))
        for needle, res in self.routes.items():
            if needle in url:
                if isinstance(res, Exception):
                    raise res
                return _Resp(res if isinstance(res, bytes) else str(res).encode("utf-8"))
        raise URLError("connection refused")

    def count(self, needle: str) -> int:
        return sum(1 for _m, url, _b in self.requests if needle in url)

    def rpc_calls(self, method: str) -> list[Any]:
        return [b for _m, _u, b in self.requests if b and b.get("method") == method]


@pytest.fixture
def bbt(monkeypatch) -> FakeBBT:
    server = FakeBBT()
    monkeypatch.setattr(urllib.request, "urlopen", server.urlopen)
    return server


@pytest.fixture
def host() -> HeadlessHost:
    return HeadlessHost()


@pytest.fixture
def client(host: HeadlessHost) -> CitationProtocolClient:
    return CitationProtocolClient(host=host, timeout=5)


@pytest.fixture
def db() -> DatabaseWithPort:
    return DatabaseWithPort("Zotero")
