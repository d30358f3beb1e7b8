"""Better BibTeX JSON-RPC calls (bibliographies, item export, attachments)."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from zotero_connector.errors import MalformedResponseError, RpcError, UnreachableError
from zotero_connector.liveness import LivenessCache
from zotero_connector.queue import RequestQueue
from zotero_connector.settings import DatabaseWithPort
from zotero_connector.transport import base_url, request_text

logger = logging.getLogger("zotero_connector")

# Better BibTeX JSON export; also used by the picker's machine-readable mode
BBT_JSON_TRANSLATOR = "36a3b0b5-bad0-4a04-b79b-441c7cef77db"


class JsonRpcClient:
    def __init__(self, queue: RequestQueue, liveness: LivenessCache, timeout: float | None = None) -> None:
        self._queue = queue
        self._liveness = liveness
        self._timeout = timeout

    async def call(self, method: str, params: list[Any], database: DatabaseWithPort) -> Any:
        if not await self._liveness.is_running(database, silent=True):
            raise UnreachableError(f"{method}: Better BibTeX is not running")
        url = f"{base_url(database.resolved_port)}/json-rpc"
        payload = {"jsonrpc": "2.0", "method": method, "params": params}
        raw = await self._queue.run(
            lambda: request_text(url, method="POST", body=payload, timeout=self._timeout),
            timeout=self._timeout,
        )
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise MalformedResponseError(f"{method}: response is not JSON") from e
        if not isinstance(data, dict):
            raise MalformedResponseError(f"{method}: expected a JSON-RPC object")
        err = data.get("error")
        if err:
            msg = err.get("message") if isinstance(err, dict) else str(err)
            raise RpcError(f"{method}: {msg}", url=url)
        return data.get("result")

    async def get_bib_from_cite_keys(
        self,
        cite_keys: Iterable[Any],
        database: DatabaseWithPort,
        csl_style: str | None = None,
    ) -> str | None:
        keys = list(cite_keys)
        if not keys:
            return None
        if not await self._liveness.is_running(database):
            return None
        params: dict[str, Any] = {"contentType": "text"}
        if csl_style:
            params["id"] = csl_style
        else:
            params["quickCopy"] = True
        res = await self.call("item.bibliography", [[k.key for k in keys], params, keys[0].library], database)
        if res is None:
            return None
        return str(res)

    async def get_item_json_from_cite_keys(
        self, cite_keys: Iterable[Any], database: DatabaseWithPort
    ) -> list[dict[str, Any]]:
        """Export full item records for ``cite_keys`` (all from one library)."""
        keys = list(cite_keys)
        if not keys:
            return []
        res = await self.call(
            "item.export", [[k.key for k in keys], BBT_JSON_TRANSLATOR, keys[0].library], database
        )
        # older Better BibTeX releases answer [status, contentType, body]
        if isinstance(res, list):
            res = res[-1] if res else None
        if isinstance(res, str):
            try:
                res = json.loads(res)
            except ValueError as e:
                raise MalformedResponseError("item.export: body is not JSON") from e
        if not isinstance(res, dict) or not isinstance(res.get("items"), list):
            raise MalformedResponseError("item.export: missing 'items'")
        return [it for it in res["items"] if isinstance(it, dict)]

    async def get_attachments(self, cite_key: Any, database: DatabaseWithPort) -> list[dict[str, Any]]:
        res = await self.call("item.attachments", [cite_key.key, cite_key.library], database)
        if not isinstance(res, list):
            return []
        return [a for a in res if isinstance(a, dict)]
