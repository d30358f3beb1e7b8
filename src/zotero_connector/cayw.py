"""Cite-as-you-write client for the Better BibTeX picker endpoint.

Every public coroutine degrades to ``None`` or ``[]`` and reports through
the host's notices instead of raising.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from zotero_connector.errors import MalformedResponseError
from zotero_connector.formats import CitationFormat, get_query_params
from zotero_connector.host import HeadlessHost, Host
from zotero_connector.jsonrpc import BBT_JSON_TRANSLATOR, JsonRpcClient
from zotero_connector.liveness import LIVENESS_TTL_SECONDS, LivenessCache
from zotero_connector.queue import RequestQueue
from zotero_connector.settings import DatabaseWithPort
from zotero_connector.transport import base_url, request_text

logger = logging.getLogger("zotero_connector")

CAYW_JSON_QUERY = f"format=translate&translator={BBT_JSON_TRANSLATOR}&exportNotes=false"


@dataclass(frozen=True)
class CiteKey:
    key: str
    library: int = 1


def cite_key_from_any(item: Any) -> CiteKey | None:
    """Read a citekey from a Better BibTeX record, whichever name it uses."""
    if not isinstance(item, dict):
        return None
    key = item.get("citekey") or item.get("citationKey")
    if not key or not isinstance(key, str):
        return None
    library = item.get("libraryID")
    try:
        library = int(library) if library is not None else 1
    except (TypeError, ValueError):
        library = 1
    return CiteKey(key=key, library=library)


class CitationProtocolClient:
    def __init__(
        self,
        queue: RequestQueue | None = None,
        liveness: LivenessCache | None = None,
        host: Host | None = None,
        timeout: float | None = None,
        liveness_ttl: float = LIVENESS_TTL_SECONDS,
        picker_timeout: float | None = None,
    ) -> None:
        self.queue = queue or RequestQueue()
        self.host = host or HeadlessHost()
        self.timeout = timeout
        # the picker waits on a person; None leaves it unbounded
        self.picker_timeout = picker_timeout
        self.liveness = liveness or LivenessCache(self.queue, host=self.host, ttl=liveness_ttl, timeout=timeout)
        self.rpc = JsonRpcClient(self.queue, self.liveness, timeout=timeout)

    async def _picker(self, database: DatabaseWithPort, query: str) -> str:
        url = f"{base_url(database.resolved_port)}/cayw?{query}"
        self.host.show_window()
        try:
            with self.host.loading("Awaiting item selection from Zotero..."):
                return await self.queue.run(
                    lambda: request_text(url, timeout=self.picker_timeout), timeout=self.picker_timeout
                )
        finally:
            self.host.show_window()

    async def retrieve_formatted_citation(self, fmt: CitationFormat, database: DatabaseWithPort) -> str | None:
        """Open the picker and return the citation text Better BibTeX rendered."""
        if not await self.liveness.is_running(database):
            return None
        try:
            if fmt.format == "formatted-bibliography":
                cite_keys = await self.retrieve_cite_keys(database)
                return await self.rpc.get_bib_from_cite_keys(cite_keys, database, fmt.csl_style)
            if fmt.format == "template":
                from zotero_connector.export import render_cite_template

                return await render_cite_template(self, fmt, database)
            return await self._picker(database, get_query_params(fmt))
        except Exception as e:  # noqa: BLE001
            logger.exception(f"error processing citation ({fmt.format})")
            self.host.notice(f"Error processing citation: {e}")
            return None

    async def get_cayw_json(self, database: DatabaseWithPort) -> list[Any] | None:
        """Pick items and return the raw ``items`` of the JSON export."""
        if not await self.liveness.is_running(database):
            return None
        try:
            res = await self._picker(database, CAYW_JSON_QUERY)
            if not res:
                return None
            try:
                data = json.loads(res)
            except ValueError as e:
                raise MalformedResponseError("picker response is not JSON") from e
            items = data.get("items") if isinstance(data, dict) else None
            return items if isinstance(items, list) else []
        except Exception as e:  # noqa: BLE001
            logger.exception("error retrieving cite key")
            self.host.notice(f"Error retrieving cite key: {e}")
            return None

    async def retrieve_cite_keys(self, database: DatabaseWithPort) -> list[CiteKey]:
        try:
            items = await self.get_cayw_json(database)
        except Exception:  # noqa: BLE001
            logger.exception("error collecting cite keys")
            return []
        if not items:
            return []
        cite_keys = [cite_key_from_any(it) for it in items]
        return [k for k in cite_keys if k is not None]
