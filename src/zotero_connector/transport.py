"""HTTP transport to the Better BibTeX endpoint on localhost.

Requests use urllib and run on a worker thread so the event loop keeps
serving the update channel while Zotero's picker is open.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import urllib.error
import urllib.request
from typing import Any

from zotero_connector.errors import TransportError

logger = logging.getLogger("zotero_connector")

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "User-Agent": "obsidian/zotero",
    "Accept": "application/json",
    "Connection": "keep-alive",
}


def base_url(port: int) -> str:
    return f"http://127.0.0.1:{port}/better-bibtex"


def _request_sync(url: str, method: str, body: Any | None, timeout: float | None) -> str:
    data = json.dumps(body).encode("utf-8") if body is not None else None
    req = urllib.request.Request(url, data=data, headers=DEFAULT_HEADERS, method=method)
    _t0 = time.perf_counter()
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:  # nosec - localhost endpoint
            raw = resp.read()
    except urllib.error.HTTPError as e:
        raise TransportError(f"HTTP {e.code} from Better BibTeX", status=e.code, url=url) from e
    except urllib.error.URLError as e:
        raise TransportError(f"Cannot reach Better BibTeX: {e.reason}", url=url) from e
    except (TimeoutError, OSError) as e:
        raise TransportError(f"Cannot reach Better BibTeX: {e}", url=url) from e
    _ms = round((time.perf_counter() - _t0) * 1000, 1)
    logger.debug(f"{method} {url} -> {len(raw)} bytes in {_ms} ms")
    if isinstance(raw, (bytes, bytearray)):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


async def request_text(
    url: str,
    method: str = "GET",
    body: Any | None = None,
    timeout: float | None = None,
) -> str:
    """Issue one request and return the body as text; raises ``TransportError``."""
    return await asyncio.to_thread(_request_sync, url, method, body, timeout)
