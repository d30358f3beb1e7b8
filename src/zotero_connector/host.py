"""Host-side collaborators: notices, window focus and loading indicators.

The connector never talks to a UI directly. Whatever embeds it (the MCP
server, a script, a test) supplies a ``Host``; ``HeadlessHost`` logs
everything and remembers the notices it was asked to show.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger("zotero_connector")

NOTICE_TIMEOUT_MS = 10000


class Host:
    def notice(self, message: str, timeout_ms: int = NOTICE_TIMEOUT_MS) -> None:
        logger.warning(f"notice: {message}")

    def show_window(self) -> None:
        """Bring the host window back to the foreground."""

    @contextmanager
    def loading(self, message: str) -> Iterator[None]:
        yield


class HeadlessHost(Host):
    def __init__(self) -> None:
        self.notices: list[str] = []
        self.window_raises = 0

    def notice(self, message: str, timeout_ms: int = NOTICE_TIMEOUT_MS) -> None:
        self.notices.append(message)
        logger.warning(f"notice: {message}")

    def show_window(self) -> None:
        self.window_raises += 1

    @contextmanager
    def loading(self, message: str) -> Iterator[None]:
        logger.debug(f"loading: {message}")
        try:
            yield
        finally:
            logger.debug(f"loading done: {message}")
