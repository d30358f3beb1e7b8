"""Cached answer to "is Zotero with Better BibTeX running?"."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from zotero_connector.errors import ZoteroConnectorError
from zotero_connector.host import HeadlessHost, Host
from zotero_connector.queue import RequestQueue, with_timeout
from zotero_connector.settings import DatabaseWithPort
from zotero_connector.transport import base_url, request_text

logger = logging.getLogger("zotero_connector")

LIVENESS_TTL_SECONDS = 30.0
NOT_RUNNING_NOTICE = (
    "Cannot connect to Zotero. Please ensure it is running and the Better BibTeX plugin is installed"
)


@dataclass(frozen=True)
class LivenessState:
    is_running: bool
    last_checked_at: float


class LivenessCache:
    """Liveness results shared by every caller, successful or not, for ``ttl`` seconds."""

    def __init__(
        self,
        queue: RequestQueue,
        host: Host | None = None,
        ttl: float = LIVENESS_TTL_SECONDS,
        timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._queue = queue
        self._host = host or HeadlessHost()
        self.ttl = ttl
        self._timeout = timeout
        self._clock = clock
        self._state: LivenessState | None = None

    @property
    def state(self) -> LivenessState | None:
        return self._state

    def reset(self) -> None:
        self._state = None

    def _fresh(self) -> LivenessState | None:
        st = self._state
        if st is not None and self._clock() - st.last_checked_at < self.ttl:
            return st
        return None

    async def is_running(self, database: DatabaseWithPort, silent: bool = False) -> bool:
        running = await self._check(database, silent)
        if not running and not silent:
            self._host.notice(NOT_RUNNING_NOTICE)
        return running

    async def _check(self, database: DatabaseWithPort, silent: bool) -> bool:
        st = self._fresh()
        if st is not None:
            return st.is_running
        try:
            url = f"{base_url(database.resolved_port)}/cayw?probe=true"
        except ValueError as e:
            # misconfigured, not cached: the next call may carry a fixed port
            logger.error(f"liveness check skipped: {e}")
            return False

        async with self._queue.ticket():
            # another caller may have checked while this one waited in line
            st = self._fresh()
            if st is not None:
                return st.is_running
            running = False
            try:
                if silent:
                    body = await with_timeout(request_text(url, timeout=self._timeout), self._timeout)
                else:
                    with self._host.loading("Fetching data from Zotero..."):
                        body = await with_timeout(request_text(url, timeout=self._timeout), self._timeout)
                running = body.strip() == "ready"
                if not running:
                    logger.warning(f"liveness check returned unexpected body: {body[:80]!r}")
            except ZoteroConnectorError as e:
                logger.info(f"liveness check failed: {e}")
            self._state = LivenessState(running, self._clock())
        return running
