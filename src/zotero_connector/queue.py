"""Single-flight FIFO gate in front of the Better BibTeX server.

Better BibTeX handles one CAYW picker at a time, so every outbound call
holds a ticket while it talks to the server. Use ``RequestQueue.ticket()``
(or ``run()``) rather than pairing ``wait``/``end`` by hand: both release the
slot on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from zotero_connector.errors import RequestTimeoutError

logger = logging.getLogger("zotero_connector")

T = TypeVar("T")

QueueTicket = str


def new_ticket() -> QueueTicket:
    return uuid.uuid4().hex


async def with_timeout(aw: Awaitable[T], timeout: float | None) -> T:
    """Await ``aw``, raising ``RequestTimeoutError`` once ``timeout`` seconds pass."""
    if timeout is None:
        return await aw
    try:
        return await asyncio.wait_for(aw, timeout)
    except asyncio.TimeoutError as e:
        raise RequestTimeoutError(f"No response from Better BibTeX within {timeout:g}s") from e


class RequestQueue:
    def __init__(self) -> None:
        self._active: QueueTicket | None = None
        self._waiting: deque[tuple[QueueTicket, asyncio.Future[None]]] = deque()

    @property
    def active(self) -> QueueTicket | None:
        return self._active

    @property
    def pending(self) -> list[QueueTicket]:
        return [t for t, fut in self._waiting if not fut.cancelled()]

    async def wait(self, ticket: QueueTicket) -> None:
        """Return once ``ticket`` holds the channel."""
        if self._active is None and not self.pending:
            self._active = ticket
            logger.debug(f"queue: {ticket[:8]} active")
            return
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiting.append((ticket, fut))
        logger.debug(f"queue: {ticket[:8]} waiting ({len(self._waiting)} in line)")
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # promoted right before the cancellation landed
                self.end(ticket)
            else:
                self._discard(ticket)
            raise

    def end(self, ticket: QueueTicket) -> None:
        """Release ``ticket`` and promote the next waiter in arrival order."""
        if self._active != ticket:
            self._discard(ticket)
            return
        self._active = None
        while self._waiting:
            nxt, fut = self._waiting.popleft()
            if fut.cancelled():
                continue
            self._active = nxt
            fut.set_result(None)
            logger.debug(f"queue: {nxt[:8]} active")
            break

    def _discard(self, ticket: QueueTicket) -> None:
        self._waiting = deque((t, f) for t, f in self._waiting if t != ticket)

    @asynccontextmanager
    async def ticket(self) -> AsyncIterator[QueueTicket]:
        qid = new_ticket()
        await self.wait(qid)
        try:
            yield qid
        finally:
            self.end(qid)

    async def run(self, factory: Callable[[], Awaitable[T]], timeout: float | None = None) -> T:
        """Run ``factory()`` while holding a ticket, with an optional timeout."""
        async with self.ticket():
            return await with_timeout(factory(), timeout)
