"""Tests for the single-flight request queue"""

from __future__ import annotations

import asyncio

import pytest

from zotero_connector.errors import RequestTimeoutError
from zotero_connector.queue import RequestQueue


@pytest.mark.asyncio
async def test_tickets_activate_one_at_a_time_in_submission_order() -> None:
    q = RequestQueue()
    order: list[int] = []
    holders = 0
    max_holders = 0

    async def worker(i: int) -> None:
        nonlocal holders, max_holders
        async with q.ticket() as t:
            holders += 1
            max_holders = max(max_holders, holders)
            order.append(i)
            assert q.active == t
            await asyncio.sleep(0.001)
            assert q.active == t
            holders -= 1

    await asyncio.gather(*(asyncio.create_task(worker(i)) for i in range(8)))
    assert order == list(range(8))
    assert max_holders == 1
    assert q.active is None
    assert q.pending == []


@pytest.mark.asyncio
async def test_end_promotes_next_waiter() -> None:
    q = RequestQueue()
    await q.wait("a")
    second = asyncio.create_task(q.wait("b"))
    await asyncio.sleep(0)
    assert not second.done()
    assert q.pending == ["b"]

    q.end("a")
    await asyncio.wait_for(second, 1)
    assert q.active == "b"
    q.end("b")
    assert q.active is None


@pytest.mark.asyncio
async def test_failure_inside_ticket_still_releases() -> None:
    q = RequestQueue()

    async def boom() -> None:
        async with q.ticket():
            await asyncio.sleep(0)
            raise RuntimeError("server exploded")

    async def ok() -> str:
        async with q.ticket():
            return "done"

    results = await asyncio.wait_for(
        asyncio.gather(boom(), ok(), ok(), return_exceptions=True), 1
    )
    assert isinstance(results[0], RuntimeError)
    assert results[1:] == ["done", "done"]
    assert q.active is None


@pytest.mark.asyncio
async def test_leaked_ticket_blocks_followers() -> None:
    q = RequestQueue()
    await q.wait("leaked")
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(q.wait("stuck"), 0.05)
    # the cancelled waiter left the line
    assert q.pending == []
    assert q.active == "leaked"


@pytest.mark.asyncio
async def test_timeout_raises_and_releases() -> None:
    q = RequestQueue()

    with pytest.raises(RequestTimeoutError):
        await q.run(lambda: asyncio.sleep(1), timeout=0.01)
    assert q.active is None

    async def quick() -> int:
        return 42

    assert await q.run(quick, timeout=1) == 42


@pytest.mark.asyncio
async def test_end_of_waiting_ticket_withdraws_it() -> None:
    q = RequestQueue()
    await q.wait("a")
    waiter = asyncio.create_task(q.wait("b"))
    await asyncio.sleep(0)
    q.end("b")
    assert q.pending == []
    q.end("a")
    assert q.active is None
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
