"""Push channel: a websocket that announces newly cited items.

Each text frame looks like ``{"data": {...item with citekey...}}``. A frame
that resolves to a citekey triggers the same import a user would run by
hand; anything else is logged and dropped.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from typing import Any, Awaitable, Callable

import aiohttp

from zotero_connector.cayw import CiteKey, cite_key_from_any

logger = logging.getLogger("zotero_connector")

HANDSHAKE = "Hello Server!"

OnCiteKeys = Callable[[list[CiteKey]], Awaitable[Any]]


class ChannelState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ReconnectPolicy:
    """Decide whether and when to reconnect; ``None`` means stop."""

    def next_delay(self, attempt: int) -> float | None:
        return None


class NoReconnect(ReconnectPolicy):
    pass


class FixedDelayReconnect(ReconnectPolicy):
    def __init__(self, delay: float = 5.0, max_attempts: int | None = None) -> None:
        self.delay = delay
        self.max_attempts = max_attempts

    def next_delay(self, attempt: int) -> float | None:
        if self.max_attempts is not None and attempt > self.max_attempts:
            return None
        return self.delay


class UpdateChannel:
    def __init__(
        self,
        url: str,
        on_cite_keys: OnCiteKeys,
        reconnect: ReconnectPolicy | None = None,
        session_factory: Callable[[], Any] = aiohttp.ClientSession,
        on_state: Callable[[ChannelState], None] | None = None,
    ) -> None:
        self.url = url
        self._on_cite_keys = on_cite_keys
        self.reconnect = reconnect or NoReconnect()
        self._session_factory = session_factory
        self._on_state = on_state
        self._state = ChannelState.DISCONNECTED
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._stopping = False

    @property
    def state(self) -> ChannelState:
        return self._state

    def _set_state(self, state: ChannelState) -> None:
        if state is self._state:
            return
        logger.debug(f"update channel: {self._state.value} -> {state.value}")
        self._state = state
        if self._on_state is not None:
            self._on_state(state)

    async def handle_message(self, raw: Any) -> CiteKey | None:
        """Import the item a frame announces; return its citekey, or None if dropped."""
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"update channel: dropping malformed frame: {e}")
            return None
        data = payload.get("data") if isinstance(payload, dict) else None
        cite_key = cite_key_from_any(data)
        if cite_key is None:
            logger.warning("update channel: frame carries no citekey; dropped")
            return None
        logger.info(f"update channel: new citation {cite_key.key}")
        try:
            paths = await self._on_cite_keys([cite_key])
        except Exception:  # noqa: BLE001
            logger.exception(f"update channel: import of {cite_key.key} failed")
            return cite_key
        logger.info(f"update channel: imported {cite_key.key} -> {paths}")
        return cite_key

    async def _connect_once(self) -> bool:
        connected = False
        self._set_state(ChannelState.CONNECTING)
        try:
            async with self._session_factory() as session:
                async with session.ws_connect(self.url) as ws:
                    self._ws = ws
                    connected = True
                    self._set_state(ChannelState.CONNECTED)
                    logger.info(f"update channel connected to {self.url}")
                    await ws.send_str(HANDSHAKE)
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            await self.handle_message(msg.data)
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            logger.error(f"update channel error: {ws.exception()}")
                            break
        except (aiohttp.ClientError, OSError) as e:
            logger.error(f"update channel connection to {self.url} failed: {e}")
        finally:
            self._ws = None
            self._set_state(ChannelState.DISCONNECTED)
            logger.info("update channel closed")
        return connected

    async def run(self) -> None:
        """Listen until stopped or until the reconnect policy gives up."""
        self._stopping = False
        attempt = 0
        while not self._stopping:
            connected = await self._connect_once()
            if self._stopping:
                break
            attempt = 1 if connected else attempt + 1
            delay = self.reconnect.next_delay(attempt)
            if delay is None:
                break
            logger.info(f"update channel: reconnecting in {delay:g}s (attempt {attempt})")
            await asyncio.sleep(delay)

    async def stop(self) -> None:
        self._stopping = True
        ws = self._ws
        if ws is not None and not ws.closed:
            await ws.close()
