"""Finnhub websocket feed: the single upstream connection for streaming trades."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

import websockets

from .errors import MessageParseError
from .interface import UpstreamFeed
from .models import ConnectionState
from .protocol import ErrorMessage, PingMessage, TradeMessage, encode_subscription, parse_message

logger = logging.getLogger(__name__)

DEFAULT_WS_URL = "wss://ws.finnhub.io"

Connector = Callable[[str], Awaitable[Any]]


class FinnhubFeed(UpstreamFeed):
    """UpstreamFeed backed by one Finnhub trade websocket.

    Reconnect policy: every failed connect or unexpected close counts as one
    attempt. The next try waits ``reconnect_delay * reconnect_backoff ** (n - 1)``
    seconds (capped at ``reconnect_max_delay``); backoff 1.0 means a fixed delay.
    Once ``max_reconnect_attempts`` is exceeded the feed stays DISCONNECTED
    until connect() is called again. A successful open resets the counter.

    A socket that stays silent for ``stale_after`` seconds while symbols are
    subscribed is treated as dead: the watchdog closes it and the normal
    reconnect path takes over. Any inbound frame, pings included, counts as
    traffic. ``stale_after=None`` disables the watchdog.

    On every open, ``subscribe`` frames for the whole desired set are written
    before anything else; frames produced while the socket is open go through
    a per-connection outbox drained after that replay.
    """

    def __init__(
        self,
        api_key: str,
        url: str = DEFAULT_WS_URL,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 5.0,
        reconnect_backoff: float = 1.0,
        reconnect_max_delay: float = 30.0,
        ping_interval: float | None = 20.0,
        stale_after: float | None = 60.0,
        connector: Connector | None = None,
    ) -> None:
        super().__init__()
        self._api_key = api_key
        self._url = url
        self._max_attempts = max_reconnect_attempts
        self._reconnect_delay = reconnect_delay
        self._backoff = reconnect_backoff
        self._max_delay = reconnect_max_delay
        self._ping_interval = ping_interval
        self._stale_after = stale_after
        self._connector: Connector = connector or self._open_websocket

        self._task: asyncio.Task | None = None
        self._ws: Any = None
        self._outbox: asyncio.Queue[str] | None = None
        self._attempts = 0
        self._closing = False

        # Health counters
        self._connects = 0
        self._ticks_received = 0
        self._parse_errors = 0
        self._last_tick_at = 0.0
        self._last_frame_at = 0.0
        self._stale_reconnects = 0

    # --- UpstreamFeed ---

    def connect(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._attempts = 0
        self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.get_running_loop().create_task(self._run(), name="finnhub-feed")

    async def close(self) -> None:
        self._closing = True
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Finnhub feed closed")

    def subscribe(self, symbol: str) -> None:
        added = self._add_desired(symbol)
        if added is not None:
            self._enqueue("subscribe", added)

    def unsubscribe(self, symbol: str) -> None:
        removed = self._discard_desired(symbol)
        if removed is not None:
            self._enqueue("unsubscribe", removed)

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    def get_health_metrics(self) -> dict[str, Any]:
        last_tick_s_ago = time.time() - self._last_tick_at if self._last_tick_at else None
        return {
            "state": self.state.value,
            "connects": self._connects,
            "reconnect_attempts": self._attempts,
            "ticks_received": self._ticks_received,
            "parse_errors": self._parse_errors,
            "stale_reconnects": self._stale_reconnects,
            "last_tick_s_ago": round(last_tick_s_ago, 1) if last_tick_s_ago is not None else None,
            "symbols": sorted(self._desired),
        }

    # --- Internal ---

    def _enqueue(self, action: str, symbol: str) -> None:
        if self._outbox is None:
            logger.debug("Feed not open, %s %s deferred until connect", action, symbol)
            return
        self._outbox.put_nowait(encode_subscription(action, symbol))

    async def _open_websocket(self, url: str) -> Any:
        return await websockets.connect(url, ping_interval=self._ping_interval, close_timeout=10)

    def _ws_url(self) -> str:
        return f"{self._url}?token={quote(self._api_key)}"

    def _next_delay(self) -> float:
        return min(self._reconnect_delay * self._backoff ** (self._attempts - 1), self._max_delay)

    async def _run(self) -> None:
        """Connection loop: connect, serve the session, back off, repeat."""
        while not self._closing:
            self._set_state(ConnectionState.CONNECTING)
            try:
                ws = await self._connector(self._ws_url())
            except Exception as e:
                logger.warning("Finnhub connect failed: %s", e)
            else:
                try:
                    await self._session(ws)
                    logger.warning("Finnhub connection closed by server")
                except Exception as e:
                    logger.warning("Finnhub connection dropped: %s", e)
                finally:
                    await self._close_socket(ws)

            if self._closing:
                break

            self._attempts += 1
            self._set_state(ConnectionState.DISCONNECTED)
            if self._attempts > self._max_attempts:
                logger.error(
                    "Market data offline: gave up after %d reconnect attempts; "
                    "waiting for an explicit reconnect",
                    self._max_attempts,
                )
                return

            delay = self._next_delay()
            logger.info(
                "Reconnecting to Finnhub in %.1fs (attempt %d/%d)",
                delay,
                self._attempts,
                self._max_attempts,
            )
            await asyncio.sleep(delay)

    async def _session(self, ws: Any) -> None:
        """Serve one open socket until it closes."""
        self._ws = ws
        self._outbox = asyncio.Queue()
        self._last_frame_at = time.monotonic()
        writer: asyncio.Task | None = None
        watchdog: asyncio.Task | None = None
        try:
            # Replay interest before any other outbound frame
            for symbol in sorted(self._desired):
                await ws.send(encode_subscription("subscribe", symbol))

            self._attempts = 0
            self._connects += 1
            self._set_state(ConnectionState.CONNECTED)
            logger.info("Finnhub connected, %d symbols subscribed", len(self._desired))

            writer = asyncio.create_task(self._drain_outbox(ws, self._outbox), name="finnhub-writer")
            if self._stale_after:
                watchdog = asyncio.create_task(self._watch_staleness(ws), name="finnhub-watchdog")
            async for raw in ws:
                self._handle_frame(raw)
        finally:
            self._ws = None
            self._outbox = None
            for task in (writer, watchdog):
                if task is not None:
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

    async def _drain_outbox(self, ws: Any, outbox: asyncio.Queue[str]) -> None:
        while True:
            frame = await outbox.get()
            try:
                await ws.send(frame)
            except Exception as e:
                # The reader side sees the same failure and triggers reconnect
                logger.warning("Finnhub send failed: %s", e)
                return

    async def _watch_staleness(self, ws: Any) -> None:
        """Close a socket that has gone quiet while symbols are subscribed."""
        stale_after = self._stale_after
        while True:
            await asyncio.sleep(stale_after / 4)
            now = time.monotonic()
            if not self._desired:
                # Nothing subscribed, so silence is expected
                self._last_frame_at = now
                continue
            idle = now - self._last_frame_at
            if idle > stale_after:
                self._stale_reconnects += 1
                logger.warning(
                    "No Finnhub data for %.1fs with %d symbols subscribed, reconnecting",
                    idle,
                    len(self._desired),
                )
                await self._close_socket(ws)
                return

    async def _close_socket(self, ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug("Error closing Finnhub socket: %s", e)

    def _handle_frame(self, raw: str | bytes) -> None:
        self._last_frame_at = time.monotonic()
        try:
            message = parse_message(raw)
        except MessageParseError as e:
            self._parse_errors += 1
            logger.warning("Dropping malformed Finnhub frame: %s", e)
            return

        if isinstance(message, TradeMessage):
            self._last_tick_at = time.time()
            for tick in message.ticks:
                self._ticks_received += 1
                self._emit(tick)
        elif isinstance(message, ErrorMessage):
            logger.warning("Finnhub error frame: %s", message.message)
        elif isinstance(message, PingMessage):
            pass
        else:
            logger.debug("Ignoring Finnhub frame of type %s", message.type)
