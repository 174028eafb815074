"""Composition root for the market data layer and the consumer API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable

from .batcher import RequestBatcher
from .cache import TickCache
from .dispatcher import FanoutDispatcher, TickCallback
from .handle import SubscriptionHandle
from .interface import UpstreamFeed
from .models import ConnectionState, Tick
from .quotes import QuoteFetcher
from .refcount import SubscriptionCounter

logger = logging.getLogger(__name__)


class PriceService:
    """Owns one feed, cache, counter, dispatcher and batcher, wired together.

    Construct once at application start (see create_price_service) and pass it
    to whatever needs prices; tests build isolated instances directly.

        service = create_price_service()
        await service.start()
        dispose = service.subscribe(["AAPL", "MSFT"], on_update)
        tick = await service.get_quote("NVDA")
        dispose()
        await service.stop()
    """

    def __init__(
        self,
        feed: UpstreamFeed,
        fetcher: QuoteFetcher,
        cache: TickCache | None = None,
        cache_ttl_ms: int = 30_000,
        cache_retention_ms: int = 600_000,
        sweep_interval: float = 300.0,
        batch_size: int = 5,
        batch_delay: float = 0.1,
        inter_batch_delay: float = 0.1,
        request_timeout: float = 10.0,
        fetch_initial: bool = True,
    ) -> None:
        self.feed = feed
        self.cache = cache if cache is not None else TickCache()
        self.counter = SubscriptionCounter(feed)
        self.dispatcher = FanoutDispatcher(self.cache)
        self.batcher = RequestBatcher(
            fetcher,
            self.cache,
            max_batch_size=batch_size,
            batch_delay=batch_delay,
            inter_batch_delay=inter_batch_delay,
            request_timeout=request_timeout,
            cache_ttl_ms=cache_ttl_ms,
        )
        self._fetcher = fetcher
        self._cache_ttl_ms = cache_ttl_ms
        self._retention_ms = cache_retention_ms
        self._sweep_interval = sweep_interval
        self._fetch_initial = fetch_initial
        # Ticks reach the cache and subscribers from construction on, even before start()
        self._detach: Callable[[], None] | None = self.dispatcher.attach(feed)
        self._sweep_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Connect the feed and start the cache sweeper."""
        if self._detach is None:
            # Restart after stop()
            self._detach = self.dispatcher.attach(self.feed)
        self.feed.connect()
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop(), name="tick-cache-sweeper")
        logger.info("Price service started (%s)", type(self.feed).__name__)

    async def stop(self) -> None:
        """Stop the sweeper, batcher and feed. Safe to call multiple times."""
        task, self._sweep_task = self._sweep_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.batcher.close()
        await self.feed.close()
        if self._detach is not None:
            self._detach()
            self._detach = None
        aclose = getattr(self._fetcher, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info("Price service stopped")

    # --- Consumer API ---

    def watch(self, symbols: str | Iterable[str], on_update: TickCallback) -> SubscriptionHandle:
        """Create and activate a subscription handle."""
        handle = SubscriptionHandle(
            symbols,
            on_update,
            counter=self.counter,
            dispatcher=self.dispatcher,
            cache=self.cache,
            initial_max_age_ms=self._cache_ttl_ms,
            initial_loader=self.batcher.request if self._fetch_initial else None,
        )
        return handle.activate()

    def subscribe(self, symbols: str | Iterable[str], on_update: TickCallback) -> Callable[[], None]:
        """Stream updates for one or more symbols. Returns an idempotent dispose function."""
        return self.watch(symbols, on_update).dispose

    def get_cached_price(self, symbol: str) -> Tick | None:
        """Last known tick for a symbol, however old."""
        return self.cache.latest(symbol)

    async def get_quote(self, symbol: str) -> Tick:
        """One-shot price lookup through the request batcher."""
        return await self.batcher.request(symbol)

    def get_connection_status(self) -> str:
        return self.feed.state.value

    def notify_online(self) -> None:
        """External trigger (network back online, manual refresh) to reconnect."""
        if self.feed.state == ConnectionState.DISCONNECTED:
            logger.info("Reconnect requested while offline")
            self.feed.connect()

    # --- Internal ---

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            removed = self.cache.sweep(self._retention_ms)
            if removed:
                logger.debug("Swept %d stale cache entries", removed)
