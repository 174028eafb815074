"""Request batching / rate limiting for pull-style quote lookups."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from .cache import TickCache
from .errors import MarketDataError, QuoteFetchError, QuoteNotFoundError, QuoteTimeoutError
from .models import BatchRequest, Tick, normalize_symbol
from .quotes import QuoteFetcher

logger = logging.getLogger(__name__)


class BatcherState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    FLUSHING = "flushing"


class RequestBatcher:
    """Coalesce near-simultaneous quote requests into bounded, spaced batches.

    State machine:
        idle       -- first request arrives   --> collecting (debounce timer armed)
        collecting -- timer fires / batch full --> flushing
        flushing   -- queue empty after batch  --> idle
        flushing   -- queue non-empty          --> flushing (after inter_batch_delay)

    Requests that arrive while flushing wait in the queue and are taken by the
    running drain loop, so a request can never be stranded between a timer and
    a flush. Each symbol in a batch is fetched independently; a failure only
    rejects that symbol's callers. A fetcher returning None rejects with
    QuoteNotFoundError.
    """

    def __init__(
        self,
        fetcher: QuoteFetcher,
        cache: TickCache,
        max_batch_size: int = 5,
        batch_delay: float = 0.1,
        inter_batch_delay: float = 0.1,
        request_timeout: float = 10.0,
        cache_ttl_ms: int = 30_000,
    ) -> None:
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        self._fetcher = fetcher
        self._cache = cache
        self._max_batch_size = max_batch_size
        self._batch_delay = batch_delay
        self._inter_batch_delay = inter_batch_delay
        self._timeout = request_timeout
        self._cache_ttl_ms = cache_ttl_ms

        self._state = BatcherState.IDLE
        self._queue: list[BatchRequest] = []
        self._pending: dict[str, asyncio.Future] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._drain_task: asyncio.Task | None = None
        self._batches_flushed = 0

    @property
    def state(self) -> BatcherState:
        return self._state

    @property
    def batches_flushed(self) -> int:
        return self._batches_flushed

    def queued_symbols(self) -> list[str]:
        return [item.symbol for item in self._queue]

    async def request(self, symbol: str) -> Tick:
        """Latest price for a symbol, from cache or the next batch."""
        symbol = normalize_symbol(symbol)
        cached = self._cache.get(symbol, self._cache_ttl_ms)
        if cached is not None:
            return cached

        future = self._pending.get(symbol)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._pending[symbol] = future
            self._enqueue(BatchRequest(symbol=symbol, future=future))

        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self._timeout)
        except asyncio.TimeoutError:
            raise QuoteTimeoutError(symbol, self._timeout) from None

    async def close(self) -> None:
        """Cancel timers and the drain loop; reject everything still pending."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        task, self._drain_task = self._drain_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for item in self._queue:
            self._settle_error(item, MarketDataError("Request batcher closed"))
        self._queue.clear()
        for symbol, future in list(self._pending.items()):
            if not future.done():
                future.set_exception(MarketDataError("Request batcher closed"))
                future.exception()  # Mark retrieved; callers may already be gone
            self._pending.pop(symbol, None)
        self._state = BatcherState.IDLE

    # --- State machine ---

    def _enqueue(self, item: BatchRequest) -> None:
        self._queue.append(item)
        if self._state == BatcherState.IDLE:
            self._state = BatcherState.COLLECTING
            self._timer = asyncio.get_running_loop().call_later(self._batch_delay, self._start_flush)
        if self._state == BatcherState.COLLECTING and len(self._queue) >= self._max_batch_size:
            self._start_flush()

    def _start_flush(self) -> None:
        if self._state != BatcherState.COLLECTING:
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._state = BatcherState.FLUSHING
        self._drain_task = asyncio.get_running_loop().create_task(self._drain(), name="quote-batcher")

    async def _drain(self) -> None:
        try:
            while self._queue:
                batch = self._queue[: self._max_batch_size]
                del self._queue[: self._max_batch_size]
                self._batches_flushed += 1
                logger.debug("Flushing quote batch of %d: %s", len(batch), [b.symbol for b in batch])
                await asyncio.gather(*(self._fetch_one(item) for item in batch))
                if self._queue:
                    await asyncio.sleep(self._inter_batch_delay)
        finally:
            self._drain_task = None
            self._state = BatcherState.IDLE

    async def _fetch_one(self, item: BatchRequest) -> None:
        try:
            quote = await asyncio.wait_for(self._fetcher(item.symbol), timeout=self._timeout)
        except asyncio.TimeoutError:
            self._settle_error(item, QuoteTimeoutError(item.symbol, self._timeout))
            return
        except MarketDataError as e:
            logger.warning("Quote fetch failed for %s: %s", item.symbol, e)
            self._settle_error(item, e)
            return
        except Exception as e:
            logger.warning("Quote fetch failed for %s: %s", item.symbol, e)
            self._settle_error(item, QuoteFetchError(item.symbol, str(e)))
            return

        if quote is None:
            self._settle_error(item, QuoteNotFoundError(item.symbol))
            return

        tick = quote.to_tick()
        self._cache.set(tick)
        self._pending.pop(item.symbol, None)
        if not item.future.done():
            item.future.set_result(tick)

    def _settle_error(self, item: BatchRequest, error: Exception) -> None:
        self._pending.pop(item.symbol, None)
        if not item.future.done():
            item.future.set_exception(error)
            # Callers that already timed out no longer await this future
            item.future.exception()
