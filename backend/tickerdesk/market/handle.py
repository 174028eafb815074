"""Consumer-facing subscription handle."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable, Iterable

from .cache import TickCache
from .dispatcher import FanoutDispatcher, TickCallback
from .models import CacheEntry, Tick, normalize_symbol
from .refcount import SubscriptionCounter

logger = logging.getLogger(__name__)

InitialLoader = Callable[[str], Awaitable[Tick]]

_handle_ids = itertools.count(1)


def _as_symbol_set(symbols: str | Iterable[str]) -> set[str]:
    if isinstance(symbols, str):
        symbols = [symbols]
    return {normalize_symbol(s) for s in symbols}


class SubscriptionHandle:
    """Interest in a set of symbols for as long as the holder is alive.

    activate() acquires every symbol, registers the callback and delivers a
    recent cached tick per symbol when one exists. Otherwise the initial loader
    runs in the background; if it fails, or there is no loader, the last known
    tick is delivered however old it is. update_symbols() applies
    only the difference. dispose() releases everything exactly once; calling
    it again is a no-op.

    Works as a plain object, a ``with`` block or an ``async with`` block:

        with service.watch(["AAPL", "MSFT"], on_update):
            ...
    """

    def __init__(
        self,
        symbols: str | Iterable[str],
        on_update: TickCallback,
        counter: SubscriptionCounter,
        dispatcher: FanoutDispatcher,
        cache: TickCache,
        initial_max_age_ms: int = 30_000,
        initial_loader: InitialLoader | None = None,
    ) -> None:
        self._symbols = _as_symbol_set(symbols)
        self._on_update = on_update
        self._counter = counter
        self._dispatcher = dispatcher
        self._cache = cache
        self._initial_max_age_ms = initial_max_age_ms
        self._initial_loader = initial_loader

        self.subscriber_id = f"handle-{next(_handle_ids)}"
        self._unregister: dict[str, Callable[[], None]] = {}
        self._loads: dict[str, asyncio.Task] = {}
        self._active = False
        self._disposed = False

    @property
    def symbols(self) -> frozenset[str]:
        return frozenset(self._symbols)

    @property
    def active(self) -> bool:
        return self._active

    @property
    def disposed(self) -> bool:
        return self._disposed

    def activate(self) -> SubscriptionHandle:
        if self._disposed:
            raise RuntimeError("Cannot activate a disposed subscription handle")
        if self._active:
            return self
        self._active = True
        for symbol in sorted(self._symbols):
            self._attach(symbol)
        return self

    def update_symbols(self, symbols: str | Iterable[str]) -> None:
        """Switch to a new symbol set, touching only the symbols that changed."""
        if self._disposed:
            raise RuntimeError("Cannot update a disposed subscription handle")
        new_symbols = _as_symbol_set(symbols)
        removed = self._symbols - new_symbols
        added = new_symbols - self._symbols
        self._symbols = new_symbols
        if not self._active:
            return
        for symbol in sorted(removed):
            self._detach(symbol)
        for symbol in sorted(added):
            self._attach(symbol)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._active:
            for symbol in sorted(self._unregister):
                self._detach(symbol)
        self._active = False

    __call__ = dispose

    def __enter__(self) -> SubscriptionHandle:
        return self.activate()

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    async def __aenter__(self) -> SubscriptionHandle:
        return self.activate()

    async def __aexit__(self, *exc_info: object) -> None:
        self.dispose()

    # --- Internals ---

    def _attach(self, symbol: str) -> None:
        self._counter.acquire(symbol, self.subscriber_id)
        self._unregister[symbol] = self._dispatcher.register(symbol, self._on_update)

        cached = self._cache.get(symbol, self._initial_max_age_ms)
        if cached is not None:
            self._dispatcher.deliver(self._on_update, cached)
            return
        fallback = self._cache.entry(symbol)
        if self._initial_loader is not None and self._start_initial_load(symbol, fallback):
            return
        if fallback is not None:
            self._dispatcher.deliver(self._on_update, fallback.tick)

    def _detach(self, symbol: str) -> None:
        unregister = self._unregister.pop(symbol, None)
        if unregister is None:
            return
        unregister()
        self._counter.release(symbol, self.subscriber_id)
        load = self._loads.pop(symbol, None)
        if load is not None:
            load.cancel()

    def _start_initial_load(self, symbol: str, fallback: CacheEntry | None) -> bool:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; skipping initial load for %s", symbol)
            return False
        task = loop.create_task(self._load_initial(symbol, fallback), name=f"initial-{symbol}")
        self._loads[symbol] = task
        return True

    async def _load_initial(self, symbol: str, fallback: CacheEntry | None) -> None:
        try:
            tick = await self._initial_loader(symbol)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Same entry still cached means no newer tick was delivered meanwhile
            if fallback is not None and symbol in self._unregister and self._cache.entry(symbol) is fallback:
                logger.info("Initial load failed for %s (%s), using last known price", symbol, e)
                self._dispatcher.deliver(self._on_update, fallback.tick)
            else:
                logger.info("No initial price for %s: %s", symbol, e)
            return
        finally:
            if self._loads.get(symbol) is asyncio.current_task():
                del self._loads[symbol]
        # A streamed tick may already have arrived; don't deliver an older one
        if symbol in self._unregister and self._is_current(tick):
            self._dispatcher.deliver(self._on_update, tick)

    def _is_current(self, tick: Tick) -> bool:
        latest = self._cache.latest(tick.symbol)
        return latest is None or latest.timestamp <= tick.timestamp
