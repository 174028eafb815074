"""Fan-out of upstream ticks to per-symbol callbacks."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable

from .cache import TickCache
from .interface import UpstreamFeed
from .models import Tick, normalize_symbol

logger = logging.getLogger(__name__)

TickCallback = Callable[[Tick], object]


class _Registration:
    __slots__ = ("callback", "active")

    def __init__(self, callback: TickCallback) -> None:
        self.callback = callback
        self.active = True


class FanoutDispatcher:
    """Route each tick to every callback registered for its symbol.

    The cache is updated before any callback runs. Each callback is isolated:
    an exception (or a failed coroutine) is logged and delivery continues.
    Within a symbol, ticks reach callbacks in the order dispatch() sees them.

    Dispatch iterates over a snapshot of the registrations and skips any that
    were removed mid-loop, so an unregistered callback never receives a stray
    tick.
    """

    def __init__(self, cache: TickCache) -> None:
        self._cache = cache
        self._registrations: dict[str, list[_Registration]] = {}
        self._pending: set[asyncio.Task] = set()

    def register(self, symbol: str, callback: TickCallback) -> Callable[[], None]:
        """Register a callback for a symbol. Returns an idempotent unregister function."""
        symbol = normalize_symbol(symbol)
        registration = _Registration(callback)
        self._registrations.setdefault(symbol, []).append(registration)

        def unregister() -> None:
            if not registration.active:
                return
            registration.active = False
            registrations = self._registrations.get(symbol)
            if registrations is None:
                return
            registrations.remove(registration)
            if not registrations:
                del self._registrations[symbol]

        return unregister

    def dispatch(self, tick: Tick) -> None:
        """Cache the tick, then deliver it to the symbol's callbacks."""
        self._cache.set(tick)
        registrations = self._registrations.get(normalize_symbol(tick.symbol))
        if not registrations:
            return
        for registration in list(registrations):
            if registration.active:
                self.deliver(registration.callback, tick)

    def deliver(self, callback: TickCallback, tick: Tick) -> None:
        """Invoke one callback with failure isolation."""
        try:
            result = callback(tick)
        except Exception:
            logger.exception("Tick callback failed for %s", tick.symbol)
            return
        if not inspect.isawaitable(result):
            return
        try:
            task = asyncio.ensure_future(result, loop=asyncio.get_running_loop())
        except RuntimeError:
            logger.error("Async tick callback for %s dropped: no running event loop", tick.symbol)
            if inspect.iscoroutine(result):
                result.close()
            return
        self._pending.add(task)
        task.add_done_callback(self._on_async_done)

    def attach(self, feed: UpstreamFeed) -> Callable[[], None]:
        """Start consuming a feed's tick stream. Returns a detach function."""
        return feed.on_tick(self.dispatch)

    def callback_count(self, symbol: str) -> int:
        """Number of live registrations for a symbol."""
        return len(self._registrations.get(normalize_symbol(symbol), ()))

    def _on_async_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Async tick callback failed", exc_info=error)
