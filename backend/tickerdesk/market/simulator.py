"""GBM-based development feed: simulated ticks and quotes without a provider."""

from __future__ import annotations

import asyncio
import logging
import math
import random
from collections.abc import Callable

import numpy as np

from .interface import UpstreamFeed
from .models import ConnectionState, Quote, Tick, normalize_symbol, now_ms
from .seed_prices import (
    CROSS_SECTOR_CORR,
    DEFAULT_PARAMS,
    SAME_SECTOR_CORR,
    SECTORS,
    SEED_PRICES,
    SYMBOL_PARAMS,
    UNKNOWN_PRICE_RANGE,
)

logger = logging.getLogger(__name__)


class GBMSimulator:
    """Geometric Brownian Motion over a dynamic set of correlated symbols.

        S(t+dt) = S(t) * exp((mu - sigma^2/2) * dt + sigma * sqrt(dt) * Z)

    Z is drawn from a multivariate normal whose correlation comes from the
    sector table; dt is the update interval as a fraction of a trading year.
    """

    TRADING_SECONDS_PER_YEAR = 252 * 6.5 * 3600

    def __init__(
        self,
        symbols: list[str] | None = None,
        update_interval: float = 0.5,
        event_probability: float = 0.001,
    ) -> None:
        self._dt = update_interval / self.TRADING_SECONDS_PER_YEAR
        self._event_prob = event_probability
        self._prices: dict[str, float] = {}
        self._opens: dict[str, float] = {}
        self._cholesky: np.ndarray | None = None
        for symbol in symbols or []:
            self._track(symbol)
        self._rebuild_cholesky()

    @property
    def symbols(self) -> list[str]:
        return list(self._prices)

    def step(self) -> dict[str, float]:
        """Advance every tracked symbol one step. Returns {symbol: new_price}."""
        symbols = list(self._prices)
        if not symbols:
            return {}

        z = np.random.standard_normal(len(symbols))
        if self._cholesky is not None:
            z = self._cholesky @ z

        moved: dict[str, float] = {}
        for i, symbol in enumerate(symbols):
            params = SYMBOL_PARAMS.get(symbol, DEFAULT_PARAMS)
            sigma = params["sigma"]
            drift = (params["mu"] - 0.5 * sigma**2) * self._dt
            price = self._prices[symbol] * math.exp(drift + sigma * math.sqrt(self._dt) * z[i])

            # Occasional news shock of 2-5%
            if random.random() < self._event_prob:
                price *= 1 + random.choice([-1, 1]) * random.uniform(0.02, 0.05)
                logger.debug("Simulated shock on %s", symbol)

            self._prices[symbol] = price
            moved[symbol] = round(price, 2)
        return moved

    def add_symbol(self, symbol: str) -> None:
        if symbol in self._prices:
            return
        self._track(symbol)
        self._rebuild_cholesky()

    def remove_symbol(self, symbol: str) -> None:
        if self._prices.pop(symbol, None) is None:
            return
        self._opens.pop(symbol, None)
        self._rebuild_cholesky()

    def get_price(self, symbol: str) -> float | None:
        price = self._prices.get(symbol)
        return round(price, 2) if price is not None else None

    def get_open(self, symbol: str) -> float | None:
        return self._opens.get(symbol)

    def _track(self, symbol: str) -> None:
        if symbol in self._prices:
            return
        seed = SEED_PRICES.get(symbol) or random.uniform(*UNKNOWN_PRICE_RANGE)
        self._prices[symbol] = seed
        self._opens[symbol] = seed

    def _rebuild_cholesky(self) -> None:
        symbols = list(self._prices)
        n = len(symbols)
        if n <= 1:
            self._cholesky = None
            return
        corr = np.eye(n)
        for i in range(n):
            for j in range(i + 1, n):
                corr[i, j] = corr[j, i] = self.pairwise_correlation(symbols[i], symbols[j])
        self._cholesky = np.linalg.cholesky(corr)

    @staticmethod
    def pairwise_correlation(a: str, b: str) -> float:
        for sector, members in SECTORS.items():
            if a in members and b in members:
                return SAME_SECTOR_CORR[sector]
        return CROSS_SECTOR_CORR


class SimulatorFeed(UpstreamFeed):
    """UpstreamFeed that simulates trades for the desired symbols.

    Stands in for the real provider in development. It is also a quote
    fetcher (fetch_quote) so pull lookups work without credentials.
    """

    def __init__(
        self,
        update_interval: float = 0.5,
        event_probability: float = 0.001,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        super().__init__()
        self._interval = update_interval
        self._clock = clock
        self._sim = GBMSimulator(update_interval=update_interval, event_probability=event_probability)
        self._task: asyncio.Task | None = None

    def connect(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.get_running_loop().create_task(self._run_loop(), name="simulator-feed")

    async def close(self) -> None:
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Simulator feed stopped")

    def subscribe(self, symbol: str) -> None:
        added = self._add_desired(symbol)
        if added is None:
            return
        self._sim.add_symbol(added)
        # Publish the opening price right away so late subscribers see a value
        if self.state == ConnectionState.CONNECTED:
            self._emit(self._tick(added, self._sim.get_price(added)))

    def unsubscribe(self, symbol: str) -> None:
        removed = self._discard_desired(symbol)
        if removed is not None:
            self._sim.remove_symbol(removed)

    async def fetch_quote(self, symbol: str) -> Quote | None:
        symbol = normalize_symbol(symbol)
        price = self._sim.get_price(symbol)
        if price is None:
            price = round(SEED_PRICES.get(symbol) or random.uniform(*UNKNOWN_PRICE_RANGE), 2)
        open_price = self._sim.get_open(symbol) or price
        change = round(price - open_price, 2)
        return Quote(
            symbol=symbol,
            price=price,
            change=change,
            change_percent=round(change / open_price * 100, 4) if open_price else 0.0,
            high=round(max(price, open_price) * 1.01, 2),
            low=round(min(price, open_price) * 0.99, 2),
            open=round(open_price, 2),
            previous_close=round(open_price, 2),
            timestamp=self._clock(),
        )

    def _tick(self, symbol: str, price: float) -> Tick:
        open_price = self._sim.get_open(symbol) or price
        change = round(price - open_price, 2)
        return Tick(
            symbol=symbol,
            price=price,
            timestamp=self._clock(),
            change=change,
            change_percent=round(change / open_price * 100, 4) if open_price else 0.0,
        )

    async def _run_loop(self) -> None:
        self._set_state(ConnectionState.CONNECTED)
        for symbol in sorted(self._desired):
            self._emit(self._tick(symbol, self._sim.get_price(symbol)))
        while True:
            await asyncio.sleep(self._interval)
            try:
                for symbol, price in self._sim.step().items():
                    self._emit(self._tick(symbol, price))
            except Exception:
                logger.exception("Simulator step failed")
