"""Pull-style quote fetchers used by the RequestBatcher."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from .errors import QuoteFetchError
from .models import Quote, normalize_symbol, now_ms

logger = logging.getLogger(__name__)


class QuoteFetcher(Protocol):
    """Fetch one quote. Returns None when upstream has no data for the symbol."""

    async def __call__(self, symbol: str) -> Quote | None: ...


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


class _HttpQuoteFetcher:
    """Shared httpx plumbing: lazy client, status handling, JSON decoding."""

    source = "upstream"

    def __init__(self, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def __call__(self, symbol: str) -> Quote | None:
        symbol = normalize_symbol(symbol)
        try:
            response = await self._send(self._get_client(), symbol)
        except httpx.HTTPError as e:
            raise QuoteFetchError(symbol, f"request failed: {e}") from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise QuoteFetchError(
                symbol,
                f"{self.source} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise QuoteFetchError(symbol, f"{self.source} returned invalid JSON") from e
        return self._parse(symbol, body)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def _send(self, client: httpx.AsyncClient, symbol: str) -> httpx.Response:
        raise NotImplementedError

    @staticmethod
    def _parse(symbol: str, body: Any) -> Quote | None:
        raise NotImplementedError


class FinnhubQuoteFetcher(_HttpQuoteFetcher):
    """Quote lookups against the Finnhub REST quote endpoint.

    ``GET /api/v1/quote?symbol=...&token=...`` answers
    ``{c, d, dp, h, l, o, pc, t}`` with ``t`` in Unix seconds. Finnhub reports
    unknown symbols as a zero current price, which is treated as "no data".
    """

    source = "Finnhub"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://finnhub.io/api/v1",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    async def _send(self, client: httpx.AsyncClient, symbol: str) -> httpx.Response:
        return await client.get(
            f"{self._base_url}/quote",
            params={"symbol": symbol, "token": self._api_key},
        )

    @staticmethod
    def _parse(symbol: str, body: Any) -> Quote | None:
        if not isinstance(body, dict):
            raise QuoteFetchError(symbol, "Finnhub returned a non-object body")
        if body.get("error"):
            raise QuoteFetchError(symbol, str(body["error"]))
        if not body.get("c"):
            return None
        try:
            timestamp = int(body["t"]) * 1000 if body.get("t") else now_ms()
            return Quote(
                symbol=symbol,
                price=float(body["c"]),
                change=float(body.get("d") or 0.0),
                change_percent=float(body.get("dp") or 0.0),
                high=_optional_float(body.get("h")),
                low=_optional_float(body.get("l")),
                open=_optional_float(body.get("o")),
                previous_close=_optional_float(body.get("pc")),
                timestamp=timestamp,
            )
        except (TypeError, ValueError) as e:
            raise QuoteFetchError(symbol, f"malformed quote: {e}") from e


class ProxyQuoteFetcher(_HttpQuoteFetcher):
    """Quote lookups through the serverless quote proxy.

    POSTs ``{"action": "get_quote", "symbol": ...}`` and expects
    ``{symbol, price, change, changePercent, high, low, open, previousClose, timestamp}``.
    A body without a usable price is treated as "no data".
    """

    source = "proxy"

    def __init__(
        self,
        url: str,
        token: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        self._url = url
        self._token = token

    async def _send(self, client: httpx.AsyncClient, symbol: str) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        return await client.post(
            self._url,
            json={"action": "get_quote", "symbol": symbol},
            headers=headers,
        )

    @staticmethod
    def _parse(symbol: str, body: Any) -> Quote | None:
        if not isinstance(body, dict):
            raise QuoteFetchError(symbol, "proxy returned a non-object body")
        if body.get("error"):
            raise QuoteFetchError(symbol, str(body["error"]))
        if not body.get("price"):
            return None
        try:
            return Quote(
                symbol=normalize_symbol(body.get("symbol") or symbol),
                price=float(body["price"]),
                change=float(body.get("change") or 0.0),
                change_percent=float(body.get("changePercent") or 0.0),
                high=_optional_float(body.get("high")),
                low=_optional_float(body.get("low")),
                open=_optional_float(body.get("open")),
                previous_close=_optional_float(body.get("previousClose")),
                timestamp=int(body.get("timestamp") or now_ms()),
            )
        except (TypeError, ValueError) as e:
            raise QuoteFetchError(symbol, f"malformed quote: {e}") from e


class MassiveQuoteFetcher:
    """Quote lookups against the Massive (Polygon.io) snapshot REST API.

    The Massive RESTClient is synchronous, so each lookup runs in a worker
    thread to keep the event loop free.
    """

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key
        self._client: Any = None  # Lazy import to avoid hard dependency at import time

    async def __call__(self, symbol: str) -> Quote | None:
        symbol = normalize_symbol(symbol)
        try:
            snapshots = await asyncio.to_thread(self._fetch_snapshots, symbol)
        except Exception as e:
            # Common failures: 401 (bad key), 429 (rate limit), network errors.
            raise QuoteFetchError(symbol, f"Massive snapshot failed: {e}") from e

        for snap in snapshots or []:
            if getattr(snap, "ticker", None) == symbol:
                return self._to_quote(symbol, snap)
        return None

    def _fetch_snapshots(self, symbol: str) -> list:
        """Synchronous call to the Massive REST API. Runs in a thread."""
        from massive import RESTClient
        from massive.rest.models import SnapshotMarketType

        if self._client is None:
            self._client = RESTClient(api_key=self._api_key)
        return self._client.get_snapshot_all(
            market_type=SnapshotMarketType.STOCKS,
            tickers=[symbol],
        )

    @staticmethod
    def _to_quote(symbol: str, snap: Any) -> Quote | None:
        try:
            price = snap.last_trade.price
            timestamp = int(snap.last_trade.timestamp)  # Massive timestamps are Unix milliseconds
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning("Skipping snapshot for %s: %s", symbol, e)
            return None
        day = getattr(snap, "day", None)
        prev_day = getattr(snap, "prev_day", None)
        return Quote(
            symbol=symbol,
            price=float(price),
            change=float(getattr(snap, "todays_change", None) or 0.0),
            change_percent=float(getattr(snap, "todays_change_percent", None) or 0.0),
            high=_optional_float(getattr(day, "high", None)),
            low=_optional_float(getattr(day, "low", None)),
            open=_optional_float(getattr(day, "open", None)),
            previous_close=_optional_float(getattr(prev_day, "close", None)),
            timestamp=timestamp,
        )
