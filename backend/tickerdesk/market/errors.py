"""Exception taxonomy for the market data layer.

Connection failures are never raised to callers; they become
ConnectionState transitions. Everything below is scoped to one message or
one pull request.
"""

from __future__ import annotations


class MarketDataError(Exception):
    """Base exception for the market data layer."""


class MessageParseError(MarketDataError):
    """An inbound feed frame could not be decoded."""

    def __init__(self, message: str, raw: str | bytes | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class QuoteFetchError(MarketDataError):
    """A pull lookup for one symbol failed upstream."""

    def __init__(self, symbol: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{symbol}: {message}")
        self.symbol = symbol
        self.status_code = status_code


class QuoteNotFoundError(MarketDataError):
    """Upstream answered, but had no price for the symbol."""

    def __init__(self, symbol: str) -> None:
        super().__init__(f"No quote data for {symbol}")
        self.symbol = symbol


class QuoteTimeoutError(MarketDataError, TimeoutError):
    """A pull lookup did not complete within the request timeout."""

    def __init__(self, symbol: str, timeout: float) -> None:
        super().__init__(f"Quote request for {symbol} timed out after {timeout:.1f}s")
        self.symbol = symbol
        self.timeout = timeout
