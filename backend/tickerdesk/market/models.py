"""Data models for market data."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum


def now_ms() -> int:
    """Current wall-clock time as integer Unix milliseconds."""
    return int(time.time() * 1000)


def normalize_symbol(symbol: str) -> str:
    """Canonical form of a ticker symbol: stripped and uppercased."""
    normalized = (symbol or "").strip().upper()
    if not normalized:
        raise ValueError("symbol must be a non-empty string")
    return normalized


class ConnectionState(str, Enum):
    """Upstream feed connection state. Only the feed itself transitions it."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True, slots=True)
class Tick:
    """Immutable price observation for a single symbol."""

    symbol: str
    price: float
    timestamp: int = field(default_factory=now_ms)  # Unix milliseconds
    change: float | None = None
    change_percent: float | None = None

    def to_dict(self) -> dict:
        """Serialize for JSON / SSE transmission."""
        return {
            "symbol": self.symbol,
            "price": self.price,
            "timestamp": self.timestamp,
            "change": self.change,
            "change_percent": self.change_percent,
        }


@dataclass(frozen=True, slots=True)
class Quote:
    """Full snapshot returned by a pull-style quote lookup."""

    symbol: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    high: float | None = None
    low: float | None = None
    open: float | None = None
    previous_close: float | None = None
    timestamp: int = field(default_factory=now_ms)

    def to_tick(self) -> Tick:
        return Tick(
            symbol=self.symbol,
            price=self.price,
            timestamp=self.timestamp,
            change=self.change,
            change_percent=self.change_percent,
        )


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Cached tick plus the local time it was stored."""

    tick: Tick
    stored_at: int


@dataclass(slots=True)
class BatchRequest:
    """A pull-style price request waiting for its batch to be dispatched."""

    symbol: str
    future: asyncio.Future
