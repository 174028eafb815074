"""Short-TTL in-memory tick cache."""

from __future__ import annotations

from collections.abc import Callable
from threading import Lock

from .models import CacheEntry, Tick, normalize_symbol, now_ms


class TickCache:
    """Latest known tick per symbol, with TTL-on-read and a retention sweep.

    Writers: FanoutDispatcher (streamed ticks) and RequestBatcher (pull lookups).
    Readers: subscription handles, the batcher, the consumer API.

    Out-of-order ticks are dropped: an incoming tick older than the cached one
    for the same symbol never overwrites it (highest timestamp wins).
    """

    def __init__(self, clock: Callable[[], int] = now_ms) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._clock = clock
        self._lock = Lock()
        self._version: int = 0  # Bumped on every accepted write

    def set(self, tick: Tick) -> bool:
        """Store a tick. Returns False if it was older than the cached one."""
        symbol = normalize_symbol(tick.symbol)
        with self._lock:
            existing = self._entries.get(symbol)
            if existing is not None and tick.timestamp < existing.tick.timestamp:
                return False
            stored_at = self._clock()
            if existing is not None and stored_at < existing.stored_at:
                stored_at = existing.stored_at
            self._entries[symbol] = CacheEntry(tick=tick, stored_at=stored_at)
            self._version += 1
            return True

    def get(self, symbol: str, max_age_ms: int) -> Tick | None:
        """Cached tick if it was stored at most ``max_age_ms`` ago, else None."""
        symbol = normalize_symbol(symbol)
        with self._lock:
            entry = self._entries.get(symbol)
            if entry is None:
                return None
            if self._clock() - entry.stored_at > max_age_ms:
                return None
            return entry.tick

    def latest(self, symbol: str) -> Tick | None:
        """Last known tick regardless of age (used as a fallback while offline)."""
        with self._lock:
            entry = self._entries.get(normalize_symbol(symbol))
            return entry.tick if entry else None

    def entry(self, symbol: str) -> CacheEntry | None:
        """Raw cache entry (tick plus stored_at), however old."""
        with self._lock:
            return self._entries.get(normalize_symbol(symbol))

    def snapshot(self) -> dict[str, Tick]:
        """Shallow copy of every cached tick."""
        with self._lock:
            return {symbol: entry.tick for symbol, entry in self._entries.items()}

    def remove(self, symbol: str) -> None:
        """Forget a symbol. No-op if it is not cached."""
        with self._lock:
            self._entries.pop(normalize_symbol(symbol), None)

    def sweep(self, retention_ms: int) -> int:
        """Drop entries stored more than ``retention_ms`` ago. Returns the count removed."""
        with self._lock:
            cutoff = self._clock() - retention_ms
            stale = [symbol for symbol, entry in self._entries.items() if entry.stored_at < cutoff]
            for symbol in stale:
                del self._entries[symbol]
            return len(stale)

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()

    @property
    def version(self) -> int:
        """Current version counter. Useful for change detection."""
        return self._version

    def __len__(self) -> int:
        """Number of cached symbols."""
        with self._lock:
            return len(self._entries)

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol.strip().upper() in self._entries
