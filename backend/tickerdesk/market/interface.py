"""Abstract interface for upstream price feeds."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from .models import ConnectionState, Tick, normalize_symbol

logger = logging.getLogger(__name__)

TickListener = Callable[[Tick], object]
StateListener = Callable[[ConnectionState], object]


class UpstreamFeed(ABC):
    """Contract for the single physical connection to a real-time price provider.

    The feed owns the connection and its ConnectionState. It keeps the set of
    symbols the application currently wants and replays it on every (re)connect.
    Only the SubscriptionCounter should call subscribe()/unsubscribe().

    Lifecycle:
        feed = create_upstream_feed(settings)
        feed.on_tick(dispatcher.dispatch)
        feed.connect()
        # ... app runs ...
        feed.subscribe("AAPL")
        feed.unsubscribe("AAPL")
        # ... app shutting down ...
        await feed.close()
    """

    def __init__(self) -> None:
        self._desired: set[str] = set()
        self._state = ConnectionState.DISCONNECTED
        self._tick_listeners: list[TickListener] = []
        self._state_listeners: list[StateListener] = []

    @abstractmethod
    def connect(self) -> None:
        """Start connecting in the background. No-op if connecting/connected.

        Never raises: failures are retried and then surface as state.
        """

    @abstractmethod
    async def close(self) -> None:
        """Stop the connection and any retries. Safe to call multiple times."""

    @abstractmethod
    def subscribe(self, symbol: str) -> None:
        """Add a symbol to the desired set, sending it upstream when connected."""

    @abstractmethod
    def unsubscribe(self, symbol: str) -> None:
        """Remove a symbol from the desired set, sending it upstream when connected."""

    # --- Shared listener/state plumbing ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    def desired_symbols(self) -> set[str]:
        """Symbols that are (or will be, once connected) subscribed upstream."""
        return set(self._desired)

    def on_tick(self, callback: TickListener) -> Callable[[], None]:
        """Register a listener for every parsed tick. Returns a disposer."""
        self._tick_listeners.append(callback)

        def dispose() -> None:
            if callback in self._tick_listeners:
                self._tick_listeners.remove(callback)

        return dispose

    def on_state_change(self, callback: StateListener) -> Callable[[], None]:
        """Register a listener for ConnectionState transitions. Returns a disposer."""
        self._state_listeners.append(callback)

        def dispose() -> None:
            if callback in self._state_listeners:
                self._state_listeners.remove(callback)

        return dispose

    def _add_desired(self, symbol: str) -> str | None:
        symbol = normalize_symbol(symbol)
        if symbol in self._desired:
            return None
        self._desired.add(symbol)
        return symbol

    def _discard_desired(self, symbol: str) -> str | None:
        symbol = normalize_symbol(symbol)
        if symbol not in self._desired:
            return None
        self._desired.discard(symbol)
        return symbol

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.info("Feed state: %s -> %s", self._state.value, state.value)
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener failed")

    def _emit(self, tick: Tick) -> None:
        for listener in list(self._tick_listeners):
            try:
                listener(tick)
            except Exception:
                logger.exception("Tick listener failed for %s", tick.symbol)
