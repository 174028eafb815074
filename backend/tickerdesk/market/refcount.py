"""Reference counting of symbol interest across consumers."""

from __future__ import annotations

import logging
from collections.abc import Hashable

from .interface import UpstreamFeed
from .models import normalize_symbol

logger = logging.getLogger(__name__)


class SubscriptionCounter:
    """Deduplicate upstream subscribe/unsubscribe across many consumers.

    Each symbol maps to the set of subscriber ids holding it. The feed is told
    to subscribe on the 0 -> 1 transition and to unsubscribe on 1 -> 0, so the
    feed is subscribed to a symbol exactly while its holder set is non-empty.
    """

    def __init__(self, feed: UpstreamFeed) -> None:
        self._feed = feed
        self._holders: dict[str, set[Hashable]] = {}

    def acquire(self, symbol: str, subscriber_id: Hashable) -> bool:
        """Register interest. Returns True if this started an upstream subscription."""
        symbol = normalize_symbol(symbol)
        holders = self._holders.get(symbol)
        if holders is None:
            holders = self._holders[symbol] = set()
        elif subscriber_id in holders:
            return False

        holders.add(subscriber_id)
        if len(holders) == 1:
            logger.debug("First subscriber for %s, subscribing upstream", symbol)
            self._feed.subscribe(symbol)
            return True
        return False

    def release(self, symbol: str, subscriber_id: Hashable) -> bool:
        """Drop interest. Returns True if this ended the upstream subscription."""
        symbol = normalize_symbol(symbol)
        holders = self._holders.get(symbol)
        if not holders or subscriber_id not in holders:
            return False

        holders.discard(subscriber_id)
        if holders:
            return False

        del self._holders[symbol]
        logger.debug("Last subscriber left %s, unsubscribing upstream", symbol)
        self._feed.unsubscribe(symbol)
        return True

    def count(self, symbol: str) -> int:
        """Number of subscribers currently holding a symbol."""
        return len(self._holders.get(normalize_symbol(symbol), ()))

    def holders(self, symbol: str) -> frozenset:
        """Subscriber ids holding a symbol."""
        return frozenset(self._holders.get(normalize_symbol(symbol), ()))

    def active_symbols(self) -> set[str]:
        """Symbols with at least one holder, i.e. subscribed upstream."""
        return set(self._holders)

    def __len__(self) -> int:
        """Number of symbols with at least one holder."""
        return len(self._holders)
