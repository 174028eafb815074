"""Factories that pick the feed and quote provider from settings."""

from __future__ import annotations

import logging

from .config import MarketSettings
from .feed import FinnhubFeed
from .interface import UpstreamFeed
from .models import Quote
from .quotes import FinnhubQuoteFetcher, MassiveQuoteFetcher, ProxyQuoteFetcher, QuoteFetcher
from .service import PriceService
from .simulator import SimulatorFeed

logger = logging.getLogger(__name__)


def create_upstream_feed(settings: MarketSettings) -> UpstreamFeed:
    """Create the streaming feed.

    - FINNHUB_API_KEY set and non-empty → FinnhubFeed (real trades)
    - Otherwise → SimulatorFeed (GBM simulation)

    Returns an unconnected feed.
    """
    if settings.finnhub_api_key:
        logger.info("Market data feed: Finnhub websocket")
        return FinnhubFeed(
            api_key=settings.finnhub_api_key,
            url=settings.finnhub_ws_url,
            max_reconnect_attempts=settings.reconnect_max_attempts,
            reconnect_delay=settings.reconnect_delay_ms / 1000.0,
            reconnect_backoff=settings.reconnect_backoff,
            reconnect_max_delay=settings.reconnect_max_delay_ms / 1000.0,
            stale_after=settings.stale_feed_ms / 1000.0 if settings.stale_feed_ms > 0 else None,
        )

    logger.info("Market data feed: GBM simulator")
    return SimulatorFeed(update_interval=settings.simulator_interval_ms / 1000.0)


def create_quote_fetcher(settings: MarketSettings, feed: UpstreamFeed) -> QuoteFetcher:
    """Create the pull-lookup provider.

    - QUOTE_PROXY_URL set → ProxyQuoteFetcher (serverless get_quote proxy)
    - FINNHUB_API_KEY set → FinnhubQuoteFetcher (Finnhub REST quote endpoint)
    - MASSIVE_API_KEY set → MassiveQuoteFetcher (snapshot REST API)
    - Simulator feed → the simulator answers quotes itself
    - Otherwise no pull provider: every lookup is "no data"

    A real feed never gets simulated quotes.
    """
    timeout = settings.request_timeout_ms / 1000.0
    if settings.quote_proxy_url:
        logger.info("Quote provider: proxy at %s", settings.quote_proxy_url)
        return ProxyQuoteFetcher(
            url=settings.quote_proxy_url,
            token=settings.quote_proxy_token,
            timeout=timeout,
        )
    if settings.finnhub_api_key:
        logger.info("Quote provider: Finnhub REST at %s", settings.finnhub_rest_url)
        return FinnhubQuoteFetcher(
            api_key=settings.finnhub_api_key,
            base_url=settings.finnhub_rest_url,
            timeout=timeout,
        )
    if settings.massive_api_key:
        logger.info("Quote provider: Massive API")
        return MassiveQuoteFetcher(api_key=settings.massive_api_key)
    if isinstance(feed, SimulatorFeed):
        logger.info("Quote provider: GBM simulator")
        return feed.fetch_quote

    logger.warning("No quote provider configured; pull lookups will find no data")
    return _no_quotes


async def _no_quotes(symbol: str) -> Quote | None:
    return None


def create_price_service(settings: MarketSettings | None = None) -> PriceService:
    """Build the whole market data layer. Caller must await service.start()."""
    settings = settings or MarketSettings.from_env()
    feed = create_upstream_feed(settings)
    return PriceService(
        feed=feed,
        fetcher=create_quote_fetcher(settings, feed),
        cache_ttl_ms=settings.cache_ttl_ms,
        cache_retention_ms=settings.cache_retention_ms,
        sweep_interval=settings.cache_sweep_interval_ms / 1000.0,
        batch_size=settings.batch_size,
        batch_delay=settings.batch_delay_ms / 1000.0,
        inter_batch_delay=settings.inter_batch_delay_ms / 1000.0,
        request_timeout=settings.request_timeout_ms / 1000.0,
    )
