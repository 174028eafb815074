"""Environment-driven settings for the market data layer."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)


def _str(env: Mapping[str, str], name: str, default: str = "") -> str:
    return (env.get(name) or default).strip()


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _str(env, name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _str(env, name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class MarketSettings:
    """Tunables for the feed, batcher and cache. Durations in milliseconds."""

    finnhub_api_key: str = ""
    finnhub_ws_url: str = "wss://ws.finnhub.io"
    finnhub_rest_url: str = "https://finnhub.io/api/v1"
    quote_proxy_url: str = ""
    quote_proxy_token: str = ""
    massive_api_key: str = ""

    batch_size: int = 5
    batch_delay_ms: int = 100
    inter_batch_delay_ms: int = 100
    request_timeout_ms: int = 10_000

    reconnect_max_attempts: int = 5
    reconnect_delay_ms: int = 5_000
    reconnect_backoff: float = 1.0
    reconnect_max_delay_ms: int = 30_000
    stale_feed_ms: int = 60_000  # 0 disables the stale-data watchdog

    cache_ttl_ms: int = 30_000
    cache_retention_ms: int = 600_000
    cache_sweep_interval_ms: int = 300_000

    simulator_interval_ms: int = 500

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> MarketSettings:
        env = os.environ if environ is None else environ
        settings = cls(
            finnhub_api_key=_str(env, "FINNHUB_API_KEY"),
            finnhub_ws_url=_str(env, "FINNHUB_WS_URL", cls.finnhub_ws_url),
            finnhub_rest_url=_str(env, "FINNHUB_REST_URL", cls.finnhub_rest_url),
            quote_proxy_url=_str(env, "QUOTE_PROXY_URL"),
            quote_proxy_token=_str(env, "QUOTE_PROXY_TOKEN"),
            massive_api_key=_str(env, "MASSIVE_API_KEY"),
            batch_size=_int(env, "MARKET_BATCH_SIZE", cls.batch_size),
            batch_delay_ms=_int(env, "MARKET_BATCH_DELAY_MS", cls.batch_delay_ms),
            inter_batch_delay_ms=_int(env, "MARKET_INTER_BATCH_DELAY_MS", cls.inter_batch_delay_ms),
            request_timeout_ms=_int(env, "MARKET_REQUEST_TIMEOUT_MS", cls.request_timeout_ms),
            reconnect_max_attempts=_int(env, "MARKET_RECONNECT_MAX_ATTEMPTS", cls.reconnect_max_attempts),
            reconnect_delay_ms=_int(env, "MARKET_RECONNECT_DELAY_MS", cls.reconnect_delay_ms),
            reconnect_backoff=_float(env, "MARKET_RECONNECT_BACKOFF", cls.reconnect_backoff),
            reconnect_max_delay_ms=_int(env, "MARKET_RECONNECT_MAX_DELAY_MS", cls.reconnect_max_delay_ms),
            stale_feed_ms=_int(env, "MARKET_STALE_FEED_MS", cls.stale_feed_ms),
            cache_ttl_ms=_int(env, "MARKET_CACHE_TTL_MS", cls.cache_ttl_ms),
            cache_retention_ms=_int(env, "MARKET_CACHE_RETENTION_MS", cls.cache_retention_ms),
            cache_sweep_interval_ms=_int(env, "MARKET_CACHE_SWEEP_INTERVAL_MS", cls.cache_sweep_interval_ms),
            simulator_interval_ms=_int(env, "MARKET_SIM_INTERVAL_MS", cls.simulator_interval_ms),
        )
        if settings.batch_size < 1:
            raise ValueError("MARKET_BATCH_SIZE must be at least 1")
        if settings.reconnect_backoff < 1.0:
            logger.warning("MARKET_RECONNECT_BACKOFF < 1 shrinks delays between reconnects")
        return settings
