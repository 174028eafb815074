"""Real-time market data layer for tickerdesk.

Public API:
    Tick, Quote, ConnectionState - Immutable price data and feed state
    TickCache                    - Short-TTL last-price store
    UpstreamFeed                 - Abstract single upstream connection
    FinnhubFeed, SimulatorFeed   - Websocket and simulated feeds
    SubscriptionCounter          - Reference-counted upstream subscriptions
    FanoutDispatcher             - Per-symbol tick fan-out with isolation
    RequestBatcher               - Batched, rate-limited pull lookups
    SubscriptionHandle           - Consumer-side subscription lifecycle
    PriceService                 - Composition root and consumer API
    create_price_service         - Factory that selects providers from env
    create_stream_router         - FastAPI router factory for SSE and quotes
"""

from .batcher import BatcherState, RequestBatcher
from .cache import TickCache
from .config import MarketSettings
from .dispatcher import FanoutDispatcher
from .errors import (
    MarketDataError,
    MessageParseError,
    QuoteFetchError,
    QuoteNotFoundError,
    QuoteTimeoutError,
)
from .factory import create_price_service
from .feed import FinnhubFeed
from .handle import SubscriptionHandle
from .interface import UpstreamFeed
from .models import ConnectionState, Quote, Tick, normalize_symbol
from .refcount import SubscriptionCounter
from .service import PriceService
from .simulator import SimulatorFeed
from .stream import create_stream_router

__all__ = [
    "BatcherState",
    "ConnectionState",
    "FanoutDispatcher",
    "FinnhubFeed",
    "MarketDataError",
    "MarketSettings",
    "MessageParseError",
    "PriceService",
    "Quote",
    "QuoteFetchError",
    "QuoteNotFoundError",
    "QuoteTimeoutError",
    "RequestBatcher",
    "SimulatorFeed",
    "SubscriptionCounter",
    "SubscriptionHandle",
    "Tick",
    "TickCache",
    "UpstreamFeed",
    "create_price_service",
    "create_stream_router",
    "normalize_symbol",
]
