"""HTTP surface: SSE price stream, connection status and batched quote lookups."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from .errors import MarketDataError, QuoteNotFoundError, QuoteTimeoutError
from .models import Tick, normalize_symbol
from .service import PriceService

logger = logging.getLogger(__name__)

MAX_STREAM_SYMBOLS = 50


def parse_symbols(raw: str) -> list[str]:
    """Comma-separated symbol list -> unique normalized symbols, order preserved."""
    symbols: list[str] = []
    for part in raw.split(","):
        if part.strip():
            symbol = normalize_symbol(part)
            if symbol not in symbols:
                symbols.append(symbol)
    if not symbols:
        raise ValueError("at least one symbol is required")
    return symbols


def create_stream_router(service: PriceService) -> APIRouter:
    """Create the market data router bound to a PriceService.

    This factory pattern lets us inject the service without globals.
    """
    router = APIRouter(tags=["market"])

    @router.get("/api/stream/prices")
    async def stream_prices(request: Request, symbols: str = Query(...)) -> StreamingResponse:
        """SSE endpoint for live price updates of the requested symbols.

        Each client holds one subscription handle for the life of the
        connection; events look like:

            data: {"symbol": "AAPL", "price": 190.5, "timestamp": 1707580800000, ...}
        """
        try:
            symbol_list = parse_symbols(symbols)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        if len(symbol_list) > MAX_STREAM_SYMBOLS:
            raise HTTPException(status_code=400, detail=f"at most {MAX_STREAM_SYMBOLS} symbols per stream")

        return StreamingResponse(
            _generate_events(service, symbol_list, request),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    @router.get("/api/stream/status")
    async def stream_status() -> dict:
        return {
            "status": service.get_connection_status(),
            "symbols": sorted(service.counter.active_symbols()),
            "cached_symbols": len(service.cache),
        }

    @router.get("/api/quotes/{symbol}")
    async def get_quote(symbol: str) -> dict:
        try:
            tick = await service.get_quote(symbol)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except QuoteNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except QuoteTimeoutError as e:
            raise HTTPException(status_code=504, detail=str(e)) from e
        except MarketDataError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e
        return tick.to_dict()

    return router


async def _generate_events(
    service: PriceService,
    symbols: list[str],
    request: Request,
    poll_interval: float = 1.0,
    max_buffered: int = 1000,
) -> AsyncGenerator[str, None]:
    """Async generator that yields SSE-formatted tick events.

    Stops when the client disconnects; the subscription handle is disposed
    on every exit path.
    """
    # Tell the client to retry after 1 second if the connection drops
    yield "retry: 1000\n\n"

    queue: asyncio.Queue[Tick] = asyncio.Queue(maxsize=max_buffered)

    def on_update(tick: Tick) -> None:
        try:
            queue.put_nowait(tick)
        except asyncio.QueueFull:
            logger.warning("SSE buffer full, dropping %s tick", tick.symbol)

    client_ip = request.client.host if request.client else "unknown"
    handle = service.watch(symbols, on_update)
    logger.info("SSE client connected: %s (%s)", client_ip, ",".join(symbols))

    try:
        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break
            try:
                tick = await asyncio.wait_for(queue.get(), timeout=poll_interval)
            except asyncio.TimeoutError:
                continue
            yield f"data: {json.dumps(tick.to_dict())}\n\n"
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)
        raise
    finally:
        handle.dispose()
