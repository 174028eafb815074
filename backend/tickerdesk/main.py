"""FastAPI application: the single place the market data layer is constructed."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tickerdesk.market import MarketSettings, PriceService, create_price_service, create_stream_router

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(
    settings: MarketSettings | None = None,
    service: PriceService | None = None,
) -> FastAPI:
    """Build the app. Pass a prebuilt service to share one across tests."""
    price_service = service or create_price_service(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await price_service.start()
        try:
            yield
        finally:
            await price_service.stop()

    app = FastAPI(title="tickerdesk market data", lifespan=lifespan)
    app.state.price_service = price_service
    app.include_router(create_stream_router(price_service))
    return app


def build() -> FastAPI:
    """Entry point for ``uvicorn --factory tickerdesk.main:build``."""
    configure_logging()
    return create_app()
