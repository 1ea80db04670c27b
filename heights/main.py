"""FastAPI application wiring the market data hub into the request layer."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from heights.market import MarketDataHub, create_market_data_hub, create_market_router, create_stream_router

logger = logging.getLogger(__name__)


def create_app(hub: MarketDataHub | None = None) -> FastAPI:
    """Build the app around one hub shared by every route for its lifetime.

    The hub is created (or injected, for tests) here and started and
    stopped by the lifespan handler; routes never own it.
    """
    hub = hub or create_market_data_hub()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await hub.init()
        try:
            yield
        finally:
            await hub.shutdown()

    app = FastAPI(title="Heights Market Data", version="0.1.0", lifespan=lifespan)
    app.state.hub = hub
    app.include_router(create_market_router(hub))
    app.include_router(create_stream_router(hub))
    return app
