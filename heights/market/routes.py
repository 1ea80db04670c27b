"""REST endpoints for one-shot snapshot reads and connection status."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException

from .hub import MarketDataHub


def create_market_router(hub: MarketDataHub) -> APIRouter:
    """Create the market router bound to ``hub``."""
    router = APIRouter(prefix="/api/market", tags=["market"])

    @router.get("/status")
    async def market_status() -> dict:
        return {
            "state": hub.get_connection_state().value,
            "products": hub.products(),
            "subscribed": hub.subscribed_products(),
            "subscribers": hub.subscriber_count(),
            "cached": sorted(hub.cache.get_all()),
            "version": hub.cache.version,
        }

    @router.get("/{symbol}")
    async def market_snapshot(symbol: str) -> dict:
        try:
            snapshot = await hub.get_market_data(symbol)
        except (TypeError, ValueError) as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        if snapshot is None:
            raise HTTPException(status_code=404, detail=f"No market data for {symbol}")
        return snapshot.to_dict()

    return router
