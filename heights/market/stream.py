"""SSE streaming endpoint for live snapshot updates."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from .config import POPULAR_PAIRS
from .hub import MarketDataHub
from .models import ConnectionState, MarketSnapshot
from .symbols import normalize_symbol

logger = logging.getLogger(__name__)

DEFAULT_SYMBOLS = ",".join(pair.split("-")[0] for pair in POPULAR_PAIRS)


def create_stream_router(hub: MarketDataHub) -> APIRouter:
    """Create the SSE streaming router with a reference to the hub.

    This factory pattern lets us inject the hub without globals.
    """
    router = APIRouter(prefix="/api/stream", tags=["streaming"])

    @router.get("/prices")
    async def stream_prices(
        request: Request,
        symbols: str = Query(DEFAULT_SYMBOLS, description="Comma-separated symbols"),
    ) -> StreamingResponse:
        """SSE endpoint for live snapshot updates.

        Subscribes to each requested symbol through the hub and streams
        one event per snapshot:

            data: {"symbol": "BTC", "productId": "BTC-USD", "price": 65000.0, ...}

        plus a status event whenever the upstream connection changes:

            event: status
            data: {"state": "reconnecting"}

        Includes a retry directive so the browser auto-reconnects on
        disconnection (EventSource built-in behavior).
        """
        try:
            wanted = _parse_symbols(symbols)
        except (TypeError, ValueError) as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        return StreamingResponse(
            _generate_events(hub, wanted, request),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",  # Disable nginx buffering if proxied
            },
        )

    return router


def _parse_symbols(raw: str) -> list[str]:
    symbols: list[str] = []
    for part in raw.split(","):
        if not part.strip():
            continue
        symbol = normalize_symbol(part)
        if symbol not in symbols:
            symbols.append(symbol)
    if not symbols:
        raise ValueError("at least one symbol is required")
    return symbols


def _status_event(state: ConnectionState) -> str:
    return f"event: status\ndata: {json.dumps({'state': state.value})}\n\n"


async def _generate_events(
    hub: MarketDataHub,
    symbols: list[str],
    request: Request,
    interval: float = 0.5,
) -> AsyncGenerator[str, None]:
    """Async generator that yields SSE-formatted snapshot and status events.

    Subscriptions live exactly as long as the generator; they are released
    when the client disconnects (checked every ``interval`` seconds while
    idle) or the response is cancelled.
    """
    queue: asyncio.Queue[MarketSnapshot | ConnectionState] = asyncio.Queue()
    subscriptions = [hub.subscribe(symbol, queue.put_nowait) for symbol in symbols]
    remove_listener = hub.add_state_listener(queue.put_nowait)

    client_ip = request.client.host if request.client else "unknown"
    logger.info("SSE client connected: %s (%s)", client_ip, ",".join(symbols))

    try:
        # Tell the client to retry after 1 second if the connection drops
        yield "retry: 1000\n\n"
        yield _status_event(hub.get_connection_state())

        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected: %s", client_ip)
                break

            try:
                item = await asyncio.wait_for(queue.get(), timeout=interval)
            except asyncio.TimeoutError:
                continue

            if isinstance(item, MarketSnapshot):
                yield f"data: {json.dumps(item.to_dict())}\n\n"
            else:
                yield _status_event(item)
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled for: %s", client_ip)
    finally:
        for sub in subscriptions:
            sub()
        remove_listener()
