"""Coinbase Exchange adapters: websocket ticker feed and REST snapshots."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from .config import COINBASE_REST_URL, COINBASE_WS_URL
from .errors import FeedClosedError, MalformedMessageError
from .interface import MarketDataFeed, SnapshotSource
from .models import MarketSnapshot
from .parser import parse_stats

logger = logging.getLogger(__name__)


class CoinbaseFeed(MarketDataFeed):
    """MarketDataFeed over the public Coinbase Exchange websocket.

    Uses the ``ticker`` channel, which carries last price plus 24h
    open/high/low/volume on every trade. Dead peers are detected with
    protocol-level pings rather than an application heartbeat.
    """

    source = "coinbase"

    def __init__(
        self,
        url: str = COINBASE_WS_URL,
        channels: tuple[str, ...] = ("ticker",),
        open_timeout: float = 10.0,
        ping_interval: float = 20.0,
        ping_timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._channels = list(channels)
        self._open_timeout = open_timeout
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout
        self._ws: Any = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def open(self) -> None:
        logger.info("Connecting to Coinbase feed at %s", self._url)
        self._ws = await websockets.connect(
            self._url,
            open_timeout=self._open_timeout,
            ping_interval=self._ping_interval,
            ping_timeout=self._ping_timeout,
        )
        logger.info("Coinbase feed connected")

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
            logger.info("Coinbase feed closed")

    async def subscribe(self, product_ids: list[str]) -> None:
        await self._send("subscribe", product_ids)

    async def unsubscribe(self, product_ids: list[str]) -> None:
        await self._send("unsubscribe", product_ids)

    async def _send(self, kind: str, product_ids: list[str]) -> None:
        if not product_ids or self._ws is None:
            return
        frame = {"type": kind, "product_ids": list(product_ids), "channels": self._channels}
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed as exc:
            raise FeedClosedError(f"cannot {kind}: connection closed") from exc
        logger.debug("Sent %s for %s", kind, ",".join(product_ids))

    async def messages(self) -> AsyncIterator[dict]:
        ws = self._ws
        if ws is None:
            raise FeedClosedError("feed is not open")
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError):
                    logger.warning("Dropping undecodable frame: %.80r", raw)
                    continue
                if not isinstance(message, dict):
                    logger.warning("Dropping non-object frame: %.80r", raw)
                    continue
                yield message
        except ConnectionClosed as exc:
            raise FeedClosedError(f"coinbase feed closed: {exc}") from exc
        finally:
            if self._ws is ws:
                self._ws = None


class CoinbaseRestClient(SnapshotSource):
    """SnapshotSource backed by the Coinbase Exchange REST API.

    ``/products/{id}/stats`` carries last, open, high, low and volume in a
    single call, which is all a snapshot needs.
    """

    def __init__(
        self,
        base_url: str = COINBASE_REST_URL,
        quote_currency: str = "USD",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._quote = quote_currency.upper()
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            headers={"Accept": "application/json", "User-Agent": "heights-market/0.1"},
        )

    async def fetch_snapshot(self, product_id: str) -> MarketSnapshot | None:
        response = await self._client.get(f"/products/{product_id}/stats")
        if response.status_code == 404:
            logger.info("Coinbase has no product %s", product_id)
            return None
        response.raise_for_status()

        try:
            return parse_stats(product_id, response.json())
        except ValueError as e:
            logger.warning("Unusable stats for %s: %s", product_id, e)
            return None

    async def list_products(self) -> list[str]:
        response = await self._client.get("/products")
        response.raise_for_status()
        products = response.json()
        if not isinstance(products, list):
            raise MalformedMessageError("products response must be a list")

        return [
            p["id"]
            for p in products
            if isinstance(p, dict)
            and p.get("id")
            and p.get("quote_currency") == self._quote
            and p.get("status") == "online"
            and not p.get("trading_disabled")
        ]

    async def close(self) -> None:
        await self._client.aclose()
