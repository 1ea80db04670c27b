"""Tests for the Coinbase adapters (network mocked)."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from websockets.exceptions import ConnectionClosedError

from heights.market.coinbase import CoinbaseFeed, CoinbaseRestClient
from heights.market.errors import FeedClosedError, MalformedMessageError


class FakeWebSocket:
    """Async-iterable stand-in for a websockets connection."""

    def __init__(self, frames, error=None):
        self._frames = list(frames)
        self._error = error
        self.sent = []
        self.closed = False
        self.send_error = None

    async def send(self, data):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self._frames:
            yield frame
        if self._error is not None:
            raise self._error


def _closed_error():
    return ConnectionClosedError(None, None)


async def _open_feed(ws):
    feed = CoinbaseFeed(url="wss://test")
    with patch("heights.market.coinbase.websockets.connect", new=AsyncMock(return_value=ws)) as connect:
        await feed.open()
    return feed, connect


@pytest.mark.asyncio
class TestCoinbaseFeed:
    """Unit tests for CoinbaseFeed with a mocked websocket."""

    async def test_open_uses_url_and_pings(self):
        feed, connect = await _open_feed(FakeWebSocket([]))
        assert feed.is_open
        args, kwargs = connect.call_args
        assert args == ("wss://test",)
        assert kwargs["ping_interval"] == 20.0
        assert kwargs["ping_timeout"] == 10.0

    async def test_subscribe_frame(self):
        """Test the subscribe request matches the Coinbase protocol."""
        ws = FakeWebSocket([])
        feed, _ = await _open_feed(ws)
        await feed.subscribe(["BTC-USD", "ETH-USD"])
        await feed.unsubscribe(["ETH-USD"])

        assert ws.sent == [
            {"type": "subscribe", "product_ids": ["BTC-USD", "ETH-USD"], "channels": ["ticker"]},
            {"type": "unsubscribe", "product_ids": ["ETH-USD"], "channels": ["ticker"]},
        ]

    async def test_subscribe_empty_or_closed_is_noop(self):
        ws = FakeWebSocket([])
        feed, _ = await _open_feed(ws)
        await feed.subscribe([])
        await feed.close()
        await feed.subscribe(["BTC-USD"])
        assert ws.sent == []

    async def test_send_on_dead_connection(self):
        ws = FakeWebSocket([])
        ws.send_error = _closed_error()
        feed, _ = await _open_feed(ws)
        with pytest.raises(FeedClosedError):
            await feed.subscribe(["BTC-USD"])

    async def test_messages_decode_json(self):
        frames = [
            json.dumps({"type": "ticker", "product_id": "BTC-USD", "price": "1"}),
            "not json",
            json.dumps(["a", "list"]),
            json.dumps({"type": "heartbeat"}),
        ]
        feed, _ = await _open_feed(FakeWebSocket(frames))

        received = [m async for m in feed.messages()]
        assert [m["type"] for m in received] == ["ticker", "heartbeat"]
        assert not feed.is_open

    async def test_connection_closed_becomes_feed_closed(self):
        """Test that a dropped socket surfaces as FeedClosedError."""
        frames = [json.dumps({"type": "heartbeat"})]
        feed, _ = await _open_feed(FakeWebSocket(frames, error=_closed_error()))

        received = []
        with pytest.raises(FeedClosedError):
            async for message in feed.messages():
                received.append(message)
        assert len(received) == 1
        assert not feed.is_open

    async def test_messages_when_not_open(self):
        feed = CoinbaseFeed()
        with pytest.raises(FeedClosedError):
            async for _ in feed.messages():
                pass

    async def test_close(self):
        ws = FakeWebSocket([])
        feed, _ = await _open_feed(ws)
        await feed.close()
        await feed.close()
        assert ws.closed
        assert not feed.is_open


def _rest_client(handler):
    client = httpx.AsyncClient(base_url="https://api.test", transport=httpx.MockTransport(handler))
    return CoinbaseRestClient(client=client)


@pytest.mark.asyncio
class TestCoinbaseRestClient:
    """Unit tests for CoinbaseRestClient with a mocked transport."""

    async def test_fetch_snapshot(self):
        def handler(request):
            assert request.url.path == "/products/BTC-USD/stats"
            return httpx.Response(
                200,
                json={"open": "64000", "high": "66500", "low": "63500", "volume": "1000", "last": "65000"},
            )

        rest = _rest_client(handler)
        snapshot = await rest.fetch_snapshot("BTC-USD")
        assert snapshot.symbol == "BTC"
        assert snapshot.price == 65000.0
        assert snapshot.change_24h == 1000.0
        assert snapshot.source == "coinbase-rest"
        await rest.close()

    async def test_fetch_unknown_product(self):
        rest = _rest_client(lambda request: httpx.Response(404, json={"message": "NotFound"}))
        assert await rest.fetch_snapshot("NOPE-USD") is None
        await rest.close()

    async def test_fetch_server_error_raises(self):
        """Non-404 HTTP failures propagate for the hub to handle."""
        rest = _rest_client(lambda request: httpx.Response(503))
        with pytest.raises(httpx.HTTPStatusError):
            await rest.fetch_snapshot("BTC-USD")
        await rest.close()

    async def test_fetch_unusable_body(self):
        rest = _rest_client(lambda request: httpx.Response(200, json={"last": "-1"}))
        assert await rest.fetch_snapshot("BTC-USD") is None
        await rest.close()

    async def test_list_products_filters(self):
        products = [
            {"id": "BTC-USD", "quote_currency": "USD", "status": "online", "trading_disabled": False},
            {"id": "BTC-EUR", "quote_currency": "EUR", "status": "online", "trading_disabled": False},
            {"id": "OLD-USD", "quote_currency": "USD", "status": "delisted", "trading_disabled": False},
            {"id": "HALT-USD", "quote_currency": "USD", "status": "online", "trading_disabled": True},
            "junk",
        ]
        rest = _rest_client(lambda request: httpx.Response(200, json=products))
        assert await rest.list_products() == ["BTC-USD"]
        await rest.close()

    async def test_list_products_bad_body(self):
        rest = _rest_client(lambda request: httpx.Response(200, json={"products": []}))
        with pytest.raises(MalformedMessageError):
            await rest.list_products()
        await rest.close()

    async def test_close(self):
        rest = _rest_client(lambda request: httpx.Response(200))
        await rest.close()
        assert rest._client.is_closed
