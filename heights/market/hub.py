"""MarketDataHub: one shared upstream connection fanned out to many subscribers."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from .cache import SnapshotCache
from .config import HubSettings
from .errors import MalformedMessageError
from .interface import MarketDataFeed, SnapshotSource
from .models import ConnectionState, MarketSnapshot
from .parser import parse_ticker
from .registry import SnapshotCallback, Subscription, SubscriptionRegistry
from .symbols import normalize_symbol, product_id_for

logger = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState], None]


class MarketDataHub:
    """Owns the upstream feed, the snapshot cache, and the subscriber registry.

    Construct one per application and hand it to consumers; nothing here is
    module-level state, so tests can build isolated hubs.

    Lifecycle:
        hub = MarketDataHub(feed, snapshots, settings)
        await hub.init()          # load product universe, start connecting
        unsub = hub.subscribe("BTC", on_update)
        snapshot = await hub.get_market_data("ETH")
        unsub()
        await hub.shutdown()

    All mutation happens on the event loop thread. subscribe(), the disposer
    it returns, and get_connection_state() never suspend.
    """

    def __init__(
        self,
        feed: MarketDataFeed,
        snapshots: SnapshotSource,
        settings: HubSettings | None = None,
        cache: SnapshotCache | None = None,
    ) -> None:
        self._feed = feed
        self._rest = snapshots
        self._settings = settings or HubSettings()
        self._retry = self._settings.retry
        self._quote = self._settings.quote_currency.upper()
        self._cache = cache or SnapshotCache()
        self._registry = SubscriptionRegistry(
            on_first=self._on_first_subscriber,
            on_last=self._on_last_subscriber,
        )

        self._state = ConnectionState.DISCONNECTED
        self._state_listeners: list[StateListener] = []
        self._supervisor: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._closing = False

        # None until init() learns the tradable universe; then product ids
        self._products: set[str] | None = None
        # Product ids requested on the current upstream connection
        self._upstream: set[str] = set()

        self.connect_attempts = 0
        self.messages_dropped = 0

    # --- Lifecycle ---

    async def init(self) -> None:
        """Load the product universe and start the upstream connection."""
        await self._load_products()
        self.connect()
        logger.info("Market data hub started (%d products)", len(self._products or ()))

    async def shutdown(self) -> None:
        """Stop the supervisor, close upstream resources, drop all subscriptions.

        Safe to call multiple times. Disposers held by consumers remain
        callable and do nothing.
        """
        self._closing = True
        tasks = [t for t in (self._supervisor, *self._background) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._supervisor = None
        self._background.clear()

        try:
            await self._feed.close()
        except Exception as e:
            logger.warning("Error closing upstream feed: %s", e)
        try:
            await self._rest.close()
        except Exception as e:
            logger.warning("Error closing snapshot source: %s", e)

        self._upstream.clear()
        self._registry.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Market data hub stopped")

    def connect(self) -> None:
        """Start the upstream connection unless one is live or in progress.

        Returns immediately; the handshake runs in a background task. Must
        be called from within a running event loop.
        """
        if self._supervisor is not None and not self._supervisor.done():
            return
        self._closing = False
        self._set_state(ConnectionState.CONNECTING)
        self._supervisor = asyncio.get_running_loop().create_task(
            self._supervise(), name="market-hub-supervisor"
        )

    # --- Consumer API ---

    def subscribe(self, symbol: str, on_update: SnapshotCallback) -> Subscription:
        """Register ``on_update`` for ``symbol`` and return its disposer.

        If a snapshot is already cached it is delivered on the next loop
        iteration, so a new view is not left blank until the next tick.
        """
        symbol = normalize_symbol(symbol)
        if not callable(on_update):
            raise TypeError("on_update must be callable")

        sub = self._registry.add(symbol, on_update)
        cached = self._cache.get(symbol)
        if cached is not None:
            self._call_soon(self._deliver_cached, sub, cached)
        return sub

    async def get_market_data(self, symbol: str) -> MarketSnapshot | None:
        """Current snapshot for ``symbol``, fetching once over REST if needed.

        Resolves to None for unknown products and on any upstream failure or
        timeout. Only a malformed ``symbol`` raises (TypeError or
        InvalidSymbolError).
        """
        symbol = normalize_symbol(symbol)
        cached = self._cache.get(symbol)
        if cached is not None and self._is_current(cached):
            return cached

        product_id = product_id_for(symbol, self._quote)
        if not self.is_tradable(product_id):
            logger.info("Product %s is not available upstream", product_id)
            return None

        snapshot = await self._fetch(product_id)
        if snapshot is None:
            return None
        return self._store_fetched(snapshot)

    def get_connection_state(self) -> ConnectionState:
        return self._state

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` on every connection state change. Returns a remover."""
        self._state_listeners.append(listener)

        def remove() -> None:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

        return remove

    # --- Introspection ---

    @property
    def cache(self) -> SnapshotCache:
        return self._cache

    def products(self) -> list[str]:
        """Known tradable product ids (empty until init())."""
        return sorted(self._products or ())

    def subscribed_products(self) -> list[str]:
        """Product ids currently requested on the upstream connection."""
        return sorted(self._upstream)

    def subscriber_count(self, symbol: str | None = None) -> int:
        if symbol is not None:
            symbol = normalize_symbol(symbol)
        return self._registry.count(symbol)

    def is_tradable(self, product_id: str) -> bool:
        return self._products is None or product_id in self._products

    # --- Connection supervisor ---

    async def _supervise(self) -> None:
        """Connect, pump messages, and reconnect with bounded backoff."""
        attempt = 0
        while not self._closing:
            self.connect_attempts += 1
            try:
                await self._feed.open()
            except Exception as e:
                logger.warning("Upstream connect failed: %s", e)
            else:
                attempt = 0
                self._set_state(ConnectionState.CONNECTED)
                await self._resubscribe_all()
                await self._pump()
                try:
                    await self._feed.close()
                except Exception as e:
                    logger.debug("Ignoring error while closing dropped feed: %s", e)

            if self._closing:
                break

            attempt += 1
            if attempt > self._retry.max_attempts:
                logger.error("Upstream unreachable after %d reconnect attempts; giving up", attempt - 1)
                self._set_state(ConnectionState.DISCONNECTED)
                return

            delay = self._retry.delay_for(attempt)
            self._set_state(ConnectionState.RECONNECTING)
            logger.info("Reconnecting in %.1fs (attempt %d/%d)", delay, attempt, self._retry.max_attempts)
            await asyncio.sleep(delay)

    async def _pump(self) -> None:
        """Deliver upstream messages in arrival order until the connection ends."""
        try:
            async for message in self._feed.messages():
                try:
                    self._handle_message(message)
                except Exception:
                    logger.exception("Failed to handle upstream message")
        except Exception as e:
            if not self._closing:
                logger.warning("Upstream connection lost: %s", e)
        else:
            if not self._closing:
                logger.warning("Upstream closed the connection")
        finally:
            self._upstream.clear()

    async def _resubscribe_all(self) -> None:
        product_ids = [
            pid
            for pid in (product_id_for(s, self._quote) for s in self._registry.symbols())
            if self.is_tradable(pid)
        ]
        if not product_ids:
            return
        self._upstream.update(product_ids)
        try:
            await self._feed.subscribe(product_ids)
            logger.info("Subscribed upstream to %s", ", ".join(product_ids))
        except Exception as e:
            # The receive loop will see the dead connection and reconnect
            logger.warning("Upstream subscribe failed: %s", e)

    def _handle_message(self, message: dict) -> None:
        kind = message.get("type")
        if kind == "ticker":
            try:
                snapshot = parse_ticker(message, source=self._feed.source)
            except MalformedMessageError as e:
                self.messages_dropped += 1
                logger.warning("Dropping malformed ticker: %s", e)
                return
            if self._products is not None and snapshot.product_id not in self._products:
                self.messages_dropped += 1
                logger.warning("Dropping ticker for unexpected product %s", snapshot.product_id)
                return
            self._publish(snapshot)
        elif kind == "subscriptions":
            logger.debug("Upstream subscriptions: %s", message.get("channels"))
        elif kind == "error":
            logger.warning("Upstream error: %s (%s)", message.get("message"), message.get("reason"))
        elif kind == "heartbeat":
            pass
        else:
            logger.debug("Ignoring upstream %r frame", kind)

    def _publish(self, snapshot: MarketSnapshot) -> None:
        """Replace the cached snapshot, then fan out to its subscribers."""
        self._cache.update(snapshot)
        delivered = self._registry.dispatch(snapshot)
        logger.debug("%s %.6f -> %d subscribers", snapshot.symbol, snapshot.price, delivered)

    # --- Registry hooks ---

    def _on_first_subscriber(self, symbol: str) -> None:
        product_id = product_id_for(symbol, self._quote)
        if not self.is_tradable(product_id):
            logger.warning("Product %s is not available upstream; no live updates for %s", product_id, symbol)
            return

        if self._state == ConnectionState.CONNECTED and product_id not in self._upstream:
            self._upstream.add(product_id)
            self._spawn(self._feed.subscribe([product_id]), f"subscribe {product_id}")
        if self._settings.cold_start_fill and symbol not in self._cache:
            self._spawn(self._cold_start_fill(symbol, product_id), f"cold start {product_id}")

    def _on_last_subscriber(self, symbol: str) -> None:
        product_id = product_id_for(symbol, self._quote)
        if product_id in self._upstream and self._state == ConnectionState.CONNECTED:
            self._upstream.discard(product_id)
            self._spawn(self._feed.unsubscribe([product_id]), f"unsubscribe {product_id}")

    # --- Helpers ---

    def _is_current(self, snapshot: MarketSnapshot) -> bool:
        if self._state == ConnectionState.CONNECTED and snapshot.product_id in self._upstream:
            return True
        return snapshot.age() <= self._settings.stale_after

    async def _fetch(self, product_id: str) -> MarketSnapshot | None:
        try:
            return await asyncio.wait_for(
                self._rest.fetch_snapshot(product_id),
                timeout=self._settings.rest_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Snapshot fetch for %s timed out after %.1fs", product_id, self._settings.rest_timeout)
        except Exception as e:
            logger.warning("Snapshot fetch for %s failed: %s", product_id, e)
        return None

    def _store_fetched(self, snapshot: MarketSnapshot) -> MarketSnapshot:
        """Cache a REST snapshot unless the feed already produced a newer one."""
        current = self._cache.get(snapshot.symbol)
        if current is not None and current.timestamp > snapshot.timestamp:
            return current
        return self._cache.update(snapshot)

    async def _cold_start_fill(self, symbol: str, product_id: str) -> None:
        snapshot = await self._fetch(product_id)
        if snapshot is None or symbol in self._cache or symbol not in self._registry:
            return
        logger.debug("Cold start fill for %s", symbol)
        self._publish(snapshot)

    def _deliver_cached(self, sub: Subscription, snapshot: MarketSnapshot) -> None:
        # Skip if a live update already superseded it or the caller unsubscribed
        if not sub.active or self._cache.get(sub.symbol) is not snapshot:
            return
        try:
            sub.callback(snapshot)
        except Exception:
            logger.exception("Subscriber callback failed for %s", sub.symbol)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.info("Connection state: %s -> %s", self._state.value, state.value)
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Connection state listener failed")

    def _spawn(self, coro: Coroutine[Any, Any, Any], what: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running loop; skipped %s", what)
            return
        task = loop.create_task(self._guarded(coro, what))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _guarded(coro: Coroutine[Any, Any, Any], what: str) -> None:
        try:
            await coro
        except Exception as e:
            logger.warning("Background %s failed: %s", what, e)

    @staticmethod
    def _call_soon(callback: Callable[..., None], *args: Any) -> None:
        try:
            asyncio.get_running_loop().call_soon(callback, *args)
        except RuntimeError:
            callback(*args)

    async def _load_products(self) -> None:
        try:
            products = await asyncio.wait_for(
                self._rest.list_products(),
                timeout=self._settings.rest_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Product list timed out; using fallback pairs")
            products = []
        except Exception as e:
            logger.warning("Product list unavailable (%s); using fallback pairs", e)
            products = []

        if not products:
            products = list(self._settings.fallback_products)
        self._products = {p.upper() for p in products}
