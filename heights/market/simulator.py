"""GBM-based market simulator that speaks the Coinbase ticker format."""

from __future__ import annotations

import asyncio
import logging
import math
import random
from collections.abc import AsyncIterator
from datetime import datetime, timezone

import numpy as np

from .errors import FeedClosedError
from .interface import MarketDataFeed, SnapshotSource
from .models import MarketSnapshot
from .parser import parse_ticker
from .seed_prices import (
    CORRELATION_GROUPS,
    CROSS_GROUP_CORR,
    DEFAULT_PARAMS,
    INTRA_ALTS_CORR,
    INTRA_MAJORS_CORR,
    PRODUCT_PARAMS,
    SEED_PRICES,
)

logger = logging.getLogger(__name__)

_CLOSED = object()  # queue sentinel: connection ended


class GBMSimulator:
    """Geometric Brownian Motion simulator for correlated crypto prices.

    Math:
        S(t+dt) = S(t) * exp((mu - sigma^2/2) * dt + sigma * sqrt(dt) * Z)

    Where:
        S(t)   = current price
        mu     = annualized drift (expected return)
        sigma  = annualized volatility
        dt     = time step as fraction of a year
        Z      = correlated standard normal random variable

    Crypto trades around the clock, so a year is 365 * 24h of seconds.
    Each product also keeps the rolling stats a ticker frame carries
    (24h open, high, low, volume), anchored at the seed price.
    """

    SECONDS_PER_YEAR = 365 * 24 * 3600  # 31,536,000
    DEFAULT_DT = 1.0 / SECONDS_PER_YEAR  # ~3.17e-8

    def __init__(
        self,
        products: list[str],
        dt: float = DEFAULT_DT,
        event_probability: float = 0.001,
    ) -> None:
        self._dt = dt
        self._event_prob = event_probability

        # Per-product state
        self._products: list[str] = []
        self._prices: dict[str, float] = {}
        self._params: dict[str, dict[str, float]] = {}
        self._open: dict[str, float] = {}
        self._high: dict[str, float] = {}
        self._low: dict[str, float] = {}
        self._volume: dict[str, float] = {}

        self._cholesky: np.ndarray | None = None

        for product_id in products:
            self._add_product_internal(product_id)
        self._rebuild_cholesky()

    # --- Public API ---

    def step(self) -> dict[str, float]:
        """Advance all products by one time step. Returns {product_id: new_price}."""
        n = len(self._products)
        if n == 0:
            return {}

        z_independent = np.random.standard_normal(n)
        if self._cholesky is not None:
            z_correlated = self._cholesky @ z_independent
        else:
            z_correlated = z_independent

        result: dict[str, float] = {}
        for i, product_id in enumerate(self._products):
            params = self._params[product_id]
            mu = params["mu"]
            sigma = params["sigma"]

            drift = (mu - 0.5 * sigma**2) * self._dt
            diffusion = sigma * math.sqrt(self._dt) * z_correlated[i]
            self._prices[product_id] *= math.exp(drift + diffusion)

            if random.random() < self._event_prob:
                shock_magnitude = random.uniform(0.02, 0.05)
                shock_sign = random.choice([-1, 1])
                self._prices[product_id] *= 1 + shock_magnitude * shock_sign
                logger.debug(
                    "Random event on %s: %.1f%% %s",
                    product_id,
                    shock_magnitude * 100,
                    "up" if shock_sign > 0 else "down",
                )

            price = self._prices[product_id]
            self._high[product_id] = max(self._high[product_id], price)
            self._low[product_id] = min(self._low[product_id], price)
            self._volume[product_id] += random.uniform(0.0, 2.0)
            result[product_id] = round(price, 6)

        return result

    def add_product(self, product_id: str) -> None:
        """Add a product to the simulation. Rebuilds the correlation matrix."""
        if product_id in self._prices:
            return
        self._add_product_internal(product_id)
        self._rebuild_cholesky()

    def remove_product(self, product_id: str) -> None:
        """Remove a product from the simulation. Rebuilds the correlation matrix."""
        if product_id not in self._prices:
            return
        self._products.remove(product_id)
        for state in (self._prices, self._params, self._open, self._high, self._low, self._volume):
            del state[product_id]
        self._rebuild_cholesky()

    def get_price(self, product_id: str) -> float | None:
        """Current price for a product, or None if not tracked."""
        return self._prices.get(product_id)

    def get_products(self) -> list[str]:
        return list(self._products)

    def ticker(self, product_id: str) -> dict | None:
        """Current state as a Coinbase ``ticker`` frame, or None if not tracked."""
        price = self._prices.get(product_id)
        if price is None:
            return None
        return {
            "type": "ticker",
            "product_id": product_id,
            "price": f"{price:.6f}",
            "open_24h": f"{self._open[product_id]:.6f}",
            "high_24h": f"{self._high[product_id]:.6f}",
            "low_24h": f"{self._low[product_id]:.6f}",
            "volume_24h": f"{self._volume[product_id]:.4f}",
            "time": datetime.now(timezone.utc).isoformat(),
        }

    # --- Internals ---

    def _add_product_internal(self, product_id: str) -> None:
        """Add a product without rebuilding Cholesky (for batch initialization)."""
        if product_id in self._prices:
            return
        seed = SEED_PRICES.get(product_id, random.uniform(1.0, 100.0))
        self._products.append(product_id)
        self._prices[product_id] = seed
        self._params[product_id] = PRODUCT_PARAMS.get(product_id, dict(DEFAULT_PARAMS))
        self._open[product_id] = seed
        self._high[product_id] = seed
        self._low[product_id] = seed
        self._volume[product_id] = 0.0

    def _rebuild_cholesky(self) -> None:
        """Rebuild the Cholesky decomposition of the product correlation matrix.

        Called whenever products are added or removed. O(n^2) but n < 50.
        """
        n = len(self._products)
        if n <= 1:
            self._cholesky = None
            return

        corr = np.eye(n)
        for i in range(n):
            for j in range(i + 1, n):
                rho = self._pairwise_correlation(self._products[i], self._products[j])
                corr[i, j] = rho
                corr[j, i] = rho

        self._cholesky = np.linalg.cholesky(corr)

    @staticmethod
    def _pairwise_correlation(p1: str, p2: str) -> float:
        """Correlation between two products based on grouping.

        Correlation structure:
          - BTC/ETH:             0.8
          - Two alts:            0.7
          - Anything else:       0.6
        """
        majors = CORRELATION_GROUPS["majors"]
        alts = CORRELATION_GROUPS["alts"]

        if p1 in majors and p2 in majors:
            return INTRA_MAJORS_CORR
        if p1 in alts and p2 in alts:
            return INTRA_ALTS_CORR
        return CROSS_GROUP_CORR


class SimulatedFeed(MarketDataFeed):
    """MarketDataFeed backed by the GBM simulator.

    Emits Coinbase-shaped ticker frames for subscribed products every
    ``update_interval`` seconds. drop() ends the current connection the way
    a network failure would, and ``fail_opens`` makes the next N open()
    calls fail, so reconnect behaviour can be exercised offline.
    """

    source = "simulator"

    def __init__(
        self,
        simulator: GBMSimulator | None = None,
        update_interval: float = 1.0,
        fail_opens: int = 0,
    ) -> None:
        self.simulator = simulator or GBMSimulator(products=[])
        self._interval = update_interval
        self.fail_opens = fail_opens
        self.open_count = 0
        self._subscribed: set[str] = set()
        self._queue: asyncio.Queue | None = None
        self._task: asyncio.Task | None = None

    @property
    def is_open(self) -> bool:
        return self._queue is not None

    def subscribed_products(self) -> list[str]:
        return sorted(self._subscribed)

    async def open(self) -> None:
        self.open_count += 1
        if self.fail_opens > 0:
            self.fail_opens -= 1
            raise ConnectionError("simulated handshake failure")
        self._queue = asyncio.Queue()
        self._subscribed.clear()
        self._task = asyncio.create_task(self._run_loop(), name="simulated-feed")
        logger.info("Simulated feed opened")

    async def close(self) -> None:
        await self._stop_loop()
        if self._queue is not None:
            self._queue.put_nowait(_CLOSED)
            self._queue = None
        self._subscribed.clear()
        logger.info("Simulated feed closed")

    async def drop(self) -> None:
        """Simulate an upstream disconnect."""
        await self._stop_loop()
        if self._queue is not None:
            self._queue.put_nowait(FeedClosedError("simulated disconnect"))
            self._queue = None
        self._subscribed.clear()

    def inject(self, message: dict) -> None:
        """Push a raw frame as if upstream had sent it."""
        if self._queue is None:
            raise FeedClosedError("feed is not open")
        self._queue.put_nowait(message)

    async def subscribe(self, product_ids: list[str]) -> None:
        if self._queue is None:
            return
        for product_id in product_ids:
            self.simulator.add_product(product_id)
            self._subscribed.add(product_id)
        self._queue.put_nowait(
            {"type": "subscriptions", "channels": [{"name": "ticker", "product_ids": sorted(self._subscribed)}]}
        )

    async def unsubscribe(self, product_ids: list[str]) -> None:
        for product_id in product_ids:
            self._subscribed.discard(product_id)

    async def messages(self) -> AsyncIterator[dict]:
        queue = self._queue
        if queue is None:
            raise FeedClosedError("feed is not open")
        while True:
            item = await queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def _stop_loop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _run_loop(self) -> None:
        """Core loop: step the simulation, emit frames, sleep."""
        while True:
            try:
                self.simulator.step()
                queue = self._queue
                if queue is not None:
                    for product_id in sorted(self._subscribed):
                        frame = self.simulator.ticker(product_id)
                        if frame is not None:
                            queue.put_nowait(frame)
            except Exception:
                logger.exception("Simulator step failed")
            await asyncio.sleep(self._interval)


class SimulatedSnapshotSource(SnapshotSource):
    """SnapshotSource answering from the same simulator as the feed."""

    def __init__(self, simulator: GBMSimulator) -> None:
        self._sim = simulator

    async def fetch_snapshot(self, product_id: str) -> MarketSnapshot | None:
        if product_id not in SEED_PRICES and self._sim.get_price(product_id) is None:
            return None
        self._sim.add_product(product_id)
        return parse_ticker(self._sim.ticker(product_id), source="simulator")

    async def list_products(self) -> list[str]:
        return sorted(set(SEED_PRICES) | set(self._sim.get_products()))
