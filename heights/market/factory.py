"""Factory for creating the market data hub."""

from __future__ import annotations

import logging

from .config import FEED_SIMULATOR, HubSettings
from .hub import MarketDataHub

logger = logging.getLogger(__name__)


def create_market_data_hub(settings: HubSettings | None = None) -> MarketDataHub:
    """Create a hub wired to the upstream selected by settings.

    - HEIGHTS_MARKET_FEED=simulator → SimulatedFeed + SimulatedSnapshotSource
    - Otherwise → CoinbaseFeed + CoinbaseRestClient (live public data)

    Returns an unstarted hub. Caller must await hub.init().
    """
    settings = settings or HubSettings.from_env()

    if settings.feed == FEED_SIMULATOR:
        from .simulator import GBMSimulator, SimulatedFeed, SimulatedSnapshotSource

        simulator = GBMSimulator(products=[])
        logger.info("Market data source: GBM Simulator")
        return MarketDataHub(
            feed=SimulatedFeed(simulator),
            snapshots=SimulatedSnapshotSource(simulator),
            settings=settings,
        )
    else:
        from .coinbase import CoinbaseFeed, CoinbaseRestClient

        logger.info("Market data source: Coinbase (%s)", settings.ws_url)
        return MarketDataHub(
            feed=CoinbaseFeed(url=settings.ws_url),
            snapshots=CoinbaseRestClient(
                base_url=settings.rest_url,
                quote_currency=settings.quote_currency,
                timeout=settings.rest_timeout,
            ),
            settings=settings,
        )
