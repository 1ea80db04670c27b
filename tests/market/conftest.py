"""Fixtures for market data tests.

Hubs are built on in-memory fakes so no test touches the network.
"""

import asyncio

import pytest
import pytest_asyncio

from heights.market.config import HubSettings
from heights.market.hub import MarketDataHub
from heights.market.models import ConnectionState, RetryPolicy

from tests.market.fakes import FakeFeed, FakeSnapshotSource


@pytest.fixture
def feed():
    return FakeFeed()


@pytest.fixture
def snapshots():
    return FakeSnapshotSource()


@pytest.fixture
def settings():
    """Fast retries, short REST timeout, no background cold-start fetches."""
    return HubSettings(
        retry=RetryPolicy(max_attempts=3, base_delay=0.001, max_delay=0.001),
        rest_timeout=0.2,
        cold_start_fill=False,
    )


@pytest_asyncio.fixture
async def hub(feed, snapshots, settings):
    """An initialized hub; shut down after the test."""
    hub = MarketDataHub(feed=feed, snapshots=snapshots, settings=settings)
    await hub.init()
    yield hub
    await hub.shutdown()


@pytest.fixture
def wait_until():
    """Poll ``predicate`` on the event loop until true or fail after ``timeout``."""

    async def _wait(predicate, timeout: float = 1.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait


@pytest_asyncio.fixture
async def connected_hub(hub, wait_until):
    """The ``hub`` fixture once its upstream handshake has completed."""
    await wait_until(lambda: hub.get_connection_state() == ConnectionState.CONNECTED)
    return hub
