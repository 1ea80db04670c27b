"""Abstract interfaces for upstream market data providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from .models import MarketSnapshot


class MarketDataFeed(ABC):
    """Contract for a real-time push feed (one upstream connection).

    The hub drives the feed; consumers never touch it directly.

    Lifecycle:
        await feed.open()                 # handshake, raises on failure
        await feed.subscribe(["BTC-USD"])
        async for message in feed.messages():
            ...                           # decoded JSON objects
        await feed.close()

    When the connection drops, messages() either stops iterating or raises
    FeedClosedError. The feed may be opened again after that.
    """

    source: str = "upstream"  # label stamped on snapshots parsed from this feed

    @abstractmethod
    async def open(self) -> None:
        """Establish the upstream connection. Raises on handshake failure."""

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Safe to call multiple times."""

    @abstractmethod
    async def subscribe(self, product_ids: list[str]) -> None:
        """Ask upstream to start sending updates for the given products."""

    @abstractmethod
    async def unsubscribe(self, product_ids: list[str]) -> None:
        """Ask upstream to stop sending updates for the given products."""

    @abstractmethod
    def messages(self) -> AsyncIterator[dict]:
        """Iterate decoded upstream messages until the connection ends."""


class SnapshotSource(ABC):
    """Contract for a point-in-time (REST) snapshot provider."""

    @abstractmethod
    async def fetch_snapshot(self, product_id: str) -> MarketSnapshot | None:
        """Fetch one snapshot. Returns None if upstream has no data for it.

        Network failures propagate; the hub decides how to absorb them.
        """

    @abstractmethod
    async def list_products(self) -> list[str]:
        """Return the tradable product ids upstream currently offers."""

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
