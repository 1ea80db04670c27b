"""Data models for market data."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class ConnectionState(str, Enum):
    """Process-wide state of the upstream connection."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True, slots=True)
class MarketSnapshot:
    """Immutable latest-known state of one instrument.

    Frozen so that subscribers handed a snapshot cannot alter the copy
    held by the cache.
    """

    symbol: str
    product_id: str
    price: float
    change_24h: float = 0.0
    change_24h_percent: float = 0.0
    volume_24h: float | None = None
    high_24h: float | None = None
    low_24h: float | None = None
    timestamp: float = field(default_factory=time.time)  # Unix seconds
    source: str = "coinbase"

    @property
    def direction(self) -> str:
        """'up', 'down', or 'flat' over the trailing 24h window."""
        if self.change_24h > 0:
            return "up"
        elif self.change_24h < 0:
            return "down"
        return "flat"

    def age(self, now: float | None = None) -> float:
        """Seconds since the snapshot was produced (never negative)."""
        current = time.time() if now is None else now
        return max(current - self.timestamp, 0.0)

    def to_dict(self) -> dict:
        """Serialize using the consumer-facing key names."""
        return {
            "symbol": self.symbol,
            "productId": self.product_id,
            "price": self.price,
            "change24h": self.change_24h,
            "change24hPercent": self.change_24h_percent,
            "volume24h": self.volume_24h,
            "high24h": self.high_24h,
            "low24h": self.low_24h,
            "timestamp": self.timestamp,
            "source": self.source,
            "direction": self.direction,
        }


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff for upstream reconnects."""

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay <= 0:
            raise ValueError("base_delay must be > 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** max(attempt - 1, 0)), self.max_delay)
