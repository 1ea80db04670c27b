"""Environment-driven settings for the market data hub."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .models import RetryPolicy

FEED_COINBASE = "coinbase"
FEED_SIMULATOR = "simulator"

COINBASE_WS_URL = "wss://ws-feed.exchange.coinbase.com"
COINBASE_REST_URL = "https://api.exchange.coinbase.com"

# Pairs known to exist on Coinbase; used when the product list can't be fetched
POPULAR_PAIRS: tuple[str, ...] = (
    "BTC-USD",
    "ETH-USD",
    "LTC-USD",
    "BCH-USD",
    "SOL-USD",
    "MATIC-USD",
    "LINK-USD",
    "AVAX-USD",
    "DOT-USD",
    "ADA-USD",
)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class HubSettings:
    """Tunables for MarketDataHub and its upstream adapters."""

    feed: str = FEED_COINBASE
    ws_url: str = COINBASE_WS_URL
    rest_url: str = COINBASE_REST_URL
    quote_currency: str = "USD"
    rest_timeout: float = 10.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    stale_after: float = 5.0
    cold_start_fill: bool = True
    fallback_products: tuple[str, ...] = POPULAR_PAIRS

    @classmethod
    def from_env(cls) -> HubSettings:
        """Build settings from HEIGHTS_* environment variables.

        Unset or empty variables keep their defaults; malformed numbers
        raise ValueError so a bad deploy fails at startup.
        """
        feed = os.environ.get("HEIGHTS_MARKET_FEED", "").strip().lower() or FEED_COINBASE
        if feed not in (FEED_COINBASE, FEED_SIMULATOR):
            raise ValueError(f"HEIGHTS_MARKET_FEED must be 'coinbase' or 'simulator', got {feed!r}")

        return cls(
            feed=feed,
            ws_url=os.environ.get("HEIGHTS_COINBASE_WS_URL", "").strip() or COINBASE_WS_URL,
            rest_url=os.environ.get("HEIGHTS_COINBASE_REST_URL", "").strip() or COINBASE_REST_URL,
            quote_currency=os.environ.get("HEIGHTS_QUOTE_CURRENCY", "").strip().upper() or "USD",
            rest_timeout=_env_float("HEIGHTS_REST_TIMEOUT", 10.0),
            retry=RetryPolicy(
                max_attempts=_env_int("HEIGHTS_RECONNECT_MAX_ATTEMPTS", 5),
                base_delay=_env_float("HEIGHTS_RECONNECT_BASE_DELAY", 1.0),
                max_delay=_env_float("HEIGHTS_RECONNECT_MAX_DELAY", 30.0),
            ),
            stale_after=_env_float("HEIGHTS_STALE_AFTER", 5.0),
            cold_start_fill=_env_bool("HEIGHTS_COLD_START_FILL", True),
        )
