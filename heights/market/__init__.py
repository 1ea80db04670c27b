"""Market data subsystem for Heights.

Public API:
    MarketDataHub          - Shared upstream connection with per-symbol fan-out
    MarketSnapshot         - Immutable latest-state dataclass
    ConnectionState        - connecting / connected / disconnected / reconnecting
    Subscription           - Disposer returned by MarketDataHub.subscribe
    HubSettings            - Environment-driven configuration
    create_market_data_hub - Factory that selects Coinbase or the simulator
    create_market_router   - FastAPI router for one-shot reads and status
    create_stream_router   - FastAPI router factory for the SSE endpoint
"""

from .config import HubSettings
from .factory import create_market_data_hub
from .hub import MarketDataHub
from .models import ConnectionState, MarketSnapshot, RetryPolicy
from .registry import Subscription
from .routes import create_market_router
from .stream import create_stream_router

__all__ = [
    "ConnectionState",
    "HubSettings",
    "MarketDataHub",
    "MarketSnapshot",
    "RetryPolicy",
    "Subscription",
    "create_market_data_hub",
    "create_market_router",
    "create_stream_router",
]
