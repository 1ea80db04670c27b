"""Exceptions raised by the market data subsystem."""


class MarketDataError(Exception):
    """Base class for market data errors."""


class InvalidSymbolError(MarketDataError, ValueError):
    """Raised when a caller passes a symbol that cannot name an instrument.

    Attributes:
        symbol: The rejected input, as given
    """

    def __init__(self, symbol: object, reason: str = "invalid symbol format"):
        self.symbol = symbol
        super().__init__(f"{reason}: {symbol!r}")


class MalformedMessageError(MarketDataError, ValueError):
    """Raised at the ingestion boundary for upstream payloads we cannot use."""


class FeedClosedError(MarketDataError, ConnectionError):
    """Raised by a feed when the upstream connection drops."""
