"""Symbol normalization and product id mapping."""

from __future__ import annotations

import re

from .errors import InvalidSymbolError

# 1-20 alphanumerics once case-folded, e.g. BTC, MATIC, 1INCH
SYMBOL_PATTERN = re.compile(r"^[A-Z0-9]{1,20}$")

DEFAULT_QUOTE = "USD"


def normalize_symbol(value: str) -> str:
    """Return the canonical upper-case base symbol for ``value``.

    Accepts a bare symbol (``"btc"``) or an upstream product id
    (``"btc-usd"``). Raises TypeError for non-strings and
    InvalidSymbolError for anything that cannot name an instrument.
    """
    if not isinstance(value, str):
        raise TypeError(f"symbol must be a str, got {type(value).__name__}")

    symbol = value.strip().upper()
    if "-" in symbol:
        symbol = symbol.split("-", 1)[0]

    if not SYMBOL_PATTERN.match(symbol):
        raise InvalidSymbolError(value)
    return symbol


def product_id_for(symbol: str, quote: str = DEFAULT_QUOTE) -> str:
    """Map a normalized symbol to its upstream product id (BTC -> BTC-USD)."""
    return f"{symbol}-{quote.upper()}"


def symbol_for_product(product_id: str) -> str:
    """Inverse of product_id_for (BTC-USD -> BTC)."""
    return product_id.split("-", 1)[0].upper()
