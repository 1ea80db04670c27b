"""Ingestion boundary: turn upstream payloads into MarketSnapshot values."""

from __future__ import annotations

import math
import time
from datetime import datetime
from typing import Any

from .errors import MalformedMessageError
from .models import MarketSnapshot
from .symbols import symbol_for_product


def _to_float(value: Any, *, field_name: str) -> float:
    try:
        if value is None or value == "":
            raise ValueError(f"missing value for {field_name}")
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise MalformedMessageError(f"invalid numeric value for {field_name}: {value!r}") from exc
    if not math.isfinite(number):
        raise MalformedMessageError(f"non-finite value for {field_name}: {value!r}")
    return number


def _to_float_default(value: Any, default: float | None = None) -> float | None:
    try:
        if value is None or value == "":
            return default
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _parse_time(value: Any) -> float:
    """ISO-8601 event time to Unix seconds, falling back to receipt time."""
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            pass
    return time.time()


def _build(
    product_id: Any,
    price_raw: Any,
    open_raw: Any,
    high_raw: Any,
    low_raw: Any,
    volume_raw: Any,
    timestamp: float,
    source: str,
) -> MarketSnapshot:
    if not product_id or not isinstance(product_id, str):
        raise MalformedMessageError("missing product_id in payload")

    price = _to_float(price_raw, field_name="price")
    if price < 0:
        raise MalformedMessageError(f"negative price for {product_id}: {price}")

    open_24h = _to_float_default(open_raw, default=0.0)
    change = price - open_24h if open_24h else 0.0
    change_percent = change / open_24h * 100 if open_24h and open_24h > 0 else 0.0

    return MarketSnapshot(
        symbol=symbol_for_product(product_id),
        product_id=product_id.upper(),
        price=price,
        change_24h=round(change, 8),
        change_24h_percent=round(change_percent, 4),
        volume_24h=_to_float_default(volume_raw),
        high_24h=_to_float_default(high_raw, default=price),
        low_24h=_to_float_default(low_raw, default=price),
        timestamp=timestamp,
        source=source,
    )


def parse_ticker(message: dict, source: str = "coinbase") -> MarketSnapshot:
    """Parse a websocket ``ticker`` frame.

    Raises MalformedMessageError when the frame has no usable product id
    or price. Optional stats degrade to defaults instead of failing.
    """
    if not isinstance(message, dict):
        raise MalformedMessageError("ticker payload must be an object")

    return _build(
        product_id=message.get("product_id"),
        price_raw=message.get("price"),
        open_raw=message.get("open_24h"),
        high_raw=message.get("high_24h"),
        low_raw=message.get("low_24h"),
        volume_raw=message.get("volume_24h"),
        timestamp=_parse_time(message.get("time")),
        source=source,
    )


def parse_stats(product_id: str, payload: dict, source: str = "coinbase-rest") -> MarketSnapshot:
    """Parse a REST ``/products/{id}/stats`` body into a snapshot."""
    if not isinstance(payload, dict):
        raise MalformedMessageError("stats payload must be an object")

    return _build(
        product_id=product_id,
        price_raw=payload.get("last"),
        open_raw=payload.get("open"),
        high_raw=payload.get("high"),
        low_raw=payload.get("low"),
        volume_raw=payload.get("volume"),
        timestamp=time.time(),
        source=source,
    )
