"""Subscriber registry: symbol -> registered callbacks."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable

from .models import MarketSnapshot

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[MarketSnapshot], None]


class Subscription:
    """Disposer handle returned by subscribe().

    Calling the handle (or unsubscribe()) removes exactly this
    registration. Subsequent calls do nothing.
    """

    __slots__ = ("symbol", "callback", "_id", "_registry", "_active")

    def __init__(self, registry: SubscriptionRegistry, symbol: str, callback: SnapshotCallback, sub_id: int):
        self.symbol = symbol
        self.callback = callback
        self._id = sub_id
        self._registry = registry
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._registry._discard(self)

    __call__ = unsubscribe

    def __repr__(self) -> str:
        state = "active" if self._active else "closed"
        return f"<Subscription {self.symbol}#{self._id} {state}>"


class SubscriptionRegistry:
    """Callbacks keyed by symbol, with hooks for first/last subscriber.

    ``on_first`` fires when a symbol gains its first live subscription and
    ``on_last`` when it loses the last one; the hub uses these to request
    and release upstream delivery.
    """

    def __init__(
        self,
        on_first: Callable[[str], None] | None = None,
        on_last: Callable[[str], None] | None = None,
    ) -> None:
        self._subs: dict[str, dict[int, Subscription]] = {}
        self._ids = itertools.count(1)
        self._on_first = on_first
        self._on_last = on_last

    def add(self, symbol: str, callback: SnapshotCallback) -> Subscription:
        sub = Subscription(self, symbol, callback, next(self._ids))
        bucket = self._subs.setdefault(symbol, {})
        first = not bucket
        bucket[sub._id] = sub
        if first and self._on_first is not None:
            self._on_first(symbol)
        return sub

    def _discard(self, sub: Subscription) -> None:
        bucket = self._subs.get(sub.symbol)
        if bucket is None or bucket.pop(sub._id, None) is None:
            return
        if not bucket:
            del self._subs[sub.symbol]
            if self._on_last is not None:
                self._on_last(sub.symbol)

    def dispatch(self, snapshot: MarketSnapshot) -> int:
        """Invoke every live callback for the snapshot's symbol.

        Returns the number of callbacks invoked. A callback that raises is
        logged and does not stop delivery to the others. Subscriptions
        cancelled mid-dispatch (e.g. by an earlier callback) are skipped.
        """
        bucket = self._subs.get(snapshot.symbol)
        if not bucket:
            return 0

        delivered = 0
        for sub in list(bucket.values()):
            if not sub.active:
                continue
            try:
                sub.callback(snapshot)
            except Exception:
                logger.exception("Subscriber callback failed for %s", snapshot.symbol)
            delivered += 1
        return delivered

    def symbols(self) -> list[str]:
        """Symbols with at least one live subscription."""
        return list(self._subs)

    def count(self, symbol: str | None = None) -> int:
        if symbol is None:
            return sum(len(bucket) for bucket in self._subs.values())
        return len(self._subs.get(symbol, ()))

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._subs

    def clear(self) -> None:
        for bucket in self._subs.values():
            for sub in bucket.values():
                sub._active = False
        self._subs.clear()
