"""Thread-safe in-memory snapshot cache."""

from __future__ import annotations

from threading import Lock

from .models import MarketSnapshot


class SnapshotCache:
    """Thread-safe in-memory cache of the latest snapshot for each symbol.

    Writers: the hub's receive loop and its REST fallback path.
    Readers: get_market_data, late subscribers, the SSE endpoint.

    Each entry is replaced whole, so a reader sees either the previous
    snapshot or the new one, never a blend of both.
    """

    def __init__(self) -> None:
        self._snapshots: dict[str, MarketSnapshot] = {}
        self._lock = Lock()
        self._version: int = 0  # Monotonically increasing; bumped on every update

    def update(self, snapshot: MarketSnapshot) -> MarketSnapshot:
        """Store ``snapshot`` as the current value for its symbol."""
        with self._lock:
            self._snapshots[snapshot.symbol] = snapshot
            self._version += 1
            return snapshot

    def get(self, symbol: str) -> MarketSnapshot | None:
        """Latest snapshot for a symbol, or None if unknown."""
        with self._lock:
            return self._snapshots.get(symbol)

    def get_all(self) -> dict[str, MarketSnapshot]:
        """Snapshot of all current values. Returns a shallow copy."""
        with self._lock:
            return dict(self._snapshots)

    @property
    def version(self) -> int:
        """Current version counter. Useful for change detection."""
        return self._version

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._snapshots
