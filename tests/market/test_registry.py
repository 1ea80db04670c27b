"""Tests for SubscriptionRegistry."""

from heights.market.registry import SubscriptionRegistry

from tests.market.fakes import make_snapshot


class TestSubscriptionRegistry:
    """Unit tests for the subscriber registry."""

    def test_add_and_dispatch(self):
        registry = SubscriptionRegistry()
        received = []
        registry.add("BTC", received.append)

        snapshot = make_snapshot("BTC", 65000.0)
        assert registry.dispatch(snapshot) == 1
        assert received == [snapshot]

    def test_dispatch_other_symbol(self):
        registry = SubscriptionRegistry()
        received = []
        registry.add("BTC", received.append)
        assert registry.dispatch(make_snapshot("ETH", 3500.0)) == 0
        assert received == []

    def test_same_callback_twice_is_two_subscriptions(self):
        """Each add() is its own registration, even for the same callable."""
        registry = SubscriptionRegistry()
        received = []
        first = registry.add("BTC", received.append)
        registry.add("BTC", received.append)

        registry.dispatch(make_snapshot("BTC", 1.0))
        assert len(received) == 2

        first()
        registry.dispatch(make_snapshot("BTC", 2.0))
        assert len(received) == 3

    def test_first_and_last_hooks(self):
        events = []
        registry = SubscriptionRegistry(
            on_first=lambda s: events.append(("first", s)),
            on_last=lambda s: events.append(("last", s)),
        )
        a = registry.add("BTC", lambda s: None)
        b = registry.add("BTC", lambda s: None)
        a.unsubscribe()
        assert events == [("first", "BTC")]
        b.unsubscribe()
        assert events == [("first", "BTC"), ("last", "BTC")]
        assert "BTC" not in registry

    def test_unsubscribe_idempotent(self):
        """Test that a disposer can be called repeatedly."""
        last = []
        registry = SubscriptionRegistry(on_last=last.append)
        sub = registry.add("BTC", lambda s: None)
        sub()
        sub()
        sub.unsubscribe()
        assert last == ["BTC"]
        assert not sub.active

    def test_callback_error_does_not_stop_others(self):
        registry = SubscriptionRegistry()
        received = []

        def broken(snapshot):
            raise RuntimeError("boom")

        registry.add("BTC", broken)
        registry.add("BTC", received.append)
        assert registry.dispatch(make_snapshot("BTC", 1.0)) == 2
        assert len(received) == 1

    def test_unsubscribed_during_dispatch_is_skipped(self):
        registry = SubscriptionRegistry()
        received = []
        subs = []

        def cancel_next(snapshot):
            subs[1].unsubscribe()

        subs.append(registry.add("BTC", cancel_next))
        subs.append(registry.add("BTC", received.append))
        assert registry.dispatch(make_snapshot("BTC", 1.0)) == 1
        assert received == []

    def test_dispatch_order_is_registration_order(self):
        registry = SubscriptionRegistry()
        order = []
        for n in range(5):
            registry.add("BTC", lambda s, n=n: order.append(n))
        registry.dispatch(make_snapshot("BTC", 1.0))
        assert order == [0, 1, 2, 3, 4]

    def test_counts_and_symbols(self):
        registry = SubscriptionRegistry()
        registry.add("BTC", lambda s: None)
        registry.add("BTC", lambda s: None)
        registry.add("ETH", lambda s: None)
        assert registry.count() == 3
        assert registry.count("BTC") == 2
        assert registry.count("SOL") == 0
        assert sorted(registry.symbols()) == ["BTC", "ETH"]

    def test_clear_deactivates_without_hooks(self):
        last = []
        registry = SubscriptionRegistry(on_last=last.append)
        sub = registry.add("BTC", lambda s: None)
        registry.clear()
        assert not sub.active
        assert registry.count() == 0
        sub()  # no-op
        assert last == []

    def test_repr(self):
        registry = SubscriptionRegistry()
        sub = registry.add("BTC", lambda s: None)
        assert "BTC" in repr(sub)
        assert "active" in repr(sub)
