"""Tests for per-topic callback fan-out."""

import asyncio

from medsync_realtime.metrics import MetricsCollector
from medsync_realtime.registry import CallbackRegistry


class TestFanOut:
    def test_callbacks_run_once_in_registration_order(self):
        registry = CallbackRegistry()
        calls = []
        registry.subscribe("shifts", lambda e: calls.append(("a", e)))
        registry.subscribe("shifts", lambda e: calls.append(("b", e)))

        assert registry.dispatch("shifts", 1) == 2
        assert calls == [("a", 1), ("b", 1)]

    def test_removed_callback_is_not_invoked(self):
        registry = CallbackRegistry()
        calls = []
        unsubscribe_a = registry.subscribe("shifts", lambda e: calls.append("a"))
        registry.subscribe("shifts", lambda e: calls.append("b"))

        unsubscribe_a()
        registry.dispatch("shifts", 1)
        assert calls == ["b"]

    def test_topics_are_independent(self):
        registry = CallbackRegistry()
        calls = []
        registry.subscribe("shifts", lambda e: calls.append("shifts"))
        registry.subscribe("fixed_schedules", lambda e: calls.append("fixed"))

        registry.dispatch("fixed_schedules", 1)
        assert calls == ["fixed"]

    def test_dispatch_without_subscribers(self):
        assert CallbackRegistry().dispatch("shifts", 1) == 0

    def test_same_callback_twice_gets_two_subscriptions(self):
        registry = CallbackRegistry()
        calls = []
        first = registry.subscribe("shifts", calls.append)
        registry.subscribe("shifts", calls.append)

        first()
        registry.dispatch("shifts", "x")
        assert calls == ["x"]


class TestUnsubscribe:
    def test_unsubscribe_is_idempotent(self):
        registry = CallbackRegistry()
        calls = []
        registry.subscribe("shifts", lambda e: calls.append("keep"))
        subscription = registry.subscribe("shifts", lambda e: calls.append("gone"))

        subscription()
        subscription()
        subscription.unsubscribe()

        assert not subscription.active
        assert registry.count("shifts") == 1
        registry.dispatch("shifts", 1)
        assert calls == ["keep"]

    def test_unsubscribe_self_during_dispatch(self):
        registry = CallbackRegistry()
        calls = []

        def once(event):
            calls.append(("once", event))
            subscription()

        subscription = registry.subscribe("shifts", once)
        registry.subscribe("shifts", lambda e: calls.append(("always", e)))

        registry.dispatch("shifts", 1)
        registry.dispatch("shifts", 2)
        assert calls == [("once", 1), ("always", 1), ("always", 2)]

    def test_unsubscribe_later_callback_during_dispatch(self):
        registry = CallbackRegistry()
        calls = []
        subscriptions = {}

        def first(event):
            calls.append("first")
            subscriptions["second"]()

        registry.subscribe("shifts", first)
        subscriptions["second"] = registry.subscribe("shifts", lambda e: calls.append("second"))

        assert registry.dispatch("shifts", 1) == 1
        assert calls == ["first"]

    def test_subscribe_during_dispatch_waits_for_next_event(self):
        registry = CallbackRegistry()
        calls = []

        def adder(event):
            calls.append(("adder", event))
            if event == 1:
                registry.subscribe("shifts", lambda e: calls.append(("late", e)))

        registry.subscribe("shifts", adder)
        registry.dispatch("shifts", 1)
        registry.dispatch("shifts", 2)
        assert calls == [("adder", 1), ("adder", 2), ("late", 2)]

    def test_clear_disposes_everything(self):
        registry = CallbackRegistry()
        a = registry.subscribe("shifts", lambda e: None)
        b = registry.subscribe("fixed_schedules", lambda e: None)

        registry.clear()
        assert not a.active and not b.active
        assert registry.topics() == []
        # Disposing after a clear is still a no-op.
        a()

    def test_clear_single_topic(self):
        registry = CallbackRegistry()
        registry.subscribe("shifts", lambda e: None)
        registry.subscribe("fixed_schedules", lambda e: None)

        registry.clear("shifts")
        assert registry.topics() == ["fixed_schedules"]


class TestExceptionIsolation:
    def test_failing_callback_does_not_stop_siblings(self):
        metrics = MetricsCollector()
        registry = CallbackRegistry(metrics=metrics)
        calls = []

        def broken(event):
            raise RuntimeError("consumer bug")

        registry.subscribe("shifts", broken)
        registry.subscribe("shifts", lambda e: calls.append(e))

        assert registry.dispatch("shifts", 1) == 2
        assert registry.dispatch("shifts", 2) == 2
        assert calls == [1, 2]
        assert metrics.get("callback_errors_total") == 2
        assert metrics.get("events_dispatched_total") == 4
        assert metrics.get("events_dispatched_total", topic="shifts") == 4

    async def test_async_callback_failure_is_contained(self):
        metrics = MetricsCollector()
        registry = CallbackRegistry(metrics=metrics)
        seen = []

        async def broken(event):
            raise RuntimeError("async consumer bug")

        async def ok(event):
            seen.append(event)

        registry.subscribe("shifts", broken)
        registry.subscribe("shifts", ok)
        registry.dispatch("shifts", 1)

        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert seen == [1]
        assert metrics.get("callback_errors_total") == 1
