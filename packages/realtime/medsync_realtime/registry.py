"""
Per-topic callback registry.

Every topic owns an insertion-ordered collection of callbacks, and each
registration is handed back to the consumer as a ``Subscription`` disposer.

Dispatch runs over a snapshot, so callbacks may subscribe or unsubscribe
(themselves or others) while an event is being delivered. A subscription
disposed mid-dispatch is not invoked for the rest of that dispatch either.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable

import structlog

from .metrics import MetricsCollector

log = structlog.get_logger()

Callback = Callable[[Any], Any]


class Subscription:
    """Handle for one (topic, callback) registration. Calling it unsubscribes."""

    __slots__ = ("topic", "callback", "_registry")

    def __init__(self, registry: CallbackRegistry | None, topic: str, callback: Callback):
        self.topic = topic
        self.callback = callback
        self._registry: CallbackRegistry | None = registry

    @property
    def active(self) -> bool:
        return self._registry is not None

    def __call__(self) -> None:
        self.unsubscribe()

    def unsubscribe(self) -> None:
        # Drop the registry reference first so repeat calls are no-ops.
        registry, self._registry = self._registry, None
        if registry is not None:
            registry._remove(self)


class CallbackRegistry:
    """Fan-out of decoded change events to the callbacks interested in a topic."""

    def __init__(self, metrics: MetricsCollector | None = None) -> None:
        self._callbacks: dict[str, dict[Subscription, None]] = {}
        self._metrics = metrics
        self._pending: set[asyncio.Future] = set()

    def subscribe(self, topic: str, callback: Callback) -> Subscription:
        subscription = Subscription(self, topic, callback)
        self._callbacks.setdefault(topic, {})[subscription] = None
        log.debug("registry.subscribed", topic=topic, subscribers=self.count(topic))
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        callbacks = self._callbacks.get(subscription.topic)
        if callbacks is None:
            return
        callbacks.pop(subscription, None)
        if not callbacks:
            del self._callbacks[subscription.topic]
        log.debug("registry.unsubscribed", topic=subscription.topic)

    def count(self, topic: str) -> int:
        return len(self._callbacks.get(topic, ()))

    def topics(self) -> list[str]:
        return sorted(self._callbacks)

    def clear(self, topic: str | None = None) -> None:
        """Dispose every subscription, or only those of ``topic``."""
        topics = [topic] if topic is not None else list(self._callbacks)
        for name in topics:
            for subscription in list(self._callbacks.get(name, ())):
                subscription.unsubscribe()
        log.info("registry.cleared", topic=topic)

    def dispatch(self, topic: str, event: Any) -> int:
        """Deliver ``event`` to every callback of ``topic``. Returns how many ran."""
        snapshot = list(self._callbacks.get(topic, ()))
        invoked = 0
        for subscription in snapshot:
            if not subscription.active:
                continue
            invoked += 1
            try:
                result = subscription.callback(event)
            except Exception:
                self._record_failure(topic)
                continue
            if inspect.isawaitable(result):
                self._track(topic, result)
        if self._metrics:
            self._metrics.inc("events_dispatched_total", invoked, topic=topic)
        return invoked

    def _track(self, topic: str, awaitable: Any) -> None:
        future = asyncio.ensure_future(awaitable)
        self._pending.add(future)

        def _done(fut: asyncio.Future) -> None:
            self._pending.discard(fut)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                self._record_failure(topic, exc)

        future.add_done_callback(_done)

    def _record_failure(self, topic: str, exc: BaseException | None = None) -> None:
        if self._metrics:
            self._metrics.inc("callback_errors_total", topic=topic)
        if exc is None:
            log.exception("registry.callback_error", topic=topic)
        else:
            log.error("registry.callback_error", topic=topic, exc_info=exc)
