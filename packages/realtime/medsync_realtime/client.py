"""
Realtime client: the object consumers hold.

Wires registry, retry scheduler, connection manager and lifecycle bridge
together once per process and exposes the per-topic subscribe functions plus
a read-only view of the connection status.
"""

from __future__ import annotations

from typing import Callable, Iterable

import structlog

from . import topics as topic_names
from .config import RealtimeConfig
from .lifecycle import LifecycleBridge
from .manager import ConnectionManager, ConnectionStatus, StatusListener
from .metrics import MetricsCollector
from .payloads import ChangeEvent, FixedSchedule, Shift, ShiftAttendance, ShiftResponse, SwapRequest
from .registry import CallbackRegistry, Subscription
from .retry import RetryScheduler, TimerFactory
from .topics import DEFAULT_TOPICS, Topic
from .transport import RealtimeTransport

log = structlog.get_logger()

Unsubscribe = Callable[[], None]


class RealtimeClient:
    def __init__(
        self,
        transport: RealtimeTransport,
        config: RealtimeConfig | None = None,
        topics: Iterable[Topic] = DEFAULT_TOPICS,
        metrics: MetricsCollector | None = None,
        call_later: TimerFactory | None = None,
    ):
        self._config = config or RealtimeConfig()
        self._metrics = metrics or MetricsCollector()
        self._topics = {topic.name: topic for topic in topics}

        self._registry = CallbackRegistry(metrics=self._metrics)
        self._retry = RetryScheduler(
            initial_delay=self._config.retry.initial_delay_seconds,
            max_delay=self._config.retry.max_delay_seconds,
            call_later=call_later,
            metrics=self._metrics,
        )
        self._manager = ConnectionManager(
            transport,
            self._registry,
            self._retry,
            topics=self._topics.values(),
            channel_config=self._config.channel,
            metrics=self._metrics,
        )
        self._lifecycle = LifecycleBridge(
            self._manager,
            self._registry,
            reset_subscriptions_on_logout=self._config.lifecycle.reset_subscriptions_on_logout,
        )

    # --- Read-only state ---

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._manager.status

    @property
    def is_connected(self) -> bool:
        return self._manager.is_connected

    @property
    def identity(self) -> str | None:
        return self._manager.identity

    @property
    def retry_attempts(self) -> int:
        return self._retry.attempt_count

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def lifecycle(self) -> LifecycleBridge:
        return self._lifecycle

    def topic_names(self) -> list[str]:
        return list(self._topics)

    def subscriber_counts(self) -> dict[str, int]:
        return {name: self._registry.count(name) for name in self._topics}

    def add_status_listener(self, listener: StatusListener) -> Unsubscribe:
        return self._manager.add_status_listener(listener)

    # --- Identity / lifecycle signals ---

    def on_identity_change(self, identity: str | None) -> None:
        self._lifecycle.on_identity_change(identity)

    def on_app_foreground(self) -> None:
        self._lifecycle.on_app_foreground()

    def on_app_background(self) -> None:
        self._lifecycle.on_app_background()

    def close(self) -> None:
        """Drop the channel and every subscription."""
        self._manager.disconnect()
        self._registry.clear()
        log.info("client.closed")

    # --- Subscriptions ---

    def subscribe_to_topic(self, name: str, callback: Callable[[ChangeEvent], object]) -> Subscription:
        if name not in self._topics:
            log.error("client.unknown_topic", topic=name, known=sorted(self._topics))
            return Subscription(None, name, callback)
        return self._registry.subscribe(name, callback)

    def subscribe_to_shift_changes(self, callback: Callable[[ChangeEvent[Shift]], object]) -> Subscription:
        return self.subscribe_to_topic(topic_names.SHIFTS, callback)

    def subscribe_to_incoming_swap_requests(
        self, callback: Callable[[ChangeEvent[SwapRequest]], object]
    ) -> Subscription:
        return self.subscribe_to_topic(topic_names.SWAP_REQUESTS_INCOMING, callback)

    def subscribe_to_outgoing_swap_requests(
        self, callback: Callable[[ChangeEvent[SwapRequest]], object]
    ) -> Subscription:
        return self.subscribe_to_topic(topic_names.SWAP_REQUESTS_OUTGOING, callback)

    def subscribe_to_swap_requests(self, callback: Callable[[ChangeEvent[SwapRequest]], object]) -> Unsubscribe:
        """Swap requests addressed to me and created by me, with one disposer."""
        subscriptions = [
            self.subscribe_to_incoming_swap_requests(callback),
            self.subscribe_to_outgoing_swap_requests(callback),
        ]

        def unsubscribe() -> None:
            for subscription in subscriptions:
                subscription.unsubscribe()

        return unsubscribe

    def subscribe_to_shift_responses(self, callback: Callable[[ChangeEvent[ShiftResponse]], object]) -> Subscription:
        return self.subscribe_to_topic(topic_names.SHIFT_RESPONSES, callback)

    def subscribe_to_fixed_schedules(self, callback: Callable[[ChangeEvent[FixedSchedule]], object]) -> Subscription:
        return self.subscribe_to_topic(topic_names.FIXED_SCHEDULES, callback)

    def subscribe_to_shift_attendance(
        self, callback: Callable[[ChangeEvent[ShiftAttendance]], object]
    ) -> Subscription:
        return self.subscribe_to_topic(topic_names.SHIFT_ATTENDANCE, callback)
