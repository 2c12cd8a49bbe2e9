"""
Connection manager: owns the single physical realtime channel.

Drives the connection state machine

    disconnected -> connecting -> connected
    connecting|connected -> error -> (retry) -> connecting
    any -> disconnected

wires push events from the transport to the callback registry, and hands
failures to the retry scheduler. All methods are non-blocking and expected to
run on one event loop; completion of ``connect()`` is reported asynchronously
through the transport's status callback.
"""

from __future__ import annotations

import enum
from functools import partial
from typing import Any, Callable, Iterable

import structlog

from .config import ChannelConfig
from .metrics import MetricsCollector
from .payloads import decode_change
from .registry import CallbackRegistry
from .retry import RetryScheduler
from .topics import DEFAULT_TOPICS, Topic
from .transport import Channel, ChannelBinding, ChannelStatus, RealtimeTransport

log = structlog.get_logger()


class ConnectionStatus(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


STATUS_GAUGE = {
    ConnectionStatus.DISCONNECTED: 0,
    ConnectionStatus.CONNECTING: 1,
    ConnectionStatus.CONNECTED: 2,
    ConnectionStatus.ERROR: 3,
}

StatusListener = Callable[[ConnectionStatus], None]


class ConnectionManager:
    """
    One live channel per identity, transparently re-established on failure.

    Status reports and push events are tagged with the channel attempt that
    produced them; anything arriving from a channel that has since been
    replaced or released is ignored.
    """

    def __init__(
        self,
        transport: RealtimeTransport,
        registry: CallbackRegistry,
        retry: RetryScheduler,
        topics: Iterable[Topic] = DEFAULT_TOPICS,
        channel_config: ChannelConfig | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._transport = transport
        self._registry = registry
        self._retry = retry
        self._topics = tuple(topics)
        self._channel_config = channel_config or ChannelConfig()
        self._metrics = metrics

        self._identity: str | None = None
        self._status = ConnectionStatus.DISCONNECTED
        self._channel: Channel | None = None
        self._attempt: object | None = None
        self._listeners: list[StatusListener] = []

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    @property
    def has_channel(self) -> bool:
        return self._channel is not None

    @property
    def topics(self) -> tuple[Topic, ...]:
        return self._topics

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status-change listener. Returns an idempotent remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # --- Public operations ---

    def connect(self, identity: str | None = None) -> None:
        identity = identity or self._identity
        if not identity:
            log.info("manager.connect_skipped", reason="no_identity")
            return

        if identity == self._identity and self._status in (
            ConnectionStatus.CONNECTING,
            ConnectionStatus.CONNECTED,
        ):
            log.debug("manager.connect_noop", status=self._status.value)
            return

        if self._identity is not None and identity != self._identity:
            log.info("manager.identity_changed")

        self._teardown()
        self._identity = identity
        self._open(identity)

    def disconnect(self) -> None:
        self._teardown()
        self._identity = None
        self._set_status(ConnectionStatus.DISCONNECTED)
        log.info("manager.disconnected")

    # --- Channel lifecycle ---

    def _open(self, identity: str) -> None:
        attempt = object()
        self._attempt = attempt
        name = self._channel_config.name_for(identity)
        bindings = [
            ChannelBinding(topic.filter_for(identity), partial(self._on_push, attempt, topic))
            for topic in self._topics
        ]

        self._set_status(ConnectionStatus.CONNECTING)
        log.info("manager.connecting", channel=name, topics=len(bindings))

        try:
            channel = self._transport.open_channel(
                name, bindings, partial(self._on_status, attempt)
            )
        except Exception as exc:
            log.warning("manager.open_failed", channel=name, error=str(exc))
            self._on_status(attempt, ChannelStatus.CHANNEL_ERROR, str(exc))
            return

        if self._attempt is attempt:
            self._channel = channel
        else:
            # The transport already reported a terminal status synchronously.
            self._close_quietly(channel)

    def _teardown(self) -> None:
        self._retry.cancel()
        self._release_channel()

    def _release_channel(self) -> None:
        self._attempt = None
        channel, self._channel = self._channel, None
        if channel is not None:
            self._close_quietly(channel)

    @staticmethod
    def _close_quietly(channel: Channel) -> None:
        try:
            channel.close()
        except Exception as exc:
            log.warning("manager.close_failed", channel=getattr(channel, "name", None), error=str(exc))

    def _reconnect(self) -> None:
        if self._identity is None:
            return
        self.connect(self._identity)

    # --- Transport callbacks ---

    def _on_status(self, attempt: object, status: ChannelStatus, detail: str | None = None) -> None:
        if attempt is not self._attempt:
            log.debug("manager.stale_status", status=status.value)
            return

        if status is ChannelStatus.SUBSCRIBED:
            self._retry.reset()
            self._set_status(ConnectionStatus.CONNECTED)
            log.info("manager.connected", topics=len(self._topics))

        elif status in (ChannelStatus.CHANNEL_ERROR, ChannelStatus.TIMED_OUT):
            if self._status not in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED):
                return
            log.warning("manager.channel_failed", status=status.value, error=detail)
            self._release_channel()
            self._set_status(ConnectionStatus.ERROR)
            self._retry.schedule(self._reconnect)

        elif status is ChannelStatus.CLOSED:
            log.info("manager.channel_closed", detail=detail)
            self._teardown()
            self._set_status(ConnectionStatus.DISCONNECTED)
            if self._channel_config.reconnect_on_close and self._identity:
                self._retry.schedule(self._reconnect)

    def _on_push(self, attempt: object, topic: Topic, raw: dict[str, Any]) -> None:
        if attempt is not self._attempt:
            return
        if self._metrics:
            self._metrics.inc("events_received_total", topic=topic.name)

        event = decode_change(topic.row_model, raw)
        if event is None:
            if self._metrics:
                self._metrics.inc("payloads_dropped_total", topic=topic.name)
            log.warning("manager.payload_dropped", topic=topic.name)
            return

        self._registry.dispatch(topic.name, event)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        previous, self._status = self._status, status
        if self._metrics:
            self._metrics.set_gauge("connection_status", STATUS_GAUGE[status])
        log.info("manager.status", previous=previous.value, status=status.value)

        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                log.exception("manager.status_listener_error", status=status.value)
