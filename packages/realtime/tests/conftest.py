"""
Shared fixtures: an in-memory push transport and manually fired timers.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from medsync_realtime.config import RealtimeConfig
from medsync_realtime.transport import ChannelBinding, ChannelStatus, StatusHandler


class FakeChannel:
    def __init__(self, name: str, bindings: list[ChannelBinding], on_status: StatusHandler):
        self.name = name
        self.bindings = bindings
        self.on_status = on_status
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def report(self, status: ChannelStatus, detail: str | None = None) -> None:
        self.on_status(status, detail)

    def push(
        self,
        table: str,
        event_type: str,
        new: dict[str, Any] | None = None,
        old: dict[str, Any] | None = None,
        **extra: Any,
    ) -> int:
        """Deliver a change to every matching binding. Returns how many matched."""
        raw = {"table": table, "eventType": event_type, "new": new or {}, "old": old or {}, **extra}
        matched = 0
        for binding in self.bindings:
            if binding.filter.matches(table, event_type, new or old):
                binding.handler(raw)
                matched += 1
        return matched

    def push_raw(self, table: str, raw: Any) -> None:
        for binding in self.bindings:
            if binding.filter.table == table:
                binding.handler(raw)


class FakeTransport:
    def __init__(self) -> None:
        self.channels: list[FakeChannel] = []
        self.fail_with: Exception | None = None

    def open_channel(self, name: str, bindings: list[ChannelBinding], on_status: StatusHandler) -> FakeChannel:
        if self.fail_with is not None:
            raise self.fail_with
        channel = FakeChannel(name, bindings, on_status)
        self.channels.append(channel)
        return channel

    @property
    def open_channels(self) -> list[FakeChannel]:
        return [c for c in self.channels if not c.closed]

    @property
    def latest(self) -> FakeChannel:
        return self.channels[-1]


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    """``call_later`` replacement; timers only fire when a test says so."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def delays(self) -> list[float]:
        return [t.delay for t in self.timers]

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def fire(self) -> None:
        """Fire the most recently armed timer, as the event loop would."""
        timer = self.timers[-1]
        if not timer.cancelled:
            timer.callback()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture
def config() -> RealtimeConfig:
    return RealtimeConfig()
