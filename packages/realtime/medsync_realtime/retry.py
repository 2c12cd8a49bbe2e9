"""
Exponential backoff for reconnect attempts.

delay = min(initial * 2 ** attempt_count, max). At most one timer is pending
at any time; the attempt count only resets after a successful connection.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import structlog

from .metrics import MetricsCollector

log = structlog.get_logger()

RECONNECT_BASE_SECONDS = 1.0
RECONNECT_MAX_SECONDS = 30.0
RECONNECT_MULTIPLIER = 2.0


class TimerHandle(Protocol):
    def cancel(self) -> Any: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def _loop_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


@dataclass
class RetryState:
    attempt_count: int = 0
    pending_timer: TimerHandle | None = None


class RetryScheduler:
    def __init__(
        self,
        initial_delay: float = RECONNECT_BASE_SECONDS,
        max_delay: float = RECONNECT_MAX_SECONDS,
        call_later: TimerFactory | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._call_later = call_later or _loop_call_later
        self._metrics = metrics
        self._state = RetryState()

    @property
    def attempt_count(self) -> int:
        return self._state.attempt_count

    @property
    def pending(self) -> bool:
        return self._state.pending_timer is not None

    def next_delay(self) -> float:
        """Delay the next ``schedule`` call would use."""
        delay = self._initial_delay
        for _ in range(self._state.attempt_count):
            if delay >= self._max_delay:
                break
            delay *= RECONNECT_MULTIPLIER
        return min(delay, self._max_delay)

    def schedule(self, callback: Callable[[], None]) -> float:
        """Arm a single reconnect timer, replacing any pending one. Returns the delay."""
        self.cancel()
        delay = self.next_delay()
        self._state.attempt_count += 1
        attempt = self._state.attempt_count

        def _fire() -> None:
            if self._state.pending_timer is not handle:
                return
            self._state.pending_timer = None
            log.info("retry.firing", attempt=attempt)
            callback()

        handle = self._call_later(delay, _fire)
        self._state.pending_timer = handle
        if self._metrics:
            self._metrics.inc("reconnects_scheduled_total")
        log.info("retry.scheduled", delay=delay, attempt=attempt)
        return delay

    def cancel(self) -> None:
        timer, self._state.pending_timer = self._state.pending_timer, None
        if timer is not None:
            timer.cancel()
            log.debug("retry.cancelled", attempt=self._state.attempt_count)

    def reset(self) -> None:
        self._state.attempt_count = 0
