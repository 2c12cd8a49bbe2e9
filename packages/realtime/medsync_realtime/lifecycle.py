"""
Lifecycle bridge: identity and foreground/background signals -> connection calls.

The host environment (OS app-state notifications, browser visibility, a CLI
daemon's signal handlers) implements ``LifecycleSource`` and feeds the bridge.
Only two things ever trigger a (re)connect from here: an identity becoming
available, and a return to the foreground while disconnected. Transient
errors in the foreground are left to the retry scheduler.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Protocol

import structlog

from .manager import ConnectionManager, ConnectionStatus
from .registry import CallbackRegistry

log = structlog.get_logger()


class LifecycleBridge:
    def __init__(
        self,
        manager: ConnectionManager,
        registry: CallbackRegistry,
        reset_subscriptions_on_logout: bool = True,
    ):
        self._manager = manager
        self._registry = registry
        self._reset_on_logout = reset_subscriptions_on_logout
        self._identity: str | None = None
        self._foreground = True

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def in_foreground(self) -> bool:
        return self._foreground

    def on_identity_change(self, identity: str | None) -> None:
        previous, self._identity = self._identity, identity or None

        if self._identity is None:
            if previous is None and self._manager.identity is None:
                return
            log.info("lifecycle.identity_cleared")
            self._manager.disconnect()
            if self._reset_on_logout:
                self._registry.clear()
            return

        if previous != self._identity:
            log.info("lifecycle.identity_available", swapped=previous is not None)
        self._manager.connect(self._identity)

    def on_app_foreground(self) -> None:
        self._foreground = True
        if self._identity is None:
            return
        if self._manager.status is not ConnectionStatus.DISCONNECTED:
            return
        log.info("lifecycle.foreground_reconnect")
        self._manager.connect(self._identity)

    def on_app_background(self) -> None:
        self._foreground = False
        log.debug("lifecycle.background", status=self._manager.status.value)


class LifecycleSource(Protocol):
    """Anything that can feed foreground/background transitions into a bridge."""

    def attach(self, bridge: LifecycleBridge) -> None: ...

    def detach(self) -> None: ...


class SignalLifecycleSource:
    """
    Process-signal lifecycle source for the CLI daemon.

    SIGCONT (resumed after a stop) counts as returning to the foreground;
    SIGUSR1 lets a supervisor announce that the process is being backgrounded.
    """

    FOREGROUND_SIGNAL = signal.SIGCONT
    BACKGROUND_SIGNAL = signal.SIGUSR1

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._attached = False

    def attach(self, bridge: LifecycleBridge) -> None:
        loop = self._loop or asyncio.get_running_loop()
        loop.add_signal_handler(self.FOREGROUND_SIGNAL, bridge.on_app_foreground)
        loop.add_signal_handler(self.BACKGROUND_SIGNAL, bridge.on_app_background)
        self._loop = loop
        self._attached = True

    def detach(self) -> None:
        if not self._attached or self._loop is None:
            return
        self._loop.remove_signal_handler(self.FOREGROUND_SIGNAL)
        self._loop.remove_signal_handler(self.BACKGROUND_SIGNAL)
        self._attached = False
