"""
Push-transport contract.

A transport opens one physical channel carrying several change filters and
reports the channel's health through a status callback. The connection
manager depends only on this module; concrete transports (SSE, test fakes)
implement ``RealtimeTransport``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable, Protocol

ANY_EVENT = "*"
CHANGE_EVENTS = ("INSERT", "UPDATE", "DELETE")


class ChannelStatus(str, enum.Enum):
    SUBSCRIBED = "subscribed"
    CHANNEL_ERROR = "channel_error"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


@dataclass(frozen=True)
class ChangeFilter:
    """Server-side filter: ``table`` + event type + ``column = value`` predicate."""

    table: str
    column: str
    value: str
    event: str = ANY_EVENT

    def __post_init__(self) -> None:
        if self.event != ANY_EVENT and self.event not in CHANGE_EVENTS:
            raise ValueError(f"Unknown change event: {self.event}")

    @property
    def predicate(self) -> str:
        return f"{self.column}=eq.{self.value}"

    def to_param(self) -> str:
        return f"{self.table}:{self.event}:{self.predicate}"

    def matches(self, table: str, event: str, row: dict[str, Any] | None) -> bool:
        if table != self.table:
            return False
        if self.event != ANY_EVENT and event.upper() != self.event:
            return False
        if not row or self.column not in row:
            return False
        return str(row[self.column]) == self.value


PushHandler = Callable[[dict[str, Any]], None]
StatusHandler = Callable[[ChannelStatus, "str | None"], None]


@dataclass(frozen=True)
class ChannelBinding:
    """One filter on a channel and the handler receiving its raw push events."""

    filter: ChangeFilter
    handler: PushHandler


class Channel(Protocol):
    name: str

    def close(self) -> None:
        """Release the physical connection. No status is reported afterwards."""
        ...


class RealtimeTransport(Protocol):
    def open_channel(
        self,
        name: str,
        bindings: list[ChannelBinding],
        on_status: StatusHandler,
    ) -> Channel:
        """Start opening a channel; completion is reported through ``on_status``."""
        ...
