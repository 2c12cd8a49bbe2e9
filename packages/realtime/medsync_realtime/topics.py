"""
Topic catalogue.

A topic is a named category of change scoped to the current identity. Each
topic maps to exactly one server-side filter and one row model; several
topics share the same physical channel.
"""

from __future__ import annotations

from dataclasses import dataclass

from .payloads import FixedSchedule, Row, Shift, ShiftAttendance, ShiftResponse, SwapRequest
from .transport import ANY_EVENT, ChangeFilter

SHIFTS = "shifts"
SWAP_REQUESTS_INCOMING = "swap_requests_incoming"
SWAP_REQUESTS_OUTGOING = "swap_requests_outgoing"
SHIFT_RESPONSES = "shift_responses"
FIXED_SCHEDULES = "fixed_schedules"
SHIFT_ATTENDANCE = "shift_attendance"


@dataclass(frozen=True)
class Topic:
    name: str
    table: str
    identity_column: str
    row_model: type[Row]
    event: str = ANY_EVENT

    def filter_for(self, identity: str) -> ChangeFilter:
        return ChangeFilter(
            table=self.table,
            column=self.identity_column,
            value=identity,
            event=self.event,
        )


DEFAULT_TOPICS: tuple[Topic, ...] = (
    Topic(SHIFTS, "shifts", "staff_id", Shift),
    Topic(SWAP_REQUESTS_INCOMING, "shift_swap_requests", "target_staff_id", SwapRequest),
    Topic(SWAP_REQUESTS_OUTGOING, "shift_swap_requests", "requester_id", SwapRequest),
    Topic(SHIFT_RESPONSES, "shift_responses", "staff_id", ShiftResponse),
    Topic(FIXED_SCHEDULES, "fixed_schedules", "staff_id", FixedSchedule),
    Topic(SHIFT_ATTENDANCE, "shift_attendance", "staff_id", ShiftAttendance),
)
