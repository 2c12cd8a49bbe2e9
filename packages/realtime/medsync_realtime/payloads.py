"""
Typed payload contracts for realtime change notifications.

Every push event is decoded here, once, into a ``ChangeEvent`` whose
before/after rows are validated against the topic's row model. Payloads that
do not satisfy the contract are rejected (``decode_change`` returns ``None``)
so transport quirks never reach consumers.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

log = structlog.get_logger()


class ChangeType(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# --- Row models ---
#
# Only the primary key is required: delete payloads usually carry nothing but
# the key unless the table uses full replica identity.


class Row(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str


class Shift(Row):
    organization_id: Optional[str] = None
    sector_id: Optional[str] = None
    facility_id: Optional[str] = None
    staff_id: Optional[str] = None
    fixed_schedule_id: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None


class SwapRequest(Row):
    organization_id: Optional[str] = None
    requester_id: Optional[str] = None
    original_shift_id: Optional[str] = None
    target_shift_id: Optional[str] = None
    target_staff_id: Optional[str] = None
    status: Optional[str] = None
    admin_status: Optional[str] = None
    requester_notes: Optional[str] = None
    responder_notes: Optional[str] = None
    created_at: Optional[str] = None
    responded_at: Optional[str] = None


class ShiftResponse(Row):
    shift_id: Optional[str] = None
    staff_id: Optional[str] = None
    response: Optional[str] = None
    responded_at: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[str] = None


class FixedSchedule(Row):
    organization_id: Optional[str] = None
    facility_id: Optional[str] = None
    staff_id: Optional[str] = None
    sector_id: Optional[str] = None
    shift_type: Optional[str] = None
    duration_type: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    weekdays: list[int] = Field(default_factory=list)
    active: Optional[bool] = None


class ShiftAttendance(Row):
    shift_id: Optional[str] = None
    staff_id: Optional[str] = None
    check_in_at: Optional[str] = None
    check_out_at: Optional[str] = None
    worked_minutes: Optional[int] = None
    notes: Optional[str] = None


RowT = TypeVar("RowT", bound=Row)


class ChangeEvent(BaseModel, Generic[RowT]):
    """A decoded insert/update/delete with last-known before/after snapshots."""

    model_config = ConfigDict(frozen=True)

    event_type: ChangeType
    table: str
    before: Optional[RowT] = None
    after: Optional[RowT] = None
    commit_timestamp: Optional[str] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _check_snapshots(self) -> ChangeEvent[RowT]:
        if self.event_type is ChangeType.INSERT and (self.before is not None or self.after is None):
            raise ValueError("INSERT requires after and no before")
        if self.event_type is ChangeType.DELETE and (self.after is not None or self.before is None):
            raise ValueError("DELETE requires before and no after")
        if self.event_type is ChangeType.UPDATE and (self.before is None or self.after is None):
            raise ValueError("UPDATE requires both before and after")
        return self

    @property
    def row(self) -> RowT:
        """The most recent snapshot: ``after`` unless the row was deleted."""
        return self.after if self.after is not None else self.before  # type: ignore[return-value]


def _snapshot(value: Any) -> Any:
    # Transports send {} for the side that does not exist.
    if value == {}:
        return None
    return value


def decode_change(row_model: type[RowT], raw: Any) -> ChangeEvent[RowT] | None:
    """Decode a raw push payload, or return ``None`` if it breaks the contract."""
    if not isinstance(raw, dict):
        log.warning("payloads.not_a_mapping", kind=type(raw).__name__)
        return None

    if raw.get("errors"):
        log.warning("payloads.server_errors", table=raw.get("table"), errors=raw["errors"])
        return None

    event_type = raw.get("eventType") or raw.get("event_type")
    if not isinstance(event_type, str) or event_type.upper() not in ChangeType.__members__:
        log.warning("payloads.unknown_event_type", table=raw.get("table"), event_type=event_type)
        return None

    try:
        return ChangeEvent[row_model].model_validate({
            "event_type": event_type.upper(),
            "table": raw.get("table", ""),
            "before": _snapshot(raw.get("old")),
            "after": _snapshot(raw.get("new")),
            "commit_timestamp": raw.get("commit_timestamp"),
        })
    except ValidationError as exc:
        log.warning(
            "payloads.invalid",
            table=raw.get("table"),
            event_type=event_type,
            errors=exc.error_count(),
        )
        return None
