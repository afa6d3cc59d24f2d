from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from shift_attendance.models import PunchType
from shift_attendance.services.punch_state import PunchState


class PunchStatusRead(BaseModel):
    state: PunchState
    message: str
    sub: str
    can_punch: bool
    shift_index: int | None = None
    time_remaining: str | None = None
    override_applied: bool = False

    model_config = ConfigDict(from_attributes=True)


class ShiftSummaryRead(BaseModel):
    shift_index: int
    start: str
    end: str
    crosses_midnight: bool
    in_ts_utc: datetime | None = None
    out_ts_utc: datetime | None = None
    late_minutes: int = 0
    early_leave_minutes: int = 0
    worked_minutes: int = 0


class AttendanceStatusResponse(BaseModel):
    user_id: str
    local_day: date | None = None
    server_time_utc: datetime | None = None
    status: PunchStatusRead
    shifts: list[ShiftSummaryRead] = Field(default_factory=list)
    override_expires_at: datetime | None = None


class PunchRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    type: PunchType
    client_ts_utc: datetime | None = None


class PunchEventRead(BaseModel):
    id: int
    user_id: str
    type: PunchType
    ts_utc: datetime
    local_day: date
    is_suspicious: bool
    flags: list[str]
    shift_index: int | None = None
    override_used: bool

    model_config = ConfigDict(from_attributes=True)


class PunchResponse(BaseModel):
    event: PunchEventRead
    status: PunchStatusRead


class OverrideGrantCreate(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    valid_minutes: int | None = Field(default=None, ge=1, le=24 * 60)
    granted_by: str | None = Field(default=None, max_length=64)


class OverrideGrantRead(BaseModel):
    id: int
    user_id: str
    expires_at: datetime
    granted_by: str | None = None

    model_config = ConfigDict(from_attributes=True)


class OnShiftEntryRead(BaseModel):
    user_id: str
    start: str
    end: str
    location: str | None = None
    from_yesterday: bool
    color: str


class HealthResponse(BaseModel):
    status: str
    clock_synced: bool
    clock_offset_seconds: float | None = None
