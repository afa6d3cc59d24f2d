from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from shift_attendance.db import get_db
from shift_attendance.schemas import (
    AttendanceStatusResponse,
    OnShiftEntryRead,
    OverrideGrantCreate,
    OverrideGrantRead,
    PunchEventRead,
    PunchRequest,
    PunchResponse,
    PunchStatusRead,
    ShiftSummaryRead,
)
from shift_attendance.services.attendance import (
    attendance_timezone,
    evaluate_user_status,
    record_punch,
    summarize_shifts,
    trusted_now,
)
from shift_attendance.services.overrides import create_override
from shift_attendance.services.punch_state import syncing_status
from shift_attendance.services.roster import load_on_shift, staff_color
from shift_attendance.services.time_parser import format_minutes
from shift_attendance.services.trusted_clock import TrustedClock, get_trusted_clock
from shift_attendance.settings import get_settings

router = APIRouter(tags=["attendance"])


def get_clock() -> TrustedClock:
    return get_trusted_clock()


@router.get("/api/attendance/status", response_model=AttendanceStatusResponse)
def get_attendance_status(
    request: Request,
    user_id: str = Query(min_length=1, max_length=64),
    db: Session = Depends(get_db),
    clock: TrustedClock = Depends(get_clock),
) -> AttendanceStatusResponse:
    request.state.user_id = user_id
    evaluation = evaluate_user_status(db, user_id=user_id, clock=clock)
    if evaluation is None:
        return AttendanceStatusResponse(
            user_id=user_id,
            status=PunchStatusRead.model_validate(syncing_status()),
        )

    return AttendanceStatusResponse(
        user_id=user_id,
        local_day=evaluation.local_day,
        server_time_utc=evaluation.now_utc,
        status=PunchStatusRead.model_validate(evaluation.status),
        shifts=[ShiftSummaryRead(**item) for item in summarize_shifts(evaluation.today_shifts)],
        override_expires_at=evaluation.override.expires_at if evaluation.override is not None else None,
    )


@router.post("/api/attendance/punch", response_model=PunchResponse)
def post_punch(
    payload: PunchRequest,
    request: Request,
    db: Session = Depends(get_db),
    clock: TrustedClock = Depends(get_clock),
) -> PunchResponse:
    request.state.user_id = payload.user_id
    event, evaluation = record_punch(
        db,
        user_id=payload.user_id,
        punch_type=payload.type,
        clock=clock,
        client_ts_utc=payload.client_ts_utc,
    )
    request.state.event_id = event.id
    request.state.flags = event.flags
    return PunchResponse(
        event=PunchEventRead.model_validate(event),
        status=PunchStatusRead.model_validate(evaluation.status),
    )


@router.post("/api/attendance/overrides", response_model=OverrideGrantRead, status_code=201)
def post_override(
    payload: OverrideGrantCreate,
    db: Session = Depends(get_db),
    clock: TrustedClock = Depends(get_clock),
) -> OverrideGrantRead:
    grant = create_override(
        db,
        user_id=payload.user_id,
        now_utc=trusted_now(clock),
        valid_minutes=payload.valid_minutes or get_settings().override_default_minutes,
        granted_by=payload.granted_by,
    )
    return OverrideGrantRead.model_validate(grant)


@router.get("/api/roster/on-shift", response_model=list[OnShiftEntryRead])
def get_on_shift_roster(
    db: Session = Depends(get_db),
    clock: TrustedClock = Depends(get_clock),
) -> list[OnShiftEntryRead]:
    entries = load_on_shift(db, now_utc=trusted_now(clock), tz=attendance_timezone())
    return [
        OnShiftEntryRead(
            user_id=entry.user_id,
            start=format_minutes(entry.segment.start),
            end=format_minutes(entry.segment.end),
            location=entry.location,
            from_yesterday=entry.from_yesterday,
            color=staff_color(entry.user_id),
        )
        for entry in entries
    ]
