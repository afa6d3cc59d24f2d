from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from functools import lru_cache
import logging
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from shift_attendance.errors import ApiError, ClockUntrustedError, OverrideUnavailableError
from shift_attendance.models import LeaveAction, OverrideGrant, PunchEvent, PunchType, ScheduleRecord, ViolationKind
from shift_attendance.services.log_matcher import MatchedShift, as_utc, match_logs_to_shifts, shift_punctuality
from shift_attendance.services.overrides import consume_override, get_active_override
from shift_attendance.services.punch_state import PunchStatus, evaluate_punch_state
from shift_attendance.services.schedule_resolver import resolve_shifts_for_day
from shift_attendance.services.time_parser import format_minutes
from shift_attendance.services.trusted_clock import TrustedClock
from shift_attendance.settings import get_settings

logger = logging.getLogger("shift_attendance.attendance")


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or "Asia/Riyadh"
    try:
        return ZoneInfo(raw_name)
    except Exception:
        logger.warning("attendance_timezone_invalid", extra={"timezone": raw_name})
        return ZoneInfo("Asia/Riyadh")


def local_day_of(ts_utc: datetime, tz: tzinfo | None = None) -> date:
    return as_utc(ts_utc).astimezone(tz or attendance_timezone()).date()


@dataclass(frozen=True)
class DayEvaluation:
    now_utc: datetime
    local_day: date
    status: PunchStatus
    today_shifts: list[MatchedShift]
    override: OverrideGrant | None
    leave: LeaveAction | None


def list_schedule_records(db: Session, *, user_id: str) -> list[ScheduleRecord]:
    return list(
        db.scalars(
            select(ScheduleRecord)
            .where(ScheduleRecord.user_id == user_id)
            .order_by(ScheduleRecord.id.asc())
        ).all()
    )


def list_punch_events(db: Session, *, user_id: str, local_day: date) -> list[PunchEvent]:
    return list(
        db.scalars(
            select(PunchEvent)
            .where(
                PunchEvent.user_id == user_id,
                PunchEvent.local_day == local_day,
            )
            .order_by(PunchEvent.ts_utc.asc(), PunchEvent.id.asc())
        ).all()
    )


def get_active_leave(db: Session, *, user_id: str, local_day: date) -> LeaveAction | None:
    return db.scalar(
        select(LeaveAction)
        .where(
            LeaveAction.user_id == user_id,
            LeaveAction.from_date <= local_day,
            LeaveAction.to_date >= local_day,
        )
        .order_by(LeaveAction.id.desc())
    )


def evaluate_user_day(
    db: Session,
    *,
    user_id: str,
    now_utc: datetime,
    ignore_override: bool = False,
) -> DayEvaluation:
    tz = attendance_timezone()
    now_utc = as_utc(now_utc)
    today = local_day_of(now_utc, tz)
    yesterday = today - timedelta(days=1)

    records = list_schedule_records(db, user_id=user_id)
    today_logs = list_punch_events(db, user_id=user_id, local_day=today)
    yesterday_logs = list_punch_events(db, user_id=user_id, local_day=yesterday)

    today_shifts = match_logs_to_shifts(today_logs, resolve_shifts_for_day(records, day_date=today), tz=tz)
    yesterday_shifts = match_logs_to_shifts(
        yesterday_logs,
        resolve_shifts_for_day(records, day_date=yesterday),
        tz=tz,
    )
    override = None if ignore_override else get_active_override(db, user_id=user_id, now_utc=now_utc)
    leave = get_active_leave(db, user_id=user_id, local_day=today)

    status = evaluate_punch_state(
        now_utc,
        today_shifts,
        today_logs,
        yesterday_shifts,
        override is not None,
        tz=tz,
        leave_active=leave is not None,
        leave_label=leave.leave_type if leave is not None else None,
    )
    logger.info(
        "punch_state_evaluated",
        extra={
            "user_id": user_id,
            "local_day": today.isoformat(),
            "state": status.state.value,
            "can_punch": status.can_punch,
            "shift_index": status.shift_index,
            "override_active": override is not None,
        },
    )
    return DayEvaluation(
        now_utc=now_utc,
        local_day=today,
        status=status,
        today_shifts=today_shifts,
        override=override,
        leave=leave,
    )


def summarize_shifts(shifts: list[MatchedShift], *, tz: tzinfo | None = None) -> list[dict[str, Any]]:
    tz = tz or attendance_timezone()
    summaries: list[dict[str, Any]] = []
    for matched in shifts:
        punctuality = shift_punctuality(matched, tz=tz)
        summaries.append(
            {
                "shift_index": matched.number,
                "start": format_minutes(matched.segment.start),
                "end": format_minutes(matched.segment.end),
                "crosses_midnight": matched.segment.crosses_midnight,
                "in_ts_utc": as_utc(matched.in_event.ts_utc) if matched.in_event else None,
                "out_ts_utc": as_utc(matched.out_event.ts_utc) if matched.out_event else None,
                "late_minutes": punctuality.late_minutes,
                "early_leave_minutes": punctuality.early_leave_minutes,
                "worked_minutes": punctuality.worked_minutes,
            }
        )
    return summaries


def _ensure_punch_allowed(status: PunchStatus, punch_type: PunchType) -> None:
    if not status.can_punch:
        raise ApiError(
            status_code=409,
            code="PUNCH_NOT_ALLOWED",
            message=f"Punch is not allowed right now ({status.state.value}: {status.sub}).",
        )
    if status.expected_punch != punch_type:
        raise ApiError(
            status_code=409,
            code="PUNCH_TYPE_MISMATCH",
            message=f"Expected {status.expected_punch.value if status.expected_punch else 'no'} punch.",
        )


def _claim_override(db: Session, *, grant: OverrideGrant, now_utc: datetime) -> None:
    if not consume_override(db, grant_id=grant.id, now_utc=now_utc):
        raise OverrideUnavailableError(grant.id)


def trusted_now(clock: TrustedClock) -> datetime:
    try:
        return clock.now()
    except ClockUntrustedError as exc:
        raise ApiError(
            status_code=503,
            code="CLOCK_UNTRUSTED",
            message=str(exc),
        ) from exc


def evaluate_user_status(db: Session, *, user_id: str, clock: TrustedClock) -> DayEvaluation | None:
    """None while trusted time is unavailable; hosts show SYNCING then."""
    try:
        now_utc = clock.now()
    except ClockUntrustedError:
        logger.warning("punch_state_clock_untrusted", extra={"user_id": user_id})
        return None
    return evaluate_user_day(db, user_id=user_id, now_utc=now_utc)


def record_punch(
    db: Session,
    *,
    user_id: str,
    punch_type: PunchType,
    clock: TrustedClock,
    client_ts_utc: datetime | None = None,
) -> tuple[PunchEvent, DayEvaluation]:
    now_utc = trusted_now(clock)
    evaluation = evaluate_user_day(db, user_id=user_id, now_utc=now_utc)
    _ensure_punch_allowed(evaluation.status, punch_type)

    override_used = False
    if evaluation.override is not None:
        try:
            _claim_override(db, grant=evaluation.override, now_utc=now_utc)
            override_used = True
        except OverrideUnavailableError as exc:
            logger.warning(
                "override_unavailable",
                extra={"user_id": user_id, "grant_id": exc.grant_id},
            )
            evaluation = evaluate_user_day(db, user_id=user_id, now_utc=now_utc, ignore_override=True)
            if not evaluation.status.can_punch or evaluation.status.expected_punch != punch_type:
                raise ApiError(
                    status_code=409,
                    code="OVERRIDE_ALREADY_CONSUMED",
                    message="Override was already used or has expired.",
                ) from exc

    flags: list[str] = []
    is_suspicious = clock.is_drift_suspicious(client_ts_utc)
    if is_suspicious:
        flags.append(ViolationKind.TIME_DRIFT.value)
    if override_used:
        flags.append(ViolationKind.OVERRIDE_USED.value)

    event = PunchEvent(
        user_id=user_id,
        type=punch_type,
        ts_utc=now_utc,
        local_day=evaluation.local_day,
        client_ts_utc=as_utc(client_ts_utc) if client_ts_utc is not None else None,
        is_suspicious=is_suspicious,
        flags=flags,
        shift_index=evaluation.status.shift_index,
        override_used=override_used,
    )
    db.add(event)
    db.commit()
    db.refresh(event)

    logger.info(
        "punch_recorded",
        extra={
            "user_id": user_id,
            "event_id": event.id,
            "type": punch_type.value,
            "shift_index": event.shift_index,
            "override_used": override_used,
            "is_suspicious": is_suspicious,
        },
    )
    return event, evaluate_user_day(db, user_id=user_id, now_utc=now_utc)
