from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
import enum

from shift_attendance.models import PunchEvent, PunchType
from shift_attendance.services.log_matcher import MatchedShift, as_utc, local_minute_of_day, wrap_early_morning
from shift_attendance.services.time_parser import MINUTES_PER_DAY, format_time12
from shift_attendance.settings import Settings, get_settings


class PunchState(str, enum.Enum):
    READY_IN = "READY_IN"
    READY_OUT = "READY_OUT"
    LOCKED = "LOCKED"
    COMPLETED = "COMPLETED"
    MISSED_OUT = "MISSED_OUT"
    ABSENT = "ABSENT"
    WAITING = "WAITING"
    NEXT_SHIFT = "NEXT_SHIFT"
    OFF = "OFF"
    SYNCING = "SYNCING"
    ON_LEAVE = "ON_LEAVE"


@dataclass(frozen=True)
class PunchThresholds:
    pre_window_minutes: int = 60
    unlock_margin_minutes: int = 15
    out_grace_minutes: int = 60
    missed_out_cutoff_minutes: int = 90
    absent_grace_minutes: int = 60
    completed_display_minutes: int = 60
    early_morning_wrap_minutes: int = 180

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> PunchThresholds:
        settings = settings or get_settings()
        return cls(
            pre_window_minutes=settings.punch_in_pre_window_minutes,
            unlock_margin_minutes=settings.punch_out_unlock_margin_minutes,
            out_grace_minutes=settings.punch_out_grace_minutes,
            missed_out_cutoff_minutes=settings.missed_out_cutoff_minutes,
            absent_grace_minutes=settings.absent_grace_minutes,
            completed_display_minutes=settings.completed_display_minutes,
            early_morning_wrap_minutes=settings.early_morning_wrap_minutes,
        )


@dataclass(frozen=True)
class PunchStatus:
    state: PunchState
    message: str
    sub: str
    can_punch: bool = False
    shift_index: int | None = None
    time_remaining: str | None = None
    override_applied: bool = False

    @property
    def expected_punch(self) -> PunchType | None:
        if not self.can_punch:
            return None
        if self.state == PunchState.READY_IN:
            return PunchType.IN
        if self.state == PunchState.READY_OUT:
            return PunchType.OUT
        return None


def syncing_status() -> PunchStatus:
    return PunchStatus(state=PunchState.SYNCING, message="SYNCING", sub="Server time")


def _format_remaining(minutes: int) -> str:
    hours, mins = divmod(max(0, minutes), 60)
    return f"{hours}h {mins}m"


def _open_shift_status(
    *,
    current: int,
    end: int,
    number: int,
    override_active: bool,
    thresholds: PunchThresholds,
    sub: str,
) -> PunchStatus | None:
    """Rows for a shift with an IN and no OUT; None means the shift is behind us."""
    unlock_at = end - thresholds.unlock_margin_minutes
    if current < unlock_at and not override_active:
        return PunchStatus(
            state=PunchState.LOCKED,
            message="ON DUTY",
            sub=f"Exit opens at {format_time12(unlock_at)}",
            shift_index=number,
        )
    if current < end + thresholds.out_grace_minutes:
        return PunchStatus(
            state=PunchState.READY_OUT,
            message="END",
            sub=sub,
            can_punch=True,
            shift_index=number,
            override_applied=current < unlock_at,
        )
    if current < end + thresholds.missed_out_cutoff_minutes:
        return PunchStatus(
            state=PunchState.MISSED_OUT,
            message="MISSED OUT",
            sub="Forgot checkout",
            shift_index=number,
        )
    return None


def _yesterday_tail_status(
    *,
    now_minute: int,
    yesterday_shifts: Sequence[MatchedShift],
    override_active: bool,
    thresholds: PunchThresholds,
) -> PunchStatus | None:
    open_shift = next(
        (item for item in reversed(yesterday_shifts) if item.in_event is not None and item.out_event is None),
        None,
    )
    if open_shift is None:
        return None
    # Any shift whose punch-out window runs past midnight, including ones ending at 24:00.
    end = open_shift.segment.normalized_end
    if end + thresholds.missed_out_cutoff_minutes <= MINUTES_PER_DAY:
        return None
    return _open_shift_status(
        current=now_minute + MINUTES_PER_DAY,
        end=end,
        number=open_shift.number,
        override_active=override_active,
        thresholds=thresholds,
        sub="Overnight shift",
    )


def evaluate_punch_state(
    now: datetime,
    today_shifts: Sequence[MatchedShift],
    today_logs: Sequence[PunchEvent],
    yesterday_shifts: Sequence[MatchedShift],
    override_active: bool,
    *,
    tz: tzinfo,
    leave_active: bool = False,
    leave_label: str | None = None,
    thresholds: PunchThresholds | None = None,
) -> PunchStatus:
    """Decide what the attendance screen shows at ``now`` and whether a punch is allowed.

    Pure: the same inputs always give the same status and nothing is written.
    Every combination of shifts and logs maps to exactly one state.
    """
    thresholds = thresholds or PunchThresholds.from_settings()
    now_utc = as_utc(now)
    now_minute = local_minute_of_day(now_utc, tz)
    completed_display = timedelta(minutes=thresholds.completed_display_minutes)

    if leave_active:
        return PunchStatus(state=PunchState.ON_LEAVE, message="ON LEAVE", sub=leave_label or "Approved leave")

    ins = [event for event in today_logs if event.type == PunchType.IN]
    outs = [event for event in today_logs if event.type == PunchType.OUT]
    if not ins and len(outs) == 1:
        # A lone OUT closes yesterday's overnight shift.
        if now_utc < as_utc(outs[0].ts_utc) + completed_display:
            return PunchStatus(state=PunchState.COMPLETED, message="COMPLETE", sub="Overnight shift done")
    elif not ins and not outs:
        tail_status = _yesterday_tail_status(
            now_minute=now_minute,
            yesterday_shifts=yesterday_shifts,
            override_active=override_active,
            thresholds=thresholds,
        )
        if tail_status is not None:
            return tail_status

    if not today_shifts:
        return PunchStatus(state=PunchState.OFF, message="NO SHIFT", sub="Relax today")

    # Early-morning minutes belong to yesterday's overnight tail when there is one.
    yesterday_overnight = bool(yesterday_shifts) and yesterday_shifts[-1].segment.crosses_midnight

    for position, matched in enumerate(today_shifts):
        segment = matched.segment
        start = segment.start
        end = segment.normalized_end
        current = now_minute
        if not yesterday_overnight:
            current = wrap_early_morning(
                now_minute,
                segment,
                wrap_minutes=thresholds.early_morning_wrap_minutes,
            )
        has_next = position < len(today_shifts) - 1
        number = matched.number

        if matched.out_event is not None:
            if now_utc < as_utc(matched.out_event.ts_utc) + completed_display:
                return PunchStatus(
                    state=PunchState.COMPLETED,
                    message="COMPLETE",
                    sub=f"Shift {number} done",
                    shift_index=number,
                )
            if has_next:
                continue
            break

        if matched.in_event is not None:
            open_status = _open_shift_status(
                current=current,
                end=end,
                number=number,
                override_active=override_active,
                thresholds=thresholds,
                sub=f"Shift {number}",
            )
            if open_status is not None:
                return open_status
            if has_next:
                continue
            break

        if current > end:
            if current <= end + thresholds.absent_grace_minutes:
                return PunchStatus(
                    state=PunchState.ABSENT,
                    message="ABSENT",
                    sub=f"Shift {number} missed",
                    shift_index=number,
                )
            if has_next:
                continue
            break

        opens_at = start - thresholds.pre_window_minutes
        if override_active or current >= opens_at:
            return PunchStatus(
                state=PunchState.READY_IN,
                message="START",
                sub=f"Shift {number}",
                can_punch=True,
                shift_index=number,
                override_applied=current < opens_at,
            )
        if position == 0:
            return PunchStatus(
                state=PunchState.LOCKED,
                message="TOO EARLY",
                sub=f"Starts at {format_time12(start)}",
                shift_index=number,
            )
        remaining = _format_remaining(start - current)
        return PunchStatus(
            state=PunchState.WAITING,
            message="ON BREAK",
            sub=f"Shift {number} in {remaining}",
            shift_index=number,
            time_remaining=remaining,
        )
    else:
        return PunchStatus(state=PunchState.OFF, message="NO SHIFT", sub="Relax today")

    return PunchStatus(state=PunchState.NEXT_SHIFT, message="NEXT SHIFT", sub="See you tomorrow")
