from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo

from shift_attendance.models import PunchEvent, PunchType
from shift_attendance.services.time_parser import MINUTES_PER_DAY, ShiftSegment
from shift_attendance.settings import get_settings


@dataclass(frozen=True)
class MatchedShift:
    index: int
    segment: ShiftSegment
    in_event: PunchEvent | None = None
    out_event: PunchEvent | None = None

    @property
    def number(self) -> int:
        return self.index + 1


@dataclass(frozen=True)
class ShiftPunctuality:
    late_minutes: int
    early_leave_minutes: int
    worked_minutes: int


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_minute_of_day(value: datetime, tz: tzinfo) -> int:
    local = as_utc(value).astimezone(tz)
    return local.hour * 60 + local.minute


def wrap_early_morning(minute: int, segment: ShiftSegment, *, wrap_minutes: int) -> int:
    """Shift a minute past midnight onto the overnight segment's timeline."""
    if segment.crosses_midnight and minute < segment.start - wrap_minutes:
        return minute + MINUTES_PER_DAY
    return minute


def _sorted_events(events: Sequence[PunchEvent]) -> list[PunchEvent]:
    return sorted(events, key=lambda item: (as_utc(item.ts_utc), item.id or 0))


def match_logs_to_shifts(
    events: Sequence[PunchEvent],
    segments: Sequence[ShiftSegment],
    *,
    tz: tzinfo,
    in_lead_minutes: int | None = None,
    out_min_after_start_minutes: int | None = None,
    wrap_minutes: int | None = None,
) -> list[MatchedShift]:
    settings = get_settings()
    if in_lead_minutes is None:
        in_lead_minutes = settings.match_in_lead_minutes
    if out_min_after_start_minutes is None:
        out_min_after_start_minutes = settings.match_out_min_after_start_minutes
    if wrap_minutes is None:
        wrap_minutes = settings.early_morning_wrap_minutes

    ordered = _sorted_events(events)
    ins = [event for event in ordered if event.type == PunchType.IN]
    outs = [event for event in ordered if event.type == PunchType.OUT]
    used: set[int] = set()

    assigned_ins: list[PunchEvent | None] = []
    for segment in segments:
        window_start = segment.start - in_lead_minutes
        window_end = segment.normalized_end - 1
        chosen: PunchEvent | None = None
        for event in ins:
            if id(event) in used:
                continue
            minute = wrap_early_morning(
                local_minute_of_day(event.ts_utc, tz),
                segment,
                wrap_minutes=wrap_minutes,
            )
            if window_start <= minute <= window_end:
                chosen = event
                break
        if chosen is not None:
            used.add(id(chosen))
        assigned_ins.append(chosen)

    matched: list[MatchedShift] = []
    for index, segment in enumerate(segments):
        in_event = assigned_ins[index]
        next_in = next((item for item in assigned_ins[index + 1 :] if item is not None), None)
        chosen_out: PunchEvent | None = None
        for event in outs:
            if id(event) in used:
                continue
            event_ts = as_utc(event.ts_utc)
            if next_in is not None and event_ts >= as_utc(next_in.ts_utc):
                break
            if in_event is not None:
                qualifies = event_ts > as_utc(in_event.ts_utc)
            else:
                qualifies = local_minute_of_day(event.ts_utc, tz) >= segment.start + out_min_after_start_minutes
            if qualifies:
                chosen_out = event
                break
        if chosen_out is not None:
            used.add(id(chosen_out))
        matched.append(MatchedShift(index=index, segment=segment, in_event=in_event, out_event=chosen_out))
    return matched


def shift_punctuality(
    matched: MatchedShift,
    *,
    tz: tzinfo,
    wrap_minutes: int | None = None,
) -> ShiftPunctuality:
    if wrap_minutes is None:
        wrap_minutes = get_settings().early_morning_wrap_minutes
    segment = matched.segment

    if matched.in_event is None:
        return ShiftPunctuality(late_minutes=0, early_leave_minutes=0, worked_minutes=0)

    in_minute = wrap_early_morning(
        local_minute_of_day(matched.in_event.ts_utc, tz),
        segment,
        wrap_minutes=wrap_minutes,
    )
    late_minutes = max(0, in_minute - segment.start)

    early_leave_minutes = 0
    worked_minutes = 0
    if matched.out_event is not None:
        elapsed = as_utc(matched.out_event.ts_utc) - as_utc(matched.in_event.ts_utc)
        worked_minutes = max(0, int(elapsed / timedelta(minutes=1)))
        # Measured from the IN so an OUT after midnight stays on the same timeline.
        early_leave_minutes = max(0, segment.normalized_end - (in_minute + worked_minutes))

    return ShiftPunctuality(
        late_minutes=late_minutes,
        early_leave_minutes=early_leave_minutes,
        worked_minutes=worked_minutes,
    )
