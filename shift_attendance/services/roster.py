from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping, Sequence
import colorsys
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
import hashlib

from sqlalchemy import select
from sqlalchemy.orm import Session

from shift_attendance.models import ScheduleRecord
from shift_attendance.services.log_matcher import as_utc
from shift_attendance.services.schedule_resolver import resolve_record_for_day, resolve_shifts_for_day
from shift_attendance.services.time_parser import ShiftSegment


@dataclass(frozen=True)
class OnShiftEntry:
    user_id: str
    segment: ShiftSegment
    location: str | None
    from_yesterday: bool


def staff_color(name: str) -> str:
    """Stable colour for a staff name; the same name always gives the same hex value."""
    digest = hashlib.sha256(name.strip().lower().encode("utf-8")).digest()
    hue = int.from_bytes(digest[:2], "big") / 0xFFFF
    red, green, blue = colorsys.hls_to_rgb(hue, 0.45, 0.65)
    return f"#{round(red * 255):02x}{round(green * 255):02x}{round(blue * 255):02x}"


def list_on_shift(
    records_by_user: Mapping[str, Sequence[ScheduleRecord]],
    *,
    now_utc: datetime,
    tz: tzinfo,
) -> list[OnShiftEntry]:
    local_now = as_utc(now_utc).astimezone(tz)
    minute = local_now.hour * 60 + local_now.minute
    today = local_now.date()
    yesterday = today - timedelta(days=1)

    entries: list[OnShiftEntry] = []
    for user_id, records in sorted(records_by_user.items()):
        today_record = resolve_record_for_day(records, day_date=today)
        for segment in resolve_shifts_for_day(records, day_date=today):
            if segment.start <= minute < segment.normalized_end:
                entries.append(
                    OnShiftEntry(
                        user_id=user_id,
                        segment=segment,
                        location=today_record.location if today_record else None,
                        from_yesterday=False,
                    )
                )
                break
        else:
            yesterday_record = resolve_record_for_day(records, day_date=yesterday)
            for segment in resolve_shifts_for_day(records, day_date=yesterday):
                if segment.crosses_midnight and minute < segment.end:
                    entries.append(
                        OnShiftEntry(
                            user_id=user_id,
                            segment=segment,
                            location=yesterday_record.location if yesterday_record else None,
                            from_yesterday=True,
                        )
                    )
                    break
    return entries


def load_on_shift(db: Session, *, now_utc: datetime, tz: tzinfo) -> list[OnShiftEntry]:
    records_by_user: dict[str, list[ScheduleRecord]] = defaultdict(list)
    for record in db.scalars(select(ScheduleRecord).order_by(ScheduleRecord.id.asc())).all():
        records_by_user[record.user_id].append(record)
    return list_on_shift(records_by_user, now_utc=now_utc, tz=tz)
