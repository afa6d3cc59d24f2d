from __future__ import annotations

from collections.abc import Iterable
from datetime import date, timezone
import logging
import re
from typing import Any

from shift_attendance.errors import TimeParseError
from shift_attendance.models import ScheduleRecord
from shift_attendance.services.time_parser import MINUTES_PER_DAY, ShiftSegment, require_time_of_day, split_segments

logger = logging.getLogger("shift_attendance.schedule_resolver")

FRIDAY = 4
_OFF_MARKER_RE = re.compile(r"\b(?:off|holiday)\b", re.IGNORECASE)


def _record_text(record: ScheduleRecord) -> str:
    return f"{record.location or ''} {record.note or ''}"


def is_friday_record(record: ScheduleRecord) -> bool:
    return "friday" in _record_text(record).lower()


def is_holiday_record(record: ScheduleRecord) -> bool:
    return "holiday" in (record.location or "").lower()


def is_off_record(record: ScheduleRecord) -> bool:
    return _OFF_MARKER_RE.search(_record_text(record)) is not None


def recurring_record_applies(record: ScheduleRecord, *, day_date: date) -> bool:
    if record.pinned_date is not None:
        return False
    if record.valid_from is not None and day_date < record.valid_from:
        return False
    if record.valid_to is not None and day_date > record.valid_to:
        return False

    if day_date.weekday() == FRIDAY:
        return is_friday_record(record)
    if is_friday_record(record) or is_holiday_record(record):
        return False
    return True


def _created_at_key(record: ScheduleRecord) -> float:
    created_at = record.created_at
    if created_at is None:
        return 0.0
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at.timestamp()


def resolve_record_for_day(
    records: Iterable[ScheduleRecord],
    *,
    day_date: date,
) -> ScheduleRecord | None:
    """The single record that governs ``day_date``, or None when nothing applies."""
    records = list(records)
    pinned = [record for record in records if record.pinned_date == day_date]
    if pinned:
        # Records are superseded, never edited: the newest pin for the day wins.
        return max(pinned, key=lambda item: (_created_at_key(item), item.id or 0))

    applicable = [record for record in records if recurring_record_applies(record, day_date=day_date)]
    if not applicable:
        return None

    applicable.sort(
        key=lambda item: (
            item.valid_from is not None,
            _created_at_key(item),
            item.id or 0,
        ),
        reverse=True,
    )
    return applicable[0]


def _segments_from_structured(raw_shifts: list[dict[str, Any]], *, record_id: int | None) -> list[ShiftSegment]:
    segments: list[ShiftSegment] = []
    for raw in raw_shifts:
        try:
            start = require_time_of_day(raw.get("start"))
            end = require_time_of_day(raw.get("end"))
        except TimeParseError as exc:
            logger.warning(
                "schedule_segment_unparseable",
                extra={"record_id": record_id, "text": exc.text},
            )
            continue
        if start == MINUTES_PER_DAY:
            start = 0
        segments.append(ShiftSegment(start=start, end=end))
    return segments


def segments_for_record(record: ScheduleRecord) -> list[ShiftSegment]:
    if record.shifts is not None:
        return _segments_from_structured(record.shifts, record_id=record.id)
    return split_segments(record.note)


def resolve_shifts_for_day(
    records: Iterable[ScheduleRecord],
    *,
    day_date: date,
) -> list[ShiftSegment]:
    record = resolve_record_for_day(records, day_date=day_date)
    if record is None:
        return []
    if record.pinned_date == day_date and is_off_record(record):
        return []
    return segments_for_record(record)
