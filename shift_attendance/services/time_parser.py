from __future__ import annotations

from dataclasses import dataclass
import logging
import re

from shift_attendance.errors import TimeParseError

logger = logging.getLogger("shift_attendance.time_parser")

MINUTES_PER_DAY = 24 * 60

_PM_MARKERS = ("pm", "p.m", "مساء", "م")
_AM_MARKERS = ("am", "a.m", "صباح", "ص")
_MIDNIGHT_RE = re.compile(r"midnight|(?<![a-z])mn\b")
_NOON_RE = re.compile(r"noon|(?<![a-z])n\b")
_DOTTED_TIME_RE = re.compile(r"(\d+)\.(\d+)")
_TIME_DIGITS_RE = re.compile(r"(\d+)(?::(\d+))?")

_CLAUSE_SPLIT_RE = re.compile(
    r"[/,&]|\s+and\s+|(?<![-–—\s])(?<!\bto)(?<!starting)\s+(?=\d{1,2}(?::\d{2})?\s*(?:am|pm|mn|noon)\b)",
    re.IGNORECASE,
)
_RANGE_SPLIT_RE = re.compile(r"\s*(?:[-–—]|\bto\b)\s*", re.IGNORECASE)


@dataclass(frozen=True)
class ShiftSegment:
    """One contiguous scheduled interval in minutes since midnight.

    ``end`` may be 1440 (end of day) and may be smaller than ``start``,
    in which case the segment runs into the next day.
    """

    start: int
    end: int

    @property
    def crosses_midnight(self) -> bool:
        return self.end < self.start

    @property
    def normalized_end(self) -> int:
        return self.end + MINUTES_PER_DAY if self.crosses_midnight else self.end

    @property
    def duration_minutes(self) -> int:
        return self.normalized_end - self.start

    def label(self) -> str:
        return f"{format_minutes(self.start)}-{format_minutes(self.end)}"


@dataclass(frozen=True)
class _ParsedTime:
    minutes: int
    ambiguous: bool


def _parse(text: str | None) -> _ParsedTime | None:
    if not text:
        return None
    value = _DOTTED_TIME_RE.sub(r"\1:\2", text.strip().lower(), count=1)

    if _MIDNIGHT_RE.search(value):
        return _ParsedTime(MINUTES_PER_DAY, ambiguous=False)
    if _NOON_RE.search(value):
        return _ParsedTime(12 * 60, ambiguous=False)

    meridiem: str | None = None
    if any(marker in value for marker in _PM_MARKERS):
        meridiem = "pm"
    elif any(marker in value for marker in _AM_MARKERS):
        meridiem = "am"

    match = _TIME_DIGITS_RE.search(re.sub(r"[^\d:]", "", value))
    if match is None:
        return None
    hour_text = match.group(1)
    hour = int(hour_text)
    minute = int(match.group(2)) if match.group(2) else 0

    if meridiem == "pm" and hour < 12:
        hour += 12
    elif meridiem == "am" and hour == 12:
        hour = 0

    if minute > 59 or hour > 24 or (hour == 24 and minute != 0):
        return None

    ambiguous = meridiem is None and 1 <= hour <= 12 and not hour_text.startswith("0")
    return _ParsedTime(hour * 60 + minute, ambiguous=ambiguous)


def parse_time_of_day(text: str | None) -> int | None:
    """Minutes since midnight for a free-form time string, or None when no time is present."""
    parsed = _parse(text)
    return parsed.minutes if parsed else None


def require_time_of_day(text: str | None) -> int:
    minutes = parse_time_of_day(text)
    if minutes is None:
        raise TimeParseError(text or "")
    return minutes


def format_minutes(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def normalize_time(text: str | None) -> str | None:
    """``"5 PM"`` -> ``"17:00"``, ``"12mn"`` -> ``"24:00"``; None when unparseable."""
    minutes = parse_time_of_day(text)
    if minutes is None:
        return None
    return format_minutes(minutes)


def format_time12(minutes: int) -> str:
    hour, mins = divmod(minutes % MINUTES_PER_DAY, 60)
    suffix = "PM" if hour >= 12 else "AM"
    return f"{hour % 12 or 12}:{mins:02d} {suffix}"


def split_segments(text: str | None) -> list[ShiftSegment]:
    """Split a compound shift description into ordered segments.

    ``"9-1 & 5-9"`` gives 09:00-13:00 and 17:00-21:00, ``"8am/4pm-12am"``
    keeps only the clauses that carry both ends. Unparseable clauses are
    logged and dropped. Segments stay in source order.
    """
    if not text:
        return []

    segments: list[ShiftSegment] = []
    for raw_clause in _CLAUSE_SPLIT_RE.split(text.strip()):
        clause = raw_clause.replace("(", "").replace(")", "").strip()
        if not clause or "starting" in clause.lower():
            continue

        tokens = [token for token in _RANGE_SPLIT_RE.split(clause)]
        if len(tokens) < 2:
            continue
        start = _parse(tokens[0])
        end = _parse(tokens[-1])
        if start is None or end is None:
            logger.warning(
                "shift_clause_unparseable",
                extra={"clause": clause, "source_text": text},
            )
            continue

        start_minutes = 0 if start.minutes == MINUTES_PER_DAY else start.minutes
        end_minutes = end.minutes
        if start.ambiguous and end.ambiguous:
            start_minutes, end_minutes = _read_twelve_hour_dial(
                start_minutes,
                end_minutes,
                previous=segments[-1] if segments else None,
            )
        segments.append(ShiftSegment(start=start_minutes, end=end_minutes))
    return segments


def _read_twelve_hour_dial(
    start: int,
    end: int,
    *,
    previous: ShiftSegment | None,
) -> tuple[int, int]:
    # Bare hours such as "9-1" or "5-9": pull later clauses past the previous
    # segment, then keep the end after the start.
    if previous is not None and not previous.crosses_midnight and start < previous.end:
        start += 12 * 60
        end += 12 * 60
    if end <= start:
        end += 12 * 60
    if start >= MINUTES_PER_DAY:
        start -= MINUTES_PER_DAY
    if end > MINUTES_PER_DAY:
        end -= MINUTES_PER_DAY
    return start, end
