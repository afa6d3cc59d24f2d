from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from functools import lru_cache
import logging
import threading

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from shift_attendance.errors import ClockUntrustedError
from shift_attendance.services.log_matcher import as_utc
from shift_attendance.settings import get_settings

logger = logging.getLogger("shift_attendance.trusted_clock")


def _system_utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TrustedClock:
    """Local clock corrected by an offset measured against a trusted source."""

    def __init__(
        self,
        *,
        max_age: timedelta,
        drift_threshold: timedelta,
        local_now: Callable[[], datetime] = _system_utc_now,
    ) -> None:
        self._max_age = max_age
        self._drift_threshold = drift_threshold
        self._local_now = local_now
        self._lock = threading.Lock()
        self._offset: timedelta | None = None
        self._synced_at_local: datetime | None = None

    @property
    def offset(self) -> timedelta | None:
        return self._offset

    def sync(self, reference_utc: datetime, *, local_utc: datetime | None = None) -> timedelta:
        local = as_utc(local_utc) if local_utc is not None else self._local_now()
        offset = as_utc(reference_utc) - local
        with self._lock:
            previous = self._offset
            self._offset = offset
            self._synced_at_local = local
        if previous is not None and abs(offset - previous) > self._drift_threshold:
            logger.warning(
                "trusted_clock_offset_jump",
                extra={
                    "previous_offset_s": previous.total_seconds(),
                    "offset_s": offset.total_seconds(),
                },
            )
        return offset

    def local_now(self) -> datetime:
        return self._local_now()

    def is_synced(self) -> bool:
        with self._lock:
            synced_at = self._synced_at_local
        if synced_at is None:
            return False
        return self._local_now() - synced_at <= self._max_age

    def now(self) -> datetime:
        with self._lock:
            offset = self._offset
            synced_at = self._synced_at_local
        local = self._local_now()
        if offset is None or synced_at is None:
            raise ClockUntrustedError("Trusted time has not been synced yet.")
        if local - synced_at > self._max_age:
            raise ClockUntrustedError("Trusted time sync is stale.")
        return local + offset

    def is_drift_suspicious(self, client_ts: datetime | None) -> bool:
        """True when a client-reported time disagrees with corrected now beyond the threshold."""
        if client_ts is None:
            return False
        return abs(as_utc(client_ts) - self.now()) > self._drift_threshold


def sync_with_database(clock: TrustedClock, db: Session) -> timedelta:
    local_before = clock.local_now()
    reference = db.scalar(select(func.now()))
    local_after = clock.local_now()
    if reference is None:
        raise ClockUntrustedError("Database did not return a reference time.")
    if isinstance(reference, str):
        reference = datetime.fromisoformat(reference)
    midpoint = local_before + (local_after - local_before) / 2
    return clock.sync(reference, local_utc=midpoint)


@lru_cache
def get_trusted_clock() -> TrustedClock:
    settings = get_settings()
    return TrustedClock(
        max_age=timedelta(seconds=settings.clock_sync_max_age_seconds),
        drift_threshold=timedelta(seconds=settings.clock_drift_suspicious_seconds),
    )
