from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from shift_attendance.db import Base

_JSON = JSON().with_variant(JSONB(), "postgresql")


class PunchType(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"


class ViolationKind(str, enum.Enum):
    TIME_DRIFT = "TIME_DRIFT"
    OVERRIDE_USED = "OVERRIDE_USED"


class ScheduleRecord(Base):
    """A published schedule row: pinned to one day or recurring when ``pinned_date`` is null."""

    __tablename__ = "schedule_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    pinned_date: Mapped[date | None] = mapped_column("date", Date, nullable=True, index=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    shifts: Mapped[list[dict[str, Any]] | None] = mapped_column(_JSON, nullable=True)
    valid_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    valid_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class PunchEvent(Base):
    __tablename__ = "punch_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[PunchType] = mapped_column(Enum(PunchType, name="punch_event_type"), nullable=False)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    local_day: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    client_ts_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_suspicious: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    flags: Mapped[list[str]] = mapped_column(_JSON, nullable=False, default=list)
    shift_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    override_used: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )


class OverrideGrant(Base):
    """Supervisor-issued, single-use bypass of the normal punch windows."""

    __tablename__ = "override_grants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    granted_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class LeaveAction(Base):
    __tablename__ = "leave_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    leave_type: Mapped[str] = mapped_column(String(64), nullable=False)
    from_date: Mapped[date] = mapped_column(Date, nullable=False)
    to_date: Mapped[date] = mapped_column(Date, nullable=False)
