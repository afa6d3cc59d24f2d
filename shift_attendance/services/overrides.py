from __future__ import annotations

from datetime import datetime, timedelta
import logging

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from shift_attendance.errors import ApiError
from shift_attendance.models import OverrideGrant
from shift_attendance.services.log_matcher import as_utc

logger = logging.getLogger("shift_attendance.overrides")


def get_active_override(
    db: Session,
    *,
    user_id: str,
    now_utc: datetime,
) -> OverrideGrant | None:
    return db.scalar(
        select(OverrideGrant)
        .where(
            OverrideGrant.user_id == user_id,
            OverrideGrant.expires_at > as_utc(now_utc),
        )
        .order_by(OverrideGrant.expires_at.desc(), OverrideGrant.id.desc())
    )


def consume_override(
    db: Session,
    *,
    grant_id: int,
    now_utc: datetime,
) -> bool:
    """Delete the grant if it is still valid. Exactly one concurrent caller gets True."""
    result = db.execute(
        delete(OverrideGrant)
        .where(
            OverrideGrant.id == grant_id,
            OverrideGrant.expires_at > as_utc(now_utc),
        )
        .execution_options(synchronize_session=False)
    )
    consumed = result.rowcount == 1
    logger.info(
        "override_consume",
        extra={"grant_id": grant_id, "consumed": consumed},
    )
    return consumed


def create_override(
    db: Session,
    *,
    user_id: str,
    now_utc: datetime,
    valid_minutes: int,
    granted_by: str | None,
) -> OverrideGrant:
    if valid_minutes <= 0:
        raise ApiError(
            status_code=422,
            code="INVALID_OVERRIDE_DURATION",
            message="Override must be valid for at least one minute.",
        )
    grant = OverrideGrant(
        user_id=user_id,
        expires_at=as_utc(now_utc) + timedelta(minutes=valid_minutes),
        granted_by=granted_by,
        created_at=as_utc(now_utc),
    )
    db.add(grant)
    db.commit()
    db.refresh(grant)
    logger.info(
        "override_granted",
        extra={"grant_id": grant.id, "user_id": user_id, "granted_by": granted_by},
    )
    return grant
