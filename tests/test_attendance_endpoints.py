from __future__ import annotations

from collections.abc import Generator
from datetime import date, datetime, timedelta, timezone
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shift_attendance.db import Base, get_db
from shift_attendance.main import app
from shift_attendance.models import LeaveAction, OverrideGrant, ScheduleRecord
from shift_attendance.routers.attendance import get_clock
from shift_attendance.services.roster import staff_color
from shift_attendance.services.trusted_clock import TrustedClock

MONDAY_0910 = datetime(2026, 3, 2, 9, 10, tzinfo=timezone.utc)


class _Ticker:
    def __init__(self, value: datetime) -> None:
        self.value = value

    def __call__(self) -> datetime:
        return self.value


class AttendanceEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

        with self.session_factory() as db:
            db.add_all(
                [
                    ScheduleRecord(user_id="alice", location="Front desk", note="8am-4pm"),
                    ScheduleRecord(user_id="bob", location="Night desk", note="10pm-6am"),
                ]
            )
            db.commit()

        self.ticker = _Ticker(MONDAY_0910)
        self.clock = TrustedClock(
            max_age=timedelta(minutes=15),
            drift_threshold=timedelta(minutes=5),
            local_now=self.ticker,
        )
        self.clock.sync(MONDAY_0910)

        def _override_get_db() -> Generator[Session, None, None]:
            db = self.session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = _override_get_db
        app.dependency_overrides[get_clock] = lambda: self.clock

        for target in (
            "shift_attendance.services.attendance.attendance_timezone",
            "shift_attendance.routers.attendance.attendance_timezone",
        ):
            patcher = patch(target, return_value=timezone.utc)
            patcher.start()
            self.addCleanup(patcher.stop)

        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.engine.dispose()

    def _move_to(self, value: datetime) -> None:
        self.ticker.value = value
        self.clock.sync(value)

    def _punch(self, punch_type: str, **extra):
        return self.client.post(
            "/api/attendance/punch",
            json={"user_id": "alice", "type": punch_type, **extra},
        )

    def test_status_before_punch(self) -> None:
        response = self.client.get("/api/attendance/status", params={"user_id": "alice"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["local_day"], "2026-03-02")
        self.assertEqual(body["status"]["state"], "READY_IN")
        self.assertTrue(body["status"]["can_punch"])
        self.assertEqual(body["shifts"][0]["start"], "08:00")
        self.assertEqual(body["shifts"][0]["end"], "16:00")
        self.assertIsNone(body["override_expires_at"])

    def test_punch_in_then_locked(self) -> None:
        response = self._punch("IN")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["event"]["type"], "IN")
        self.assertEqual(body["event"]["shift_index"], 1)
        self.assertEqual(body["event"]["flags"], [])
        self.assertFalse(body["event"]["is_suspicious"])
        self.assertEqual(body["status"]["state"], "LOCKED")

        again = self._punch("IN")
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.json()["error"]["code"], "PUNCH_NOT_ALLOWED")

        self._move_to(datetime(2026, 3, 2, 16, 5, tzinfo=timezone.utc))
        out = self._punch("OUT")
        self.assertEqual(out.status_code, 200)
        self.assertEqual(out.json()["status"]["state"], "COMPLETED")

        status = self.client.get("/api/attendance/status", params={"user_id": "alice"}).json()
        self.assertEqual(status["shifts"][0]["late_minutes"], 70)
        self.assertEqual(status["shifts"][0]["worked_minutes"], 415)

    def test_wrong_punch_type(self) -> None:
        response = self._punch("OUT")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "PUNCH_TYPE_MISMATCH")

    def test_untrusted_clock(self) -> None:
        self.clock = TrustedClock(
            max_age=timedelta(minutes=15),
            drift_threshold=timedelta(minutes=5),
            local_now=self.ticker,
        )
        status = self.client.get("/api/attendance/status", params={"user_id": "alice"})
        self.assertEqual(status.status_code, 200)
        self.assertEqual(status.json()["status"]["state"], "SYNCING")
        self.assertFalse(status.json()["status"]["can_punch"])

        punch = self._punch("IN")
        self.assertEqual(punch.status_code, 503)
        self.assertEqual(punch.json()["error"]["code"], "CLOCK_UNTRUSTED")

    def test_override_is_single_use(self) -> None:
        self._move_to(datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc))
        self.assertEqual(self._punch("IN").status_code, 409)

        grant = self.client.post(
            "/api/attendance/overrides",
            json={"user_id": "alice", "valid_minutes": 30, "granted_by": "sam"},
        )
        self.assertEqual(grant.status_code, 201)
        self.assertEqual(grant.json()["granted_by"], "sam")

        status = self.client.get("/api/attendance/status", params={"user_id": "alice"}).json()
        self.assertEqual(status["status"]["state"], "READY_IN")
        self.assertTrue(status["status"]["override_applied"])
        self.assertIsNotNone(status["override_expires_at"])

        punch = self._punch("IN")
        self.assertEqual(punch.status_code, 200)
        event = punch.json()["event"]
        self.assertTrue(event["override_used"])
        self.assertEqual(event["flags"], ["OVERRIDE_USED"])
        self.assertEqual(punch.json()["status"]["state"], "LOCKED")

        with self.session_factory() as db:
            self.assertEqual(db.scalar(select(func.count()).select_from(OverrideGrant)), 0)

    def test_client_drift_is_flagged(self) -> None:
        skewed = (MONDAY_0910 - timedelta(minutes=20)).isoformat()
        response = self._punch("IN", client_ts_utc=skewed)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["event"]["is_suspicious"])
        self.assertEqual(response.json()["event"]["flags"], ["TIME_DRIFT"])

    def test_leave_day(self) -> None:
        with self.session_factory() as db:
            db.add(
                LeaveAction(
                    user_id="alice",
                    leave_type="Annual leave",
                    from_date=date(2026, 3, 1),
                    to_date=date(2026, 3, 5),
                )
            )
            db.commit()
        body = self.client.get("/api/attendance/status", params={"user_id": "alice"}).json()
        self.assertEqual(body["status"]["state"], "ON_LEAVE")
        self.assertEqual(body["status"]["sub"], "Annual leave")
        self.assertEqual(self._punch("IN").status_code, 409)

    def test_invalid_punch_type_is_validation_error(self) -> None:
        response = self._punch("BREAK")
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_health_reports_clock_state(self) -> None:
        with patch("shift_attendance.main.get_trusted_clock", return_value=self.clock):
            body = self.client.get("/health").json()
        self.assertEqual(body["status"], "ok")
        self.assertTrue(body["clock_synced"])
        self.assertEqual(body["clock_offset_seconds"], 0.0)

    def test_on_shift_roster(self) -> None:
        response = self.client.get("/api/roster/on-shift")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([item["user_id"] for item in body], ["alice"])
        self.assertEqual(body[0]["color"], staff_color("alice"))
        self.assertFalse(body[0]["from_yesterday"])

        self._move_to(datetime(2026, 3, 3, 3, 0, tzinfo=timezone.utc))
        body = self.client.get("/api/roster/on-shift").json()
        self.assertEqual([item["user_id"] for item in body], ["bob"])
        self.assertTrue(body[0]["from_yesterday"])
        self.assertEqual(body[0]["start"], "22:00")


if __name__ == "__main__":
    unittest.main()
