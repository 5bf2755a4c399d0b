from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database as db  # noqa: E402
from database import (  # noqa: E402
    AuditLog,
    Base,
    ScheduleLockedError,
    add_permanent_request,
    add_time_off_request,
    get_week,
    list_debt_entries,
    update_shift,
    upsert_employee,
)
from generator.api import NoEligibleEmployeesError, ScheduleExistsError, generate_schedule_for_week  # noqa: E402
from policy import ensure_default_settings, load_store_settings  # noqa: E402
from validation import validate_week_schedule  # noqa: E402
from workflow import (  # noqa: E402
    InvalidTransitionError,
    approve_schedule,
    reject_schedule,
    request_modification,
    respond_to_modification,
    submit_schedule,
)


class ScheduleWorkflowTests(unittest.TestCase):
    """Generation, approval and hour-debt postings against an in-memory store database."""

    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)
        self.week_start = datetime.date(2024, 4, 1)  # Monday
        self.friday = self.week_start + datetime.timedelta(days=4)
        ensure_default_settings(self.session_factory, "1")
        with self.session_factory() as session:
            upsert_employee(
                session,
                {"id": "e1", "establishment_id": "1", "name": "Ana", "category": "Empleado", "weekly_hours": 16},
            )

    def tearDown(self) -> None:
        self.engine.dispose()

    def _generate(self, **kwargs):
        return generate_schedule_for_week(self.session_factory, "1", self.week_start, "tests", **kwargs)

    def _add_friday_morning(self) -> None:
        with self.session_factory() as session:
            week = get_week(session, "1", self.week_start)
            friday = next(row for row in week.shifts if row.employee_id == "e1" and row.date == self.friday)
            update_shift(session, friday.id, {"type": "morning", "start_time": "10:00", "end_time": "14:00"})

    def _status(self):
        with self.session_factory() as session:
            week = get_week(session, "1", self.week_start)
            return week.approval_status, week.modification_status

    def test_generate_persists_week_and_audits(self) -> None:
        result = self._generate()

        self.assertEqual(result["shifts_created"], 7)
        self.assertEqual(result["employees"], 1)
        self.assertFalse(result["replaced"])
        self.assertEqual(result["validation"]["mode"], "warning")
        self.assertEqual(self._status(), ("draft", "none"))
        with self.session_factory() as session:
            week = get_week(session, "1", self.week_start)
            types = [row.shift_type for row in sorted(week.shifts, key=lambda row: row.date)]
            actions = session.execute(select(AuditLog.action)).scalars().all()
        self.assertEqual(types, ["morning"] * 4 + ["off"] * 3)
        self.assertIn("schedule_generate", actions)

    def test_generate_twice_requires_force(self) -> None:
        first = self._generate()
        with self.assertRaises(ScheduleExistsError):
            self._generate()

        forced = self._generate(force=True)
        self.assertTrue(forced["replaced"])
        self.assertEqual(forced["week_id"], first["week_id"])
        self.assertEqual(forced["shifts_created"], 7)

    def test_forced_regeneration_refuses_locked_week(self) -> None:
        self._generate()
        with self.session_factory() as session:
            submit_schedule(session, "1", self.week_start, "manager")
        with self.assertRaises(ScheduleLockedError):
            self._generate(force=True)

    def test_generate_without_eligible_employees_fails(self) -> None:
        with self.assertRaises(NoEligibleEmployeesError):
            generate_schedule_for_week(self.session_factory, "2", self.week_start, "tests")

    def test_generation_reads_stored_requests(self) -> None:
        with self.session_factory() as session:
            add_permanent_request(session, {"employee_id": "e1", "type": "specific_days_off", "days": [1]})
            add_time_off_request(session, {"employee_id": "e1", "type": "day_off", "dates": ["2024-04-02"]})
        self._generate()

        with self.session_factory() as session:
            week = get_week(session, "1", self.week_start)
            by_date = {row.date: row.shift_type for row in week.shifts}
        self.assertEqual(by_date[self.week_start], "off")
        self.assertEqual(by_date[self.week_start + datetime.timedelta(days=1)], "off")
        # 2024-04-01 is this employee's Saturday-off turn, so Wednesday is upgraded instead.
        self.assertEqual(
            [by_date[self.week_start + datetime.timedelta(days=offset)] for offset in range(2, 6)],
            ["split", "morning", "morning", "off"],
        )

    def test_approval_posts_and_modification_reverses(self) -> None:
        self._generate()
        self._add_friday_morning()

        with self.session_factory() as session:
            week = submit_schedule(session, "1", self.week_start, "manager")
            self.assertIsNotNone(week.submitted_at)
        with self.session_factory() as session:
            approval = approve_schedule(session, "1", self.week_start, "supervisor")
        self.assertEqual(approval["posted"], 1)
        self.assertEqual(approval["adjustments"][0]["amount"], 4)
        self.assertEqual(approval["messages"], ["Ana: has 4.0h extra (added to the hours balance)."])
        with self.session_factory() as session:
            self.assertEqual(session.get(db.Employee, "e1").hours_debt, 4)

        with self.assertRaises(ScheduleLockedError):
            self._add_friday_morning()

        with self.session_factory() as session:
            request_modification(session, "1", self.week_start, "manager", "Ana swapped Friday")
        self.assertEqual(self._status(), ("approved", "requested"))
        with self.session_factory() as session:
            result = respond_to_modification(session, "1", self.week_start, "supervisor", approved=True)
            week_id = result["week"].id
        self.assertEqual(result["reversed"], 1)
        self.assertEqual(self._status(), ("draft", "approved"))

        with self.session_factory() as session:
            entries = list_debt_entries(session, week_id=week_id)
            self.assertEqual(session.get(db.Employee, "e1").hours_debt, 0)
        self.assertEqual([entry["amount"] for entry in entries], [4, -4])
        self.assertEqual(entries[1]["reverses_id"], entries[0]["id"])
        self.assertEqual(entries[0]["reversed_by_id"], entries[1]["id"])

        # The reopened week can be approved again and posts a fresh adjustment.
        with self.session_factory() as session:
            submit_schedule(session, "1", self.week_start, "manager")
        self.assertEqual(self._status(), ("pending", "none"))
        with self.session_factory() as session:
            again = approve_schedule(session, "1", self.week_start, "supervisor")
        self.assertEqual(again["posted"], 1)

    def test_approval_does_not_post_twice(self) -> None:
        self._generate()
        self._add_friday_morning()
        with self.session_factory() as session:
            submit_schedule(session, "1", self.week_start, "manager")
            approve_schedule(session, "1", self.week_start, "supervisor")
            week = get_week(session, "1", self.week_start)
            week.approval_status = "pending"
            session.commit()
            repeated = approve_schedule(session, "1", self.week_start, "supervisor")
            entries = list_debt_entries(session, week_id=week.id)
        self.assertEqual(repeated["posted"], 0)
        self.assertEqual(len(entries), 1)

    def test_rejected_modification_keeps_postings(self) -> None:
        self._generate()
        self._add_friday_morning()
        with self.session_factory() as session:
            submit_schedule(session, "1", self.week_start, "manager")
            approve_schedule(session, "1", self.week_start, "supervisor")
            request_modification(session, "1", self.week_start, "manager", "Typo")
            result = respond_to_modification(
                session, "1", self.week_start, "supervisor", approved=False, notes="Keep it"
            )
        self.assertEqual(result["reversed"], 0)
        self.assertEqual(self._status(), ("approved", "rejected"))
        self.assertEqual(result["week"].supervisor_notes, "Keep it")

    def test_rejection_and_resubmission(self) -> None:
        self._generate()
        with self.session_factory() as session:
            submit_schedule(session, "1", self.week_start, "manager")
            week = reject_schedule(session, "1", self.week_start, "supervisor", "Cover Saturday")
        self.assertEqual(week.approval_status, "rejected")
        self.assertEqual(week.supervisor_notes, "Cover Saturday")

        forced = self._generate(force=True)
        self.assertTrue(forced["replaced"])
        with self.session_factory() as session:
            submit_schedule(session, "1", self.week_start, "manager")
        self.assertEqual(self._status(), ("pending", "none"))

    def test_invalid_transitions_raise(self) -> None:
        self._generate()
        with self.session_factory() as session:
            with self.assertRaises(InvalidTransitionError):
                approve_schedule(session, "1", self.week_start, "supervisor")
            with self.assertRaises(InvalidTransitionError):
                request_modification(session, "1", self.week_start, "manager", "Too early")
            with self.assertRaises(InvalidTransitionError):
                respond_to_modification(session, "1", self.week_start, "supervisor", approved=True)
            with self.assertRaises(InvalidTransitionError):
                reject_schedule(session, "1", self.week_start, "supervisor")

    def test_validate_week_reports_missing_schedule(self) -> None:
        with self.session_factory() as session:
            report = validate_week_schedule(session, "1", self.week_start)
        self.assertEqual(report["violations"], ["No schedule exists for the requested week."])

    def test_store_settings_fall_back_to_baseline(self) -> None:
        with self.session_factory() as session:
            stored = load_store_settings(session, "1")
            missing = load_store_settings(session, "99")
        self.assertEqual(stored.opening_hours.morning_start, "10:00")
        self.assertEqual(missing.policy["generator"]["slot_hours"], 4)
        self.assertEqual(load_store_settings(self.session_factory, "1").establishment_id, "1")


if __name__ == "__main__":
    unittest.main()
