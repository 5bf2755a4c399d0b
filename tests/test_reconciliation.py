from __future__ import annotations

import datetime
import sys
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from models import Employee, Holiday, HistoryEvent, Shift, StoreSettings, TimeOffRequest, WeeklySchedule, week_dates  # noqa: E402
from reconciliation import describe_adjustment, is_full_absence, reconcile_hours  # noqa: E402

WEEK = datetime.date(2024, 4, 1)
DATES = week_dates(WEEK)


def _week(employee_id, types, **times):
    shifts = []
    for date_value, shift_type in zip(DATES, types):
        if shift_type == "morning":
            shifts.append(Shift(employee_id, date_value, "morning", times.get("start", "10:00"), "14:00"))
        elif shift_type == "split":
            shifts.append(Shift(employee_id, date_value, "split", "10:00", "21:00", "14:00", "17:00"))
        else:
            shifts.append(Shift(employee_id, date_value, shift_type))
    return shifts


def test_extra_and_missing_hours_become_adjustments():
    over = Employee("over", "1", 16, name="Olga")
    short = Employee("short", "1", 24, name="Sam")
    exact = Employee("exact", "1", 16, name="Eva")
    shifts = (
        _week("over", ["morning"] * 5 + ["off", "off"])
        + _week("short", ["morning"] * 4 + ["off"] * 3)
        + _week("exact", ["morning"] * 4 + ["off"] * 3)
    )
    schedule = WeeklySchedule("1", WEEK, shifts)

    adjustments = {adj.employee_id: adj for adj in reconcile_hours(schedule, [over, short, exact], StoreSettings("1"))}

    assert set(adjustments) == {"over", "short"}
    assert adjustments["over"].amount == 4
    assert adjustments["short"].amount == -8
    assert adjustments["short"].target_hours == 24
    assert adjustments["short"].reason == "Schedule week of 2024-04-01"
    assert describe_adjustment(adjustments["over"]) == "Olga: has 4.0h extra (added to the hours balance)."
    assert describe_adjustment(adjustments["short"]) == "Sam: is 8.0h short (deducted from the hours balance)."


def test_full_week_vacation_is_neutral():
    employee = Employee("e1", "1", 40)
    shifts = _week("e1", ["vacation"] * 6 + ["off"])
    schedule = WeeklySchedule("1", WEEK, shifts)
    # No matching request, so the target stays at 40h while nothing is worked.
    assert is_full_absence(schedule.shifts_for("e1"))
    assert reconcile_hours(schedule, [employee], StoreSettings("1")) == []


def test_holidays_and_absences_reduce_target():
    employee = Employee("e1", "1", 40)
    settings = StoreSettings("1", holidays=[Holiday(DATES[0], "full")])
    time_off = [TimeOffRequest("e1", "sick_leave", dates=[DATES[1]])]
    shifts = _week("e1", ["holiday", "sick_leave", "split", "split", "split", "split", "off"])
    schedule = WeeklySchedule("1", WEEK, shifts)

    [adjustment] = reconcile_hours(schedule, [employee], settings, time_off)
    assert adjustment.target_hours == 24
    assert adjustment.worked_hours == 32
    assert adjustment.amount == 8


def test_explicit_holidays_override_settings():
    employee = Employee("e1", "1", 40)
    shifts = _week("e1", ["holiday", "split", "split", "split", "split", "off", "off"])
    schedule = WeeklySchedule("1", WEEK, shifts)

    assert reconcile_hours(schedule, [employee], StoreSettings("1"), holidays=[Holiday(DATES[0], "full")]) == []
    [adjustment] = reconcile_hours(schedule, [employee], StoreSettings("1"))
    assert adjustment.amount == -8


def test_fractional_hours_round_to_one_decimal():
    employee = Employee("e1", "1", 16)
    shifts = _week("e1", ["morning"] * 4 + ["off"] * 3)
    shifts[0] = Shift("e1", DATES[0], "morning", "10:00", "14:20")
    schedule = WeeklySchedule("1", WEEK, shifts)

    [adjustment] = reconcile_hours(schedule, [employee], StoreSettings("1"))
    assert adjustment.amount == 0.3
    assert adjustment.worked_hours == 16.3


def test_ineligible_and_foreign_employees_are_skipped():
    gone = Employee("gone", "1", 16, history=[HistoryEvent("2024-01-01", "terminated")])
    foreign = Employee("foreign", "2", 16)
    schedule = WeeklySchedule("1", WEEK, _week("gone", ["off"] * 7) + _week("foreign", ["off"] * 7))
    assert reconcile_hours(schedule, [gone, foreign], StoreSettings("1")) == []
