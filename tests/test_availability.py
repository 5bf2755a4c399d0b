from __future__ import annotations

import datetime
import logging
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from availability import AVAILABLE, resolve_day_status, resolve_week_status  # noqa: E402
from constraints import UNLIMITED_AFTERNOONS, build_constraints  # noqa: E402
from models import (  # noqa: E402
    CycleAnchor,
    Employee,
    HistoryEvent,
    Holiday,
    PermanentRequest,
    StoreSettings,
    TimeOffRequest,
    WeeklySchedule,
)
from policy import build_default_policy, validation_settings  # noqa: E402
from roles import REGISTER_ROLES  # noqa: E402

WEEK = datetime.date(2024, 4, 1)
MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY, SUNDAY = (
    WEEK + datetime.timedelta(days=offset) for offset in range(7)
)


def _status(date_value, settings=None, time_off=(), permanent=()):
    return resolve_day_status("e1", date_value, WEEK, settings or StoreSettings("1"), time_off, permanent)


def test_precedence_sick_leave_beats_holiday_and_day_off():
    settings = StoreSettings("1", holidays=[Holiday(MONDAY, "full")])
    time_off = [
        TimeOffRequest("e1", "day_off", dates=[MONDAY]),
        TimeOffRequest("e1", "vacation", dates=[MONDAY]),
        TimeOffRequest("e1", "sick_leave", dates=[MONDAY]),
    ]
    assert _status(MONDAY, settings, time_off) == "sick_leave"
    assert _status(MONDAY, settings, time_off[:2]) == "vacation"
    assert _status(MONDAY, settings, time_off[:1]) == "holiday"
    assert _status(MONDAY, None, time_off[:1]) == "off"


def test_afternoon_closure_keeps_day_available():
    settings = StoreSettings("1", holidays=[Holiday(WEDNESDAY, "afternoon")])
    assert _status(WEDNESDAY, settings) == AVAILABLE


def test_sunday_is_off_unless_store_opens():
    assert _status(SUNDAY) == "off"
    assert _status(SUNDAY, StoreSettings("1", open_sundays=[SUNDAY])) == AVAILABLE


def test_specific_days_off_uses_sunday_based_numbering():
    permanent = [PermanentRequest("e1", "specific_days_off", days=[1, 5])]
    week = resolve_week_status("e1", WEEK, StoreSettings("1"), [], permanent)
    assert week[MONDAY] == "off"
    assert week[FRIDAY] == "off"
    assert week[TUESDAY] == AVAILABLE


def test_excepted_week_skips_permanent_request():
    permanent = [PermanentRequest("e1", "specific_days_off", days=[1], exceptions=[WEEK])]
    assert _status(MONDAY, permanent=permanent) == AVAILABLE
    next_week = WEEK + datetime.timedelta(days=7)
    assert (
        resolve_day_status("e1", next_week, next_week, StoreSettings("1"), [], permanent) == "off"
    )


def test_rotating_days_off_follow_cycle_index():
    permanent = [
        PermanentRequest(
            "e1",
            "rotating_days_off",
            cycle_weeks=[[2], [3, 4]],
            reference_date=datetime.date(2024, 3, 25),
        )
    ]
    week = resolve_week_status("e1", WEEK, StoreSettings("1"), [], permanent)
    assert week[WEDNESDAY] == "off"
    assert week[THURSDAY] == "off"
    assert week[TUESDAY] == AVAILABLE


def test_rotating_request_does_not_apply_before_reference_week():
    req = PermanentRequest(
        "e1", "rotating_days_off", cycle_weeks=[[2]], reference_date=datetime.date(2024, 4, 8)
    )
    assert req.rotating_days_off(WEEK) == set()
    assert _status(TUESDAY, permanent=[req]) == AVAILABLE


def test_fixed_rotating_shift_walks_monday_to_saturday():
    req = PermanentRequest(
        "e1", "fixed_rotating_shift", value=5, reference_date=datetime.date(2024, 3, 25)
    )
    # One week elapsed from Friday moves the day off to Saturday, then wraps to Monday.
    assert req.fixed_rotating_day(WEEK) == 6
    assert req.fixed_rotating_day(WEEK + datetime.timedelta(days=7)) == 1
    assert _status(SATURDAY, permanent=[req]) == "off"


def test_cycle_anchor_floors_partial_weeks():
    anchor = CycleAnchor(datetime.date(2024, 3, 20), 3)
    assert anchor.weeks_elapsed(WEEK) == 1
    assert anchor.index(WEEK + datetime.timedelta(days=14)) == 0
    assert anchor.weeks_elapsed(datetime.date(2024, 3, 18)) is None


def test_history_controls_eligibility():
    terminated = Employee(
        "e1", "1", 20, history=[HistoryEvent("2023-01-10", "hired"), HistoryEvent("2024-03-01", "terminated")]
    )
    rehired_midweek = Employee(
        "e2", "1", 20, history=[HistoryEvent("2024-03-01", "terminated"), HistoryEvent("2024-04-03", "rehired")]
    )
    imported = Employee("e3", "1", 20, history=[HistoryEvent("2024-06-01", "terminated")])
    inactive = Employee("e4", "1", 20, active=False)
    assert not terminated.is_employed_during(WEEK)
    assert rehired_midweek.is_employed_during(WEEK)
    assert imported.is_employed_during(WEEK)
    assert not inactive.is_employed_during(WEEK)


def test_constraints_collect_requests_and_partial_days():
    employee = Employee("e1", "1", 24)
    permanent = [
        PermanentRequest("e1", "morning_only", days=[1, 2]),
        PermanentRequest("e1", "max_afternoons_per_week"),
        PermanentRequest("e1", "early_morning_shift"),
    ]
    time_off = [
        TimeOffRequest("e1", "afternoon_off", dates=[THURSDAY]),
        TimeOffRequest("e1", "early_morning_shift", dates=[FRIDAY]),
    ]
    constraints = build_constraints(employee, WEEK, StoreSettings("1"), time_off, permanent)
    assert constraints.max_afternoons == 3
    assert constraints.early_morning
    assert constraints.slots_needed == 5
    assert constraints.morning_only_on(MONDAY)
    assert not constraints.can_work(MONDAY, "afternoon")
    assert constraints.blocked_by_scope(WEDNESDAY)
    assert not constraints.can_work(WEDNESDAY, "morning")
    assert constraints.afternoon_off_dates == {THURSDAY}
    assert constraints.early_morning_dates == {FRIDAY}


def test_duplicate_requests_last_wins_with_warning(caplog):
    employee = Employee("e1", "1", 24)
    permanent = [
        PermanentRequest("e1", "max_afternoons_per_week", value=1),
        PermanentRequest("e1", "max_afternoons_per_week", value=2),
    ]
    with caplog.at_level(logging.WARNING, logger="constraints"):
        constraints = build_constraints(employee, WEEK, StoreSettings("1"), [], permanent)
    assert constraints.max_afternoons == 2
    assert "more than one 'max_afternoons_per_week'" in caplog.text


def test_constraints_default_to_unlimited_afternoons():
    constraints = build_constraints(Employee("e1", "1", 16), WEEK, StoreSettings("1"), [], [])
    assert constraints.max_afternoons == UNLIMITED_AFTERNOONS
    assert not constraints.high_hours


def test_partial_request_blocks_whole_day_for_full_time_staff():
    time_off = [TimeOffRequest("e1", "morning_off", dates=[MONDAY])]
    settings = StoreSettings("1")
    full_time = resolve_day_status("e1", MONDAY, WEEK, settings, time_off, [], nominal_hours=40)
    part_time = resolve_day_status("e1", MONDAY, WEEK, settings, time_off, [], nominal_hours=36)
    assert full_time == "off"
    assert part_time == AVAILABLE
    assert _status(MONDAY, time_off=time_off) == AVAILABLE


def test_full_time_threshold_follows_policy():
    policy = build_default_policy()
    policy["generator"]["high_hours_threshold"] = 36
    settings = StoreSettings("1", policy=policy)
    time_off = [TimeOffRequest("e1", "afternoon_off", dates=[TUESDAY])]
    week = resolve_week_status("e1", WEEK, settings, time_off, [], nominal_hours=36)
    assert week[TUESDAY] == "off"
    assert week[MONDAY] == AVAILABLE


def test_zero_afternoon_quota_means_default():
    permanent = [PermanentRequest("e1", "max_afternoons_per_week", value=0)]
    constraints = build_constraints(Employee("e1", "1", 24), WEEK, StoreSettings("1"), [], permanent)
    assert constraints.max_afternoons == 3


def test_register_roles_default_from_role_table():
    assert validation_settings(None)["register_roles"] == list(REGISTER_ROLES)


def test_weekly_schedule_rejects_unknown_statuses():
    with pytest.raises(ValueError):
        WeeklySchedule("1", WEEK, approval_status="bogus")
    with pytest.raises(ValueError):
        WeeklySchedule("1", WEEK, modification_status="maybe")
    assert WeeklySchedule("1", WEEK).approval_status == "draft"
