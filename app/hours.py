from __future__ import annotations

import datetime
import math
from typing import Dict, Iterable, List, Optional

from models import ABSENCE_TYPES, Employee, Shift, StoreSettings, TimeOffRequest, week_dates
from policy import generator_settings, hours_settings, parse_time_label


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (2.5 -> 3), unlike ``round``."""
    return int(math.floor(value + 0.5))


def round_tenth(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def target_hours(nominal: float, reduction_days: float, policy: Optional[Dict] = None) -> float:
    """Effective weekly target after holidays and absences shrink the contract."""
    if reduction_days <= 0:
        return nominal
    cfg = hours_settings(policy)
    if reduction_days >= cfg["full_reduction_days"]:
        return 0
    key = str(int(nominal)) if float(nominal).is_integer() else str(nominal)
    row = cfg["reduction_table"].get(key)
    if row:
        for column, value in zip(cfg["reduction_columns"], row):
            if reduction_days == column:
                return value
    # TODO: confirm the proportional fallback for 2.5/4/4.5 days against payroll rules.
    return max(0, round_half_up(nominal - nominal / 5 * reduction_days))


def is_absent(employee_id: str, date_value: datetime.date, time_off: Iterable[TimeOffRequest]) -> bool:
    return any(
        req.employee_id == employee_id and req.approved and req.type in ABSENCE_TYPES and req.covers(date_value)
        for req in time_off
    )


def reduction_days(
    employee: Employee,
    week_start: datetime.date,
    settings: StoreSettings,
    time_off: Iterable[TimeOffRequest],
) -> float:
    nominal = employee.hours_for_week(week_start)
    requests = [req for req in time_off if req.employee_id == employee.id]
    total = 0.0
    for date_value in week_dates(week_start):
        if settings.is_full_holiday(date_value) or is_absent(employee.id, date_value, requests):
            total += 1
        elif settings.is_afternoon_closed(date_value) and nominal == 40:
            total += 0.5
    return total


def employee_target_hours(
    employee: Employee,
    week_start: datetime.date,
    settings: StoreSettings,
    time_off: Iterable[TimeOffRequest],
) -> float:
    nominal = employee.hours_for_week(week_start)
    return target_hours(nominal, reduction_days(employee, week_start, settings, time_off), settings.policy)


def slots_needed(target: float, early_morning: bool, policy: Optional[Dict] = None) -> int:
    cfg = generator_settings(policy)
    slots = round_half_up(target / cfg["slot_hours"])
    if early_morning and target >= cfg["early_morning"]["min_target_hours"]:
        slots -= 1
    return max(0, slots)


def _span_hours(start: Optional[str], end: Optional[str]) -> Optional[float]:
    start_minutes = parse_time_label(start)
    end_minutes = parse_time_label(end)
    if start_minutes is None or end_minutes is None:
        return None
    return (end_minutes - start_minutes) / 60


def shift_hours(shift: Shift, policy: Optional[Dict] = None) -> float:
    cfg = hours_settings(policy)
    if shift.type in ("morning", "afternoon"):
        span = _span_hours(shift.start_time, shift.end_time)
        return cfg["default_single_hours"] if span is None else span
    if shift.type == "split":
        morning = _span_hours(shift.start_time, shift.morning_end_time)
        afternoon = _span_hours(shift.afternoon_start_time, shift.end_time)
        if morning is None or afternoon is None:
            return cfg["default_split_hours"]
        return morning + afternoon
    return 0.0


def worked_hours(shifts: List[Shift], policy: Optional[Dict] = None) -> float:
    return sum(shift_hours(shift, policy) for shift in shifts)
