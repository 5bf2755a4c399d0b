from __future__ import annotations

import datetime
from typing import Any, Dict, Iterable, List, Optional

from availability import active_requests
from database import get_week, load_employees, load_permanent_requests, load_time_off_requests, week_to_schedule
from models import (
    DAY_NAMES,
    Employee,
    PermanentRequest,
    Shift,
    StoreSettings,
    TimeOffRequest,
    WeeklySchedule,
    day_label,
    day_number,
    normalize_week_start,
)
from policy import load_store_settings, validation_settings
from roles import role_label

VALIDATION_MODES = ("warning", "publish")
SHIFT_LABELS = {"morning": "morning", "afternoon": "afternoon", "split": "split"}
REQUEST_LABELS = {
    "day_off": "a day off",
    "morning_off": "the morning off",
    "afternoon_off": "the afternoon off",
    "vacation": "vacation",
    "sick_leave": "sick leave",
    "maternity_paternity": "maternity/paternity leave",
}


def _issue(
    issue_type: str,
    message: str,
    *,
    severity: str = "error",
    employee_id: Optional[str] = None,
    date_value: Optional[datetime.date] = None,
) -> Dict[str, Any]:
    return {
        "type": issue_type,
        "severity": severity,
        "employee_id": employee_id,
        "date": date_value.isoformat() if date_value else None,
        "message": message,
    }


def _period_restriction_issues(req: PermanentRequest, name: str, shifts: List[Shift]) -> List[Dict[str, Any]]:
    label = "morning-only" if req.type == "morning_only" else "afternoon-only"
    forbidden = ("afternoon", "split") if req.type == "morning_only" else ("morning", "split")
    issues = []
    for shift in shifts:
        if not shift.is_working:
            continue
        if req.applies_to_day(shift.date):
            if shift.type in forbidden:
                issues.append(
                    _issue(
                        req.type,
                        f"Restriction violated: {name} is {label} on {day_label(shift.date)} "
                        f"but has a {SHIFT_LABELS[shift.type]} shift.",
                        employee_id=req.employee_id,
                        date_value=shift.date,
                    )
                )
        else:
            issues.append(
                _issue(
                    "outside_restricted_days",
                    f"Restriction violated (days): {name} works on {day_label(shift.date)}, "
                    f"outside the days defined for {label}.",
                    employee_id=req.employee_id,
                    date_value=shift.date,
                )
            )
    return issues


def _scheduled_on_weekday(shifts: List[Shift], weekday: int) -> Optional[Shift]:
    for shift in shifts:
        if day_number(shift.date) == weekday and shift.is_working:
            return shift
    return None


def permanent_restriction_issues(
    schedule: WeeklySchedule,
    employees: Dict[str, Employee],
    permanent_requests: Iterable[PermanentRequest],
    settings: StoreSettings,
    *,
    ignore_exceptions: bool = False,
) -> List[Dict[str, Any]]:
    week_start = schedule.week_start_date
    default_quota = validation_settings(settings.policy)["default_max_afternoons"]
    issues: List[Dict[str, Any]] = []
    for req in active_requests(permanent_requests, week_start, ignore_exceptions=ignore_exceptions):
        employee = employees.get(req.employee_id)
        if employee is None:
            continue
        name = employee.name
        shifts = schedule.shifts_for(req.employee_id)

        if req.type == "specific_days_off":
            for weekday in req.days:
                shift = _scheduled_on_weekday(shifts, weekday)
                if shift:
                    issues.append(
                        _issue(
                            "specific_days_off",
                            f"Restriction violated: {name} has a fixed day off on {DAY_NAMES[weekday]} "
                            f"but is scheduled ({SHIFT_LABELS[shift.type]}).",
                            employee_id=req.employee_id,
                            date_value=shift.date,
                        )
                    )
        elif req.type in ("morning_only", "afternoon_only"):
            issues.extend(_period_restriction_issues(req, name, shifts))
        elif req.type == "max_afternoons_per_week":
            quota = int(req.value) if req.value else default_quota
            count = sum(1 for shift in shifts if shift.covers_afternoon)
            if count > quota:
                issues.append(
                    _issue(
                        "max_afternoons_per_week",
                        f"Restriction violated: {name} exceeds the maximum of {quota} afternoons "
                        f"({count} assigned).",
                        employee_id=req.employee_id,
                    )
                )
        elif req.type == "rotating_days_off":
            anchor = req.anchor
            index = anchor.index(week_start) if anchor else None
            for weekday in sorted(req.rotating_days_off(week_start)):
                shift = _scheduled_on_weekday(shifts, weekday)
                if shift:
                    issues.append(
                        _issue(
                            "rotating_days_off",
                            f"Restriction violated (rotating): {name} must be off on {DAY_NAMES[weekday]} "
                            f"this week (week {index + 1} of the cycle) but is scheduled.",
                            employee_id=req.employee_id,
                            date_value=shift.date,
                        )
                    )
        elif req.type == "fixed_rotating_shift":
            weekday = req.fixed_rotating_day(week_start)
            shift = _scheduled_on_weekday(shifts, weekday) if weekday is not None else None
            if shift:
                issues.append(
                    _issue(
                        "fixed_rotating_shift",
                        f"Restriction violated (fixed rotation): {name} must be off on "
                        f"{DAY_NAMES[weekday]} this week but is scheduled.",
                        employee_id=req.employee_id,
                        date_value=shift.date,
                    )
                )
        elif req.type == "no_split":
            for shift in shifts:
                if shift.type == "split":
                    issues.append(
                        _issue(
                            "no_split",
                            f"Restriction violated: {name} does not work split shifts but has one on "
                            f"{day_label(shift.date)}.",
                            employee_id=req.employee_id,
                            date_value=shift.date,
                        )
                    )
    return issues


def request_issues(
    schedule: WeeklySchedule,
    employees: Dict[str, Employee],
    time_off_requests: Iterable[TimeOffRequest],
) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    for req in time_off_requests:
        employee = employees.get(req.employee_id)
        if employee is None or not req.approved or req.type not in REQUEST_LABELS:
            continue
        for date_value in schedule.dates:
            if not req.covers(date_value):
                continue
            shift = schedule.shift_on(req.employee_id, date_value)
            if shift is None or not shift.is_working:
                continue
            if req.type == "morning_off" and not shift.covers_morning:
                continue
            if req.type == "afternoon_off" and not shift.covers_afternoon:
                continue
            issues.append(
                _issue(
                    "request_violation",
                    f"Request violated: {employee.name} asked for {REQUEST_LABELS[req.type]} on "
                    f"{day_label(date_value)} but is scheduled ({SHIFT_LABELS[shift.type]}).",
                    employee_id=req.employee_id,
                    date_value=date_value,
                )
            )
    return issues


def register_coverage_issues(schedule: WeeklySchedule, settings: StoreSettings) -> List[Dict[str, Any]]:
    roles = validation_settings(settings.policy)["register_roles"]
    issues: List[Dict[str, Any]] = []
    for date_value in schedule.dates:
        if not settings.is_trading_day(date_value):
            continue
        working = [shift for shift in schedule.shifts_on(date_value) if shift.is_working]
        periods = ["morning"]
        if not settings.is_afternoon_closed(date_value):
            periods.append("afternoon")
        for period in periods:
            for role in roles:
                covered = any(
                    shift.role == role
                    and (shift.covers_morning if period == "morning" else shift.covers_afternoon)
                    for shift in working
                )
                if not covered:
                    issues.append(
                        _issue(
                            "register_coverage",
                            f"Missing {role_label(role) or role} coverage ({period}) on {day_label(date_value)}.",
                            date_value=date_value,
                        )
                    )
    return issues


def daily_coverage_issues(schedule: WeeklySchedule, settings: StoreSettings, mode: str) -> List[Dict[str, Any]]:
    cfg = validation_settings(settings.policy)
    issues: List[Dict[str, Any]] = []
    for date_value in schedule.dates:
        if not settings.is_trading_day(date_value):
            continue
        day_shifts = schedule.shifts_on(date_value)
        covered_periods = sum(
            int(shift.covers_morning) + int(shift.covers_afternoon) for shift in day_shifts
        )
        planned = covered_periods * cfg["period_hours"]
        threshold = cfg["afternoon_closed_threshold"] if settings.is_afternoon_closed(date_value) else cfg["daily_hours_threshold"]
        if planned < threshold:
            issues.append(
                _issue(
                    "low_coverage",
                    f"Low coverage: {day_label(date_value)} only has {planned}h planned "
                    f"(recommended minimum {threshold}h).",
                    severity="warning",
                    date_value=date_value,
                )
            )
        if mode == "publish":
            if not any(shift.is_opening for shift in day_shifts):
                issues.append(
                    _issue(
                        "missing_opening",
                        f"Missing opening shift on {day_label(date_value)}.",
                        severity="warning",
                        date_value=date_value,
                    )
                )
            if not any(shift.is_closing for shift in day_shifts):
                issues.append(
                    _issue(
                        "missing_closing",
                        f"Missing closing shift on {day_label(date_value)}.",
                        severity="warning",
                        date_value=date_value,
                    )
                )
    return issues


def validate_schedule(
    schedule: WeeklySchedule,
    employees: Iterable[Employee],
    settings: StoreSettings,
    time_off_requests: Iterable[TimeOffRequest] = (),
    permanent_requests: Iterable[PermanentRequest] = (),
    mode: str = "publish",
    *,
    ignore_exceptions: bool = False,
) -> Dict[str, Any]:
    """Check a generated or hand-edited schedule. Never mutates ``schedule``."""
    if mode not in VALIDATION_MODES:
        raise ValueError(f"Unsupported validation mode '{mode}'.")
    roster = {emp.id: emp for emp in employees}
    issues = permanent_restriction_issues(
        schedule, roster, permanent_requests, settings, ignore_exceptions=ignore_exceptions
    )
    issues.extend(request_issues(schedule, roster, time_off_requests))
    if mode == "publish":
        issues.extend(register_coverage_issues(schedule, settings))
    issues.extend(daily_coverage_issues(schedule, settings, mode))
    return {
        "week_start": schedule.week_start_date.isoformat(),
        "mode": mode,
        "violations": [issue["message"] for issue in issues if issue["severity"] == "error"],
        "warnings": [issue["message"] for issue in issues if issue["severity"] == "warning"],
        "issues": issues,
    }


def validate_week_schedule(
    session, establishment_id: str, week_start: datetime.date, *, mode: str = "publish"
) -> Dict[str, Any]:
    """Return validation findings for the stored schedule of one store and week."""
    normalized_start = normalize_week_start(week_start)
    week = get_week(session, establishment_id, normalized_start)
    if week is None:
        message = "No schedule exists for the requested week."
        return {
            "week_start": normalized_start.isoformat(),
            "mode": mode,
            "violations": [message],
            "warnings": [],
            "issues": [_issue("missing_schedule", message)],
        }
    employees = load_employees(session, establishment_id)
    employee_ids = [emp.id for emp in employees]
    report = validate_schedule(
        week_to_schedule(week),
        employees,
        load_store_settings(session, establishment_id),
        load_time_off_requests(session, employee_ids),
        load_permanent_requests(session, employee_ids),
        mode,
    )
    report["week_id"] = week.id
    return report
