from __future__ import annotations

import dataclasses
import datetime
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from .engine import ScheduleGenerator, eligible_employees
from database import (
    ScheduleLockedError,
    get_week,
    is_editable,
    load_employees,
    load_permanent_requests,
    load_time_off_requests,
    record_audit_log,
    save_schedule,
)
from models import (
    Employee,
    Holiday,
    PermanentRequest,
    StoreSettings,
    TimeOffRequest,
    WeeklySchedule,
    normalize_week_start,
)
from policy import build_store_settings, load_store_settings
from validation import validate_week_schedule

log = logging.getLogger(__name__)


class ScheduleExistsError(ValueError):
    pass


class NoEligibleEmployeesError(ValueError):
    pass


def _coerce_holidays(holidays: Iterable[Any]) -> List[Holiday]:
    result = []
    for entry in holidays:
        if isinstance(entry, Holiday):
            result.append(entry)
        elif isinstance(entry, dict):
            result.append(Holiday(entry["date"], entry.get("type") or "full"))
        else:
            result.append(Holiday(entry, "full"))
    return result


def _merge_holidays(settings: StoreSettings, holidays: Optional[Iterable[Any]]) -> StoreSettings:
    if holidays is None:
        return settings
    extra = _coerce_holidays(holidays)
    overridden = {holiday.date for holiday in extra}
    merged = [holiday for holiday in settings.holidays if holiday.date not in overridden] + extra
    return dataclasses.replace(settings, holidays=merged)


def generate_schedule(
    establishment_id: str,
    employees: Iterable[Employee],
    week_start_date: datetime.date,
    holidays: Optional[Iterable[Any]] = None,
    time_off_requests: Optional[Iterable[TimeOffRequest]] = None,
    settings: Optional[StoreSettings] = None,
    permanent_requests: Optional[Iterable[PermanentRequest]] = None,
    *,
    policy: Optional[Dict] = None,
) -> WeeklySchedule:
    """Build a draft schedule from plain data. Performs no I/O."""
    if week_start_date is None:
        raise ValueError("week_start_date is required.")
    if settings is None:
        settings = build_store_settings(establishment_id)
    settings = _merge_holidays(settings, holidays)
    engine = ScheduleGenerator(policy if policy is not None else settings.policy)
    return engine.generate(
        establishment_id,
        employees,
        week_start_date,
        settings,
        time_off_requests or [],
        permanent_requests or [],
    )


def generate_schedule_for_week(
    session_factory: Callable,
    establishment_id: str,
    week_start_date: datetime.date,
    actor: str,
    *,
    force: bool = False,
) -> Dict[str, Any]:
    """Generate, persist and validate the schedule of one store and week."""
    if week_start_date is None:
        raise ValueError("week_start_date is required.")
    week_start = normalize_week_start(week_start_date)
    with session_factory() as session:
        existing = get_week(session, establishment_id, week_start)
        if existing is not None:
            if not force:
                raise ScheduleExistsError(
                    f"A schedule already exists for store {establishment_id} and week {week_start}."
                )
            if not is_editable(existing):
                raise ScheduleLockedError(
                    f"Schedule {existing.id} is {existing.approval_status} and cannot be regenerated."
                )
        employees = load_employees(session, establishment_id)
        roster = eligible_employees(employees, establishment_id, week_start)
        if not roster:
            raise NoEligibleEmployeesError(
                f"No eligible employees for store {establishment_id} in week {week_start}."
            )
        employee_ids = [emp.id for emp in roster]
        settings = load_store_settings(session, establishment_id)
        schedule = generate_schedule(
            establishment_id,
            roster,
            week_start,
            time_off_requests=load_time_off_requests(session, employee_ids),
            settings=settings,
            permanent_requests=load_permanent_requests(session, employee_ids),
        )
        week = save_schedule(session, schedule)
        log.info(
            "Generated schedule %s for store %s week %s (%d shifts, replaced=%s)",
            week.id,
            establishment_id,
            week_start,
            len(week.shifts),
            existing is not None,
        )
        record_audit_log(
            session,
            actor or "system",
            "schedule_generate",
            target_id=week.id,
            payload={
                "establishment_id": str(establishment_id),
                "week_start": week_start.isoformat(),
                "employees": len(roster),
                "forced": bool(force),
            },
        )
        validation_report = validate_week_schedule(session, establishment_id, week_start, mode="warning")
        return {
            "week_id": week.id,
            "establishment_id": str(establishment_id),
            "week_start": week_start.isoformat(),
            "employees": len(roster),
            "shifts_created": len(week.shifts),
            "replaced": existing is not None,
            "validation": validation_report,
        }
