from __future__ import annotations

import dataclasses
from typing import Iterable, List, Optional

from hours import employee_target_hours, round_tenth, worked_hours
from models import (
    Employee,
    Holiday,
    HoursDebtAdjustment,
    Shift,
    StoreSettings,
    TimeOffRequest,
    WeeklySchedule,
)


def is_full_absence(shifts: Iterable[Shift]) -> bool:
    """True when every non-off, non-holiday shift of the week is vacation or sick leave."""
    relevant = [shift for shift in shifts if shift.type not in ("off", "holiday")]
    return bool(relevant) and all(shift.type in ("vacation", "sick_leave") for shift in relevant)


def reconcile_hours(
    schedule: WeeklySchedule,
    employees: Iterable[Employee],
    settings: StoreSettings,
    time_off_requests: Iterable[TimeOffRequest] = (),
    holidays: Optional[Iterable[Holiday]] = None,
) -> List[HoursDebtAdjustment]:
    """Turn a finalized schedule into signed hour-debt adjustments."""
    if holidays is not None:
        settings = dataclasses.replace(settings, holidays=list(holidays))
    time_off = list(time_off_requests)
    week_start = schedule.week_start_date
    reason = f"Schedule week of {week_start.isoformat()}"
    adjustments: List[HoursDebtAdjustment] = []
    for employee in employees:
        if employee.establishment_id != schedule.establishment_id:
            continue
        if not employee.is_employed_during(week_start):
            continue
        shifts = schedule.shifts_for(employee.id)
        worked = worked_hours(shifts, settings.policy)
        target = employee_target_hours(employee, week_start, settings, time_off)
        diff = round_tenth(worked - target)
        if is_full_absence(shifts):
            diff = 0
        if diff == 0:
            continue
        adjustments.append(
            HoursDebtAdjustment(
                employee_id=employee.id,
                amount=diff,
                schedule_id=str(schedule.id),
                worked_hours=round_tenth(worked),
                target_hours=target,
                employee_name=employee.name,
                reason=reason,
            )
        )
    return adjustments


def describe_adjustment(adjustment: HoursDebtAdjustment) -> str:
    if adjustment.amount > 0:
        return f"{adjustment.employee_name}: has {adjustment.amount:.1f}h extra (added to the hours balance)."
    return f"{adjustment.employee_name}: is {abs(adjustment.amount):.1f}h short (deducted from the hours balance)."
