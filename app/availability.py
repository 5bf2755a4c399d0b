from __future__ import annotations

import datetime
from typing import Dict, Iterable, List, Optional, Set

from models import PermanentRequest, StoreSettings, TimeOffRequest, day_number, week_dates
from policy import generator_settings

AVAILABLE = "available"


def time_off_types_on(
    employee_id: str,
    date_value: datetime.date,
    time_off: Iterable[TimeOffRequest],
) -> Set[str]:
    """Approved time-off types covering ``date_value`` for one employee."""
    return {
        req.type
        for req in time_off
        if req.employee_id == employee_id and req.approved and req.covers(date_value)
    }


def active_requests(
    requests: Iterable[PermanentRequest],
    week_start: datetime.date,
    *,
    ignore_exceptions: bool = False,
) -> List[PermanentRequest]:
    """Drop requests suspended for this week."""
    return [req for req in requests if ignore_exceptions or not req.is_excepted(week_start)]


def permanent_day_off(
    requests: Iterable[PermanentRequest],
    date_value: datetime.date,
    week_start: datetime.date,
) -> Optional[PermanentRequest]:
    """Return the request forcing ``date_value`` off, trying static, rotating then fixed rotating."""
    requests = list(requests)
    weekday = day_number(date_value)
    for req in requests:
        if req.type == "specific_days_off" and weekday in req.days:
            return req
    for req in requests:
        if req.type == "rotating_days_off" and weekday in req.rotating_days_off(week_start):
            return req
    for req in requests:
        if req.type == "fixed_rotating_shift" and req.fixed_rotating_day(week_start) == weekday:
            return req
    return None


def resolve_day_status(
    employee_id: str,
    date_value: datetime.date,
    week_start: datetime.date,
    settings: StoreSettings,
    time_off: Iterable[TimeOffRequest],
    permanent_requests: Iterable[PermanentRequest],
    nominal_hours: Optional[float] = None,
) -> str:
    """Classify one employee-day; the first matching rule wins.

    Full-time staff (``nominal_hours`` at or above the high-hours threshold)
    cannot work half of a day they asked a morning or afternoon off for.
    """
    employee_id = str(employee_id)
    types = time_off_types_on(employee_id, date_value, time_off)
    if "sick_leave" in types:
        return "sick_leave"
    if "maternity_paternity" in types:
        return "maternity_paternity"
    if "vacation" in types:
        return "vacation"
    if settings.is_full_holiday(date_value):
        return "holiday"
    if "day_off" in types:
        return "off"
    if nominal_hours is not None and types & {"morning_off", "afternoon_off"}:
        if nominal_hours >= generator_settings(settings.policy)["high_hours_threshold"]:
            return "off"
    own_requests = active_requests(
        (req for req in permanent_requests if req.employee_id == employee_id), week_start
    )
    if permanent_day_off(own_requests, date_value, week_start):
        return "off"
    if date_value.weekday() == 6 and not settings.is_open_sunday(date_value):
        return "off"
    return AVAILABLE


def resolve_week_status(
    employee_id: str,
    week_start: datetime.date,
    settings: StoreSettings,
    time_off: Iterable[TimeOffRequest],
    permanent_requests: Iterable[PermanentRequest],
    nominal_hours: Optional[float] = None,
) -> Dict[datetime.date, str]:
    time_off = list(time_off)
    permanent_requests = list(permanent_requests)
    return {
        date_value: resolve_day_status(
            employee_id, date_value, week_start, settings, time_off, permanent_requests, nominal_hours
        )
        for date_value in week_dates(week_start)
    }
