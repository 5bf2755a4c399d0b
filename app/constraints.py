from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from availability import AVAILABLE, active_requests, resolve_week_status
from hours import employee_target_hours, reduction_days, slots_needed
from models import Employee, PermanentRequest, StoreSettings, TimeOffRequest, week_dates
from policy import generator_settings, validation_settings

log = logging.getLogger(__name__)

UNLIMITED_AFTERNOONS = 99


@dataclass
class EmployeeConstraints:
    """Per-week, per-day predicates for one employee."""

    employee: Employee
    week_start: datetime.date
    settings: StoreSettings
    nominal_hours: float
    reduction_days: float
    target_hours: float
    slots_needed: int
    day_status: Dict[datetime.date, str]
    morning_only: Optional[PermanentRequest] = None
    afternoon_only: Optional[PermanentRequest] = None
    max_afternoons: int = UNLIMITED_AFTERNOONS
    force_full_days: bool = False
    no_split: bool = False
    early_morning: bool = False
    morning_off_dates: Set[datetime.date] = field(default_factory=set)
    afternoon_off_dates: Set[datetime.date] = field(default_factory=set)
    early_morning_dates: Set[datetime.date] = field(default_factory=set)

    @property
    def available_dates(self) -> List[datetime.date]:
        return [d for d in week_dates(self.week_start) if self.day_status[d] == AVAILABLE]

    @property
    def has_period_restriction(self) -> bool:
        return self.morning_only is not None or self.afternoon_only is not None

    def morning_only_on(self, date_value: datetime.date) -> bool:
        return self.morning_only is not None and self.morning_only.applies_to_day(date_value)

    def afternoon_only_on(self, date_value: datetime.date) -> bool:
        return self.afternoon_only is not None and self.afternoon_only.applies_to_day(date_value)

    def restricted_on(self, date_value: datetime.date) -> bool:
        return self.morning_only_on(date_value) or self.afternoon_only_on(date_value)

    def blocked_by_scope(self, date_value: datetime.date) -> bool:
        """A day-scoped period restriction forbids work on every other day."""
        for req in (self.morning_only, self.afternoon_only):
            if req is not None and req.days and not req.applies_to_day(date_value):
                return True
        return False

    def partially_off(self, date_value: datetime.date) -> bool:
        return date_value in self.morning_off_dates or date_value in self.afternoon_off_dates

    def can_work(self, date_value: datetime.date, period: str) -> bool:
        if self.day_status.get(date_value) != AVAILABLE or self.blocked_by_scope(date_value):
            return False
        if period == "morning":
            return date_value not in self.morning_off_dates and not self.afternoon_only_on(date_value)
        return (
            date_value not in self.afternoon_off_dates
            and not self.morning_only_on(date_value)
            and not self.settings.is_afternoon_closed(date_value)
        )

    def can_split(self, date_value: datetime.date) -> bool:
        if self.no_split:
            return False
        return self.can_work(date_value, "morning") and self.can_work(date_value, "afternoon")

    @property
    def high_hours(self) -> bool:
        threshold = generator_settings(self.settings.policy)["high_hours_threshold"]
        return self.nominal_hours >= threshold or self.force_full_days


def _latest_by_type(employee: Employee, requests: Iterable[PermanentRequest]) -> Dict[str, PermanentRequest]:
    latest: Dict[str, PermanentRequest] = {}
    for req in requests:
        if req.type in latest and req.type not in ("specific_days_off", "rotating_days_off"):
            log.warning(
                "Employee %s has more than one '%s' request; using the last one.",
                employee.id,
                req.type,
            )
        latest[req.type] = req
    return latest


def build_constraints(
    employee: Employee,
    week_start: datetime.date,
    settings: StoreSettings,
    time_off: Iterable[TimeOffRequest],
    permanent_requests: Iterable[PermanentRequest],
) -> EmployeeConstraints:
    time_off = [req for req in time_off if req.employee_id == employee.id and req.approved]
    own_requests = active_requests(
        [req for req in permanent_requests if req.employee_id == employee.id], week_start
    )
    latest = _latest_by_type(employee, own_requests)
    nominal = employee.hours_for_week(week_start)
    target = employee_target_hours(employee, week_start, settings, time_off)
    early_morning = "early_morning_shift" in latest

    max_afternoons = UNLIMITED_AFTERNOONS
    if "max_afternoons_per_week" in latest:
        value = latest["max_afternoons_per_week"].value
        if not value:
            value = validation_settings(settings.policy)["default_max_afternoons"]
        max_afternoons = int(value)

    morning_off: Set[datetime.date] = set()
    afternoon_off: Set[datetime.date] = set()
    early_dates: Set[datetime.date] = set()
    for date_value in week_dates(week_start):
        for req in time_off:
            if not req.covers(date_value):
                continue
            if req.type == "morning_off":
                morning_off.add(date_value)
            elif req.type == "afternoon_off":
                afternoon_off.add(date_value)
            elif req.type == "early_morning_shift":
                early_dates.add(date_value)

    return EmployeeConstraints(
        employee=employee,
        week_start=week_start,
        settings=settings,
        nominal_hours=nominal,
        reduction_days=reduction_days(employee, week_start, settings, time_off),
        target_hours=target,
        slots_needed=slots_needed(target, early_morning, settings.policy),
        day_status=resolve_week_status(
            employee.id, week_start, settings, time_off, own_requests, nominal_hours=nominal
        ),
        morning_only=latest.get("morning_only"),
        afternoon_only=latest.get("afternoon_only"),
        max_afternoons=max_afternoons,
        force_full_days="force_full_days" in latest,
        no_split="no_split" in latest,
        early_morning=early_morning,
        morning_off_dates=morning_off,
        afternoon_off_dates=afternoon_off,
        early_morning_dates=early_dates,
    )
