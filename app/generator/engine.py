from __future__ import annotations

import dataclasses
import datetime
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from availability import AVAILABLE
from constraints import EmployeeConstraints, build_constraints
from hours import round_half_up
from models import (
    Employee,
    PermanentRequest,
    Shift,
    StoreSettings,
    TimeOffRequest,
    WeeklySchedule,
    normalize_week_start,
    week_dates,
)
from policy import generator_settings, normalize_policy

log = logging.getLogger(__name__)

PERIODS = ("morning", "afternoon")
SATURDAY = 5


@dataclass
class DayCoverage:
    morning: int = 0
    afternoon: int = 0
    key_staff: int = 0

    @property
    def total(self) -> int:
        return self.morning + self.afternoon


class CoverageTable:
    """Running per-date counts shared by every employee of one generation run."""

    def __init__(self, dates: Iterable[datetime.date]) -> None:
        self._days: Dict[datetime.date, DayCoverage] = {d: DayCoverage() for d in dates}

    def __getitem__(self, date_value: datetime.date) -> DayCoverage:
        return self._days[date_value]

    def load(self, date_value: datetime.date, period: str) -> int:
        return getattr(self._days[date_value], period)

    def total(self, date_value: datetime.date) -> int:
        return self._days[date_value].total

    def key_staff(self, date_value: datetime.date) -> int:
        return self._days[date_value].key_staff

    def snapshot(self) -> "CoverageTable":
        clone = CoverageTable([])
        clone._days = {d: dataclasses.replace(day) for d, day in self._days.items()}
        return clone

    def apply(self, allocation: "Allocation") -> None:
        for date_value, delta in allocation.coverage_deltas().items():
            day = self._days[date_value]
            day.morning += delta["morning"]
            day.afternoon += delta["afternoon"]
            day.key_staff += delta["key_staff"]

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        return {
            d.isoformat(): {"morning": c.morning, "afternoon": c.afternoon, "key_staff": c.key_staff}
            for d, c in self._days.items()
        }


@dataclass
class Allocation:
    """Outcome of placing one employee against a coverage snapshot."""

    employee: Employee
    key_role: bool
    slots_needed: int
    slots_remaining: int
    assignments: Dict[datetime.date, str] = field(default_factory=dict)
    rest_days: Set[datetime.date] = field(default_factory=set)
    early_dates: Set[datetime.date] = field(default_factory=set)

    @property
    def afternoons(self) -> int:
        return sum(1 for kind in self.assignments.values() if kind in ("afternoon", "split"))

    def coverage_deltas(self) -> Dict[datetime.date, Dict[str, int]]:
        deltas: Dict[datetime.date, Dict[str, int]] = {}
        for date_value, kind in self.assignments.items():
            deltas[date_value] = {
                "morning": 1 if kind in ("morning", "split") else 0,
                "afternoon": 1 if kind in ("afternoon", "split") else 0,
                "key_staff": 1 if self.key_role else 0,
            }
        return deltas


def processing_order(employees: Iterable[Employee], week_start: datetime.date) -> List[Employee]:
    """Rank descending, then weekly hours descending; input order breaks ties."""
    return sorted(employees, key=lambda emp: (-emp.rank, -emp.hours_for_week(week_start)))


def eligible_employees(
    employees: Iterable[Employee], establishment_id: str, week_start: datetime.date
) -> List[Employee]:
    return [
        emp
        for emp in employees
        if emp.establishment_id == str(establishment_id) and emp.is_employed_during(week_start)
    ]


class ScheduleGenerator:
    """Single-pass greedy allocator for one store and one week."""

    def __init__(self, policy: Optional[Dict] = None) -> None:
        self.policy = normalize_policy(policy)
        self.cfg = generator_settings(self.policy)

    def generate(
        self,
        establishment_id: str,
        employees: Iterable[Employee],
        week_start_date: datetime.date,
        settings: StoreSettings,
        time_off_requests: Iterable[TimeOffRequest] = (),
        permanent_requests: Iterable[PermanentRequest] = (),
    ) -> WeeklySchedule:
        week_start = normalize_week_start(week_start_date)
        dates = week_dates(week_start)
        settings = dataclasses.replace(settings, policy=self.policy)
        time_off = list(time_off_requests)
        permanent = list(permanent_requests)
        roster = processing_order(eligible_employees(employees, establishment_id, week_start), week_start)
        log.debug("Processing order for %s: %s", week_start, [emp.id for emp in roster])

        coverage = CoverageTable(dates)
        shifts: List[Shift] = []
        for position, employee in enumerate(roster):
            constraints = build_constraints(employee, week_start, settings, time_off, permanent)
            allocation = self.allocate(constraints, coverage.snapshot(), position)
            coverage.apply(allocation)
            log.debug(
                "%s: target=%sh slots=%s left=%s assigned=%s",
                employee.id,
                constraints.target_hours,
                allocation.slots_needed,
                allocation.slots_remaining,
                {d.isoformat(): kind for d, kind in sorted(allocation.assignments.items())},
            )
            shifts.extend(self._finalize(constraints, allocation, settings))

        return WeeklySchedule(
            establishment_id=str(establishment_id),
            week_start_date=week_start,
            shifts=shifts,
        )

    def allocate(
        self, constraints: EmployeeConstraints, coverage: CoverageTable, position: int
    ) -> Allocation:
        """Place one employee. ``coverage`` is read, never written."""
        allocation = Allocation(
            employee=constraints.employee,
            key_role=constraints.employee.key_role,
            slots_needed=constraints.slots_needed,
            slots_remaining=constraints.slots_needed,
        )
        if self.cfg.get("mandatory_rest_day"):
            rest_day = self._rest_day(constraints, coverage)
            if rest_day is not None:
                allocation.rest_days.add(rest_day)
                constraints = dataclasses.replace(
                    constraints, day_status={**constraints.day_status, rest_day: "off"}
                )
        saturday_off_turn = self.saturday_off_turn(constraints.week_start, position)
        if constraints.high_hours:
            self._assign_split_days(constraints, coverage, allocation, saturday_off_turn)
        if allocation.slots_remaining > 0:
            self._fill_slots(constraints, coverage, allocation, saturday_off_turn)
        allocation.early_dates = self._early_morning_dates(constraints, allocation)
        return allocation

    def saturday_off_turn(self, week_start: datetime.date, position: int) -> bool:
        week_index = week_start.toordinal() // 7
        return (week_index + position) % self.cfg["saturday_rotation_cycle"] == 0

    def _rest_day(self, constraints: EmployeeConstraints, coverage: CoverageTable) -> Optional[datetime.date]:
        mon_to_sat = week_dates(constraints.week_start)[:6]
        if any(
            constraints.day_status[d] != AVAILABLE or constraints.blocked_by_scope(d) for d in mon_to_sat
        ):
            return None
        key_role = constraints.employee.key_role

        def busiest(d: datetime.date) -> Tuple[int, int, datetime.date]:
            return (coverage.key_staff(d) if key_role else 0, coverage.total(d), d)

        return max(mon_to_sat, key=busiest)

    def _mandatory_coverage(self, constraints: EmployeeConstraints, coverage: CoverageTable, d: datetime.date) -> bool:
        return constraints.employee.key_role and coverage.key_staff(d) == 0

    def _assign_split_days(
        self,
        constraints: EmployeeConstraints,
        coverage: CoverageTable,
        allocation: Allocation,
        saturday_off_turn: bool,
    ) -> None:
        if constraints.has_period_restriction and not constraints.force_full_days:
            return
        candidates = [d for d in constraints.available_dates if not constraints.partially_off(d)]

        # Saturday only moves to the back of the queue, so it is still taken
        # when the other days cannot absorb the remaining slots.
        def rank(d: datetime.date) -> Tuple[int, int, int, datetime.date]:
            mandatory = self._mandatory_coverage(constraints, coverage, d)
            deprioritized = saturday_off_turn and d.weekday() == SATURDAY and not mandatory
            return (0 if mandatory else 1, 1 if deprioritized else 0, coverage.total(d), d)

        for date_value in sorted(candidates, key=rank):
            if allocation.slots_remaining < 2:
                break
            if allocation.afternoons >= constraints.max_afternoons:
                break
            if not constraints.can_split(date_value):
                continue
            allocation.assignments[date_value] = "split"
            allocation.slots_remaining -= 2

    def _fill_slots(
        self,
        constraints: EmployeeConstraints,
        coverage: CoverageTable,
        allocation: Allocation,
        saturday_off_turn: bool,
    ) -> None:
        candidates: List[Tuple[float, datetime.date, str]] = []
        for date_value in constraints.available_dates:
            current = allocation.assignments.get(date_value)
            if current == "split":
                continue
            mandatory = self._mandatory_coverage(constraints, coverage, date_value)
            for period in PERIODS:
                if current == period or not constraints.can_work(date_value, period):
                    continue
                key = float(coverage.load(date_value, period))
                if period == "afternoon":
                    key += self.cfg["afternoon_penalty"]
                if mandatory:
                    key += self.cfg["key_role_bias"]
                if constraints.restricted_on(date_value):
                    key += self.cfg["restriction_bias"]
                if saturday_off_turn and date_value.weekday() == SATURDAY and not mandatory:
                    key += self.cfg["saturday_rotation_bias"]
                candidates.append((key, date_value, period))

        candidates.sort(key=lambda item: item[0])
        for _, date_value, period in candidates:
            if allocation.slots_remaining <= 0:
                break
            current = allocation.assignments.get(date_value)
            adds_afternoon = period == "afternoon"
            if adds_afternoon and allocation.afternoons >= constraints.max_afternoons:
                continue
            if current is None:
                allocation.assignments[date_value] = period
                allocation.slots_remaining -= 1
            elif current != period and current != "split":
                if constraints.has_period_restriction or not constraints.can_split(date_value):
                    continue
                allocation.assignments[date_value] = "split"
                allocation.slots_remaining -= 1

    def _early_morning_dates(self, constraints: EmployeeConstraints, allocation: Allocation) -> Set[datetime.date]:
        working_mornings = [
            d
            for d in week_dates(constraints.week_start)
            if allocation.assignments.get(d) in ("morning", "split")
        ]
        chosen: Set[datetime.date] = set()
        if constraints.early_morning:
            limit = int(self.cfg["early_morning"]["max_days"])
            if len(working_mornings) <= limit:
                chosen.update(working_mornings)
            elif limit == 1:
                chosen.add(working_mornings[0])
            elif limit > 1:
                n = len(working_mornings)
                for i in range(limit):
                    chosen.add(working_mornings[round_half_up(i * (n - 1) / (limit - 1))])
        chosen.update(d for d in working_mornings if d in constraints.early_morning_dates)
        return chosen

    def _finalize(
        self, constraints: EmployeeConstraints, allocation: Allocation, settings: StoreSettings
    ) -> List[Shift]:
        hours = settings.opening_hours
        early = self.cfg["early_morning"]
        shifts: List[Shift] = []
        for date_value in week_dates(constraints.week_start):
            kind = allocation.assignments.get(date_value)
            if kind is None:
                status = constraints.day_status[date_value]
                if date_value in allocation.rest_days or status == AVAILABLE:
                    status = "off"
                shifts.append(Shift(constraints.employee.id, date_value, status))
                continue
            is_early = date_value in allocation.early_dates
            morning_start = early["start"] if is_early else hours.morning_start
            morning_end = early["end"] if is_early else hours.morning_end
            if kind == "morning":
                shift = Shift(constraints.employee.id, date_value, kind, morning_start, morning_end)
            elif kind == "afternoon":
                shift = Shift(constraints.employee.id, date_value, kind, hours.afternoon_start, hours.afternoon_end)
            else:
                shift = Shift(
                    constraints.employee.id,
                    date_value,
                    kind,
                    start_time=morning_start,
                    end_time=hours.afternoon_end,
                    morning_end_time=morning_end,
                    afternoon_start_time=hours.afternoon_start,
                )
            shifts.append(shift)
        return shifts
