"""Plain value objects exchanged between the scheduling engine and its host.

Everything here is in-memory data: the database layer converts its rows into
these objects and the engine never touches a session.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from roles import category_rank, is_key_role, normalize_category, normalize_role

# Day numbers used by permanent requests: 0 = Sunday ... 6 = Saturday.
DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

WORKING_SHIFT_TYPES = ("morning", "afternoon", "split")
NON_WORKING_SHIFT_TYPES = ("off", "holiday", "vacation", "sick_leave", "maternity_paternity")
SHIFT_TYPES = WORKING_SHIFT_TYPES + NON_WORKING_SHIFT_TYPES
ABSENCE_TYPES = ("vacation", "sick_leave", "maternity_paternity")

TIME_OFF_TYPES = (
    "day_off",
    "morning_off",
    "afternoon_off",
    "vacation",
    "sick_leave",
    "maternity_paternity",
    "early_morning_shift",
)
PERMANENT_REQUEST_TYPES = (
    "morning_only",
    "afternoon_only",
    "specific_days_off",
    "max_afternoons_per_week",
    "force_full_days",
    "early_morning_shift",
    "rotating_days_off",
    "fixed_rotating_shift",
    "no_split",
)
HOLIDAY_TYPES = ("full", "afternoon", "closed_afternoon")
HISTORY_EVENT_TYPES = ("hired", "terminated", "rehired")
APPROVAL_STATUSES = ("draft", "pending", "approved", "rejected")
MODIFICATION_STATUSES = ("none", "requested", "approved", "rejected")


def parse_date(value: Any) -> Optional[datetime.date]:
    """Coerce ISO strings, dates and datetimes into a ``datetime.date``."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    text = str(value).strip()
    if "T" in text:
        text = text.split("T", 1)[0]
    return datetime.date.fromisoformat(text)


def normalize_week_start(date_value: Any) -> datetime.date:
    """Return the Monday for the provided date."""
    date_value = parse_date(date_value)
    if date_value is None:
        raise ValueError("week_start_date is required.")
    return date_value - datetime.timedelta(days=date_value.weekday())


def week_dates(week_start: Any) -> List[datetime.date]:
    start = normalize_week_start(week_start)
    return [start + datetime.timedelta(days=offset) for offset in range(7)]


def day_number(date_value: datetime.date) -> int:
    """Sunday-based weekday number (0 = Sunday, 1 = Monday ... 6 = Saturday)."""
    return (date_value.weekday() + 1) % 7


def day_label(date_value: datetime.date) -> str:
    return f"{DAY_NAMES[day_number(date_value)]} {date_value.isoformat()}"


def _day_set(values: Optional[Iterable[Any]]) -> Set[int]:
    days: Set[int] = set()
    for value in values or ():
        try:
            number = int(value)
        except (TypeError, ValueError):
            continue
        if 0 <= number <= 6:
            days.add(number)
    return days


@dataclass
class TemporaryHours:
    start: datetime.date
    end: datetime.date
    hours: float

    def __post_init__(self) -> None:
        self.start = parse_date(self.start)
        self.end = parse_date(self.end)
        self.hours = float(self.hours)

    def covers(self, date_value: datetime.date) -> bool:
        return self.start <= date_value <= self.end


@dataclass
class HistoryEvent:
    date: datetime.date
    type: str

    def __post_init__(self) -> None:
        self.date = parse_date(self.date)
        if self.type not in HISTORY_EVENT_TYPES:
            raise ValueError(f"Unsupported history event '{self.type}'.")


@dataclass
class Employee:
    id: str
    establishment_id: str
    weekly_hours: float
    name: str = ""
    category: str = "Empleado"
    active: bool = True
    temp_hours: List[TemporaryHours] = field(default_factory=list)
    history: List[HistoryEvent] = field(default_factory=list)
    hours_debt: float = 0.0

    def __post_init__(self) -> None:
        self.id = str(self.id)
        self.establishment_id = str(self.establishment_id)
        self.weekly_hours = float(self.weekly_hours)
        if self.weekly_hours <= 0:
            raise ValueError(f"Employee {self.id} must have positive weekly hours.")
        self.category = normalize_category(self.category)
        if not self.name:
            self.name = self.id

    @property
    def rank(self) -> int:
        return category_rank(self.category)

    @property
    def key_role(self) -> bool:
        return is_key_role(self.category)

    def hours_for_week(self, week_start: datetime.date) -> float:
        """Contract hours, or the temporary override covering ``week_start``."""
        for entry in self.temp_hours:
            if entry.covers(week_start):
                return entry.hours
        return self.weekly_hours

    def is_employed_during(self, week_start: datetime.date) -> bool:
        if not self.history:
            return self.active
        week_end = week_start + datetime.timedelta(days=6)
        events = sorted(self.history, key=lambda event: event.date)
        prior = [event for event in events if event.date < week_start]
        if prior:
            active_at_start = prior[-1].type in ("hired", "rehired")
        else:
            # Employees imported mid-contract only carry their termination.
            active_at_start = events[0].type == "terminated"
        if active_at_start:
            return True
        return any(
            event.type in ("hired", "rehired") and week_start <= event.date <= week_end
            for event in events
        )


@dataclass
class TimeOffRequest:
    employee_id: str
    type: str
    dates: List[datetime.date] = field(default_factory=list)
    start_date: Optional[datetime.date] = None
    end_date: Optional[datetime.date] = None
    status: str = "approved"
    id: Optional[str] = None

    def __post_init__(self) -> None:
        self.employee_id = str(self.employee_id)
        if self.type not in TIME_OFF_TYPES:
            raise ValueError(f"Unsupported time-off type '{self.type}'.")
        self.dates = [parse_date(value) for value in self.dates or []]
        self.start_date = parse_date(self.start_date)
        self.end_date = parse_date(self.end_date)

    @property
    def approved(self) -> bool:
        return self.status == "approved"

    def covers(self, date_value: datetime.date) -> bool:
        if date_value in self.dates:
            return True
        if self.start_date and self.end_date:
            return self.start_date <= date_value <= self.end_date
        return False


@dataclass(frozen=True)
class CycleAnchor:
    """Anchors a multi-week rotation to the week where cycle position 0 starts."""

    reference_date: datetime.date
    cycle_length: int

    def weeks_elapsed(self, week_start: datetime.date) -> Optional[int]:
        days = (week_start - self.reference_date).days
        if days < 0:
            return None
        return days // 7

    def index(self, week_start: datetime.date) -> Optional[int]:
        elapsed = self.weeks_elapsed(week_start)
        if elapsed is None or self.cycle_length <= 0:
            return None
        return elapsed % self.cycle_length


@dataclass
class PermanentRequest:
    employee_id: str
    type: str
    days: List[int] = field(default_factory=list)
    value: Optional[float] = None
    cycle_weeks: List[List[int]] = field(default_factory=list)
    reference_date: Optional[datetime.date] = None
    exceptions: List[datetime.date] = field(default_factory=list)
    id: Optional[str] = None

    def __post_init__(self) -> None:
        self.employee_id = str(self.employee_id)
        if self.type not in PERMANENT_REQUEST_TYPES:
            raise ValueError(f"Unsupported permanent request type '{self.type}'.")
        self.days = sorted(_day_set(self.days))
        cycles = []
        for week in self.cycle_weeks or []:
            if isinstance(week, dict):
                week = week.get("days", [])
            cycles.append(sorted(_day_set(week)))
        self.cycle_weeks = cycles
        self.reference_date = parse_date(self.reference_date)
        self.exceptions = [parse_date(value) for value in self.exceptions or []]

    def is_excepted(self, week_start: datetime.date) -> bool:
        return week_start in self.exceptions

    def applies_to_day(self, date_value: datetime.date) -> bool:
        """Whether a morning/afternoon-only restriction covers ``date_value``."""
        return not self.days or day_number(date_value) in self.days

    @property
    def anchor(self) -> Optional[CycleAnchor]:
        if self.reference_date is None:
            return None
        if self.type == "rotating_days_off":
            if not self.cycle_weeks:
                return None
            return CycleAnchor(self.reference_date, len(self.cycle_weeks))
        if self.type == "fixed_rotating_shift":
            return CycleAnchor(self.reference_date, 6)
        return None

    def rotating_days_off(self, week_start: datetime.date) -> Set[int]:
        anchor = self.anchor
        if self.type != "rotating_days_off" or anchor is None:
            return set()
        index = anchor.index(week_start)
        if index is None:
            return set()
        return set(self.cycle_weeks[index])

    def fixed_rotating_day(self, week_start: datetime.date) -> Optional[int]:
        anchor = self.anchor
        if self.type != "fixed_rotating_shift" or anchor is None or self.value is None:
            return None
        elapsed = anchor.weeks_elapsed(week_start)
        if elapsed is None:
            return None
        start_day = int(self.value) or 1
        return 1 + ((start_day - 1 + elapsed) % 6)


@dataclass
class Holiday:
    date: datetime.date
    type: str = "full"

    def __post_init__(self) -> None:
        self.date = parse_date(self.date)
        if self.type not in HOLIDAY_TYPES:
            raise ValueError(f"Unsupported holiday type '{self.type}'.")

    @property
    def afternoon_closed(self) -> bool:
        return self.type in ("afternoon", "closed_afternoon")


@dataclass
class OpeningHours:
    morning_start: str = "10:00"
    morning_end: str = "14:00"
    afternoon_start: str = "17:00"
    afternoon_end: str = "21:00"


@dataclass
class StoreSettings:
    establishment_id: str
    store_name: str = ""
    opening_hours: OpeningHours = field(default_factory=OpeningHours)
    holidays: List[Holiday] = field(default_factory=list)
    open_sundays: List[datetime.date] = field(default_factory=list)
    policy: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.establishment_id = str(self.establishment_id)
        self.open_sundays = [parse_date(value) for value in self.open_sundays or []]

    def holiday_for(self, date_value: datetime.date) -> Optional[Holiday]:
        for holiday in self.holidays:
            if holiday.date == date_value:
                return holiday
        return None

    def is_full_holiday(self, date_value: datetime.date) -> bool:
        holiday = self.holiday_for(date_value)
        return bool(holiday and holiday.type == "full")

    def is_afternoon_closed(self, date_value: datetime.date) -> bool:
        holiday = self.holiday_for(date_value)
        return bool(holiday and holiday.afternoon_closed)

    def is_open_sunday(self, date_value: datetime.date) -> bool:
        return date_value in self.open_sundays

    def is_trading_day(self, date_value: datetime.date) -> bool:
        if date_value.weekday() == 6 and not self.is_open_sunday(date_value):
            return False
        return not self.is_full_holiday(date_value)


@dataclass
class Shift:
    employee_id: str
    date: datetime.date
    type: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    morning_end_time: Optional[str] = None
    afternoon_start_time: Optional[str] = None
    role: Optional[str] = None
    is_opening: bool = False
    is_closing: bool = False
    id: Optional[str] = None

    def __post_init__(self) -> None:
        self.employee_id = str(self.employee_id)
        self.date = parse_date(self.date)
        if self.type not in SHIFT_TYPES:
            raise ValueError(f"Unsupported shift type '{self.type}'.")
        self.role = normalize_role(self.role)
        if self.id is None:
            self.id = f"{self.employee_id}:{self.date.isoformat()}"

    @property
    def is_working(self) -> bool:
        return self.type in WORKING_SHIFT_TYPES

    @property
    def covers_morning(self) -> bool:
        return self.type in ("morning", "split")

    @property
    def covers_afternoon(self) -> bool:
        return self.type in ("afternoon", "split")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "date": self.date.isoformat(),
            "type": self.type,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "morning_end_time": self.morning_end_time,
            "afternoon_start_time": self.afternoon_start_time,
            "role": self.role,
            "is_opening": self.is_opening,
            "is_closing": self.is_closing,
        }


@dataclass
class WeeklySchedule:
    establishment_id: str
    week_start_date: datetime.date
    shifts: List[Shift] = field(default_factory=list)
    approval_status: str = "draft"
    modification_status: str = "none"
    supervisor_notes: str = ""
    modification_reason: str = ""
    id: Optional[str] = None

    def __post_init__(self) -> None:
        self.establishment_id = str(self.establishment_id)
        self.week_start_date = normalize_week_start(self.week_start_date)
        if self.approval_status not in APPROVAL_STATUSES:
            raise ValueError(f"Unsupported approval status '{self.approval_status}'.")
        if self.modification_status not in MODIFICATION_STATUSES:
            raise ValueError(f"Unsupported modification status '{self.modification_status}'.")
        if self.id is None:
            self.id = f"{self.establishment_id}:{self.week_start_date.isoformat()}"

    @property
    def dates(self) -> List[datetime.date]:
        return week_dates(self.week_start_date)

    def shifts_for(self, employee_id: str) -> List[Shift]:
        return [shift for shift in self.shifts if shift.employee_id == str(employee_id)]

    def shift_on(self, employee_id: str, date_value: datetime.date) -> Optional[Shift]:
        for shift in self.shifts:
            if shift.employee_id == str(employee_id) and shift.date == date_value:
                return shift
        return None

    def shifts_on(self, date_value: datetime.date) -> List[Shift]:
        return [shift for shift in self.shifts if shift.date == date_value]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "establishment_id": self.establishment_id,
            "week_start_date": self.week_start_date.isoformat(),
            "approval_status": self.approval_status,
            "modification_status": self.modification_status,
            "supervisor_notes": self.supervisor_notes,
            "modification_reason": self.modification_reason,
            "shifts": [shift.to_dict() for shift in self.shifts],
        }


@dataclass(frozen=True)
class HoursDebtAdjustment:
    employee_id: str
    amount: float
    schedule_id: str
    worked_hours: float = 0.0
    target_hours: float = 0.0
    employee_name: str = ""
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "employee_name": self.employee_name,
            "amount": self.amount,
            "worked_hours": self.worked_hours,
            "target_hours": self.target_hours,
            "schedule_id": self.schedule_id,
            "reason": self.reason,
        }
