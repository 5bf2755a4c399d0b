from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker

import models


DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
DATABASE_URL = f"sqlite:///{(DATA_DIR / 'store.db').as_posix()}"
EDITABLE_APPROVAL_STATUSES = {"draft", "rejected"}


class ScheduleNotFoundError(LookupError):
    pass


class ScheduleLockedError(ValueError):
    pass


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _load_json(payload: Optional[str], default: Any) -> Any:
    try:
        value = json.loads(payload or "null")
    except json.JSONDecodeError:
        return default
    return default if value is None else value


class Base(DeclarativeBase):
    """Metadata for every table living in store.db."""

    pass


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    establishment_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False, default="Empleado")
    weekly_hours: Mapped[float] = mapped_column(Float, nullable=False, default=40.0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    hours_debt: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    temp_hours: Mapped[List["EmployeeTempHours"]] = relationship(
        back_populates="employee", cascade="all, delete-orphan"
    )
    history: Mapped[List["EmployeeHistory"]] = relationship(
        back_populates="employee", cascade="all, delete-orphan"
    )


class EmployeeTempHours(Base):
    __tablename__ = "employee_temp_hours"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"))
    start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    hours: Mapped[float] = mapped_column(Float, nullable=False)

    employee: Mapped[Employee] = relationship(back_populates="temp_hours")


class EmployeeHistory(Base):
    __tablename__ = "employee_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[str] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"))
    event_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    event_type: Mapped[str] = mapped_column(String(12), nullable=False)

    employee: Mapped[Employee] = relationship(back_populates="history")


class TimeOffRequest(Base):
    __tablename__ = "time_off_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    request_type: Mapped[str] = mapped_column(String(24), nullable=False)
    datesJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="[]")
    start_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="approved")


class PermanentRequest(Base):
    __tablename__ = "permanent_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    request_type: Mapped[str] = mapped_column(String(32), nullable=False)
    daysJSON: Mapped[str] = mapped_column(String(200), nullable=False, default="[]")
    value: Mapped[float | None] = mapped_column(Float, nullable=True)
    cycleJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="[]")
    reference_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    exceptionsJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="[]")


class StoreSettingsRecord(Base):
    __tablename__ = "store_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    establishment_id: Mapped[str] = mapped_column(String(40), nullable=False)
    paramsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="{}")
    lastEditedBy: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    lastEditedAt: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("establishment_id", name="uq_store_settings_establishment"),
    )

    def params_dict(self) -> Dict:
        value = _load_json(self.paramsJSON, {})
        return value if isinstance(value, dict) else {}


class WeekSchedule(Base):
    __tablename__ = "week_schedule"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    establishment_id: Mapped[str] = mapped_column(String(40), nullable=False)
    week_start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    approval_status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    modification_status: Mapped[str] = mapped_column(String(16), nullable=False, default="none")
    supervisor_notes: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    modification_reason: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    submitted_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("establishment_id", "week_start_date", name="uq_week_schedule_store_week"),
    )

    shifts: Mapped[List["Shift"]] = relationship(
        back_populates="week",
        cascade="all, delete-orphan",
        order_by="Shift.id",
    )


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    week_id: Mapped[int] = mapped_column(ForeignKey("week_schedule.id", ondelete="CASCADE"), nullable=False)
    employee_id: Mapped[str] = mapped_column(String(40), nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    shift_type: Mapped[str] = mapped_column(String(24), nullable=False, default="off")
    start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    morning_end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    afternoon_start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    role: Mapped[str | None] = mapped_column(String(24), nullable=True)
    is_opening: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_closing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("week_id", "employee_id", "date", name="uq_shift_employee_day"),
    )

    week: Mapped[WeekSchedule] = relationship(back_populates="shifts")


class HoursDebtLog(Base):
    __tablename__ = "hours_debt_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    week_id: Mapped[int] = mapped_column(ForeignKey("week_schedule.id"), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    reason: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    reverses_id: Mapped[int | None] = mapped_column(ForeignKey("hours_debt_log.id"), nullable=True)
    reversed_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="WeekSchedule")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


engine = create_engine(
    DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def init_database() -> None:
    Base.metadata.create_all(engine)


def get_store_settings_record(session, establishment_id: str) -> Optional[StoreSettingsRecord]:
    return session.execute(
        select(StoreSettingsRecord).where(StoreSettingsRecord.establishment_id == str(establishment_id))
    ).scalar_one_or_none()


def upsert_store_settings(
    session, establishment_id: str, params_dict: Dict, *, edited_by: str = "system"
) -> StoreSettingsRecord:
    record = get_store_settings_record(session, establishment_id)
    if record is None:
        record = StoreSettingsRecord(establishment_id=str(establishment_id))
        session.add(record)
    record.paramsJSON = json.dumps(params_dict or {})
    record.lastEditedBy = edited_by or "system"
    record.lastEditedAt = _utcnow()
    session.commit()
    session.refresh(record)
    return record


def upsert_employee(session, payload: Dict[str, Any]) -> Employee:
    """Create or update an employee with its temporary hours and history."""
    employee_id = str(payload["id"])
    row = session.get(Employee, employee_id)
    if row is None:
        row = Employee(id=employee_id)
        session.add(row)
    row.establishment_id = str(payload["establishment_id"])
    row.full_name = payload.get("name") or employee_id
    row.category = payload.get("category") or "Empleado"
    weekly_hours = float(payload.get("weekly_hours") or 0)
    if weekly_hours <= 0:
        raise ValueError("weekly_hours must be positive.")
    row.weekly_hours = weekly_hours
    row.active = bool(payload.get("active", True))
    if "hours_debt" in payload:
        row.hours_debt = float(payload["hours_debt"] or 0.0)
    if "temp_hours" in payload:
        row.temp_hours = [
            EmployeeTempHours(
                start_date=models.parse_date(item["start"]),
                end_date=models.parse_date(item["end"]),
                hours=float(item["hours"]),
            )
            for item in payload.get("temp_hours") or []
        ]
    if "history" in payload:
        row.history = [
            EmployeeHistory(event_date=models.parse_date(item["date"]), event_type=item["type"])
            for item in payload.get("history") or []
        ]
    session.commit()
    session.refresh(row)
    return row


def add_time_off_request(session, payload: Dict[str, Any]) -> TimeOffRequest:
    request = models.TimeOffRequest(
        employee_id=payload["employee_id"],
        type=payload["type"],
        dates=payload.get("dates") or [],
        start_date=payload.get("start_date"),
        end_date=payload.get("end_date"),
        status=payload.get("status") or "approved",
    )
    row = TimeOffRequest(
        employee_id=request.employee_id,
        request_type=request.type,
        datesJSON=json.dumps([d.isoformat() for d in request.dates]),
        start_date=request.start_date,
        end_date=request.end_date,
        status=request.status,
    )
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def add_permanent_request(session, payload: Dict[str, Any]) -> PermanentRequest:
    request = models.PermanentRequest(
        employee_id=payload["employee_id"],
        type=payload["type"],
        days=payload.get("days") or [],
        value=payload.get("value"),
        cycle_weeks=payload.get("cycle_weeks") or [],
        reference_date=payload.get("reference_date"),
        exceptions=payload.get("exceptions") or [],
    )
    row = PermanentRequest(
        employee_id=request.employee_id,
        request_type=request.type,
        daysJSON=json.dumps(request.days),
        value=request.value,
        cycleJSON=json.dumps(request.cycle_weeks),
        reference_date=request.reference_date,
        exceptionsJSON=json.dumps([d.isoformat() for d in request.exceptions]),
    )
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def employee_to_model(row: Employee) -> models.Employee:
    return models.Employee(
        id=row.id,
        establishment_id=row.establishment_id,
        weekly_hours=row.weekly_hours,
        name=row.full_name,
        category=row.category,
        active=row.active,
        temp_hours=[
            models.TemporaryHours(item.start_date, item.end_date, item.hours) for item in row.temp_hours
        ],
        history=[models.HistoryEvent(item.event_date, item.event_type) for item in row.history],
        hours_debt=row.hours_debt,
    )


def load_employees(session, establishment_id: str) -> List[models.Employee]:
    rows = session.execute(
        select(Employee).where(Employee.establishment_id == str(establishment_id)).order_by(Employee.id)
    ).scalars().all()
    return [employee_to_model(row) for row in rows]


def load_time_off_requests(session, employee_ids: Iterable[str]) -> List[models.TimeOffRequest]:
    ids = [str(value) for value in employee_ids]
    if not ids:
        return []
    rows = session.execute(
        select(TimeOffRequest).where(TimeOffRequest.employee_id.in_(ids)).order_by(TimeOffRequest.id)
    ).scalars().all()
    return [
        models.TimeOffRequest(
            employee_id=row.employee_id,
            type=row.request_type,
            dates=_load_json(row.datesJSON, []),
            start_date=row.start_date,
            end_date=row.end_date,
            status=row.status,
            id=str(row.id),
        )
        for row in rows
    ]


def load_permanent_requests(session, employee_ids: Iterable[str]) -> List[models.PermanentRequest]:
    ids = [str(value) for value in employee_ids]
    if not ids:
        return []
    rows = session.execute(
        select(PermanentRequest).where(PermanentRequest.employee_id.in_(ids)).order_by(PermanentRequest.id)
    ).scalars().all()
    return [
        models.PermanentRequest(
            employee_id=row.employee_id,
            type=row.request_type,
            days=_load_json(row.daysJSON, []),
            value=row.value,
            cycle_weeks=_load_json(row.cycleJSON, []),
            reference_date=row.reference_date,
            exceptions=_load_json(row.exceptionsJSON, []),
            id=str(row.id),
        )
        for row in rows
    ]


def get_week(session, establishment_id: str, week_start_date: datetime.date) -> Optional[WeekSchedule]:
    normalized = models.normalize_week_start(week_start_date)
    return session.execute(
        select(WeekSchedule).where(
            WeekSchedule.establishment_id == str(establishment_id),
            WeekSchedule.week_start_date == normalized,
        )
    ).scalar_one_or_none()


def require_week(session, establishment_id: str, week_start_date: datetime.date) -> WeekSchedule:
    week = get_week(session, establishment_id, week_start_date)
    if week is None:
        raise ScheduleNotFoundError(
            f"No schedule exists for store {establishment_id} and week {week_start_date}."
        )
    return week


def save_schedule(session, schedule: models.WeeklySchedule) -> WeekSchedule:
    """Persist a freshly generated schedule, replacing the shifts of an existing week."""
    week = get_week(session, schedule.establishment_id, schedule.week_start_date)
    if week is None:
        week = WeekSchedule(
            establishment_id=schedule.establishment_id,
            week_start_date=schedule.week_start_date,
        )
    else:
        # Ledger lines keep pointing at the same week row across regenerations.
        week.shifts.clear()
        session.flush()
    week.approval_status = schedule.approval_status
    week.modification_status = schedule.modification_status
    week.shifts = [
        Shift(
            employee_id=shift.employee_id,
            date=shift.date,
            shift_type=shift.type,
            start_time=shift.start_time,
            end_time=shift.end_time,
            morning_end_time=shift.morning_end_time,
            afternoon_start_time=shift.afternoon_start_time,
            role=shift.role,
            is_opening=shift.is_opening,
            is_closing=shift.is_closing,
        )
        for shift in schedule.shifts
    ]
    session.add(week)
    session.commit()
    session.refresh(week)
    return week


def shift_to_model(row: Shift) -> models.Shift:
    return models.Shift(
        employee_id=row.employee_id,
        date=row.date,
        type=row.shift_type,
        start_time=row.start_time,
        end_time=row.end_time,
        morning_end_time=row.morning_end_time,
        afternoon_start_time=row.afternoon_start_time,
        role=row.role,
        is_opening=bool(row.is_opening),
        is_closing=bool(row.is_closing),
        id=str(row.id),
    )


def week_to_schedule(week: WeekSchedule) -> models.WeeklySchedule:
    return models.WeeklySchedule(
        establishment_id=week.establishment_id,
        week_start_date=week.week_start_date,
        shifts=[shift_to_model(row) for row in week.shifts],
        approval_status=week.approval_status,
        modification_status=week.modification_status,
        supervisor_notes=week.supervisor_notes,
        modification_reason=week.modification_reason,
        id=str(week.id),
    )


def is_editable(week: WeekSchedule) -> bool:
    return week.approval_status in EDITABLE_APPROVAL_STATUSES


def update_shift(session, shift_id: int, changes: Dict[str, Any]) -> Shift:
    """Apply a manual edit to one shift while its schedule is still editable."""
    row = session.get(Shift, shift_id)
    if row is None:
        raise LookupError(f"Shift with id {shift_id} was not found.")
    if not is_editable(row.week):
        raise ScheduleLockedError(
            f"Schedule {row.week_id} is {row.week.approval_status} and cannot be edited."
        )
    shift_type = changes.get("type", row.shift_type)
    if shift_type not in models.SHIFT_TYPES:
        raise ValueError(f"Unsupported shift type '{shift_type}'.")
    row.shift_type = shift_type
    if shift_type in models.NON_WORKING_SHIFT_TYPES:
        row.start_time = row.end_time = row.morning_end_time = row.afternoon_start_time = None
        row.role = None
        row.is_opening = row.is_closing = False
    else:
        for key in ("start_time", "end_time", "morning_end_time", "afternoon_start_time"):
            if key in changes:
                setattr(row, key, changes[key] or None)
        if shift_type != "split":
            row.morning_end_time = row.afternoon_start_time = None
        if "role" in changes:
            role = changes.get("role")
            normalized = models.normalize_role(role)
            if role and normalized is None:
                raise ValueError(f"Unsupported work role '{role}'.")
            row.role = normalized
        for key in ("is_opening", "is_closing"):
            if key in changes:
                setattr(row, key, bool(changes[key]))
    session.commit()
    session.refresh(row)
    return row


def add_debt_entry(
    session,
    employee_id: str,
    week_id: int,
    amount: float,
    reason: str,
    *,
    reverses: Optional[HoursDebtLog] = None,
    created_by: str = "system",
) -> HoursDebtLog:
    """Post one ledger line and move the employee's running balance."""
    entry = HoursDebtLog(
        employee_id=str(employee_id),
        week_id=week_id,
        amount=amount,
        reason=reason,
        reverses_id=reverses.id if reverses is not None else None,
        created_by=created_by or "system",
    )
    session.add(entry)
    session.flush()
    if reverses is not None:
        reverses.reversed_by_id = entry.id
    employee = session.get(Employee, str(employee_id))
    if employee is not None:
        employee.hours_debt = round((employee.hours_debt or 0.0) + amount, 2)
    return entry


def open_debt_entries(session, week_id: int) -> List[HoursDebtLog]:
    """Postings for a week that have not been reversed yet."""
    return session.execute(
        select(HoursDebtLog)
        .where(
            HoursDebtLog.week_id == week_id,
            HoursDebtLog.reverses_id.is_(None),
            HoursDebtLog.reversed_by_id.is_(None),
        )
        .order_by(HoursDebtLog.id)
    ).scalars().all()


def list_debt_entries(
    session, *, week_id: Optional[int] = None, employee_id: Optional[str] = None
) -> List[Dict[str, Any]]:
    stmt = select(HoursDebtLog).order_by(HoursDebtLog.id)
    if week_id is not None:
        stmt = stmt.where(HoursDebtLog.week_id == week_id)
    if employee_id is not None:
        stmt = stmt.where(HoursDebtLog.employee_id == str(employee_id))
    return [
        {
            "id": entry.id,
            "employee_id": entry.employee_id,
            "week_id": entry.week_id,
            "amount": entry.amount,
            "reason": entry.reason,
            "reverses_id": entry.reverses_id,
            "reversed_by_id": entry.reversed_by_id,
            "created_by": entry.created_by,
            "created_at": entry.created_at,
        }
        for entry in session.execute(stmt).scalars().all()
    ]


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "WeekSchedule",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log
