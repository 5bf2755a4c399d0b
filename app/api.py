"""FastAPI surface over the scheduling engine and its approval workflow.

Every route is a thin adapter: parse the request, call the engine or the
workflow module, map domain errors onto HTTP status codes.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import datetime
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Ensure absolute imports (e.g., "import database") resolve when served from the repo root.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import (  # noqa: E402
    ScheduleLockedError,
    ScheduleNotFoundError,
    SessionLocal,
    Shift,
    WeekSchedule,
    init_database,
    list_debt_entries,
    record_audit_log,
    require_week,
    update_shift,
    upsert_store_settings,
    week_to_schedule,
)
from generator.api import NoEligibleEmployeesError, ScheduleExistsError, generate_schedule_for_week  # noqa: E402
from policy import load_store_settings, settings_to_params, build_store_settings  # noqa: E402
from reconciliation import describe_adjustment  # noqa: E402
from validation import VALIDATION_MODES, validate_week_schedule  # noqa: E402
from workflow import (  # noqa: E402
    InvalidTransitionError,
    approve_schedule,
    preview_adjustments,
    reject_schedule,
    request_modification,
    respond_to_modification,
    submit_schedule,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    yield


app = FastAPI(title="Store Shift Scheduler API", version="0.1", lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    return SessionLocal


def _parse_week_start(value: str) -> datetime.date:
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="weekStart must be YYYY-MM-DD")


def _actor(payload: Optional[Dict[str, Any]]) -> str:
    return ((payload or {}).get("actor") or "api").strip() or "api"


def _raise_http(exc: Exception) -> None:
    if isinstance(exc, (ScheduleNotFoundError, LookupError)):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, (ScheduleExistsError, InvalidTransitionError, ScheduleLockedError)):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise exc


def _week_payload(week: WeekSchedule) -> Dict[str, Any]:
    payload = week_to_schedule(week).to_dict()
    payload["week_id"] = week.id
    payload["submitted_at"] = week.submitted_at
    return payload


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/stores/{establishment_id}/settings")
def store_settings(establishment_id: str, db=Depends(get_db)) -> JSONResponse:
    settings = load_store_settings(db, establishment_id)
    return JSONResponse(content=jsonable_encoder(settings_to_params(settings)))


@app.put("/api/v1/stores/{establishment_id}/settings")
def set_store_settings(establishment_id: str, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    params = payload.get("params") or {}
    try:
        settings = build_store_settings(establishment_id, params)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    record = upsert_store_settings(db, establishment_id, settings_to_params(settings), edited_by=_actor(payload))
    record_audit_log(db, _actor(payload), "settings_edit", target_type="StoreSettings", target_id=record.id)
    return JSONResponse(content=jsonable_encoder(record.params_dict()))


@app.post("/api/v1/schedules/generate")
def generate_schedule(payload: Dict[str, Any], session_factory=Depends(get_session_factory)) -> JSONResponse:
    establishment_id = payload.get("establishmentId") or payload.get("establishment_id")
    week_start_raw = payload.get("weekStart") or payload.get("week_start")
    if not establishment_id:
        raise HTTPException(status_code=400, detail="establishmentId is required")
    if not week_start_raw:
        raise HTTPException(status_code=400, detail="weekStart is required")
    start_date = _parse_week_start(str(week_start_raw))
    try:
        result = generate_schedule_for_week(
            session_factory,
            str(establishment_id),
            start_date,
            _actor(payload),
            force=bool(payload.get("force")),
        )
    except (NoEligibleEmployeesError, ScheduleExistsError, ScheduleLockedError) as exc:
        _raise_http(exc)
    return JSONResponse(content=jsonable_encoder(result))


@app.get("/api/v1/schedules/{establishment_id}/{week_start}")
def get_schedule(establishment_id: str, week_start: str, db=Depends(get_db)) -> JSONResponse:
    start_date = _parse_week_start(week_start)
    try:
        week = require_week(db, establishment_id, start_date)
    except ScheduleNotFoundError as exc:
        _raise_http(exc)
    return JSONResponse(content=jsonable_encoder(_week_payload(week)))


@app.get("/api/v1/schedules/{establishment_id}/{week_start}/validate")
def validate_schedule_endpoint(
    establishment_id: str,
    week_start: str,
    mode: str = Query("publish"),
    db=Depends(get_db),
) -> JSONResponse:
    if mode not in VALIDATION_MODES:
        raise HTTPException(status_code=400, detail=f"mode must be one of {', '.join(VALIDATION_MODES)}")
    report = validate_week_schedule(db, establishment_id, _parse_week_start(week_start), mode=mode)
    return JSONResponse(content=jsonable_encoder(report))


@app.get("/api/v1/schedules/{establishment_id}/{week_start}/hours")
def hours_preview(establishment_id: str, week_start: str, db=Depends(get_db)) -> JSONResponse:
    try:
        week = require_week(db, establishment_id, _parse_week_start(week_start))
    except ScheduleNotFoundError as exc:
        _raise_http(exc)
    adjustments = preview_adjustments(db, week)
    return JSONResponse(
        content=jsonable_encoder(
            {
                "week_id": week.id,
                "adjustments": [adjustment.to_dict() for adjustment in adjustments],
                "messages": [describe_adjustment(adjustment) for adjustment in adjustments],
            }
        )
    )


@app.post("/api/v1/schedules/{establishment_id}/{week_start}/submit")
def submit(establishment_id: str, week_start: str, payload: Dict[str, Any] | None = None, db=Depends(get_db)) -> JSONResponse:
    try:
        week = submit_schedule(db, establishment_id, _parse_week_start(week_start), _actor(payload))
    except (ScheduleNotFoundError, InvalidTransitionError) as exc:
        _raise_http(exc)
    return JSONResponse(content=jsonable_encoder(_week_payload(week)))


@app.post("/api/v1/schedules/{establishment_id}/{week_start}/approve")
def approve(establishment_id: str, week_start: str, payload: Dict[str, Any] | None = None, db=Depends(get_db)) -> JSONResponse:
    try:
        result = approve_schedule(db, establishment_id, _parse_week_start(week_start), _actor(payload))
    except (ScheduleNotFoundError, InvalidTransitionError) as exc:
        _raise_http(exc)
    result["week"] = _week_payload(result["week"])
    return JSONResponse(content=jsonable_encoder(result))


@app.post("/api/v1/schedules/{establishment_id}/{week_start}/reject")
def reject(establishment_id: str, week_start: str, payload: Dict[str, Any] | None = None, db=Depends(get_db)) -> JSONResponse:
    notes = (payload or {}).get("notes") or ""
    try:
        week = reject_schedule(db, establishment_id, _parse_week_start(week_start), _actor(payload), notes)
    except (ScheduleNotFoundError, InvalidTransitionError) as exc:
        _raise_http(exc)
    return JSONResponse(content=jsonable_encoder(_week_payload(week)))


@app.post("/api/v1/schedules/{establishment_id}/{week_start}/modification")
def modification_request(establishment_id: str, week_start: str, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    reason = (payload.get("reason") or "").strip()
    if not reason:
        raise HTTPException(status_code=400, detail="reason is required")
    try:
        week = request_modification(db, establishment_id, _parse_week_start(week_start), _actor(payload), reason)
    except (ScheduleNotFoundError, InvalidTransitionError) as exc:
        _raise_http(exc)
    return JSONResponse(content=jsonable_encoder(_week_payload(week)))


@app.post("/api/v1/schedules/{establishment_id}/{week_start}/modification/response")
def modification_response(establishment_id: str, week_start: str, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    if "approved" not in payload:
        raise HTTPException(status_code=400, detail="approved is required")
    try:
        result = respond_to_modification(
            db,
            establishment_id,
            _parse_week_start(week_start),
            _actor(payload),
            bool(payload["approved"]),
            payload.get("notes") or "",
        )
    except (ScheduleNotFoundError, InvalidTransitionError) as exc:
        _raise_http(exc)
    result["week"] = _week_payload(result["week"])
    return JSONResponse(content=jsonable_encoder(result))


@app.patch("/api/v1/shifts/{shift_id}")
def edit_shift(shift_id: int, payload: Dict[str, Any], db=Depends(get_db)) -> JSONResponse:
    try:
        row: Shift = update_shift(db, shift_id, payload)
    except (LookupError, ScheduleLockedError, ValueError) as exc:
        _raise_http(exc)
    record_audit_log(db, _actor(payload), "shift_edit", target_type="Shift", target_id=row.id, payload=payload)
    return JSONResponse(content=jsonable_encoder({"id": row.id, "week_id": row.week_id, "type": row.shift_type}))


@app.get("/api/v1/employees/{employee_id}/hours-debt")
def employee_debt(employee_id: str, db=Depends(get_db)) -> JSONResponse:
    entries = list_debt_entries(db, employee_id=employee_id)
    return JSONResponse(
        content=jsonable_encoder(
            {
                "employee_id": employee_id,
                "balance": round(sum(entry["amount"] for entry in entries), 2),
                "entries": entries,
            }
        )
    )
