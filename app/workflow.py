"""Approval lifecycle of a stored weekly schedule and its hour-debt postings.

``approval_status`` and ``modification_status`` move independently:

    draft/rejected --submit--> pending --approve--> approved
                               pending --reject---> rejected
    approved + none/rejected --request_modification--> requested
    requested --respond(approved)--> draft + approved (postings reversed)
    requested --respond(rejected)--> approved + rejected
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, List

from database import (
    WeekSchedule,
    add_debt_entry,
    load_employees,
    load_time_off_requests,
    open_debt_entries,
    record_audit_log,
    require_week,
    week_to_schedule,
)
from models import HoursDebtAdjustment
from policy import load_store_settings
from reconciliation import describe_adjustment, reconcile_hours

log = logging.getLogger(__name__)


class InvalidTransitionError(ValueError):
    pass


def _require_status(week: WeekSchedule, action: str, allowed_approval=None, allowed_modification=None) -> None:
    if allowed_approval is not None and week.approval_status not in allowed_approval:
        raise InvalidTransitionError(
            f"Cannot {action} schedule {week.id}: approval status is '{week.approval_status}'."
        )
    if allowed_modification is not None and week.modification_status not in allowed_modification:
        raise InvalidTransitionError(
            f"Cannot {action} schedule {week.id}: modification status is '{week.modification_status}'."
        )


def _commit_transition(session, week: WeekSchedule, actor: str, action: str, payload: Dict[str, Any]) -> None:
    session.commit()
    session.refresh(week)
    log.info(
        "%s: schedule %s now %s/%s (by %s)",
        action,
        week.id,
        week.approval_status,
        week.modification_status,
        actor,
    )
    record_audit_log(
        session,
        actor or "system",
        action,
        target_id=week.id,
        payload={
            "approval_status": week.approval_status,
            "modification_status": week.modification_status,
            **payload,
        },
    )


def preview_adjustments(session, week: WeekSchedule) -> List[HoursDebtAdjustment]:
    """Reconcile the stored schedule without posting anything."""
    employees = load_employees(session, week.establishment_id)
    return reconcile_hours(
        week_to_schedule(week),
        employees,
        load_store_settings(session, week.establishment_id),
        load_time_off_requests(session, [emp.id for emp in employees]),
    )


def submit_schedule(session, establishment_id: str, week_start: datetime.date, actor: str) -> WeekSchedule:
    week = require_week(session, establishment_id, week_start)
    _require_status(week, "submit", allowed_approval=("draft", "rejected"))
    week.approval_status = "pending"
    week.modification_status = "none"
    week.submitted_at = datetime.datetime.now(datetime.timezone.utc)
    _commit_transition(session, week, actor, "schedule_submit", {})
    return week


def approve_schedule(session, establishment_id: str, week_start: datetime.date, actor: str) -> Dict[str, Any]:
    """Approve a pending schedule and post its reconciliation adjustments once."""
    week = require_week(session, establishment_id, week_start)
    _require_status(week, "approve", allowed_approval=("pending",))
    adjustments = preview_adjustments(session, week)
    posted = []
    if open_debt_entries(session, week.id):
        log.warning("Schedule %s already has open hour-debt postings; skipping.", week.id)
    else:
        for adjustment in adjustments:
            entry = add_debt_entry(
                session,
                adjustment.employee_id,
                week.id,
                adjustment.amount,
                adjustment.reason,
                created_by=actor,
            )
            posted.append(entry)
    week.approval_status = "approved"
    _commit_transition(
        session,
        week,
        actor,
        "schedule_approve",
        {"postings": [{"employee_id": e.employee_id, "amount": e.amount} for e in posted]},
    )
    return {
        "week": week,
        "adjustments": [adjustment.to_dict() for adjustment in adjustments],
        "messages": [describe_adjustment(adjustment) for adjustment in adjustments],
        "posted": len(posted),
    }


def reject_schedule(
    session, establishment_id: str, week_start: datetime.date, actor: str, notes: str = ""
) -> WeekSchedule:
    week = require_week(session, establishment_id, week_start)
    _require_status(week, "reject", allowed_approval=("pending",))
    week.approval_status = "rejected"
    week.supervisor_notes = notes or ""
    _commit_transition(session, week, actor, "schedule_reject", {"notes": week.supervisor_notes})
    return week


def request_modification(
    session, establishment_id: str, week_start: datetime.date, actor: str, reason: str
) -> WeekSchedule:
    week = require_week(session, establishment_id, week_start)
    _require_status(
        week,
        "request a modification of",
        allowed_approval=("approved",),
        allowed_modification=("none", "rejected"),
    )
    week.modification_status = "requested"
    week.modification_reason = reason or ""
    _commit_transition(session, week, actor, "modification_request", {"reason": week.modification_reason})
    return week


def respond_to_modification(
    session,
    establishment_id: str,
    week_start: datetime.date,
    actor: str,
    approved: bool,
    notes: str = "",
) -> Dict[str, Any]:
    """Approve (reopen and reverse postings) or reject a pending modification request."""
    week = require_week(session, establishment_id, week_start)
    _require_status(week, "answer the modification request of", allowed_modification=("requested",))
    reversals = []
    if approved:
        for entry in open_debt_entries(session, week.id):
            reversal = add_debt_entry(
                session,
                entry.employee_id,
                week.id,
                -entry.amount,
                f"Reversal: {entry.reason}",
                reverses=entry,
                created_by=actor,
            )
            reversals.append(reversal)
        week.approval_status = "draft"
        week.modification_status = "approved"
    else:
        week.modification_status = "rejected"
    if notes:
        week.supervisor_notes = notes
    _commit_transition(
        session,
        week,
        actor,
        "modification_approve" if approved else "modification_reject",
        {"reversals": [{"employee_id": e.employee_id, "amount": e.amount} for e in reversals]},
    )
    return {"week": week, "reversed": len(reversals)}
