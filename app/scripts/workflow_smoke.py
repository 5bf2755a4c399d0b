from __future__ import annotations

import argparse
import datetime
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import SessionLocal, init_database, list_debt_entries  # noqa: E402
from generator.api import generate_schedule_for_week  # noqa: E402
from policy import ensure_default_settings  # noqa: E402
from workflow import (  # noqa: E402
    approve_schedule,
    request_modification,
    respond_to_modification,
    submit_schedule,
)


def _default_week_start(today: datetime.date | None = None) -> datetime.date:
    base = today or datetime.date.today()
    delta = (7 - base.weekday()) % 7
    delta = delta or 7
    return base + datetime.timedelta(days=delta)


def run_workflow(establishment_id: str, week_start: datetime.date, actor: str) -> None:
    ensure_default_settings(SessionLocal, establishment_id)
    result = generate_schedule_for_week(SessionLocal, establishment_id, week_start, actor, force=True)
    print(f"[workflow] Generated {result['shifts_created']} shifts for {result['employees']} employees.")
    for message in result["validation"]["violations"]:
        print(f"[workflow][violation] {message}")
    for message in result["validation"]["warnings"]:
        print(f"[workflow][warning] {message}")

    with SessionLocal() as session:
        submit_schedule(session, establishment_id, week_start, actor)
        approval = approve_schedule(session, establishment_id, week_start, actor)
        for message in approval["messages"]:
            print(f"[workflow][hours] {message}")
        print(f"[workflow] Approved; posted {approval['posted']} hour-debt entries.")

        request_modification(session, establishment_id, week_start, actor, "Smoke test reopen")
        reopened = respond_to_modification(session, establishment_id, week_start, actor, approved=True)
        print(f"[workflow] Modification approved; reversed {reopened['reversed']} entries.")
        balance = sum(entry["amount"] for entry in list_debt_entries(session, week_id=reopened["week"].id))
        if abs(balance) > 1e-9:
            raise SystemExit(f"Ledger did not net to zero after reversal (balance {balance}).")
    print("[workflow] Ledger nets to zero for the reopened week.")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Run an end-to-end smoke test that generates a week, approves it, "
            "then reopens it and checks the hour-debt postings were reversed."
        )
    )
    parser.add_argument("--store", default="1", help="Establishment id to schedule.")
    parser.add_argument(
        "--week-start",
        help="ISO date (YYYY-MM-DD) for the Monday to target. Defaults to next Monday.",
    )
    parser.add_argument("--actor", default="workflow_smoke", help="Audit trail actor name.")
    return parser.parse_args()


def main() -> None:
    init_database()
    args = parse_args()
    if args.week_start:
        try:
            week_start = datetime.date.fromisoformat(args.week_start)
        except ValueError as exc:
            raise SystemExit(f"Invalid --week-start value: {exc}") from exc
    else:
        week_start = _default_week_start()
    if week_start.weekday() != 0:
        week_start = week_start - datetime.timedelta(days=week_start.weekday())
    print(f"[workflow] Target week start: {week_start}")
    run_workflow(args.store, week_start, actor=args.actor)


if __name__ == "__main__":
    main()
