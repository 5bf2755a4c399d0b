from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Dict, List

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import (  # noqa: E402
    SessionLocal,
    add_permanent_request,
    init_database,
    upsert_employee,
)
from policy import ensure_default_settings  # noqa: E402


DEMO_EMPLOYEES: List[Dict] = [
    {"id": "e-ana", "name": "Ana", "category": "Gerente", "weekly_hours": 40},
    {"id": "e-bruno", "name": "Bruno", "category": "Subgerente", "weekly_hours": 40},
    {"id": "e-carla", "name": "Carla", "category": "Responsable", "weekly_hours": 36},
    {"id": "e-diego", "name": "Diego", "category": "Empleado", "weekly_hours": 32},
    {"id": "e-elena", "name": "Elena", "category": "Empleado", "weekly_hours": 24},
    {"id": "e-fran", "name": "Fran", "category": "Empleado", "weekly_hours": 20},
    {"id": "e-gema", "name": "Gema", "category": "Empleado", "weekly_hours": 16},
    {"id": "e-hugo", "name": "Hugo", "category": "Limpieza", "weekly_hours": 16},
]

DEMO_REQUESTS: List[Dict] = [
    {"employee_id": "e-diego", "type": "specific_days_off", "days": [3]},
    {"employee_id": "e-elena", "type": "morning_only"},
    {"employee_id": "e-fran", "type": "max_afternoons_per_week", "value": 2},
    {"employee_id": "e-hugo", "type": "early_morning_shift"},
]


def seed_store(establishment_id: str) -> None:
    init_database()
    ensure_default_settings(SessionLocal, establishment_id)
    with SessionLocal() as session:
        for entry in DEMO_EMPLOYEES:
            upsert_employee(session, {**entry, "establishment_id": establishment_id})
        for entry in DEMO_REQUESTS:
            add_permanent_request(session, entry)
    print(
        f"Seed complete. {len(DEMO_EMPLOYEES)} employees and {len(DEMO_REQUESTS)} "
        f"permanent requests for store {establishment_id}."
    )


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed a demo store with employees and standing requests.")
    parser.add_argument("--store", default="1", help="Establishment id to seed.")
    return parser.parse_args()


if __name__ == "__main__":
    seed_store(parse_args().store)
