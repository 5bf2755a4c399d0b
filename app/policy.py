from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from database import get_store_settings_record, upsert_store_settings
from models import Holiday, OpeningHours, StoreSettings, parse_date
from roles import REGISTER_ROLES


GENERATOR_DEFAULTS: Dict[str, Any] = {
    "slot_hours": 4,
    "high_hours_threshold": 40,
    "afternoon_penalty": 0.5,
    "key_role_bias": -2000,
    "restriction_bias": -50,
    "saturday_rotation_bias": 5,
    "saturday_rotation_cycle": 4,
    "early_morning": {
        "start": "09:00",
        "end": "14:00",
        "max_days": 4,
        "min_target_hours": 20,
    },
    "mandatory_rest_day": False,
}

VALIDATION_DEFAULTS: Dict[str, Any] = {
    "default_max_afternoons": 3,
    "daily_hours_threshold": 48,
    "afternoon_closed_threshold": 24,
    "period_hours": 4,
    "register_roles": list(REGISTER_ROLES),
}

HOURS_DEFAULTS: Dict[str, Any] = {
    "reduction_columns": [0.5, 1, 1.5, 2, 3],
    "reduction_table": {
        "40": [36, 32, 28, 24, 16],
        "36": [33, 30, 27, 23, 18],
        "32": [30, 27, 24, 21, 16],
        "28": [25, 23, 21, 19, 14],
        "24": [22, 20, 18, 16, 12],
        "20": [18, 17, 15, 13, 10],
        "16": [14, 13, 12, 10, 8],
    },
    "full_reduction_days": 5,
    "default_single_hours": 4,
    "default_split_hours": 8,
}

OPENING_HOURS_DEFAULTS: Dict[str, str] = {
    "morning_start": "10:00",
    "morning_end": "14:00",
    "afternoon_start": "17:00",
    "afternoon_end": "21:00",
}

BASELINE_POLICY: Dict[str, Any] = {
    "name": "Store Baseline",
    "opening_hours": OPENING_HOURS_DEFAULTS,
    "generator": GENERATOR_DEFAULTS,
    "validation": VALIDATION_DEFAULTS,
    "hours": HOURS_DEFAULTS,
}


def build_default_policy() -> Dict[str, Any]:
    """Return a deepcopy so callers can mutate the policy safely."""
    return copy.deepcopy(BASELINE_POLICY)


def _deep_update(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_update(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def normalize_policy(policy: Optional[Dict]) -> Dict[str, Any]:
    """Merge a stored override onto the baseline so every knob resolves."""
    if not isinstance(policy, dict):
        return build_default_policy()
    normalized = _deep_update(BASELINE_POLICY, policy)
    hours_cfg = normalized["hours"]
    # JSON round-trips turn the table keys into strings; keep them that way.
    hours_cfg["reduction_table"] = {
        str(_as_number(key)): list(row) for key, row in hours_cfg.get("reduction_table", {}).items()
    }
    generator_cfg = normalized["generator"]
    generator_cfg["mandatory_rest_day"] = bool(generator_cfg.get("mandatory_rest_day"))
    try:
        cycle = int(generator_cfg.get("saturday_rotation_cycle") or GENERATOR_DEFAULTS["saturday_rotation_cycle"])
    except (TypeError, ValueError):
        cycle = GENERATOR_DEFAULTS["saturday_rotation_cycle"]
    generator_cfg["saturday_rotation_cycle"] = max(1, cycle)
    return normalized


def _as_number(value: Any) -> Any:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return value
    return int(number) if number.is_integer() else number


def generator_settings(policy: Optional[Dict]) -> Dict[str, Any]:
    return normalize_policy(policy)["generator"]


def validation_settings(policy: Optional[Dict]) -> Dict[str, Any]:
    return normalize_policy(policy)["validation"]


def hours_settings(policy: Optional[Dict]) -> Dict[str, Any]:
    return normalize_policy(policy)["hours"]


def parse_time_label(value: Optional[str]) -> Optional[int]:
    """Return minutes since midnight for an ``HH:MM`` label."""
    if value is None:
        return None
    label = str(value).strip()
    if not label or ":" not in label:
        return None
    hour_str, minute_str = label.split(":", 1)
    try:
        hours = int(hour_str)
        minutes = int(minute_str[:2])
    except ValueError:
        return None
    return max(0, hours) * 60 + max(0, minutes)


def build_store_settings(establishment_id: str, params: Optional[Dict[str, Any]] = None) -> StoreSettings:
    """Build ``StoreSettings`` from a stored params payload."""
    params = params if isinstance(params, dict) else {}
    policy = normalize_policy(params.get("policy"))
    hours_payload = _deep_update(policy["opening_hours"], params.get("opening_hours") or {})
    opening_hours = OpeningHours(
        **{key: str(hours_payload.get(key) or default) for key, default in OPENING_HOURS_DEFAULTS.items()}
    )
    holidays: List[Holiday] = []
    for entry in params.get("holidays") or []:
        if isinstance(entry, str):
            holidays.append(Holiday(entry, "full"))
        elif isinstance(entry, dict) and entry.get("date"):
            holidays.append(Holiday(entry["date"], entry.get("type") or "full"))
    open_sundays = [parse_date(value) for value in params.get("open_sundays") or []]
    return StoreSettings(
        establishment_id=str(establishment_id),
        store_name=str(params.get("store_name") or ""),
        opening_hours=opening_hours,
        holidays=holidays,
        open_sundays=open_sundays,
        policy=policy,
    )


def settings_to_params(settings: StoreSettings) -> Dict[str, Any]:
    opening = settings.opening_hours
    return {
        "store_name": settings.store_name,
        "opening_hours": {
            "morning_start": opening.morning_start,
            "morning_end": opening.morning_end,
            "afternoon_start": opening.afternoon_start,
            "afternoon_end": opening.afternoon_end,
        },
        "holidays": [{"date": h.date.isoformat(), "type": h.type} for h in settings.holidays],
        "open_sundays": [value.isoformat() for value in settings.open_sundays],
        "policy": {key: value for key, value in settings.policy.items() if key != "opening_hours"},
    }


def load_store_settings(conn, establishment_id: str) -> StoreSettings:
    """Return the persisted settings for a store, falling back to the baseline."""
    if conn is None:
        return build_store_settings(establishment_id)
    if callable(conn):
        with conn() as session:
            return load_store_settings(session, establishment_id)
    record = get_store_settings_record(conn, establishment_id)
    return build_store_settings(establishment_id, record.params_dict() if record else {})


def ensure_default_settings(session_factory, establishment_id: str) -> None:
    """Seed baseline settings for a store exactly once."""

    with session_factory() as session:
        if get_store_settings_record(session, establishment_id):
            return
        params = settings_to_params(build_store_settings(establishment_id))
        upsert_store_settings(session, establishment_id, params, edited_by="system")
