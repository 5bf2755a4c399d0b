from __future__ import annotations

from typing import Dict, Optional, Set


CATEGORY_RANKS: Dict[str, int] = {
    "Gerente": 5,
    "Subgerente": 4,
    "Responsable": 3,
    "Empleado": 2,
    "Limpieza": 1,
}
DEFAULT_CATEGORY = "Empleado"
KEY_ROLE_CATEGORIES: Set[str] = {"Gerente", "Subgerente", "Responsable"}

# Per-shift work roles that can be stamped on a working shift.
WORK_ROLES: Dict[str, str] = {
    "sales_register": "Sales register",
    "purchase_register": "Purchase register",
    "shuttle": "Shuttle",
    "cleaning": "Cleaning",
}
REGISTER_ROLES = ("sales_register", "purchase_register")

_CATEGORY_ALIASES = {
    "manager": "Gerente",
    "store manager": "Gerente",
    "assistant manager": "Subgerente",
    "sub-gerente": "Subgerente",
    "supervisor": "Responsable",
    "employee": "Empleado",
    "cleaner": "Limpieza",
    "cleaning": "Limpieza",
}


def normalize_category(value: Optional[str]) -> str:
    """Map free-form category labels onto the canonical category names."""
    if not value:
        return DEFAULT_CATEGORY
    text = str(value).strip()
    for name in CATEGORY_RANKS:
        if name.lower() == text.lower():
            return name
    return _CATEGORY_ALIASES.get(text.lower(), DEFAULT_CATEGORY)


def category_rank(category: Optional[str]) -> int:
    return CATEGORY_RANKS.get(normalize_category(category), 0)


def is_key_role(category: Optional[str]) -> bool:
    return normalize_category(category) in KEY_ROLE_CATEGORIES


def normalize_role(role: Optional[str]) -> Optional[str]:
    if not role:
        return None
    token = str(role).strip().lower().replace("-", "_").replace(" ", "_")
    if token in WORK_ROLES:
        return token
    return None


def role_label(role: Optional[str]) -> str:
    normalized = normalize_role(role)
    if not normalized:
        return ""
    return WORK_ROLES[normalized]
