# sessions.py
"""Meal-session records stored in ``Order.meal_type_amounts``.

Each value in the stored mapping is either a bare number (the old
amount-only format) or an object carrying the amount plus the session's
date, headcount, services and menu type. Both forms are parsed here into
``LegacyAmount`` or ``SessionDetail`` so callers never inspect raw JSON.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Union


MEAL_TYPE_PRIORITY = {"BREAKFAST": 1, "LUNCH": 2, "DINNER": 3, "SNACKS": 4}
UNKNOWN_MEAL_PRIORITY = 99

KNOWN_MEAL_PREFIXES = ("breakfast", "lunch", "dinner", "snacks", "tiffins", "sweets")

_UUID_RE = re.compile(r"^[0-9a-f-]{36}$", re.IGNORECASE)


@dataclass(frozen=True)
class LegacyAmount:
    amount: Decimal

    @property
    def date(self):
        return None

    @property
    def menu_type(self):
        return None

    @property
    def number_of_members(self):
        return None

    @property
    def services(self):
        return []


@dataclass(frozen=True)
class SessionDetail:
    amount: Decimal
    date: Optional[date] = None
    number_of_members: Optional[int] = None
    services: List[str] = field(default_factory=list)
    menu_type: Optional[str] = None
    extra: dict = field(default_factory=dict)


SessionValue = Union[LegacyAmount, SessionDetail]

_KNOWN_KEYS = {"amount", "date", "numberOfMembers", "services", "menuType"}


def _to_decimal(x) -> Decimal:
    if x is None or isinstance(x, bool):
        return Decimal("0")
    try:
        return Decimal(str(x))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def parse_date(value) -> Optional[date]:
    """Accept ``date``, ``datetime`` or an ISO string (time part ignored)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip().split("T")[0]
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _to_members(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        n = int(float(value))
    except (TypeError, ValueError):
        return None
    return n if n > 0 else None


def parse_session_value(raw) -> SessionValue:
    if isinstance(raw, dict):
        services = raw.get("services")
        if not isinstance(services, list):
            services = []
        menu_type = raw.get("menuType")
        return SessionDetail(
            amount=_to_decimal(raw.get("amount")),
            date=parse_date(raw.get("date")),
            number_of_members=_to_members(raw.get("numberOfMembers")),
            services=[str(s) for s in services],
            menu_type=str(menu_type) if menu_type else None,
            extra={k: v for k, v in raw.items() if k not in _KNOWN_KEYS},
        )
    return LegacyAmount(amount=_to_decimal(raw))


def parse_meal_type_amounts(raw) -> Dict[str, SessionValue]:
    """Parse the stored JSON mapping; anything that is not a mapping yields ``{}``."""
    if not isinstance(raw, dict):
        return {}
    return {str(k): parse_session_value(v) for k, v in raw.items()}


def dump_session_value(value: SessionValue):
    if isinstance(value, LegacyAmount):
        return float(value.amount)
    out = dict(value.extra)
    out["amount"] = float(value.amount)
    if value.date:
        out["date"] = value.date.isoformat()
    if value.number_of_members is not None:
        out["numberOfMembers"] = value.number_of_members
    if value.services:
        out["services"] = list(value.services)
    if value.menu_type:
        out["menuType"] = value.menu_type
    return out


def dump_meal_type_amounts(sessions: Dict[str, SessionValue]) -> dict:
    return {k: dump_session_value(v) for k, v in sessions.items()}


def sessions_total(sessions: Dict[str, SessionValue]) -> Decimal:
    return sum((v.amount for v in sessions.values()), Decimal("0"))


def resolve_session_key(session_key, sessions: Dict[str, SessionValue]) -> Optional[str]:
    """Find the stored key for ``session_key``.

    Exact match first, then a case-insensitive scan; historical rows were
    written with inconsistent casing. Returns ``None`` when nothing matches.
    """
    key = session_key.strip() if isinstance(session_key, str) else ""
    if not key:
        return None
    if key in sessions:
        return key
    lowered = key.lower()
    for k in sessions:
        if k.lower() == lowered:
            return k
    return None


def menu_type_from_key(session_key) -> Optional[str]:
    """Extract the meal type from keys like ``session_LUNCH_001`` or ``Lunch_merged``."""
    if not session_key or _UUID_RE.match(session_key):
        return None
    if session_key.startswith("session_"):
        parts = session_key.split("_")
        if len(parts) > 1 and parts[1] and parts[1] != "merged":
            return parts[1]
    head = session_key.split("_")[0]
    if head.lower() in KNOWN_MEAL_PREFIXES:
        return head
    return None


def resolve_menu_type(session_key, session: Optional[SessionValue], item_type=None) -> str:
    if session is not None and session.menu_type:
        return session.menu_type
    parsed = menu_type_from_key(session_key)
    if parsed:
        return parsed
    if isinstance(item_type, (list, tuple)) and item_type:
        return str(item_type[0])
    if isinstance(item_type, str) and item_type:
        return item_type
    return "OTHER"


def meal_priority(menu_type) -> int:
    return MEAL_TYPE_PRIORITY.get((menu_type or "").upper(), UNKNOWN_MEAL_PRIORITY)


def sanitize_meal_label(label) -> str:
    if not label:
        return ""
    if len(label) > 20 and "-" in label:
        return "Meal"
    working = label
    if working.startswith("session_"):
        parts = working.split("_")
        if len(parts) > 1 and parts[1] and parts[1] != "merged":
            working = parts[1]
        else:
            working = "Meal"
    clean = working.split("_")[0]
    if len(clean) > 20:
        return "Meal"
    return clean[:1].upper() + clean[1:].lower()


def make_session_key(menu_type, serial) -> str:
    tag = re.sub(r"[^A-Za-z0-9]+", "", str(menu_type or "")).upper() or "OTHER"
    return f"session_{tag}_{serial}"
