# grouping.py
"""Date -> session -> items hierarchy shared by every order/bill document."""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from sessions import (
    SessionValue, parse_date, resolve_session_key, resolve_menu_type,
    meal_priority, sanitize_meal_label,
)


@dataclass(frozen=True)
class LineItem:
    id: str
    session_key: Optional[str]
    item_name: str
    customization: Optional[str] = None
    item_type: Any = None
    quantity: int = 1


@dataclass
class SessionGroup:
    key: str
    menu_type: str
    members: Optional[int] = None
    services: List[str] = field(default_factory=list)
    items: List[LineItem] = field(default_factory=list)

    @property
    def label(self):
        return sanitize_meal_label(self.menu_type)

    def to_dict(self):
        return {
            "key": self.key,
            "menu_type": self.menu_type,
            "label": self.label,
            "members": self.members,
            "services": list(self.services),
            "items": [
                {
                    "id": it.id,
                    "item_name": it.item_name,
                    "customization": it.customization,
                    "quantity": it.quantity,
                }
                for it in self.items
            ],
        }


def _date_sort_key(d):
    if isinstance(d, date):
        return (0, d.toordinal(), "")
    return (1, 0, str(d))


def _display_date(value, fallback_date):
    d = value if value is not None else parse_date(fallback_date)
    if d is not None:
        return d
    return fallback_date if fallback_date not in (None, "") else "Unknown date"


def group_by_date_then_session(items: List[LineItem], session_map: Dict[str, SessionValue],
                               fallback_date=None) -> Dict[Any, List[SessionGroup]]:
    """Group ``items`` by session date, then by session key.

    Sessions sharing a menu type but not a key stay separate. Items whose
    key resolves to nothing land in a ``legacy_<menuType>`` group on the
    fallback date. Dates ascend (unparseable ones last), sessions within a
    date follow breakfast, lunch, dinner, snacks, then the rest; empty
    sessions are dropped. Item order inside a group is input order.
    """
    groups: Dict[str, SessionGroup] = {}
    group_date: Dict[str, Any] = {}
    seed_rank: Dict[str, int] = {}
    legacy_keys: Dict[str, str] = {}

    for rank, (key, session) in enumerate(session_map.items()):
        groups[key] = SessionGroup(
            key=key,
            menu_type=resolve_menu_type(key, session),
            members=session.number_of_members,
            services=list(session.services),
        )
        group_date[key] = _display_date(session.date, fallback_date)
        seed_rank[key] = rank

    for item in items:
        resolved = resolve_session_key(item.session_key, session_map)
        if resolved is not None:
            groups[resolved].items.append(item)
            continue

        menu_type = resolve_menu_type(item.session_key or "", None, item.item_type)
        legacy_key = legacy_keys.get(menu_type)
        if legacy_key is None:
            legacy_key = base = f"legacy_{menu_type}"
            n = 2
            # a stored session may already be named like a legacy group
            while legacy_key in session_map:
                legacy_key = f"{base}_{n}"
                n += 1
            legacy_keys[menu_type] = legacy_key
            groups[legacy_key] = SessionGroup(key=legacy_key, menu_type=menu_type)
            group_date[legacy_key] = _display_date(None, fallback_date)
        groups[legacy_key].items.append(item)

    by_date: Dict[Any, List[SessionGroup]] = {}
    for key, group in groups.items():
        if not group.items:
            continue
        by_date.setdefault(group_date[key], []).append(group)

    def session_sort_key(g):
        if g.key in seed_rank:
            return (meal_priority(g.menu_type), 0, seed_rank[g.key], "")
        return (meal_priority(g.menu_type), 1, 0, g.key)

    out = {}
    for d in sorted(by_date, key=_date_sort_key):
        out[d] = sorted(by_date[d], key=session_sort_key)
    return out


def grouped_to_list(grouped: Dict[Any, List[SessionGroup]]):
    out = []
    for d, sessions in grouped.items():
        out.append({
            "date": d.isoformat() if isinstance(d, date) else str(d),
            "sessions": [s.to_dict() for s in sessions],
        })
    return out


def line_items_for_order(order) -> List[LineItem]:
    out = []
    for oi in order.items:
        out.append(LineItem(
            id=oi.id,
            session_key=oi.meal_type,
            item_name=oi.item_name,
            customization=oi.customization,
            item_type=oi.menu_item.type if oi.menu_item else None,
            quantity=int(oi.quantity or 1),
        ))
    return out
