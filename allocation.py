# allocation.py
"""Split one expense amount across several orders.

Four policies are supported: ``equal``, ``manual``, ``by-plates`` (weighted
by headcount) and ``by-percentage``. Every function returns fresh
``AllocationTarget`` objects and never raises on well-typed input; the
caller turns ``reconcile_delta`` into a user-facing message.
"""

from dataclasses import dataclass, replace
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from sessions import SessionDetail


EQUAL = "equal"
MANUAL = "manual"
BY_PLATES = "by-plates"
BY_PERCENTAGE = "by-percentage"

METHODS = (EQUAL, MANUAL, BY_PLATES, BY_PERCENTAGE)

DEFAULT_WEIGHT = 100
BALANCE_TOLERANCE = Decimal("0.01")
MIN_BULK_TARGETS = 2

_CENT = Decimal("0.01")


@dataclass
class AllocationTarget:
    id: str
    display_name: str = ""
    weight: Optional[Decimal] = None
    amount: Decimal = Decimal("0.00")
    percentage: Optional[Decimal] = None

    def to_dict(self):
        return {
            "id": self.id,
            "display_name": self.display_name,
            "weight": float(self.weight) if self.weight is not None else None,
            "amount": float(self.amount),
            "percentage": float(self.percentage) if self.percentage is not None else None,
        }


def _dec(x) -> Decimal:
    if x is None or isinstance(x, bool):
        return Decimal("0")
    try:
        return Decimal(str(x))
    except Exception:
        return Decimal("0")


def _round(x) -> Decimal:
    return _dec(x).quantize(_CENT, rounding=ROUND_HALF_UP)


def _absorb_remainder(total: Decimal, out: List[AllocationTarget]) -> List[AllocationTarget]:
    # last target takes whatever the rounded shares of the others leave over
    if out:
        others = sum((t.amount for t in out[:-1]), Decimal("0"))
        out[-1].amount = _dec(total) - others
    return out


def allocate_equal(total, targets: List[AllocationTarget]) -> List[AllocationTarget]:
    if not targets:
        return []
    total = _dec(total)
    count = len(targets)
    share = _round(total / count)
    pct = Decimal(100) / count
    out = [replace(t, amount=share, percentage=pct) for t in targets]
    return _absorb_remainder(total, out)


def resolve_weight(weight, default_weight=DEFAULT_WEIGHT) -> Decimal:
    w = _dec(weight)
    if w <= 0:
        return _dec(default_weight)
    return w


def allocate_by_weight(total, targets: List[AllocationTarget], default_weight=DEFAULT_WEIGHT) -> List[AllocationTarget]:
    """Proportional split; targets without a usable weight count as ``default_weight``."""
    if not targets:
        return []
    total = _dec(total)
    weights = [resolve_weight(t.weight, default_weight) for t in targets]
    weight_sum = sum(weights, Decimal("0"))
    if weight_sum <= 0:
        return allocate_equal(total, targets)

    out = []
    for t, w in zip(targets, weights):
        out.append(replace(
            t,
            weight=w,
            amount=_round(total * w / weight_sum),
            percentage=w * 100 / weight_sum,
        ))
    return _absorb_remainder(total, out)


def allocate_by_percentage(total, targets: List[AllocationTarget],
                           existing_percentages: Optional[Dict[str, object]] = None) -> List[AllocationTarget]:
    """No renormalisation: percentages that do not add up to 100 stay as entered."""
    if not targets:
        return []
    total = _dec(total)
    existing = existing_percentages or {}
    default_pct = Decimal(100) / len(targets)

    out = []
    for t in targets:
        pct = _dec(existing.get(t.id)) or _dec(t.percentage) or default_pct
        out.append(replace(t, percentage=pct, amount=_round(total * pct / 100)))
    return out


def allocate_manual(targets: List[AllocationTarget],
                    existing_amounts: Optional[Dict[str, object]] = None) -> List[AllocationTarget]:
    existing = existing_amounts or {}
    return [replace(t, amount=_round(existing.get(t.id, 0)), percentage=None) for t in targets]


def reconcile_delta(total, targets: List[AllocationTarget]) -> Decimal:
    """Positive when under-allocated, negative when over-allocated."""
    allocated = sum((_dec(t.amount) for t in targets), Decimal("0"))
    return _round(_dec(total) - allocated)


def is_balanced(total, targets: List[AllocationTarget]) -> bool:
    return abs(reconcile_delta(total, targets)) <= BALANCE_TOLERANCE


def percentage_total(targets: List[AllocationTarget]) -> Decimal:
    return sum((_dec(t.percentage) for t in targets), Decimal("0"))


def allocate(method, total, targets: List[AllocationTarget], previous: Optional[List[AllocationTarget]] = None,
             default_weight=DEFAULT_WEIGHT) -> List[AllocationTarget]:
    """Recompute allocations from scratch for ``method``.

    ``previous`` is only consulted by the percentage and manual policies,
    which keep what the user already typed for targets still selected.
    """
    previous = previous or []
    if method == EQUAL:
        return allocate_equal(total, targets)
    if method == BY_PLATES:
        return allocate_by_weight(total, targets, default_weight)
    if method == BY_PERCENTAGE:
        return allocate_by_percentage(total, targets, {p.id: p.percentage for p in previous if p.percentage})
    if method == MANUAL:
        return allocate_manual(targets, {p.id: p.amount for p in previous})
    return allocate_equal(total, targets)


def auto_reconciled(method) -> bool:
    return method in (EQUAL, BY_PLATES)


def validate_bulk(method, total, targets: List[AllocationTarget]) -> Optional[str]:
    """Return a validation message, or ``None`` when the batch may be saved."""
    if method not in METHODS:
        return f"Unknown allocation method: {method}"
    if len(targets) < MIN_BULK_TARGETS:
        return "Select at least 2 orders for a bulk expense"
    if auto_reconciled(method) and not is_balanced(total, targets):
        return f"Allocated amounts do not match the total (difference {reconcile_delta(total, targets)})"
    return None


def plates_for_order(number_of_members, sessions) -> Optional[int]:
    """Headcount used as the by-plates weight; ``None`` when it cannot be determined."""
    try:
        n = int(number_of_members or 0)
    except (TypeError, ValueError):
        n = 0
    if n > 0:
        return n
    plates = 0
    for s in (sessions or {}).values():
        if isinstance(s, SessionDetail):
            count = s.extra.get("numberOfPlates") or s.number_of_members or 0
            try:
                plates += int(count)
            except (TypeError, ValueError):
                continue
    return plates if plates > 0 else None


def targets_from_payload(rows) -> List[AllocationTarget]:
    out = []
    for r in rows or []:
        if not isinstance(r, dict) or not r.get("id"):
            continue
        out.append(AllocationTarget(
            id=str(r["id"]),
            display_name=str(r.get("display_name") or ""),
            weight=_dec(r["weight"]) if r.get("weight") is not None else None,
            amount=_round(r.get("amount") or 0),
            percentage=_dec(r["percentage"]) if r.get("percentage") is not None else None,
        ))
    return out


def expense_total(category, details, amount) -> Decimal:
    """Total to pay for an expense, derived from its calculation details when present."""
    details = details if isinstance(details, dict) else {}
    if category == "chef" and details.get("method") == "plate-wise":
        return _round(_dec(details.get("plates")) * _dec(details.get("perPlateAmount")))
    if category == "labours" and details.get("numberOfLabours") is not None:
        return _round(_dec(details.get("numberOfLabours")) * _dec(details.get("perUnitAmount")))
    if category == "boys" and (details.get("dressedBoys") is not None or details.get("nonDressedBoys") is not None):
        return _round(
            _dec(details.get("dressedBoys")) * _dec(details.get("dressedBoyAmount"))
            + _dec(details.get("nonDressedBoys")) * _dec(details.get("nonDressedBoyAmount"))
        )
    return _round(amount)
