# separation.py
"""Split sessions out of a merged order, and merge orders together.

All functions only stage changes on ``db.session``; the calling route
commits once, so a failure anywhere leaves both orders untouched.
"""

from decimal import Decimal

from database import (
    db, money, now_utc, bill_status_for,
    Order, OrderItem, Bill, Expense, OrderStatus,
)
from sessions import (
    SessionDetail, parse_meal_type_amounts, dump_meal_type_amounts,
    sessions_total, resolve_session_key, resolve_menu_type, make_session_key, parse_date,
)


class SeparationError(Exception):
    pass


def next_serial_number() -> int:
    current = db.session.query(db.func.max(Order.serial_number)).scalar()
    return int(current or 0) + 1


def stalls_total(stalls) -> Decimal:
    total = Decimal("0.00")
    for s in stalls or []:
        if isinstance(s, dict):
            total += money(s.get("cost") or 0)
    return total


def recalculate_order_totals(order: Order):
    sessions = parse_meal_type_amounts(order.meal_type_amounts)
    gross = (
        money(sessions_total(sessions))
        + money(order.transport_cost or 0)
        + money(order.water_bottles_cost or 0)
        + stalls_total(order.stalls)
    )
    total = max(Decimal("0.00"), gross - money(order.discount or 0))
    order.total_amount = total
    order.remaining_amount = max(Decimal("0.00"), total - money(order.advance_paid or 0))
    return total


def sync_bill_with_order(order: Order):
    bill = order.bill
    if not bill:
        return None
    bill.total_amount = money(order.total_amount)
    bill.remaining_amount = max(Decimal("0.00"), money(order.total_amount) - money(bill.paid_amount or 0))
    bill.status = bill_status_for(bill.remaining_amount, bill.paid_amount)
    return bill


def _collect_services(values):
    out = []
    for v in values:
        for s in v.services:
            if s not in out:
                out.append(s)
    return out


def _spin_off(order: Order, detached: dict) -> Order:
    members = [v.number_of_members for v in detached.values() if v.number_of_members]
    dates = sorted(v.date for v in detached.values() if v.date)
    new_order = Order(
        serial_number=next_serial_number(),
        customer_id=order.customer_id,
        supervisor_id=order.supervisor_id,
        status=OrderStatus.PENDING.value,
        event_name=order.event_name,
        event_date=dates[0] if dates else order.event_date,
        venue=order.venue,
        number_of_members=max(members) if members else order.number_of_members,
        meal_type_amounts=dump_meal_type_amounts(detached),
        services=_collect_services(detached.values()),
        stalls=[],
        advance_paid=Decimal("0.00"),
        transport_cost=Decimal("0.00"),
        water_bottles_cost=Decimal("0.00"),
        discount=Decimal("0.00"),
    )
    db.session.add(new_order)
    db.session.flush()

    detached_lower = {k.lower() for k in detached}
    for oi in list(order.items):
        if (oi.meal_type or "").strip().lower() in detached_lower:
            oi.order = new_order

    recalculate_order_totals(new_order)
    return new_order


def _apply_remaining(order: Order, kept: dict):
    order.meal_type_amounts = dump_meal_type_amounts(kept)
    order.updated_at = now_utc()
    recalculate_order_totals(order)
    sync_bill_with_order(order)


def detach_session(order: Order, session_key):
    """Move one session and its items into a new order for the same customer."""
    sessions = parse_meal_type_amounts(order.meal_type_amounts)
    if len(sessions) <= 1:
        raise SeparationError("Order has only one session; nothing to separate")
    key = resolve_session_key(session_key, sessions)
    if key is None:
        raise SeparationError("Session not found in order")

    detached = {key: sessions[key]}
    kept = {k: v for k, v in sessions.items() if k != key}

    new_order = _spin_off(order, detached)
    _apply_remaining(order, kept)
    return order, new_order


def detach_date(order: Order, on_date):
    """Move every session dated ``on_date`` into a new order."""
    target = parse_date(on_date)
    if target is None:
        raise SeparationError("Invalid date")
    sessions = parse_meal_type_amounts(order.meal_type_amounts)
    if len(sessions) <= 1:
        raise SeparationError("Order has only one session; nothing to separate")

    detached = {k: v for k, v in sessions.items() if isinstance(v, SessionDetail) and v.date == target}
    if not detached:
        raise SeparationError("No sessions found for this date in order")
    kept = {k: v for k, v in sessions.items() if k not in detached}
    if not kept:
        raise SeparationError("Every session is on this date; nothing would remain")

    new_order = _spin_off(order, detached)
    _apply_remaining(order, kept)
    return order, new_order


def _unique_key(menu_type, serial, taken) -> str:
    base = make_session_key(menu_type, serial)
    key = base
    n = 2
    while key in taken:
        key = f"{base}_{n}"
        n += 1
    return key


def merge_orders(primary: Order, secondaries):
    """Fold ``secondaries`` into ``primary``; the secondaries and their bills are deleted."""
    if not secondaries:
        raise SeparationError("No secondary orders found")

    merged = parse_meal_type_amounts(primary.meal_type_amounts)
    stalls = list(primary.stalls or [])
    services = list(primary.services or [])

    advance = money(primary.advance_paid or 0)
    transport = money(primary.transport_cost or 0)
    water = money(primary.water_bottles_cost or 0)
    discount = money(primary.discount or 0)

    history = list(primary.bill.payment_history or []) if primary.bill else []
    paid = money(primary.bill.paid_amount or 0) if primary.bill else Decimal("0.00")
    if not primary.bill and advance > 0:
        paid = advance
        history.append({
            "amount": float(advance), "date": primary.created_at.isoformat() if primary.created_at else None,
            "source": "advance", "method": "cash", "notes": "Initial advance",
        })

    for other in secondaries:
        advance += money(other.advance_paid or 0)
        transport += money(other.transport_cost or 0)
        water += money(other.water_bottles_cost or 0)
        discount += money(other.discount or 0)

        old_sessions = parse_meal_type_amounts(other.meal_type_amounts)
        key_map = {}
        for old_key, value in old_sessions.items():
            menu_type = resolve_menu_type(old_key, value)
            new_key = _unique_key(menu_type, other.serial_number or 0, set(merged))
            if isinstance(value, SessionDetail) and not value.menu_type:
                value = SessionDetail(
                    amount=value.amount, date=value.date, number_of_members=value.number_of_members,
                    services=value.services, menu_type=menu_type, extra=value.extra,
                )
            key_map[old_key] = new_key
            merged[new_key] = value

        # keys are read before any item is renamed
        for oi in list(other.items):
            old_key = resolve_session_key(oi.meal_type, old_sessions)
            if old_key is not None:
                oi.meal_type = key_map[old_key]
            oi.order = primary

        stalls.extend(other.stalls or [])
        services.extend(s for s in (other.services or []) if s not in services)

        other_paid = money(other.bill.paid_amount or 0) if other.bill else Decimal("0.00")
        other_advance = money(other.advance_paid or 0)
        transfer = other_paid if other_paid > 0 else other_advance
        if transfer > 0:
            paid += transfer
            if other.bill and other.bill.payment_history:
                history.extend(other.bill.payment_history)
            else:
                history.append({
                    "amount": float(transfer), "date": other.created_at.isoformat() if other.created_at else None,
                    "source": "advance_transfer", "method": "other",
                    "notes": f"Transferred from merged Order #{other.serial_number}",
                })

    primary.meal_type_amounts = dump_meal_type_amounts(merged)
    primary.stalls = stalls
    primary.services = services
    primary.advance_paid = advance
    primary.transport_cost = transport
    primary.water_bottles_cost = water
    primary.discount = discount
    primary.updated_at = now_utc()
    dates = sorted(v.date for v in merged.values() if v.date)
    if dates:
        primary.event_date = dates[0]
    recalculate_order_totals(primary)

    if primary.bill or paid > 0 or primary.status != OrderStatus.PENDING.value:
        bill = primary.bill or Bill(order=primary, customer_id=primary.customer_id)
        bill.total_amount = money(primary.total_amount)
        bill.advance_paid = advance
        bill.paid_amount = paid
        bill.remaining_amount = max(Decimal("0.00"), money(primary.total_amount) - paid)
        bill.payment_history = history
        bill.status = bill_status_for(bill.remaining_amount, paid)
        db.session.add(bill)

    db.session.flush()
    for other in secondaries:
        Expense.query.filter_by(order_id=other.id).update({"order_id": primary.id})
        if other.bill:
            db.session.delete(other.bill)
        db.session.delete(other)
    return primary
