# documents.py
"""Printable documents: HTML via Jinja2 templates, PDF via reportlab.

``render_html(kind, data)`` is deterministic for identical input; the
``*_template_data`` builders turn model rows into those inputs.
"""

import io
from contextlib import contextmanager
from decimal import Decimal

from jinja2 import Environment, DictLoader, select_autoescape
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from database import money
from grouping import group_by_date_then_session, grouped_to_list, line_items_for_order
from sessions import parse_meal_type_amounts, resolve_menu_type, sanitize_meal_label


_BASE = """<!DOCTYPE html>
<html><head><meta charset="utf-8"><title>{{ title }}</title>
<style>
body { font-family: 'Poppins', sans-serif; font-size: 12px; color: #222; }
.header { text-align: center; border-bottom: 2px solid #333; margin-bottom: 12px; }
.section-title { font-weight: 600; border-bottom: 1px solid #ddd; margin-top: 12px; }
.date { font-weight: 700; text-transform: uppercase; margin-top: 10px; }
.session { font-weight: 700; margin-top: 4px; }
.row { display: flex; justify-content: space-between; }
.total { font-weight: 700; border-top: 2px solid #333; }
table { width: 100%; border-collapse: collapse; }
td, th { border-bottom: 1px solid #eee; padding: 3px; text-align: left; }
</style></head>
<body>
<div class="header">
  <h2>{{ business.name }}</h2>
  {% if business.address %}<div>{{ business.address }}</div>{% endif %}
  {% if business.phone %}<div>Cell: {{ business.phone }}</div>{% endif %}
</div>
{% block body %}{% endblock %}
</body></html>
"""

_MENU = """{% macro menu(dates) -%}
<div class="section-title">Menu Items</div>
{% for d in dates %}
  <div class="date">{{ d.date }}</div>
  {% for s in d.sessions %}
    <div class="session">{{ s.label }}{% if s.members %} ({{ s.members }} Members){% endif %}</div>
    {% if s.services %}<div>Services: {{ s.services | join(", ") }}</div>{% endif %}
    {% for it in s["items"] %}
      <div>{{ loop.index }}. {{ it.item_name }}{% if it.customization %} ({{ it.customization }}){% endif %}</div>
    {% endfor %}
  {% endfor %}
{% endfor %}
{%- endmacro %}
"""

_PARTY = """{% macro party(customer, order) -%}
<div class="section-title">Customer Details</div>
<div>Name: {{ customer.name or "N/A" }}</div>
<div>Phone: {{ customer.phone or "N/A" }}</div>
<div>Email: {{ customer.email or "N/A" }}</div>
<div>Address: {{ customer.address or "N/A" }}</div>
{% if order %}
<div class="section-title">Order Information</div>
<div>Order ID: {{ order.number }}</div>
{% if order.event_name %}<div>Event: {{ order.event_name }}</div>{% endif %}
<div>Event Date: {{ order.event_date or "N/A" }}</div>
<div>Supervisor: {{ order.supervisor or "N/A" }}</div>
{% endif %}
{%- endmacro %}
"""

_TEMPLATES = {
    "base.html": _BASE,
    "menu.html": _MENU,
    "party.html": _PARTY,
    "order.html": """{% extends "base.html" %}{% from "menu.html" import menu %}{% from "party.html" import party %}
{% block body %}
{{ party(customer, order) }}
{{ menu(dates) }}
{% if stalls %}<div class="section-title">Stalls</div>
{% for s in stalls %}<div class="row"><span>{{ s.category }} {{ s.description }}</span><span>{{ s.cost }}</span></div>{% endfor %}
{% endif %}
{% endblock %}""",
    "bill.html": """{% extends "base.html" %}{% from "menu.html" import menu %}{% from "party.html" import party %}
{% block body %}
<h3>Bill {{ bill.number }}</h3>
{{ party(customer, order) }}
{{ menu(dates) }}
<div class="section-title">Financial Summary</div>
{% for line in lines %}<div class="row"><span>{{ line.label }}</span><span>{{ line.amount }}</span></div>{% endfor %}
<div class="row total"><span>Total Amount</span><span>{{ bill.total_amount }}</span></div>
<div class="row"><span>Paid</span><span>{{ bill.paid_amount }}</span></div>
<div class="row"><span>Balance</span><span>{{ bill.remaining_amount }}</span></div>
<div>Status: {{ bill.status | upper }}</div>
{% if bill.note %}<div>Note: {{ bill.note }}</div>{% endif %}
{% endblock %}""",
    "statement.html": """{% extends "base.html" %}
{% block body %}
<h3>Statement{% if period %} ({{ period }}){% endif %}</h3>
<table><tr><th>Bill</th><th>Customer</th><th>Event</th><th>Total</th><th>Paid</th><th>Balance</th></tr>
{% for b in bills %}<tr><td>{{ b.number }}</td><td>{{ b.customer }}</td><td>{{ b.event }}</td><td>{{ b.total_amount }}</td><td>{{ b.paid_amount }}</td><td>{{ b.remaining_amount }}</td></tr>{% endfor %}
</table>
<div class="row total"><span>Grand Total</span><span>{{ totals.total_amount }}</span></div>
<div class="row"><span>Total Paid</span><span>{{ totals.paid_amount }}</span></div>
<div class="row"><span>Total Balance</span><span>{{ totals.remaining_amount }}</span></div>
{% endblock %}""",
    "expense.html": """{% extends "base.html" %}
{% block body %}
<h3>Expense Voucher</h3>
<div>Category: {{ expense.category }}</div>
<div>Recipient: {{ expense.recipient or "N/A" }}</div>
<div>Payment Date: {{ expense.payment_date }}</div>
{% if expense.description %}<div>Description: {{ expense.description }}</div>{% endif %}
<div class="row total"><span>Amount</span><span>{{ expense.amount }}</span></div>
{% if allocations %}<div class="section-title">Allocation ({{ expense.allocation_method }})</div>
<table><tr><th>Order</th><th>%</th><th>Amount</th></tr>
{% for a in allocations %}<tr><td>{{ a.display_name or a.id }}</td><td>{{ a.percentage }}</td><td>{{ a.amount }}</td></tr>{% endfor %}
</table>{% endif %}
{% endblock %}""",
    "workforce.html": """{% extends "base.html" %}
{% block body %}
<h3>Payment Statement: {{ member.name }} ({{ member.role }})</h3>
<table><tr><th>Date</th><th>Category</th><th>Description</th><th>Amount</th></tr>
{% for e in expenses %}<tr><td>{{ e.payment_date }}</td><td>{{ e.category }}</td><td>{{ e.description or "" }}</td><td>{{ e.amount }}</td></tr>{% endfor %}
</table>
<div class="row total"><span>Total</span><span>{{ total_amount }}</span></div>
{% endblock %}""",
    "inventory.html": """{% extends "base.html" %}
{% block body %}
<h3>Inventory Report</h3>
<table><tr><th>Item</th><th>Category</th><th>Quantity</th><th>Unit</th></tr>
{% for r in rows %}<tr><td>{{ r.name }}</td><td>{{ r.category or "" }}</td><td>{{ r.quantity }}</td><td>{{ r.unit or "" }}</td></tr>{% endfor %}
</table>
{% endblock %}""",
}

KINDS = ("order", "bill", "statement", "expense", "workforce", "inventory")

_env = Environment(loader=DictLoader(_TEMPLATES), autoescape=select_autoescape(["html"]))


def render_html(kind: str, data: dict) -> str:
    if kind not in KINDS:
        raise ValueError(f"Unknown document kind: {kind}")
    context = dict(data)
    context.setdefault("business", {"name": "Catering Services"})
    context.setdefault("title", kind.title())
    return _env.get_template(f"{kind}.html").render(**context)


def fmt_money(x) -> str:
    return f"{money(x):,.2f}"


def order_number(order) -> str:
    if order.serial_number:
        return f"ORDER-{order.serial_number}"
    return f"ORDER-{order.id[:8].upper()}"


def order_dates(order):
    sessions = parse_meal_type_amounts(order.meal_type_amounts)
    fallback = order.event_date or (order.created_at.date() if order.created_at else None)
    grouped = group_by_date_then_session(line_items_for_order(order), sessions, fallback)
    return grouped_to_list(grouped)


def _customer_data(customer):
    if not customer:
        return {}
    return {"name": customer.name, "phone": customer.phone, "email": customer.email, "address": customer.address}


def _order_data(order):
    return {
        "number": order_number(order),
        "event_name": order.event_name,
        "event_date": order.event_date.isoformat() if order.event_date else None,
        "supervisor": order.supervisor.name if order.supervisor else None,
    }


def order_template_data(order, business) -> dict:
    return {
        "title": order_number(order),
        "business": business,
        "customer": _customer_data(order.customer),
        "order": _order_data(order),
        "dates": order_dates(order),
        "stalls": order.stalls or [],
    }


def _bill_note(bill):
    for entry in bill.payment_history or []:
        if isinstance(entry, dict) and entry.get("source") == "bill_note":
            return entry.get("notes")
    return None


def bill_template_data(bill, business) -> dict:
    order = bill.order
    lines = []
    if order:
        for key, value in parse_meal_type_amounts(order.meal_type_amounts).items():
            label = sanitize_meal_label(resolve_menu_type(key, value))
            if value.date:
                label = f"{label} ({value.date.isoformat()})"
            lines.append({"label": label, "amount": fmt_money(value.amount)})
        for label, amount in (
            ("Transport", order.transport_cost),
            ("Water Bottles", order.water_bottles_cost),
        ):
            if money(amount or 0) > 0:
                lines.append({"label": label, "amount": fmt_money(amount)})
        for s in order.stalls or []:
            if isinstance(s, dict):
                lines.append({"label": f"Stall: {s.get('category') or ''}", "amount": fmt_money(s.get("cost") or 0)})
        if money(order.discount or 0) > 0:
            lines.append({"label": "Discount", "amount": "-" + fmt_money(order.discount)})

    customer = order.customer if order else bill.customer
    return {
        "title": f"Bill {bill.id[:8].upper()}",
        "business": business,
        "customer": _customer_data(customer),
        "order": _order_data(order) if order else None,
        "dates": order_dates(order) if order else [],
        "lines": lines,
        "bill": {
            "number": f"BILL-{bill.id[:8].upper()}",
            "total_amount": fmt_money(bill.total_amount),
            "paid_amount": fmt_money(bill.paid_amount),
            "remaining_amount": fmt_money(bill.remaining_amount),
            "status": bill.status,
            "note": _bill_note(bill),
        },
    }


def statement_template_data(bills, business) -> dict:
    rows = []
    total = paid = remaining = Decimal("0.00")
    starts, ends = [], []
    for b in bills:
        order = b.order
        customer = (order.customer if order else None) or b.customer
        rows.append({
            "number": f"BILL-{b.id[:8].upper()}",
            "customer": customer.name if customer else "",
            "event": (order.event_name or order_number(order)) if order else "Consolidated",
            "total_amount": fmt_money(b.total_amount),
            "paid_amount": fmt_money(b.paid_amount),
            "remaining_amount": fmt_money(b.remaining_amount),
        })
        total += money(b.total_amount or 0)
        paid += money(b.paid_amount or 0)
        remaining += money(b.remaining_amount or 0)
        d = b.start_date or (order.event_date if order else None)
        if d:
            starts.append(d)
        e = b.end_date or d
        if e:
            ends.append(e)
    period = None
    if starts:
        period = f"{min(starts).isoformat()} to {max(ends).isoformat()}"
    return {
        "title": "Statement",
        "business": business,
        "bills": rows,
        "period": period,
        "totals": {
            "total_amount": fmt_money(total),
            "paid_amount": fmt_money(paid),
            "remaining_amount": fmt_money(remaining),
        },
    }


def expense_template_data(expense, business) -> dict:
    data = expense.to_dict()
    data["amount"] = fmt_money(expense.amount)
    allocations = []
    for a in expense.bulk_allocations or []:
        allocations.append({
            "id": a.get("id"),
            "display_name": a.get("display_name"),
            "percentage": f"{float(a['percentage']):.2f}" if a.get("percentage") is not None else "",
            "amount": fmt_money(a.get("amount") or 0),
        })
    return {"title": "Expense", "business": business, "expense": data, "allocations": allocations}


def workforce_template_data(member, expenses, business) -> dict:
    rows = []
    total = Decimal("0.00")
    for e in expenses:
        rows.append({
            "payment_date": e.payment_date.isoformat() if e.payment_date else "",
            "category": e.category,
            "description": e.description,
            "amount": fmt_money(e.amount),
        })
        total += money(e.amount or 0)
    return {
        "title": member.name,
        "business": business,
        "member": member.to_dict(),
        "expenses": rows,
        "total_amount": fmt_money(total),
    }


def inventory_template_data(rows, business) -> dict:
    clean = []
    for r in rows or []:
        if isinstance(r, dict) and r.get("name"):
            clean.append({
                "name": r["name"],
                "category": r.get("category"),
                "quantity": r.get("quantity", 0),
                "unit": r.get("unit"),
            })
    return {"title": "Inventory", "business": business, "rows": clean}


# ---------------------------
# PDF
# ---------------------------

@contextmanager
def render_target(pagesize=A4):
    """A temporary canvas; its buffer is closed on every exit path."""
    buffer = io.BytesIO()
    try:
        yield buffer, canvas.Canvas(buffer, pagesize=pagesize)
    finally:
        buffer.close()


class _Writer:
    def __init__(self, c, height):
        self.c = c
        self.height = height
        self.y = height - 50

    def line(self, text, font="Helvetica", size=10, x=40, step=14):
        if self.y < 70:
            self.c.showPage()
            self.y = self.height - 50
        self.c.setFont(font, size)
        self.c.drawString(x, self.y, str(text)[:90])
        self.y -= step

    def amount(self, label, value, bold=False):
        if self.y < 70:
            self.c.showPage()
            self.y = self.height - 50
        self.c.setFont("Helvetica-Bold" if bold else "Helvetica", 10)
        self.c.drawString(40, self.y, label)
        self.c.drawRightString(555, self.y, value)
        self.y -= 14

    def rule(self):
        self.c.line(40, self.y + 8, 555, self.y + 8)
        self.y -= 6


def _write_menu(w, dates):
    w.line("Menu Items", font="Helvetica-Bold", size=11)
    for d in dates:
        w.line(d["date"], font="Helvetica-Bold", size=10, step=13)
        for s in d["sessions"]:
            members = f" ({s['members']} Members)" if s["members"] else ""
            w.line(f"{s['label']}{members}", font="Helvetica-Bold", size=9, x=50, step=12)
            for i, it in enumerate(s["items"], start=1):
                extra = f" ({it['customization']})" if it["customization"] else ""
                w.line(f"{i}. {it['item_name']}{extra}", size=9, x=60, step=11)


def build_pdf_bytes(kind: str, data: dict) -> bytes:
    """Render an order or bill document to PDF bytes."""
    if kind not in ("order", "bill"):
        raise ValueError(f"PDF not supported for {kind}")

    with render_target() as (buffer, c):
        _, height = A4
        w = _Writer(c, height)
        w.line(data["business"].get("name") or "", font="Helvetica-Bold", size=14, step=18)
        if kind == "bill":
            w.line(data["bill"]["number"], font="Helvetica-Bold", size=11)
        customer = data.get("customer") or {}
        w.line(f"Customer: {customer.get('name') or 'N/A'}")
        w.line(f"Phone: {customer.get('phone') or 'N/A'}")
        order = data.get("order")
        if order:
            w.line(f"Order: {order['number']}   Event date: {order['event_date'] or 'N/A'}")
        w.rule()
        _write_menu(w, data.get("dates") or [])

        if kind == "bill":
            w.rule()
            for line in data["lines"]:
                w.amount(line["label"], line["amount"])
            w.rule()
            w.amount("Total Amount", data["bill"]["total_amount"], bold=True)
            w.amount("Paid", data["bill"]["paid_amount"])
            w.amount("Balance", data["bill"]["remaining_amount"], bold=True)

        c.showPage()
        c.save()
        return buffer.getvalue()
