# database.py
import enum
import uuid
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash


db = SQLAlchemy()


def now_utc():
    return datetime.utcnow()


def new_id() -> str:
    return str(uuid.uuid4())


def money(x) -> Decimal:
    try:
        return Decimal(str(x)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except Exception:
        return Decimal("0.00")


def iso(dt):
    return dt.isoformat() if dt else None


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BillStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    UPI = "upi"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class Role(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MANAGER = "manager"
    STAFF = "staff"


def bill_status_for(remaining, paid) -> str:
    if money(remaining) <= Decimal("0.00"):
        return BillStatus.PAID.value
    if money(paid) > Decimal("0.00"):
        return BillStatus.PARTIAL.value
    return BillStatus.PENDING.value


# ---------------------------
# Models
# ---------------------------

class User(db.Model, UserMixin):
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    username = db.Column(db.String(80), unique=True, index=True, nullable=False)
    email = db.Column(db.String(160), unique=True, index=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(40), nullable=False, default=Role.STAFF.value)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=now_utc)

    def set_password(self, pw):
        self.password_hash = generate_password_hash(pw)

    def check_password(self, pw):
        return check_password_hash(self.password_hash, pw)

    def get_id(self):
        return str(self.id)

    def summary(self):
        return {"id": self.id, "username": self.username, "email": self.email, "role": self.role}

    def to_dict(self):
        out = self.summary()
        out["is_active"] = self.is_active
        out["created_at"] = iso(self.created_at)
        return out


class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("user.id"))
    action = db.Column(db.String(80), nullable=False)
    entity = db.Column(db.String(80), nullable=False)
    entity_id = db.Column(db.String(36))
    ip = db.Column(db.String(80))
    details_json = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=now_utc)


class Settings(db.Model):
    key = db.Column(db.String(120), primary_key=True)
    value = db.Column(db.String(1000), nullable=False)


def setting_get(key, default=None):
    row = Settings.query.filter_by(key=str(key)).first()
    if not row:
        return default
    return row.value


def setting_set(key, value):
    k = str(key)
    v = "" if value is None else str(value)
    row = Settings.query.filter_by(key=k).first()
    if not row:
        row = Settings(key=k, value=v)
        db.session.add(row)
    else:
        row.value = v
    db.session.commit()
    return v


class Customer(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(140), nullable=False)
    phone = db.Column(db.String(40))
    email = db.Column(db.String(160), index=True)
    address = db.Column(db.String(500))
    message = db.Column(db.String(1000))
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "message": self.message,
            "created_at": iso(self.created_at),
        }


class Supervisor(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(140), nullable=False)
    email = db.Column(db.String(160))
    phone = db.Column(db.String(40))
    catering_service_name = db.Column(db.String(200))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "catering_service_name": self.catering_service_name,
            "is_active": self.is_active,
        }


class MenuItem(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(180), nullable=False)
    name_telugu = db.Column(db.String(180))
    type = db.Column(db.String(60), nullable=False, default="OTHER")
    description = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "name_telugu": self.name_telugu,
            "type": self.type,
            "description": self.description,
            "is_active": self.is_active,
        }


class Workforce(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(140), nullable=False)
    role = db.Column(db.String(60), nullable=False, default="other")
    phone = db.Column(db.String(40))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
        }


class Bill(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    # set for a single-order bill; consolidated statements link orders via Order.bill_id
    order_id = db.Column(db.String(36), db.ForeignKey("order.id"), unique=True)
    customer_id = db.Column(db.String(36), db.ForeignKey("customer.id"))

    total_amount = db.Column(db.Numeric(12, 2), default=0)
    advance_paid = db.Column(db.Numeric(12, 2), default=0)
    paid_amount = db.Column(db.Numeric(12, 2), default=0)
    remaining_amount = db.Column(db.Numeric(12, 2), default=0)
    status = db.Column(db.String(20), default=BillStatus.PENDING.value)
    payment_history = db.Column(db.JSON, default=list)

    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)

    created_at = db.Column(db.DateTime, default=now_utc)
    updated_at = db.Column(db.DateTime, default=now_utc, onupdate=now_utc)

    order = db.relationship("Order", foreign_keys=[order_id], back_populates="bill")
    customer = db.relationship("Customer")

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "total_amount": str(money(self.total_amount)),
            "advance_paid": str(money(self.advance_paid)),
            "paid_amount": str(money(self.paid_amount)),
            "remaining_amount": str(money(self.remaining_amount)),
            "status": self.status,
            "payment_history": self.payment_history or [],
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class Order(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    serial_number = db.Column(db.Integer, index=True)
    customer_id = db.Column(db.String(36), db.ForeignKey("customer.id"), nullable=False)
    supervisor_id = db.Column(db.String(36), db.ForeignKey("supervisor.id"))
    # consolidated statement bill, distinct from the per-order bill
    bill_id = db.Column(db.String(36), index=True)

    status = db.Column(db.String(30), default=OrderStatus.PENDING.value)
    event_name = db.Column(db.String(200))
    event_date = db.Column(db.Date)
    venue = db.Column(db.String(300))
    number_of_members = db.Column(db.Integer)

    meal_type_amounts = db.Column(db.JSON)
    stalls = db.Column(db.JSON)
    services = db.Column(db.JSON)

    total_amount = db.Column(db.Numeric(12, 2), default=0)
    advance_paid = db.Column(db.Numeric(12, 2), default=0)
    remaining_amount = db.Column(db.Numeric(12, 2), default=0)
    transport_cost = db.Column(db.Numeric(12, 2), default=0)
    water_bottles_cost = db.Column(db.Numeric(12, 2), default=0)
    discount = db.Column(db.Numeric(12, 2), default=0)

    created_at = db.Column(db.DateTime, default=now_utc)
    updated_at = db.Column(db.DateTime, default=now_utc, onupdate=now_utc)

    customer = db.relationship("Customer")
    supervisor = db.relationship("Supervisor")
    items = db.relationship(
        "OrderItem", back_populates="order", order_by="OrderItem.position",
        cascade="all, delete-orphan"
    )
    bill = db.relationship("Bill", foreign_keys="Bill.order_id", back_populates="order", uselist=False)

    def to_dict(self, with_items=True):
        out = {
            "id": self.id,
            "serial_number": self.serial_number,
            "customer_id": self.customer_id,
            "customer": self.customer.to_dict() if self.customer else None,
            "supervisor_id": self.supervisor_id,
            "supervisor": self.supervisor.to_dict() if self.supervisor else None,
            "bill_id": self.bill_id,
            "status": self.status,
            "event_name": self.event_name,
            "event_date": iso(self.event_date),
            "venue": self.venue,
            "number_of_members": self.number_of_members,
            "meal_type_amounts": self.meal_type_amounts or {},
            "stalls": self.stalls or [],
            "services": self.services or [],
            "total_amount": str(money(self.total_amount)),
            "advance_paid": str(money(self.advance_paid)),
            "remaining_amount": str(money(self.remaining_amount)),
            "transport_cost": str(money(self.transport_cost)),
            "water_bottles_cost": str(money(self.water_bottles_cost)),
            "discount": str(money(self.discount)),
            "created_at": iso(self.created_at),
        }
        if with_items:
            out["items"] = [it.to_dict() for it in self.items]
        return out


class OrderItem(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_id = db.Column(db.String(36), db.ForeignKey("order.id"), nullable=False)
    menu_item_id = db.Column(db.String(36), db.ForeignKey("menu_item.id"))
    # the session key inside Order.meal_type_amounts
    meal_type = db.Column(db.String(120))
    quantity = db.Column(db.Integer, default=1)
    customization = db.Column(db.String(300))
    position = db.Column(db.Integer, default=0)

    order = db.relationship("Order", back_populates="items")
    menu_item = db.relationship("MenuItem")

    @property
    def item_name(self):
        if self.menu_item:
            return self.menu_item.name
        return "Unknown Item"

    def to_dict(self):
        return {
            "id": self.id,
            "menu_item_id": self.menu_item_id,
            "session_key": self.meal_type,
            "item_name": self.item_name,
            "item_type": self.menu_item.type if self.menu_item else None,
            "quantity": self.quantity,
            "customization": self.customization,
        }


class Expense(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    order_id = db.Column(db.String(36), db.ForeignKey("order.id"))
    category = db.Column(db.String(60), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    paid_amount = db.Column(db.Numeric(12, 2), default=0)
    payment_status = db.Column(db.String(20), default=BillStatus.PENDING.value)
    description = db.Column(db.String(500))
    recipient = db.Column(db.String(140))
    payment_date = db.Column(db.Date, nullable=False)
    event_date = db.Column(db.Date)
    notes = db.Column(db.String(1000))
    calculation_details = db.Column(db.JSON)

    is_bulk_expense = db.Column(db.Boolean, default=False)
    allocation_method = db.Column(db.String(30))
    bulk_allocations = db.Column(db.JSON)

    created_at = db.Column(db.DateTime, default=now_utc)
    updated_at = db.Column(db.DateTime, default=now_utc, onupdate=now_utc)

    order = db.relationship("Order")

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "category": self.category,
            "amount": str(money(self.amount)),
            "paid_amount": str(money(self.paid_amount)),
            "payment_status": self.payment_status,
            "description": self.description,
            "recipient": self.recipient,
            "payment_date": iso(self.payment_date),
            "event_date": iso(self.event_date),
            "notes": self.notes,
            "calculation_details": self.calculation_details,
            "is_bulk_expense": bool(self.is_bulk_expense),
            "allocation_method": self.allocation_method,
            "bulk_allocations": self.bulk_allocations or [],
            "created_at": iso(self.created_at),
        }


class WorkforcePayment(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    # workforce role the payment settles; None counts as "other"
    role = db.Column(db.String(60))
    payment_method = db.Column(db.String(30), nullable=False, default="cash")
    notes = db.Column(db.String(1000))
    payment_date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime, default=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "amount": str(money(self.amount)),
            "role": self.role,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "payment_date": iso(self.payment_date),
            "created_at": iso(self.created_at),
        }


# ---------------------------
# Inventory / stock
# ---------------------------

INVENTORY_CATEGORIES = ("glasses", "vessels", "cooking_utensils", "serving_items", "storage", "other")
INVENTORY_CONDITIONS = ("good", "fair", "damaged", "repair")
STOCK_CATEGORIES = ("gas", "store", "vegetables", "disposables")


def _opt_money(x):
    return str(money(x)) if x is not None else None


class InventoryItem(db.Model):
    """Reusable equipment: vessels, glasses, utensils."""
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(160), nullable=False)
    category = db.Column(db.String(40), nullable=False)
    quantity = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    min_quantity = db.Column(db.Numeric(12, 2))
    unit = db.Column(db.String(40), nullable=False)
    condition = db.Column(db.String(20), nullable=False, default="good")
    location = db.Column(db.String(160))
    supplier = db.Column(db.String(160))
    purchase_date = db.Column(db.Date)
    purchase_price = db.Column(db.Numeric(12, 2))
    description = db.Column(db.String(1000))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=now_utc)
    updated_at = db.Column(db.DateTime, default=now_utc, onupdate=now_utc)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "quantity": str(money(self.quantity)),
            "min_quantity": _opt_money(self.min_quantity),
            "unit": self.unit,
            "condition": self.condition,
            "location": self.location,
            "supplier": self.supplier,
            "purchase_date": iso(self.purchase_date),
            "purchase_price": _opt_money(self.purchase_price),
            "description": self.description,
            "is_active": bool(self.is_active),
            "created_at": iso(self.created_at),
        }


class StockItem(db.Model):
    """Consumables whose level moves only through StockTransaction rows."""
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(160), nullable=False)
    category = db.Column(db.String(40), nullable=False)
    unit = db.Column(db.String(40), nullable=False)
    current_stock = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    min_stock = db.Column(db.Numeric(12, 2))
    max_stock = db.Column(db.Numeric(12, 2))
    price = db.Column(db.Numeric(12, 2))
    supplier = db.Column(db.String(160))
    location = db.Column(db.String(160))
    description = db.Column(db.String(1000))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=now_utc)
    updated_at = db.Column(db.DateTime, default=now_utc, onupdate=now_utc)

    transactions = db.relationship(
        "StockTransaction", back_populates="stock", cascade="all, delete-orphan",
        order_by="StockTransaction.created_at.desc()",
    )

    @property
    def is_low(self):
        return self.min_stock is not None and money(self.current_stock) <= money(self.min_stock)

    def to_dict(self, transactions=0):
        out = {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "unit": self.unit,
            "current_stock": str(money(self.current_stock)),
            "min_stock": _opt_money(self.min_stock),
            "max_stock": _opt_money(self.max_stock),
            "price": _opt_money(self.price),
            "supplier": self.supplier,
            "location": self.location,
            "description": self.description,
            "is_active": bool(self.is_active),
            "is_low": self.is_low,
            "created_at": iso(self.created_at),
        }
        if transactions:
            out["transactions"] = [t.to_dict() for t in self.transactions[:transactions]]
        return out


class StockTransaction(db.Model):
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    stock_id = db.Column(db.String(36), db.ForeignKey("stock_item.id"), nullable=False, index=True)
    type = db.Column(db.String(10), nullable=False)  # in | out
    quantity = db.Column(db.Numeric(12, 2), nullable=False)
    price = db.Column(db.Numeric(12, 2))
    total_amount = db.Column(db.Numeric(12, 2))
    reference = db.Column(db.String(160))
    notes = db.Column(db.String(1000))
    created_at = db.Column(db.DateTime, default=now_utc)

    stock = db.relationship("StockItem", back_populates="transactions")

    def to_dict(self):
        return {
            "id": self.id,
            "stock_id": self.stock_id,
            "type": self.type,
            "quantity": str(money(self.quantity)),
            "price": _opt_money(self.price),
            "total_amount": _opt_money(self.total_amount),
            "reference": self.reference,
            "notes": self.notes,
            "created_at": iso(self.created_at),
        }
