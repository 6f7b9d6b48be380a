# app.py
import os
import io
import secrets
from datetime import date, datetime, timezone
from functools import wraps
from decimal import Decimal

from flask import Flask, request, jsonify, send_file, Response
from flask_login import LoginManager, login_required, current_user
from markupsafe import escape
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from sqlalchemy import or_ as sa_or

from database import (
    db,
    now_utc, money, bill_status_for,
    setting_get, setting_set,
    OrderStatus, BillStatus, PaymentMethod, Role,
    User, AuditLog,
    Customer, Supervisor, MenuItem, Workforce,
    Order, OrderItem, Bill, Expense, WorkforcePayment,
    InventoryItem, StockItem, StockTransaction,
    INVENTORY_CATEGORIES, INVENTORY_CONDITIONS, STOCK_CATEGORIES,
)
from sessions import parse_meal_type_amounts, dump_meal_type_amounts, parse_date
from allocation import (
    AllocationTarget, METHODS as ALLOCATION_METHODS,
    allocate, validate_bulk, reconcile_delta, is_balanced, percentage_total,
    plates_for_order, targets_from_payload, expense_total,
)
from grouping import group_by_date_then_session, grouped_to_list, line_items_for_order
from separation import (
    SeparationError, detach_session, detach_date, merge_orders,
    next_serial_number, recalculate_order_totals, sync_bill_with_order,
)
from documents import (
    render_html, build_pdf_bytes, fmt_money, order_number,
    order_template_data, bill_template_data, statement_template_data,
    expense_template_data, workforce_template_data, inventory_template_data,
)
from notify import mail, send_email, whatsapp_link, bill_message


BASE_DIR = os.path.abspath(os.path.dirname(__file__))

DB_PATH = os.path.join(BASE_DIR, "catering.db")

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


app = Flask(__name__)

app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", secrets.token_hex(32))
app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("DATABASE_URL", f"sqlite:///{DB_PATH}")
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
app.config["ACCESS_TOKEN_MAX_AGE"] = int(os.environ.get("ACCESS_TOKEN_MAX_AGE", 15 * 60))
app.config["REFRESH_TOKEN_MAX_AGE"] = int(os.environ.get("REFRESH_TOKEN_MAX_AGE", 7 * 24 * 3600))
app.config["REFRESH_TOKEN_MAX_AGE_REMEMBER"] = int(os.environ.get("REFRESH_TOKEN_MAX_AGE_REMEMBER", 30 * 24 * 3600))
app.config["RESET_TOKEN_MAX_AGE"] = int(os.environ.get("RESET_TOKEN_MAX_AGE", 3600))
app.config["COOKIE_SECURE"] = os.environ.get("COOKIE_SECURE", "false").lower() == "true"
app.config["ALLOCATION_DEFAULT_WEIGHT"] = int(os.environ.get("ALLOCATION_DEFAULT_WEIGHT", 100))
app.config["BUSINESS_NAME"] = os.environ.get("BUSINESS_NAME", "Catering Services")
app.config["EMAIL_PROVIDER"] = os.environ.get("EMAIL_PROVIDER", "")
app.config["MAIL_SERVER"] = os.environ.get("MAIL_SERVER")
app.config["MAIL_PORT"] = int(os.environ.get("MAIL_PORT", 587))
app.config["MAIL_USE_TLS"] = os.environ.get("MAIL_USE_TLS", "true").lower() == "true"
app.config["MAIL_USERNAME"] = os.environ.get("MAIL_USERNAME")
app.config["MAIL_PASSWORD"] = os.environ.get("MAIL_PASSWORD")
app.config["MAIL_DEFAULT_SENDER"] = os.environ.get("MAIL_DEFAULT_SENDER", os.environ.get("MAIL_USERNAME"))

db.init_app(app)
mail.init_app(app)

login_manager = LoginManager(app)

serializer = URLSafeTimedSerializer(app.config["SECRET_KEY"])


def json_error(message, code=400):
    return jsonify({"success": False, "error": message}), code


def require_json():
    if not request.is_json:
        return json_error("Expected JSON body", 400)
    return None


def norm_role(role) -> str:
    r = (role or "").strip().lower()
    r = r.replace("-", "_").replace(" ", "_")
    aliases = {
        "superadmin": Role.SUPER_ADMIN.value,
        "administrator": Role.ADMIN.value,
        "mgr": Role.MANAGER.value,
    }
    return aliases.get(r, r)


ADMIN_ROLES = {Role.SUPER_ADMIN.value, Role.ADMIN.value}


def require_roles(*roles):
    allowed = {norm_role(r) for r in roles}

    def deco(fn):
        @wraps(fn)
        @login_required
        def wrapper(*args, **kwargs):
            cur = norm_role(getattr(current_user, "role", ""))
            if cur not in ADMIN_ROLES and cur not in allowed:
                return json_error("Forbidden: insufficient role", 403)
            return fn(*args, **kwargs)
        return wrapper
    return deco


def audit(action, entity, entity_id=None, details=None):
    try:
        uid = current_user.id if current_user and getattr(current_user, "is_authenticated", False) else None
    except Exception:
        uid = None

    log = AuditLog(
        user_id=uid,
        action=action,
        entity=entity,
        entity_id=entity_id,
        ip=request.headers.get("X-Forwarded-For", request.remote_addr),
        details_json=(details or {}),
        created_at=now_utc()
    )
    db.session.add(log)
    db.session.commit()


def business_info():
    return {
        "name": setting_get("business_name", app.config["BUSINESS_NAME"]),
        "address": setting_get("business_address", ""),
        "phone": setting_get("business_phone", ""),
    }


def parse_amount(value, default=Decimal("0.00")):
    """Money from user input; ``None`` when it is present but not a number."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return None
    try:
        d = Decimal(str(value))
    except Exception:
        return None
    if not d.is_finite():
        return None
    return money(d)


def get_or_404(model, obj_id, message):
    row = db.session.get(model, obj_id)
    if row is None:
        return None, json_error(message, 404)
    return row, None


# ---------------------------
# Tokens / cookies
# ---------------------------

def issue_access_token(user: User) -> str:
    return serializer.dumps({"sub": user.id, "username": user.username, "role": user.role}, salt="access")


def refresh_max_age(remember: bool) -> int:
    if remember:
        return app.config["REFRESH_TOKEN_MAX_AGE_REMEMBER"]
    return app.config["REFRESH_TOKEN_MAX_AGE"]


def issue_refresh_token(user: User, remember=False) -> str:
    return serializer.dumps({"sub": user.id, "remember": bool(remember)}, salt="refresh")


def load_refresh_token(token) -> dict:
    """Payload of a valid refresh token; raises ``BadSignature`` (or ``SignatureExpired``)."""
    payload, issued_at = serializer.loads(token, salt="refresh", return_timestamp=True)
    age = (datetime.now(timezone.utc) - issued_at).total_seconds()
    if age > refresh_max_age(payload.get("remember")):
        raise SignatureExpired("Refresh token expired", payload=payload, date_signed=issued_at)
    return payload


def _password_stamp(user: User) -> str:
    # changes whenever the password does, so a used reset token stops working
    return user.password_hash[-16:]


def issue_reset_token(user: User) -> str:
    return serializer.dumps({"sub": user.id, "pw": _password_stamp(user)}, salt="reset")


def load_reset_user(token) -> User:
    payload = serializer.loads(token, salt="reset", max_age=app.config["RESET_TOKEN_MAX_AGE"])
    user = db.session.get(User, str(payload.get("sub")))
    if not user or not user.is_active or payload.get("pw") != _password_stamp(user):
        raise BadSignature("Reset token no longer valid")
    return user


def _set_cookie(resp, name, value, max_age):
    resp.set_cookie(
        name, value,
        max_age=max_age,
        httponly=True,
        secure=app.config["COOKIE_SECURE"],
        samesite="Lax",
        path="/",
    )


def clear_auth_cookies(resp):
    resp.delete_cookie(ACCESS_COOKIE, path="/")
    resp.delete_cookie(REFRESH_COOKIE, path="/")
    return resp


def _auth_failure(message, code):
    resp = jsonify({"success": False, "error": message})
    resp.status_code = code
    return clear_auth_cookies(resp)


def _token_from_request():
    token = request.cookies.get(ACCESS_COOKIE)
    if token:
        return token
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[7:].strip() or None
    return None


@login_manager.request_loader
def load_user_from_request(req):
    token = _token_from_request()
    if not token:
        return None
    try:
        payload = serializer.loads(token, salt="access", max_age=app.config["ACCESS_TOKEN_MAX_AGE"])
    except BadSignature:
        return None
    user = db.session.get(User, str(payload.get("sub")))
    if not user or not user.is_active:
        return None
    return user


@login_manager.unauthorized_handler
def _unauthorized():
    return json_error("Unauthorized - Invalid or expired token", 401)


@app.errorhandler(403)
def _err_403(_e):
    return json_error("Forbidden", 403)


@app.errorhandler(404)
def _err_404(_e):
    return json_error("Not found", 404)


@app.errorhandler(405)
def _err_405(_e):
    return json_error("Method not allowed", 405)


# ---------------------------
# System
# ---------------------------

@app.route("/api/health", methods=["GET"])
def api_health():
    return jsonify({"success": True, "time": now_utc().isoformat()})


@app.route("/api/system/init", methods=["POST"])
def api_system_init():
    db.create_all()

    if not setting_get("business_name"):
        setting_set("business_name", app.config["BUSINESS_NAME"])

    if User.query.count() == 0:
        admin = User(username="admin", email="admin@local", role=Role.SUPER_ADMIN.value)
        admin.set_password("admin12345")
        db.session.add(admin)
        db.session.commit()
        audit("seed", "user", admin.id, {"note": "Default admin created"})
        return jsonify({"success": True, "message": "Initialized. Default admin: admin / admin12345"})

    return jsonify({"success": True, "message": "Already initialized"})


@app.route("/api/settings", methods=["GET"])
@login_required
def api_settings_get():
    return jsonify({"success": True, "settings": business_info()})


@app.route("/api/settings", methods=["PUT"])
@require_roles("admin")
def api_settings_update():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    for field in ("name", "address", "phone"):
        if field in data:
            setting_set(f"business_{field}", (data.get(field) or "").strip())
    audit("update", "settings", None, {k: data.get(k) for k in ("name", "address", "phone") if k in data})
    return jsonify({"success": True, "settings": business_info()})


# ---------------------------
# Auth
# ---------------------------

@app.route("/api/auth/login", methods=["POST"])
def api_login():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    username = (data.get("username") or "").strip()
    pw = data.get("password") or ""
    if not username or not pw:
        return json_error("Username and password are required", 400)

    user = User.query.filter(
        sa_or(User.username == username, User.email == username.lower()),
        User.is_active.is_(True)
    ).first()
    if not user or not user.check_password(pw):
        return json_error("Invalid username or password", 401)

    remember = bool(data.get("remember_me"))
    resp = jsonify({"success": True, "user": user.summary()})
    _set_cookie(resp, ACCESS_COOKIE, issue_access_token(user), app.config["ACCESS_TOKEN_MAX_AGE"])
    _set_cookie(resp, REFRESH_COOKIE, issue_refresh_token(user, remember), refresh_max_age(remember))
    audit("login", "user", user.id)
    return resp


@app.route("/api/auth/refresh", methods=["POST"])
def api_refresh():
    try:
        token = request.cookies.get(REFRESH_COOKIE)
        if not token:
            return _auth_failure("No refresh token found", 401)

        try:
            payload = load_refresh_token(token)
        except BadSignature:
            return _auth_failure("Invalid or expired refresh token", 401)

        user = db.session.get(User, str(payload.get("sub")))
        if not user or not user.is_active:
            return _auth_failure("User not found or inactive", 401)

        resp = jsonify({"success": True, "user": user.summary()})
        _set_cookie(resp, ACCESS_COOKIE, issue_access_token(user), app.config["ACCESS_TOKEN_MAX_AGE"])
        audit("refresh", "user", user.id)
        return resp
    except Exception:
        app.logger.exception("Token refresh error")
        db.session.rollback()
        return _auth_failure("Failed to refresh token", 500)


@app.route("/api/auth/logout", methods=["POST"])
def api_logout():
    resp = jsonify({"success": True, "message": "Logged out successfully"})
    return clear_auth_cookies(resp)


@app.route("/api/auth/me", methods=["GET"])
@login_required
def api_me():
    return jsonify({"success": True, "user": current_user.summary()})


@app.route("/api/auth/change-password", methods=["POST"])
@login_required
def api_change_password():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    old_pw = data.get("old_password") or ""
    new_pw = data.get("new_password") or ""
    if len(new_pw) < 8:
        return json_error("Password must be at least 8 characters", 400)
    if not current_user.check_password(old_pw):
        return json_error("Old password incorrect", 400)
    current_user.set_password(new_pw)
    db.session.commit()
    audit("change_password", "user", current_user.id)
    return jsonify({"success": True})


@app.route("/api/auth/forgot-password", methods=["POST"])
def api_forgot_password():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    email = (data.get("email") or "").strip().lower()
    if not email:
        return json_error("Email is required", 400)

    user = User.query.filter_by(email=email, is_active=True).first()
    if user:
        token = issue_reset_token(user)
        link = f"{request.host_url.rstrip('/')}/reset-password?token={token}"
        minutes = app.config["RESET_TOKEN_MAX_AGE"] // 60
        html = (
            f"<p>Hello {escape(user.username)},</p>"
            f"<p>Use the link below to reset your password. It expires in {minutes} minutes.</p>"
            f'<p><a href="{link}">{link}</a></p>'
        )
        send_email(user.email, f"{business_info()['name']} - Password reset", html)
        audit("forgot_password", "user", user.id)

    # same answer whether or not the account exists
    return jsonify({
        "success": True,
        "message": "If an account with that email exists, a password reset link has been sent.",
    })


@app.route("/api/auth/reset-password", methods=["POST"])
def api_reset_password():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    token = data.get("token") or ""
    new_pw = data.get("new_password") or ""
    if not token:
        return json_error("Token is required", 400)
    if len(new_pw) < 8:
        return json_error("Password must be at least 8 characters", 400)
    try:
        user = load_reset_user(token)
    except SignatureExpired:
        return json_error("Token expired", 400)
    except BadSignature:
        return json_error("Invalid token", 400)
    user.set_password(new_pw)
    db.session.commit()
    audit("reset_password", "user", user.id)
    return jsonify({"success": True, "message": "Password reset successfully"})


# ---------------------------
# Users
# ---------------------------

@app.route("/api/users", methods=["GET"])
@require_roles("admin")
def api_users_list():
    users = User.query.order_by(User.created_at.desc()).all()
    return jsonify({"success": True, "users": [u.to_dict() for u in users]})


@app.route("/api/users", methods=["POST"])
@require_roles("admin")
def api_users_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    username = (data.get("username") or "").strip()
    email = (data.get("email") or "").strip().lower()
    pw = data.get("password") or ""
    role = norm_role(data.get("role") or Role.STAFF.value)

    if not username or not email:
        return json_error("Username and email are required", 400)
    if len(pw) < 8:
        return json_error("Password must be at least 8 characters", 400)
    if role not in {r.value for r in Role}:
        return json_error("Invalid role", 400)
    if role == Role.SUPER_ADMIN.value and norm_role(current_user.role) != Role.SUPER_ADMIN.value:
        return json_error("Only a super admin can create another super admin", 403)
    if User.query.filter(sa_or(User.username == username, User.email == email)).first():
        return json_error("Username or email already used", 400)

    u = User(username=username, email=email, role=role, is_active=True)
    u.set_password(pw)
    db.session.add(u)
    db.session.commit()
    audit("create", "user", u.id, {"role": role})
    return jsonify({"success": True, "user": u.to_dict()}), 201


@app.route("/api/users/<user_id>", methods=["PUT"])
@require_roles("admin")
def api_users_update(user_id):
    bad = require_json()
    if bad:
        return bad
    u, err = get_or_404(User, user_id, "User not found")
    if err:
        return err
    data = request.get_json()

    if "role" in data:
        role = norm_role(data.get("role"))
        if role not in {r.value for r in Role}:
            return json_error("Invalid role", 400)
        u.role = role
    if "is_active" in data:
        if u.id == current_user.id and not data.get("is_active"):
            return json_error("You cannot deactivate your own account", 400)
        u.is_active = bool(data.get("is_active"))
    if data.get("password"):
        if len(data["password"]) < 8:
            return json_error("Password must be at least 8 characters", 400)
        u.set_password(data["password"])

    db.session.commit()
    audit("update", "user", u.id, {"role": u.role, "is_active": u.is_active})
    return jsonify({"success": True, "user": u.to_dict()})


@app.route("/api/audit-logs", methods=["GET"])
@require_roles("admin")
def api_audit_logs():
    logs = AuditLog.query.order_by(AuditLog.created_at.desc()).limit(500).all()
    out = []
    for l in logs:
        out.append({
            "id": l.id, "user_id": l.user_id, "action": l.action, "entity": l.entity,
            "entity_id": l.entity_id, "ip": l.ip, "details": l.details_json,
            "created_at": l.created_at.isoformat()
        })
    return jsonify({"success": True, "logs": out})


# ---------------------------
# Customers / supervisors / menu
# ---------------------------

@app.route("/api/customers", methods=["GET"])
@login_required
def api_customers_list():
    q = Customer.query
    search = (request.args.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(sa_or(Customer.name.ilike(like), Customer.phone.ilike(like), Customer.email.ilike(like)))
    rows = q.order_by(Customer.created_at.desc()).all()
    return jsonify({"success": True, "customers": [c.to_dict() for c in rows]})


@app.route("/api/customers", methods=["POST"])
@login_required
def api_customers_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    name = (data.get("name") or "").strip()
    if not name:
        return json_error("Name required", 400)
    c = Customer(
        name=name,
        phone=(data.get("phone") or "").strip() or None,
        email=(data.get("email") or "").strip().lower() or None,
        address=(data.get("address") or "").strip() or None,
        message=data.get("message") or None,
    )
    db.session.add(c)
    db.session.commit()
    audit("create", "customer", c.id)
    return jsonify({"success": True, "customer": c.to_dict()}), 201


@app.route("/api/customers/<customer_id>", methods=["GET"])
@login_required
def api_customers_get(customer_id):
    c, err = get_or_404(Customer, customer_id, "Customer not found")
    if err:
        return err
    return jsonify({"success": True, "customer": c.to_dict()})


@app.route("/api/customers/<customer_id>", methods=["PUT"])
@login_required
def api_customers_update(customer_id):
    bad = require_json()
    if bad:
        return bad
    c, err = get_or_404(Customer, customer_id, "Customer not found")
    if err:
        return err
    data = request.get_json()
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return json_error("Name required", 400)
        c.name = name
    for field in ("phone", "email", "address", "message"):
        if field in data:
            setattr(c, field, (data.get(field) or "").strip() or None)
    db.session.commit()
    audit("update", "customer", c.id)
    return jsonify({"success": True, "customer": c.to_dict()})


@app.route("/api/customers/<customer_id>", methods=["DELETE"])
@require_roles("manager")
def api_customers_delete(customer_id):
    c, err = get_or_404(Customer, customer_id, "Customer not found")
    if err:
        return err
    if Order.query.filter_by(customer_id=c.id).count() > 0:
        return json_error("Customer has orders and cannot be deleted", 400)
    db.session.delete(c)
    db.session.commit()
    audit("delete", "customer", customer_id)
    return jsonify({"success": True})


@app.route("/api/supervisors", methods=["GET"])
@login_required
def api_supervisors_list():
    rows = Supervisor.query.order_by(Supervisor.name.asc()).all()
    return jsonify({"success": True, "supervisors": [s.to_dict() for s in rows]})


@app.route("/api/supervisors", methods=["POST"])
@require_roles("manager")
def api_supervisors_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    name = (data.get("name") or "").strip()
    if not name:
        return json_error("Name required", 400)
    s = Supervisor(
        name=name,
        email=(data.get("email") or "").strip().lower() or None,
        phone=(data.get("phone") or "").strip() or None,
        catering_service_name=(data.get("catering_service_name") or "").strip() or None,
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(s)
    db.session.commit()
    audit("create", "supervisor", s.id)
    return jsonify({"success": True, "supervisor": s.to_dict()}), 201


@app.route("/api/supervisors/<supervisor_id>", methods=["PUT"])
@require_roles("manager")
def api_supervisors_update(supervisor_id):
    bad = require_json()
    if bad:
        return bad
    s, err = get_or_404(Supervisor, supervisor_id, "Supervisor not found")
    if err:
        return err
    data = request.get_json()
    for field in ("name", "email", "phone", "catering_service_name"):
        if field in data:
            setattr(s, field, (data.get(field) or "").strip() or None)
    if not s.name:
        return json_error("Name required", 400)
    if "is_active" in data:
        s.is_active = bool(data.get("is_active"))
    db.session.commit()
    audit("update", "supervisor", s.id)
    return jsonify({"success": True, "supervisor": s.to_dict()})


@app.route("/api/supervisors/<supervisor_id>", methods=["DELETE"])
@require_roles("manager")
def api_supervisors_delete(supervisor_id):
    s, err = get_or_404(Supervisor, supervisor_id, "Supervisor not found")
    if err:
        return err
    Order.query.filter_by(supervisor_id=s.id).update({"supervisor_id": None})
    db.session.delete(s)
    db.session.commit()
    audit("delete", "supervisor", supervisor_id)
    return jsonify({"success": True})


@app.route("/api/menu", methods=["GET"])
@login_required
def api_menu_list():
    q = MenuItem.query
    if request.args.get("type"):
        q = q.filter(db.func.upper(MenuItem.type) == request.args["type"].strip().upper())
    if request.args.get("active") == "1":
        q = q.filter(MenuItem.is_active.is_(True))
    rows = q.order_by(MenuItem.type.asc(), MenuItem.name.asc()).all()
    return jsonify({"success": True, "items": [m.to_dict() for m in rows]})


@app.route("/api/menu", methods=["POST"])
@require_roles("manager")
def api_menu_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    name = (data.get("name") or "").strip()
    if not name:
        return json_error("Name required", 400)
    m = MenuItem(
        name=name,
        name_telugu=(data.get("name_telugu") or "").strip() or None,
        type=(data.get("type") or "OTHER").strip().upper(),
        description=(data.get("description") or "").strip() or None,
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(m)
    db.session.commit()
    audit("create", "menu_item", m.id)
    return jsonify({"success": True, "item": m.to_dict()}), 201


@app.route("/api/menu/<item_id>", methods=["PUT"])
@require_roles("manager")
def api_menu_update(item_id):
    bad = require_json()
    if bad:
        return bad
    m, err = get_or_404(MenuItem, item_id, "Menu item not found")
    if err:
        return err
    data = request.get_json()
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return json_error("Name required", 400)
        m.name = name
    if "name_telugu" in data:
        m.name_telugu = (data.get("name_telugu") or "").strip() or None
    if "type" in data:
        m.type = (data.get("type") or "OTHER").strip().upper()
    if "description" in data:
        m.description = (data.get("description") or "").strip() or None
    if "is_active" in data:
        m.is_active = bool(data.get("is_active"))
    db.session.commit()
    audit("update", "menu_item", m.id)
    return jsonify({"success": True, "item": m.to_dict()})


@app.route("/api/menu/<item_id>", methods=["DELETE"])
@require_roles("manager")
def api_menu_delete(item_id):
    m, err = get_or_404(MenuItem, item_id, "Menu item not found")
    if err:
        return err
    if OrderItem.query.filter_by(menu_item_id=m.id).count() > 0:
        # referenced by past orders; keep the row so bills still render
        m.is_active = False
        db.session.commit()
        audit("deactivate", "menu_item", m.id)
        return jsonify({"success": True, "deactivated": True})
    db.session.delete(m)
    db.session.commit()
    audit("delete", "menu_item", item_id)
    return jsonify({"success": True, "deactivated": False})


# ---------------------------
# Orders
# ---------------------------

def _clean_meal_type_amounts(raw):
    if raw in (None, ""):
        return None
    if not isinstance(raw, dict):
        return False
    sessions = parse_meal_type_amounts(raw)
    return dump_meal_type_amounts(sessions) if sessions else None


def _clean_list(raw):
    if isinstance(raw, list) and raw:
        return raw
    return None


def _order_items_from_payload(rows):
    out = []
    for pos, r in enumerate(rows or []):
        if not isinstance(r, dict) or not r.get("menu_item_id"):
            return None
        try:
            qty = int(r.get("quantity") or 1)
        except (TypeError, ValueError):
            return None
        out.append(OrderItem(
            menu_item_id=str(r["menu_item_id"]),
            meal_type=(r.get("session_key") or "").strip() or None,
            quantity=max(1, qty),
            customization=(r.get("customization") or "").strip() or None,
            position=pos,
        ))
    return out


def _apply_order_fields(o: Order, data: dict):
    """Copy editable order fields from ``data``; returns an error response or ``None``."""
    if "supervisor_id" in data:
        sid = data.get("supervisor_id") or None
        if sid and not db.session.get(Supervisor, sid):
            return json_error("Supervisor not found", 404)
        o.supervisor_id = sid

    for field in ("event_name", "venue"):
        if field in data:
            setattr(o, field, (data.get(field) or "").strip() or None)

    if "number_of_members" in data:
        try:
            n = int(data.get("number_of_members") or 0)
        except (TypeError, ValueError):
            return json_error("number_of_members must be a number", 400)
        o.number_of_members = n if n > 0 else None

    if "meal_type_amounts" in data:
        mta = _clean_meal_type_amounts(data.get("meal_type_amounts"))
        if mta is False:
            return json_error("meal_type_amounts must be an object", 400)
        o.meal_type_amounts = mta

    if "stalls" in data:
        o.stalls = _clean_list(data.get("stalls"))
    if "services" in data:
        o.services = _clean_list(data.get("services"))

    for field in ("advance_paid", "transport_cost", "water_bottles_cost", "discount"):
        if field in data:
            v = parse_amount(data.get(field))
            if v is None or v < 0:
                return json_error("Invalid amounts", 400)
            setattr(o, field, v)

    if "event_date" in data:
        o.event_date = parse_date(data.get("event_date"))
    if not o.event_date:
        dates = sorted(v.date for v in parse_meal_type_amounts(o.meal_type_amounts).values() if v.date)
        if dates:
            o.event_date = dates[0]
    return None


def _apply_total(o: Order, data: dict):
    """A zero or missing ``total_amount`` means: derive it from sessions and extras."""
    recalculate_order_totals(o)
    provided = parse_amount(data.get("total_amount"))
    if provided is None or provided < 0:
        return json_error("Invalid amounts", 400)
    if provided > 0:
        o.total_amount = provided
        o.remaining_amount = max(Decimal("0.00"), provided - money(o.advance_paid or 0))
    return None


def create_bill_for_order(o: Order) -> Bill:
    advance = money(o.advance_paid or 0)
    history = []
    if advance > 0:
        history.append({
            "amount": float(advance), "totalPaid": float(advance),
            "remainingAmount": float(money(o.remaining_amount)),
            "status": bill_status_for(o.remaining_amount, advance),
            "date": now_utc().isoformat(), "source": "booking", "method": "cash",
        })
    bill = Bill(
        order=o,
        customer_id=o.customer_id,
        total_amount=money(o.total_amount),
        advance_paid=advance,
        paid_amount=advance,
        remaining_amount=max(Decimal("0.00"), money(o.total_amount) - advance),
        payment_history=history,
    )
    bill.status = bill_status_for(bill.remaining_amount, advance)
    db.session.add(bill)
    return bill


@app.route("/api/orders", methods=["GET"])
@login_required
def api_orders_list():
    q = Order.query
    if request.args.get("status"):
        q = q.filter(Order.status == request.args["status"])
    if request.args.get("customer_id"):
        q = q.filter(Order.customer_id == request.args["customer_id"])
    rows = q.order_by(Order.created_at.desc()).all()
    return jsonify({"success": True, "orders": [o.to_dict() for o in rows]})


@app.route("/api/orders", methods=["POST"])
@login_required
def api_orders_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()

    customer_id = str(data.get("customer_id") or "").strip()
    if not customer_id:
        return json_error("Customer is required", 400)
    if not isinstance(data.get("items"), list) or not data["items"]:
        return json_error("At least one menu item is required", 400)
    if not db.session.get(Customer, customer_id):
        return json_error("Customer not found", 404)

    items = _order_items_from_payload(data["items"])
    if items is None:
        return json_error("Invalid order items", 400)

    status = data.get("status") or OrderStatus.PENDING.value
    if status not in {s.value for s in OrderStatus}:
        return json_error("Invalid status", 400)

    try:
        o = Order(customer_id=customer_id, status=status, serial_number=next_serial_number())
        err = _apply_order_fields(o, data)
        if err:
            return err
        o.items = items
        err = _apply_total(o, data)
        if err:
            return err
        db.session.add(o)
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Error creating order")
        return json_error("Failed to create order", 500)

    audit("create", "order", o.id, {"total": str(o.total_amount), "advance": str(o.advance_paid)})
    return jsonify({"success": True, "order": o.to_dict()}), 201


@app.route("/api/orders/<order_id>", methods=["GET"])
@login_required
def api_orders_get(order_id):
    o, err = get_or_404(Order, order_id, "Order not found")
    if err:
        return err
    out = o.to_dict()
    out["bill"] = o.bill.to_dict() if o.bill else None
    return jsonify({"success": True, "order": out})


@app.route("/api/orders/<order_id>", methods=["PUT"])
@login_required
def api_orders_update(order_id):
    bad = require_json()
    if bad:
        return bad
    o, err = get_or_404(Order, order_id, "Order not found")
    if err:
        return err
    data = request.get_json()

    try:
        if "customer_id" in data:
            if not db.session.get(Customer, data.get("customer_id") or ""):
                return json_error("Customer not found", 404)
            o.customer_id = data["customer_id"]
        if "status" in data:
            if data["status"] not in {s.value for s in OrderStatus}:
                return json_error("Invalid status", 400)
            o.status = data["status"]
        err = _apply_order_fields(o, data)
        if err:
            db.session.rollback()
            return err
        if "items" in data:
            items = _order_items_from_payload(data.get("items"))
            if items is None:
                db.session.rollback()
                return json_error("Invalid order items", 400)
            o.items = items
        err = _apply_total(o, data)
        if err:
            db.session.rollback()
            return err
        sync_bill_with_order(o)
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Error updating order %s", order_id)
        return json_error("Failed to update order", 500)

    audit("update", "order", o.id, {"total": str(o.total_amount)})
    return jsonify({"success": True, "order": o.to_dict()})


@app.route("/api/orders/<order_id>/status", methods=["PUT"])
@login_required
def api_orders_status(order_id):
    bad = require_json()
    if bad:
        return bad
    o, err = get_or_404(Order, order_id, "Order not found")
    if err:
        return err
    status = request.get_json().get("status")
    if status not in {s.value for s in OrderStatus}:
        return json_error("Invalid status", 400)

    o.status = status
    db.session.commit()
    audit("status", "order", o.id, {"status": status})

    needs_bill = status in (OrderStatus.IN_PROGRESS.value, OrderStatus.COMPLETED.value)
    if not needs_bill or o.bill or o.bill_id:
        return jsonify({"success": True, "order": o.to_dict(), "bill_created": False})

    try:
        bill = create_bill_for_order(o)
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Bill creation failed for order %s", o.id)
        return jsonify({
            "success": True,
            "order": o.to_dict(),
            "bill_created": False,
            "warning": "Status updated, but bill creation failed",
        })

    audit("create", "bill", bill.id, {"order_id": o.id})
    return jsonify({"success": True, "order": o.to_dict(), "bill_created": True, "bill": bill.to_dict()})


@app.route("/api/orders/<order_id>", methods=["DELETE"])
@require_roles("manager")
def api_orders_delete(order_id):
    o, err = get_or_404(Order, order_id, "Order not found")
    if err:
        return err
    if o.bill:
        db.session.delete(o.bill)
    Expense.query.filter_by(order_id=o.id).update({"order_id": None})
    db.session.delete(o)
    db.session.commit()
    audit("delete", "order", order_id)
    return jsonify({"success": True})


@app.route("/api/orders/<order_id>/grouped", methods=["GET"])
@login_required
def api_orders_grouped(order_id):
    o, err = get_or_404(Order, order_id, "Order not found")
    if err:
        return err
    fallback = o.event_date or (o.created_at.date() if o.created_at else None)
    grouped = group_by_date_then_session(
        line_items_for_order(o), parse_meal_type_amounts(o.meal_type_amounts), fallback
    )
    return jsonify({"success": True, "dates": grouped_to_list(grouped)})


@app.route("/api/orders/merge", methods=["POST"])
@require_roles("manager")
def api_orders_merge():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    primary_id = data.get("primary_order_id")
    secondary_ids = data.get("secondary_order_ids")
    if not primary_id or not isinstance(secondary_ids, list) or not secondary_ids:
        return json_error("Missing primary or secondary order IDs", 400)
    if primary_id in secondary_ids:
        return json_error("Primary order cannot also be a secondary order", 400)

    primary, err = get_or_404(Order, primary_id, "Primary order not found")
    if err:
        return err
    secondaries = Order.query.filter(Order.id.in_(secondary_ids)).all()
    if len(secondaries) != len(set(secondary_ids)):
        return json_error("Secondary order not found", 404)
    if any(s.customer_id != primary.customer_id for s in secondaries):
        return json_error("Only orders of the same customer can be merged", 400)

    try:
        merge_orders(primary, secondaries)
        db.session.commit()
    except SeparationError as e:
        db.session.rollback()
        return json_error(str(e), 400)
    except Exception:
        db.session.rollback()
        app.logger.exception("Order merge failed for %s", primary_id)
        return json_error("Failed to merge orders", 500)

    audit("merge", "order", primary.id, {"merged": secondary_ids})
    return jsonify({
        "success": True,
        "message": f"Merged {len(secondary_ids)} orders into primary order #{primary.serial_number}",
        "order": primary.to_dict(),
    })


def _detach(order_id, op, arg_name):
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    if data.get("confirm") is not True:
        return json_error("Confirmation required to separate; this cannot be undone", 400)
    arg = data.get(arg_name)
    if not arg:
        return json_error(f"{arg_name} is required", 400)
    o, err = get_or_404(Order, order_id, "Order not found")
    if err:
        return err

    try:
        updated, new_order = op(o, arg)
        db.session.commit()
    except SeparationError as e:
        db.session.rollback()
        return json_error(str(e), 400)
    except Exception:
        db.session.rollback()
        app.logger.exception("Separation failed for order %s", order_id)
        return json_error("Failed to separate order", 500)

    audit("separate", "order", updated.id, {arg_name: str(arg), "new_order_id": new_order.id})
    return jsonify({"success": True, "order": updated.to_dict(), "new_order": new_order.to_dict()})


@app.route("/api/orders/<order_id>/detach-session", methods=["POST"])
@login_required
def api_orders_detach_session(order_id):
    return _detach(order_id, detach_session, "session_key")


@app.route("/api/orders/<order_id>/detach-date", methods=["POST"])
@login_required
def api_orders_detach_date(order_id):
    return _detach(order_id, detach_date, "date")


@app.route("/api/orders/<order_id>/document.html", methods=["GET"])
@login_required
def api_order_document_html(order_id):
    o, err = get_or_404(Order, order_id, "Order not found")
    if err:
        return err
    html = render_html("order", order_template_data(o, business_info()))
    return Response(html, mimetype="text/html")


@app.route("/api/orders/<order_id>/document.pdf", methods=["GET"])
@login_required
def api_order_document_pdf(order_id):
    o, err = get_or_404(Order, order_id, "Order not found")
    if err:
        return err
    try:
        pdf_bytes = build_pdf_bytes("order", order_template_data(o, business_info()))
    except Exception:
        app.logger.exception("Order PDF generation failed for %s", order_id)
        return json_error("Failed to generate PDF", 500)
    return send_file(
        io.BytesIO(pdf_bytes),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"{order_number(o)}.pdf"
    )


# ---------------------------
# Bills
# ---------------------------

@app.route("/api/bills", methods=["GET"])
@login_required
def api_bills_list():
    q = Bill.query
    if request.args.get("status"):
        q = q.filter(Bill.status == request.args["status"])
    rows = q.order_by(Bill.created_at.desc()).all()
    out = []
    for b in rows:
        d = b.to_dict()
        d["order"] = b.order.to_dict(with_items=False) if b.order else None
        out.append(d)
    return jsonify({"success": True, "bills": out})


@app.route("/api/bills/unbilled", methods=["GET"])
@login_required
def api_bills_unbilled():
    orders = (
        Order.query
        .outerjoin(Bill, Bill.order_id == Order.id)
        .filter(Bill.id.is_(None), Order.bill_id.is_(None), Order.status != OrderStatus.PENDING.value)
        .order_by(Order.event_date.asc())
        .all()
    )
    grouped = {}
    for o in orders:
        entry = grouped.setdefault(o.customer_id, {
            "customer": o.customer.to_dict() if o.customer else None,
            "orders": [],
        })
        entry["orders"].append(o.to_dict(with_items=False))
    return jsonify({"success": True, "groups": list(grouped.values())})


@app.route("/api/bills/consolidate", methods=["POST"])
@require_roles("manager")
def api_bills_consolidate():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    customer_id = data.get("customer_id")
    order_ids = data.get("order_ids")
    if not customer_id or not isinstance(order_ids, list) or not order_ids:
        return json_error("Invalid data", 400)

    orders = (
        Order.query
        .outerjoin(Bill, Bill.order_id == Order.id)
        .filter(Order.id.in_(order_ids), Order.customer_id == customer_id,
                Order.bill_id.is_(None), Bill.id.is_(None))
        .all()
    )
    if not orders:
        return json_error("No valid unbilled orders found", 400)

    total = sum((money(o.total_amount or 0) for o in orders), Decimal("0.00"))
    advance = sum((money(o.advance_paid or 0) for o in orders), Decimal("0.00"))
    remaining = max(Decimal("0.00"), total - advance)
    dates = [o.event_date for o in orders if o.event_date]

    try:
        history = []
        if advance > 0:
            history.append({
                "amount": float(advance), "totalPaid": float(advance), "remainingAmount": float(remaining),
                "status": bill_status_for(remaining, advance), "date": now_utc().isoformat(),
                "source": "consolidation", "method": "mixed", "notes": "Consolidated from multiple orders",
            })
        bill = Bill(
            customer_id=customer_id,
            total_amount=total,
            advance_paid=advance,
            paid_amount=advance,
            remaining_amount=remaining,
            status=bill_status_for(remaining, advance),
            start_date=min(dates) if dates else None,
            end_date=max(dates) if dates else None,
            payment_history=history,
        )
        db.session.add(bill)
        db.session.flush()
        for o in orders:
            o.bill_id = bill.id
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Bill consolidation failed for customer %s", customer_id)
        return json_error("Failed to consolidate bills", 500)

    audit("consolidate", "bill", bill.id, {"orders": [o.id for o in orders]})
    out = bill.to_dict()
    out["order_ids"] = [o.id for o in orders]
    return jsonify({"success": True, "bill": out}), 201


@app.route("/api/bills/order/<order_id>", methods=["GET"])
@login_required
def api_bill_for_order(order_id):
    bill = Bill.query.filter_by(order_id=order_id).first()
    if not bill:
        return json_error("Bill not found for this order", 404)
    d = bill.to_dict()
    d["order"] = bill.order.to_dict()
    return jsonify({"success": True, "bill": d})


@app.route("/api/bills/<bill_id>", methods=["GET"])
@login_required
def api_bills_get(bill_id):
    bill, err = get_or_404(Bill, bill_id, "Bill not found")
    if err:
        return err
    d = bill.to_dict()
    d["order"] = bill.order.to_dict() if bill.order else None
    if not bill.order:
        d["orders"] = [o.to_dict(with_items=False) for o in Order.query.filter_by(bill_id=bill.id).all()]
    return jsonify({"success": True, "bill": d})


@app.route("/api/bills/<bill_id>", methods=["PUT"])
@login_required
def api_bills_update(bill_id):
    bad = require_json()
    if bad:
        return bad
    bill, err = get_or_404(Bill, bill_id, "Bill not found")
    if err:
        return err
    data = request.get_json()

    paid = parse_amount(data.get("paid_amount"))
    remaining = parse_amount(data.get("remaining_amount"))
    status = data.get("status")
    method = data.get("payment_method") or PaymentMethod.CASH.value
    notes = data.get("payment_notes") or ""
    bill_note = data.get("bill_note").strip() if isinstance(data.get("bill_note"), str) else None

    if status not in {s.value for s in BillStatus}:
        return json_error("Invalid status", 400)
    if paid is None or remaining is None or paid < 0 or remaining < 0:
        return json_error("Invalid amounts", 400)
    total = money(bill.total_amount)
    if paid > total or remaining > total:
        return json_error("Amounts exceed total bill", 400)
    if method not in {m.value for m in PaymentMethod}:
        return json_error("Invalid payment method", 400)

    history = list(bill.payment_history or [])
    delta = paid - money(bill.paid_amount or 0)
    if delta > 0:
        history.append({
            "amount": float(delta), "totalPaid": float(paid), "remainingAmount": float(remaining),
            "status": status, "date": now_utc().isoformat(), "source": "payment",
            "method": method, "notes": notes,
        })
    if bill_note is not None:
        history = [h for h in history if not (isinstance(h, dict) and h.get("source") == "bill_note")]
        if bill_note:
            history.append({
                "amount": 0, "totalPaid": float(paid), "remainingAmount": float(remaining),
                "status": status, "date": now_utc().isoformat(), "source": "bill_note",
                "method": method, "notes": bill_note,
            })

    bill.paid_amount = paid
    bill.remaining_amount = remaining
    bill.status = status
    bill.payment_history = history
    db.session.commit()

    audit("payment", "bill", bill.id, {"paid": str(paid), "delta": str(delta), "method": method})
    return jsonify({"success": True, "bill": bill.to_dict()})


@app.route("/api/bills/<bill_id>", methods=["DELETE"])
@require_roles("manager")
def api_bills_delete(bill_id):
    bill, err = get_or_404(Bill, bill_id, "Bill not found")
    if err:
        return err
    Order.query.filter_by(bill_id=bill.id).update({"bill_id": None})
    db.session.delete(bill)
    db.session.commit()
    audit("delete", "bill", bill_id)
    return jsonify({"success": True, "message": "Bill deleted successfully"})


@app.route("/api/bills/<bill_id>/document.html", methods=["GET"])
@login_required
def api_bill_document_html(bill_id):
    bill, err = get_or_404(Bill, bill_id, "Bill not found")
    if err:
        return err
    if bill.order:
        html = render_html("bill", bill_template_data(bill, business_info()))
    else:
        html = render_html("statement", statement_template_data([bill], business_info()))
    return Response(html, mimetype="text/html")


@app.route("/api/bills/<bill_id>/document.pdf", methods=["GET"])
@login_required
def api_bill_document_pdf(bill_id):
    bill, err = get_or_404(Bill, bill_id, "Bill not found")
    if err:
        return err
    if not bill.order:
        return json_error("PDF is only available for single-order bills", 400)
    try:
        pdf_bytes = build_pdf_bytes("bill", bill_template_data(bill, business_info()))
    except Exception:
        app.logger.exception("Bill PDF generation failed for %s", bill_id)
        return json_error("Failed to generate PDF", 500)
    return send_file(
        io.BytesIO(pdf_bytes),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"bill_{bill.id[:8]}.pdf"
    )


@app.route("/api/bills/<bill_id>/send", methods=["POST"])
@login_required
def api_bill_send(bill_id):
    bill, err = get_or_404(Bill, bill_id, "Bill not found")
    if err:
        return err
    data = request.get_json(silent=True) or {}
    customer = bill.order.customer if bill.order else bill.customer
    to = (data.get("email") or (customer.email if customer else "") or "").strip()
    phone = (data.get("phone") or (customer.phone if customer else "") or "").strip()
    if not to and not phone:
        return json_error("Customer has no email or phone", 400)

    business = business_info()
    emailed = False
    if to:
        attachments = []
        if bill.order:
            data_ = bill_template_data(bill, business)
            html = render_html("bill", data_)
            try:
                attachments.append((f"bill_{bill.id[:8]}.pdf", "application/pdf", build_pdf_bytes("bill", data_)))
            except Exception:
                app.logger.exception("Bill PDF generation failed for %s; sending without attachment", bill_id)
        else:
            html = render_html("statement", statement_template_data([bill], business))
        emailed = send_email(to, f"Your bill from {business['name']}", html, attachments=attachments)

    link = None
    if phone:
        link = whatsapp_link(phone, bill_message(
            business["name"], customer.name if customer else None,
            fmt_money(bill.total_amount), fmt_money(bill.paid_amount), fmt_money(bill.remaining_amount),
        ))

    audit("send", "bill", bill.id, {"email": to or None, "emailed": emailed, "whatsapp": bool(link)})
    return jsonify({"success": True, "emailed": emailed, "whatsapp_link": link})


@app.route("/api/statements/document.html", methods=["POST"])
@login_required
def api_statement_document():
    bad = require_json()
    if bad:
        return bad
    bill_ids = request.get_json().get("bill_ids")
    if not isinstance(bill_ids, list) or not bill_ids:
        return json_error("bill_ids is required", 400)
    bills = Bill.query.filter(Bill.id.in_(bill_ids)).order_by(Bill.created_at.asc()).all()
    if not bills:
        return json_error("No bills found", 404)
    html = render_html("statement", statement_template_data(bills, business_info()))
    return Response(html, mimetype="text/html")


# ---------------------------
# Expenses
# ---------------------------

def _order_display_name(o: Order) -> str:
    customer = o.customer.name if o.customer else "Unknown"
    event = o.event_name or "No Event Name"
    d = o.event_date or (o.created_at.date() if o.created_at else None)
    return f"{customer} - {event} ({d.isoformat() if d else 'N/A'})"


def _allocation_targets(order_ids):
    """Targets in the caller's order; ``None`` if any order id is unknown."""
    orders = {o.id: o for o in Order.query.filter(Order.id.in_(order_ids)).all()}
    targets = []
    for oid in order_ids:
        o = orders.get(oid)
        if o is None:
            return None
        weight = plates_for_order(o.number_of_members, parse_meal_type_amounts(o.meal_type_amounts))
        targets.append(AllocationTarget(
            id=o.id,
            display_name=_order_display_name(o),
            weight=Decimal(weight) if weight else None,
        ))
    return targets


def _compute_allocations(data, total):
    """Returns ``(allocations, error_response)``."""
    method = data.get("allocation_method") or "equal"
    if method not in ALLOCATION_METHODS:
        return None, json_error(f"Unknown allocation method: {method}", 400)
    order_ids = data.get("order_ids")
    if not isinstance(order_ids, list):
        return None, json_error("order_ids must be a list", 400)
    order_ids = list(dict.fromkeys(str(x) for x in order_ids))
    targets = _allocation_targets(order_ids)
    if targets is None:
        return None, json_error("Order not found", 404)
    previous = targets_from_payload(data.get("allocations"))
    allocations = allocate(method, total, targets, previous, app.config["ALLOCATION_DEFAULT_WEIGHT"])
    return allocations, None


def _allocation_summary(total, allocations):
    return {
        "allocations": [a.to_dict() for a in allocations],
        "total": float(money(total)),
        "allocated": float(money(sum((a.amount for a in allocations), Decimal("0")))),
        "delta": float(reconcile_delta(total, allocations)),
        "balanced": is_balanced(total, allocations),
        "percentage_total": float(percentage_total(allocations)),
    }


@app.route("/api/expenses/allocate", methods=["POST"])
@login_required
def api_expenses_allocate():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    total = expense_total(data.get("category"), data.get("calculation_details"), parse_amount(data.get("amount")) or 0)
    allocations, err = _compute_allocations(data, total)
    if err:
        return err
    out = _allocation_summary(total, allocations)
    out["success"] = True
    out["error"] = validate_bulk(data.get("allocation_method") or "equal", total, allocations)
    return jsonify(out)


def _apply_expense(e: Expense, data: dict):
    category = (data.get("category") or e.category or "").strip()
    if not category:
        return json_error("Category is required", 400)
    amount = parse_amount(data.get("amount", e.amount))
    if amount is None or amount < 0:
        return json_error("Invalid amount", 400)
    details = data.get("calculation_details", e.calculation_details)
    total = expense_total(category, details, amount)
    paid = parse_amount(data.get("paid_amount", e.paid_amount))
    if paid is None or paid < 0:
        return json_error("Invalid paid amount", 400)
    if paid > total:
        return json_error("Paid amount exceeds expense amount", 400)

    e.category = category
    e.amount = total
    e.paid_amount = paid
    e.payment_status = bill_status_for(total - paid, paid)
    e.calculation_details = details if isinstance(details, dict) else None
    for field in ("description", "recipient", "notes"):
        if field in data:
            setattr(e, field, (data.get(field) or "").strip() or None)
    if "payment_date" in data or not e.payment_date:
        e.payment_date = parse_date(data.get("payment_date")) or date.today()
    if "event_date" in data:
        e.event_date = parse_date(data.get("event_date"))

    if data.get("is_bulk_expense"):
        allocations, err = _compute_allocations(data, total)
        if err:
            return err
        method = data.get("allocation_method") or "equal"
        msg = validate_bulk(method, total, allocations)
        if msg:
            return json_error(msg, 400)
        e.is_bulk_expense = True
        e.allocation_method = method
        e.bulk_allocations = [a.to_dict() for a in allocations]
        e.order_id = None
    else:
        order_id = data.get("order_id", e.order_id) or None
        if order_id and not db.session.get(Order, order_id):
            return json_error("Order not found", 404)
        e.order_id = order_id
        e.is_bulk_expense = False
        e.allocation_method = None
        e.bulk_allocations = None
    return None


def _expense_touches_order(e: Expense, order_id) -> bool:
    if e.order_id == order_id:
        return True
    return any(isinstance(a, dict) and a.get("id") == order_id for a in (e.bulk_allocations or []))


@app.route("/api/expenses", methods=["GET"])
@login_required
def api_expenses_list():
    rows = Expense.query.order_by(Expense.payment_date.desc()).all()
    order_id = request.args.get("order_id")
    if order_id:
        rows = [e for e in rows if _expense_touches_order(e, order_id)]
    return jsonify({"success": True, "expenses": [e.to_dict() for e in rows]})


@app.route("/api/expenses", methods=["POST"])
@login_required
def api_expenses_create():
    bad = require_json()
    if bad:
        return bad
    e = Expense()
    err = _apply_expense(e, request.get_json())
    if err:
        return err
    try:
        db.session.add(e)
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Error creating expense")
        return json_error("Failed to create expense", 500)
    audit("create", "expense", e.id, {"amount": str(e.amount), "bulk": bool(e.is_bulk_expense)})
    return jsonify({"success": True, "expense": e.to_dict()}), 201


@app.route("/api/expenses/<expense_id>", methods=["GET"])
@login_required
def api_expenses_get(expense_id):
    e, err = get_or_404(Expense, expense_id, "Expense not found")
    if err:
        return err
    return jsonify({"success": True, "expense": e.to_dict()})


@app.route("/api/expenses/<expense_id>", methods=["PUT"])
@login_required
def api_expenses_update(expense_id):
    bad = require_json()
    if bad:
        return bad
    e, err = get_or_404(Expense, expense_id, "Expense not found")
    if err:
        return err
    data = request.get_json()
    if data.get("is_bulk_expense") and "allocations" not in data and e.bulk_allocations:
        data = dict(data, allocations=e.bulk_allocations)
    err = _apply_expense(e, data)
    if err:
        db.session.rollback()
        return err
    db.session.commit()
    audit("update", "expense", e.id, {"amount": str(e.amount)})
    return jsonify({"success": True, "expense": e.to_dict()})


@app.route("/api/expenses/<expense_id>", methods=["DELETE"])
@require_roles("manager")
def api_expenses_delete(expense_id):
    e, err = get_or_404(Expense, expense_id, "Expense not found")
    if err:
        return err
    db.session.delete(e)
    db.session.commit()
    audit("delete", "expense", expense_id)
    return jsonify({"success": True})


@app.route("/api/expenses/<expense_id>/document.html", methods=["GET"])
@login_required
def api_expense_document(expense_id):
    e, err = get_or_404(Expense, expense_id, "Expense not found")
    if err:
        return err
    html = render_html("expense", expense_template_data(e, business_info()))
    return Response(html, mimetype="text/html")


# ---------------------------
# Workforce
# ---------------------------

WORKFORCE_ROLES = ("supervisor", "chef", "labours", "boys", "transport", "gas", "pan", "store", "other")
WORKFORCE_PAYMENT_METHODS = ("cash", "upi", "bank_transfer", "cheque", "other")


def expenses_for_member(member: Workforce, expenses):
    name = (member.name or "").strip().lower()
    out = []
    for e in expenses:
        recipient = (e.recipient or "").strip().lower()
        if not recipient or not name:
            continue
        if recipient == name or name in recipient or recipient in name:
            out.append(e)
    return out


@app.route("/api/workforce", methods=["GET"])
@login_required
def api_workforce_list():
    members = Workforce.query.order_by(Workforce.created_at.desc()).all()
    expenses = Expense.query.filter(Expense.recipient.isnot(None)).order_by(Expense.payment_date.desc()).all()
    out = []
    for m in members:
        matched = expenses_for_member(m, expenses)
        d = m.to_dict()
        d["expenses"] = [e.to_dict() for e in matched]
        d["total_amount"] = str(sum((money(e.amount or 0) for e in matched), Decimal("0.00")))
        d["expense_count"] = len(matched)
        out.append(d)
    return jsonify({"success": True, "workforce": out})


@app.route("/api/workforce", methods=["POST"])
@require_roles("manager")
def api_workforce_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    name = (data.get("name") or "").strip()
    role = (data.get("role") or "other").strip().lower()
    if not name:
        return json_error("Name required", 400)
    if role not in WORKFORCE_ROLES:
        return json_error("Invalid role", 400)
    m = Workforce(name=name, role=role, phone=(data.get("phone") or "").strip() or None,
                  is_active=bool(data.get("is_active", True)))
    db.session.add(m)
    db.session.commit()
    audit("create", "workforce", m.id)
    return jsonify({"success": True, "member": m.to_dict()}), 201


@app.route("/api/workforce/<member_id>", methods=["GET"])
@login_required
def api_workforce_get(member_id):
    m, err = get_or_404(Workforce, member_id, "Workforce member not found")
    if err:
        return err
    return jsonify({"success": True, "member": m.to_dict()})


@app.route("/api/workforce/<member_id>", methods=["PUT"])
@require_roles("manager")
def api_workforce_update(member_id):
    bad = require_json()
    if bad:
        return bad
    m, err = get_or_404(Workforce, member_id, "Workforce member not found")
    if err:
        return err
    data = request.get_json()
    if "role" in data:
        role = (data.get("role") or "").strip().lower()
        if role not in WORKFORCE_ROLES:
            return json_error("Invalid role", 400)
        m.role = role
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            return json_error("Name required", 400)
        m.name = name
    if "phone" in data:
        m.phone = (data.get("phone") or "").strip() or None
    if "is_active" in data:
        m.is_active = bool(data.get("is_active"))
    db.session.commit()
    audit("update", "workforce", m.id)
    return jsonify({"success": True, "member": m.to_dict()})


@app.route("/api/workforce/<member_id>", methods=["DELETE"])
@require_roles("manager")
def api_workforce_delete(member_id):
    m, err = get_or_404(Workforce, member_id, "Workforce member not found")
    if err:
        return err
    db.session.delete(m)
    db.session.commit()
    audit("delete", "workforce", member_id)
    return jsonify({"success": True})


@app.route("/api/workforce/<member_id>/document.html", methods=["GET"])
@login_required
def api_workforce_document(member_id):
    m, err = get_or_404(Workforce, member_id, "Workforce member not found")
    if err:
        return err
    expenses = Expense.query.filter(Expense.recipient.isnot(None)).order_by(Expense.payment_date.asc()).all()
    html = render_html("workforce", workforce_template_data(m, expenses_for_member(m, expenses), business_info()))
    return Response(html, mimetype="text/html")


# ---------------------------
# Workforce payments / outstanding
# ---------------------------

def _workforce_role(value) -> str:
    role = (value or "").strip().lower()
    return role if role in WORKFORCE_ROLES else "other"


def _order_events(expenses, orders_by_id):
    """Expense totals per order; bulk expenses count only their allocated share."""
    events = {}
    for e in expenses:
        if e.order_id:
            shares = [(e.order_id, money(e.amount or 0))]
        elif e.is_bulk_expense:
            shares = [
                (a.get("id"), money(a.get("amount") or 0))
                for a in (e.bulk_allocations or []) if isinstance(a, dict) and a.get("id")
            ]
        else:
            shares = []
        for order_id, amount in shares:
            entry = events.setdefault(order_id, {"expenses": [], "total": Decimal("0.00")})
            d = e.to_dict()
            d["allocated_amount"] = str(amount)
            entry["expenses"].append(d)
            entry["total"] += amount

    out = []
    for order_id, entry in events.items():
        o = orders_by_id.get(order_id)
        out.append({
            "order_id": order_id,
            "event_name": (o.event_name or (o.customer.name if o.customer else None)) if o else "Event",
            "event_date": o.event_date.isoformat() if o and o.event_date else None,
            "customer_name": o.customer.name if o and o.customer else None,
            "expenses": entry["expenses"],
            "total_amount": str(entry["total"]),
        })
    # latest events first, undated last
    out.sort(key=lambda ev: ev["event_date"] or "", reverse=True)
    return out


def outstanding_by_role(expenses, payments):
    """Dues per workforce role: expense amounts minus expense payments and direct payments."""
    rows = {r: {"dues": Decimal("0.00"), "paid_expenses": Decimal("0.00"), "payments": Decimal("0.00"),
                "expense_count": 0, "payment_count": 0} for r in WORKFORCE_ROLES}
    for e in expenses:
        r = rows[_workforce_role(e.category)]
        r["dues"] += money(e.amount or 0)
        r["paid_expenses"] += money(e.paid_amount or 0)
        r["expense_count"] += 1
    for p in payments:
        r = rows[_workforce_role(p.role)]
        r["payments"] += money(p.amount or 0)
        r["payment_count"] += 1

    summary = []
    for role in WORKFORCE_ROLES:
        r = rows[role]
        paid = r["paid_expenses"] + r["payments"]
        summary.append({
            "role": role,
            "total_dues": r["dues"],
            "total_paid_from_expenses": r["paid_expenses"],
            "total_payments": r["payments"],
            "total_paid": paid,
            "outstanding": max(Decimal("0.00"), r["dues"] - paid),
            "expense_count": r["expense_count"],
            "payment_count": r["payment_count"],
        })
    return summary


@app.route("/api/workforce/payments", methods=["GET"])
@login_required
def api_workforce_payments_list():
    q = WorkforcePayment.query
    role = (request.args.get("role") or "").strip().lower()
    if role:
        q = q.filter(WorkforcePayment.role == role)
    rows = q.order_by(WorkforcePayment.payment_date.desc(), WorkforcePayment.created_at.desc()).all()
    return jsonify({"success": True, "payments": [p.to_dict() for p in rows]})


@app.route("/api/workforce/payments", methods=["POST"])
@require_roles("manager")
def api_workforce_payments_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    amount = parse_amount(data.get("amount"), default=None)
    if amount is None or amount <= 0:
        return json_error("Valid amount is required", 400)
    method = (data.get("payment_method") or "cash").strip().lower()
    if method not in WORKFORCE_PAYMENT_METHODS:
        return json_error(f"Invalid payment method. Must be one of: {', '.join(WORKFORCE_PAYMENT_METHODS)}", 400)
    role = (data.get("role") or "").strip().lower() or None
    if role and role not in WORKFORCE_ROLES:
        return json_error(f"Invalid role. Must be one of: {', '.join(WORKFORCE_ROLES)}", 400)

    p = WorkforcePayment(
        amount=amount,
        role=role,
        payment_method=method,
        notes=(data.get("notes") or "").strip() or None,
        payment_date=parse_date(data.get("payment_date")) or date.today(),
    )
    db.session.add(p)
    db.session.commit()
    audit("create", "workforce_payment", p.id, {"amount": str(amount), "role": role})
    return jsonify({"success": True, "payment": p.to_dict()}), 201


@app.route("/api/workforce/outstanding", methods=["GET"])
@login_required
def api_workforce_outstanding():
    expenses = Expense.query.order_by(Expense.payment_date.desc()).all()
    payments = WorkforcePayment.query.order_by(WorkforcePayment.payment_date.desc()).all()

    order_ids = {e.order_id for e in expenses if e.order_id}
    for e in expenses:
        if e.is_bulk_expense:
            order_ids.update(a.get("id") for a in (e.bulk_allocations or []) if isinstance(a, dict) and a.get("id"))
    orders = Order.query.filter(Order.id.in_(order_ids)).all() if order_ids else []

    summary = outstanding_by_role(expenses, payments)
    out_roles = []
    for r in summary:
        d = {k: (str(v) if isinstance(v, Decimal) else v) for k, v in r.items()}
        out_roles.append(d)
    return jsonify({
        "success": True,
        "events": _order_events(expenses, {o.id: o for o in orders}),
        "role_summary": out_roles,
        "total_dues": str(sum((r["total_dues"] for r in summary), Decimal("0.00"))),
        "total_paid": str(sum((r["total_paid"] for r in summary), Decimal("0.00"))),
        "total_outstanding": str(sum((r["outstanding"] for r in summary), Decimal("0.00"))),
    })


# ---------------------------
# Inventory (equipment)
# ---------------------------

def _choice(data, field, choices, label):
    value = (data.get(field) or "").strip().lower()
    if value not in choices:
        return None, json_error(f"Invalid {label}. Must be one of: {', '.join(choices)}", 400)
    return value, None


def _optional_amount(data, field, label):
    """(value, error) for a nullable non-negative number field."""
    raw = data.get(field)
    if raw is None or raw == "":
        return None, None
    value = parse_amount(raw, default=None)
    if value is None or value < 0:
        return None, json_error(f"{label} must be a valid number", 400)
    return value, None


def _text(data, field):
    return (data.get(field) or "").strip() or None


def _apply_inventory(item: InventoryItem, data: dict):
    for field, label in (("name", "Name"), ("unit", "Unit")):
        if field in data:
            value = (data.get(field) or "").strip()
            if not value:
                return json_error(f"{label} is required", 400)
            setattr(item, field, value)
    if "category" in data:
        item.category, err = _choice(data, "category", INVENTORY_CATEGORIES, "category")
        if err:
            return err
    if data.get("condition"):
        item.condition, err = _choice(data, "condition", INVENTORY_CONDITIONS, "condition")
        if err:
            return err
    if "quantity" in data:
        qty = parse_amount(data.get("quantity"))
        if qty is None or qty < 0:
            return json_error("Quantity must be a valid number", 400)
        item.quantity = qty
    for field, label in (("min_quantity", "Min quantity"), ("purchase_price", "Purchase price")):
        if field in data:
            value, err = _optional_amount(data, field, label)
            if err:
                return err
            setattr(item, field, value)
    for field in ("location", "supplier", "description"):
        if field in data:
            setattr(item, field, _text(data, field))
    if "purchase_date" in data:
        item.purchase_date = parse_date(data.get("purchase_date"))
    if "is_active" in data:
        item.is_active = bool(data.get("is_active"))
    return None


@app.route("/api/inventory", methods=["GET"])
@login_required
def api_inventory_list():
    q = InventoryItem.query
    category = (request.args.get("category") or "").strip().lower()
    if category:
        q = q.filter(InventoryItem.category == category)
    if request.args.get("active") == "1":
        q = q.filter(InventoryItem.is_active.is_(True))
    rows = q.order_by(InventoryItem.created_at.desc()).all()
    return jsonify({"success": True, "items": [i.to_dict() for i in rows]})


@app.route("/api/inventory", methods=["POST"])
@require_roles("manager")
def api_inventory_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    if not all((data.get(f) or "").strip() for f in ("name", "category", "unit")):
        return json_error("Name, category, and unit are required", 400)
    item = InventoryItem(condition="good", quantity=Decimal("0.00"), is_active=True)
    err = _apply_inventory(item, data)
    if err:
        return err
    db.session.add(item)
    db.session.commit()
    audit("create", "inventory", item.id)
    return jsonify({"success": True, "item": item.to_dict()}), 201


@app.route("/api/inventory/<item_id>", methods=["GET"])
@login_required
def api_inventory_get(item_id):
    item, err = get_or_404(InventoryItem, item_id, "Inventory item not found")
    if err:
        return err
    return jsonify({"success": True, "item": item.to_dict()})


@app.route("/api/inventory/<item_id>", methods=["PUT"])
@require_roles("manager")
def api_inventory_update(item_id):
    bad = require_json()
    if bad:
        return bad
    item, err = get_or_404(InventoryItem, item_id, "Inventory item not found")
    if err:
        return err
    err = _apply_inventory(item, request.get_json())
    if err:
        db.session.rollback()
        return err
    db.session.commit()
    audit("update", "inventory", item.id)
    return jsonify({"success": True, "item": item.to_dict()})


@app.route("/api/inventory/<item_id>", methods=["DELETE"])
@require_roles("manager")
def api_inventory_delete(item_id):
    item, err = get_or_404(InventoryItem, item_id, "Inventory item not found")
    if err:
        return err
    db.session.delete(item)
    db.session.commit()
    audit("delete", "inventory", item_id)
    return jsonify({"success": True})


@app.route("/api/inventory/document.html", methods=["GET"])
@login_required
def api_inventory_report():
    rows = InventoryItem.query.filter(InventoryItem.is_active.is_(True)) \
        .order_by(InventoryItem.category.asc(), InventoryItem.name.asc()).all()
    html = render_html("inventory", inventory_template_data([i.to_dict() for i in rows], business_info()))
    return Response(html, mimetype="text/html")


@app.route("/api/inventory/document.html", methods=["POST"])
@login_required
def api_inventory_document():
    bad = require_json()
    if bad:
        return bad
    rows = request.get_json().get("items")
    if not isinstance(rows, list):
        return json_error("items must be a list", 400)
    html = render_html("inventory", inventory_template_data(rows, business_info()))
    return Response(html, mimetype="text/html")


# ---------------------------
# Stock (consumables)
# ---------------------------

def _apply_stock(s: StockItem, data: dict):
    for field, label in (("name", "Name"), ("unit", "Unit")):
        if field in data:
            value = (data.get(field) or "").strip()
            if not value:
                return json_error(f"{label} is required", 400)
            setattr(s, field, value)
    if "category" in data:
        s.category, err = _choice(data, "category", STOCK_CATEGORIES, "category")
        if err:
            return err
    for field, label in (("min_stock", "Minimum stock"), ("max_stock", "Maximum stock"), ("price", "Price")):
        if field in data:
            value, err = _optional_amount(data, field, label)
            if err:
                return err
            setattr(s, field, value)
    for field in ("supplier", "location", "description"):
        if field in data:
            setattr(s, field, _text(data, field))
    if "is_active" in data:
        s.is_active = bool(data.get("is_active"))
    return None


def record_stock_movement(s: StockItem, kind, quantity, price=None, reference=None, notes=None):
    """Stage a transaction and move ``current_stock``; raises ValueError when stock would go negative."""
    current = money(s.current_stock or 0)
    if kind == "out":
        if quantity > current:
            raise ValueError(f"Insufficient stock. Available: {current}")
        s.current_stock = current - quantity
    else:
        s.current_stock = current + quantity
    t = StockTransaction(
        stock=s,
        type=kind,
        quantity=quantity,
        price=price,
        total_amount=money(quantity * price) if price is not None else None,
        reference=reference,
        notes=notes,
    )
    db.session.add(t)
    return t


@app.route("/api/stock", methods=["GET"])
@login_required
def api_stock_list():
    q = StockItem.query
    category = (request.args.get("category") or "").strip().lower()
    if category:
        q = q.filter(StockItem.category == category)
    rows = q.order_by(StockItem.created_at.desc()).all()
    if request.args.get("low") == "1":
        rows = [s for s in rows if s.is_low]
    return jsonify({"success": True, "stock": [s.to_dict(transactions=1) for s in rows]})


@app.route("/api/stock", methods=["POST"])
@require_roles("manager")
def api_stock_create():
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    if not all((data.get(f) or "").strip() for f in ("name", "category", "unit")):
        return json_error("Name, category, and unit are required", 400)
    initial = parse_amount(data.get("current_stock"))
    if initial is None or initial < 0:
        return json_error("Current stock must be a valid number", 400)

    s = StockItem(current_stock=Decimal("0.00"), is_active=True)
    err = _apply_stock(s, data)
    if err:
        return err
    try:
        db.session.add(s)
        if initial > 0:
            record_stock_movement(s, "in", initial, price=s.price, notes="Initial stock")
        db.session.commit()
    except Exception:
        db.session.rollback()
        app.logger.exception("Error creating stock item")
        return json_error("Failed to create stock item", 500)
    audit("create", "stock", s.id, {"current_stock": str(s.current_stock)})
    return jsonify({"success": True, "stock": s.to_dict(transactions=1)}), 201


@app.route("/api/stock/<stock_id>", methods=["GET"])
@login_required
def api_stock_get(stock_id):
    s, err = get_or_404(StockItem, stock_id, "Stock item not found")
    if err:
        return err
    return jsonify({"success": True, "stock": s.to_dict(transactions=50)})


@app.route("/api/stock/<stock_id>", methods=["PUT"])
@require_roles("manager")
def api_stock_update(stock_id):
    bad = require_json()
    if bad:
        return bad
    s, err = get_or_404(StockItem, stock_id, "Stock item not found")
    if err:
        return err
    # the level itself only moves through transactions
    data = {k: v for k, v in request.get_json().items() if k != "current_stock"}
    err = _apply_stock(s, data)
    if err:
        db.session.rollback()
        return err
    db.session.commit()
    audit("update", "stock", s.id)
    return jsonify({"success": True, "stock": s.to_dict()})


@app.route("/api/stock/<stock_id>", methods=["DELETE"])
@require_roles("manager")
def api_stock_delete(stock_id):
    s, err = get_or_404(StockItem, stock_id, "Stock item not found")
    if err:
        return err
    db.session.delete(s)
    db.session.commit()
    audit("delete", "stock", stock_id)
    return jsonify({"success": True})


@app.route("/api/stock/<stock_id>/transactions", methods=["GET"])
@login_required
def api_stock_transactions(stock_id):
    s, err = get_or_404(StockItem, stock_id, "Stock item not found")
    if err:
        return err
    return jsonify({"success": True, "transactions": [t.to_dict() for t in s.transactions]})


@app.route("/api/stock/<stock_id>/transactions", methods=["POST"])
@login_required
def api_stock_transaction_create(stock_id):
    bad = require_json()
    if bad:
        return bad
    data = request.get_json()
    kind = (data.get("type") or "").strip().lower()
    quantity = parse_amount(data.get("quantity"), default=None)
    if not kind or quantity is None or quantity <= 0:
        return json_error("Type and quantity are required", 400)
    if kind not in ("in", "out"):
        return json_error('Type must be "in" or "out"', 400)
    price, err = _optional_amount(data, "price", "Price")
    if err:
        return err
    s, err = get_or_404(StockItem, stock_id, "Stock item not found")
    if err:
        return err

    try:
        t = record_stock_movement(s, kind, quantity, price=price,
                                  reference=_text(data, "reference"), notes=_text(data, "notes"))
    except ValueError as exc:
        db.session.rollback()
        return json_error(str(exc), 400)
    db.session.commit()
    audit("stock_" + kind, "stock", s.id, {"quantity": str(quantity)})
    return jsonify({"success": True, "transaction": t.to_dict(), "current_stock": str(money(s.current_stock))}), 201


if __name__ == "__main__":
    app.logger.info("Using database %s", app.config["SQLALCHEMY_DATABASE_URI"])
    with app.app_context():
        db.create_all()
    app.run(host="127.0.0.1", port=5000, debug=True, use_reloader=False)
