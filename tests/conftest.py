import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest

from app import app as flask_app
from database import db, User, Customer, MenuItem, Role


ADMIN_PASSWORD = "admin12345"


@pytest.fixture
def app():
    flask_app.config.update(
        TESTING=True,
        EMAIL_PROVIDER="log",
        ACCESS_TOKEN_MAX_AGE=15 * 60,
        REFRESH_TOKEN_MAX_AGE=7 * 24 * 3600,
        REFRESH_TOKEN_MAX_AGE_REMEMBER=30 * 24 * 3600,
    )
    with flask_app.app_context():
        db.create_all()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(app, username, role, password=ADMIN_PASSWORD, active=True):
    with app.app_context():
        u = User(username=username, email=f"{username}@local", role=role, is_active=active)
        u.set_password(password)
        db.session.add(u)
        db.session.commit()
        return u.id


def login(client, username, password=ADMIN_PASSWORD, remember=False):
    return client.post("/api/auth/login", json={
        "username": username, "password": password, "remember_me": remember,
    })


@pytest.fixture
def admin_id(app):
    return make_user(app, "admin", Role.SUPER_ADMIN.value)


@pytest.fixture
def auth_client(app, admin_id):
    c = app.test_client()
    resp = login(c, "admin")
    assert resp.status_code == 200
    return c


@pytest.fixture
def seed(app):
    """One customer and a breakfast, lunch and dinner dish."""
    with app.app_context():
        customer = Customer(name="Lakshmi Rao", phone="9876543210", email="lakshmi@example.com")
        idli = MenuItem(name="Idli", type="BREAKFAST")
        biryani = MenuItem(name="Veg Biryani", type="LUNCH")
        roti = MenuItem(name="Roti", type="DINNER")
        db.session.add_all([customer, idli, biryani, roti])
        db.session.commit()
        return {
            "customer_id": customer.id,
            "idli": idli.id,
            "biryani": biryani.id,
            "roti": roti.id,
        }


@pytest.fixture
def three_session_order(seed):
    """Payload for an order spanning two dates and three sessions."""
    return {
        "customer_id": seed["customer_id"],
        "event_name": "Wedding",
        "venue": "Town Hall",
        "meal_type_amounts": {
            "session_LUNCH_1": {"amount": 5000, "date": "2024-05-02", "numberOfMembers": 100, "menuType": "LUNCH"},
            "session_BREAKFAST_1": {"amount": 2000, "date": "2024-05-01", "numberOfMembers": 50,
                                    "menuType": "BREAKFAST"},
            "session_DINNER_1": {"amount": 3000, "date": "2024-05-02", "numberOfMembers": 80, "menuType": "DINNER"},
        },
        "items": [
            {"menu_item_id": seed["biryani"], "session_key": "session_LUNCH_1"},
            {"menu_item_id": seed["idli"], "session_key": "session_BREAKFAST_1"},
            {"menu_item_id": seed["roti"], "session_key": "session_DINNER_1", "customization": "butter"},
        ],
        "advance_paid": 1000,
        "transport_cost": 500,
    }
