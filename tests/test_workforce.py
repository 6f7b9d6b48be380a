import pytest

from database import Role

from conftest import login, make_user


@pytest.fixture
def orders(auth_client, three_session_order):
    return [auth_client.post("/api/orders", json=three_session_order).get_json()["order"]["id"] for _ in range(3)]


def _pay(client, **fields):
    payload = {"amount": 500, "role": "chef", "payment_method": "upi", "payment_date": "2024-05-04"}
    payload.update(fields)
    return client.post("/api/workforce/payments", json=payload)


def test_record_and_list_payments(auth_client):
    resp = _pay(auth_client, notes="  advance for wedding  ")
    assert resp.status_code == 201
    payment = resp.get_json()["payment"]
    assert payment["amount"] == "500.00"
    assert payment["notes"] == "advance for wedding"
    assert payment["payment_date"] == "2024-05-04"

    _pay(auth_client, role="gas", amount=120, payment_date="2024-05-06")
    rows = auth_client.get("/api/workforce/payments").get_json()["payments"]
    assert [p["role"] for p in rows] == ["gas", "chef"]
    chef_only = auth_client.get("/api/workforce/payments?role=chef").get_json()["payments"]
    assert [p["id"] for p in chef_only] == [payment["id"]]


@pytest.mark.parametrize("fields, error", [
    ({"amount": 0}, "Valid amount is required"),
    ({"amount": "lots"}, "Valid amount is required"),
    ({"payment_method": "card"}, "Invalid payment method. Must be one of: cash, upi, bank_transfer, cheque, other"),
    ({"role": "juggler"}, "Invalid role. Must be one of: supervisor, chef, labours, boys, transport, gas, pan, store, other"),
])
def test_payment_validation(auth_client, fields, error):
    resp = _pay(auth_client, **fields)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == error


def test_payment_without_role_or_date(auth_client):
    payment = _pay(auth_client, role=None, payment_date=None).get_json()["payment"]
    assert payment["role"] is None
    assert payment["payment_method"] == "upi"
    assert payment["payment_date"] is not None


def test_outstanding_by_role_and_event(auth_client, orders):
    auth_client.post("/api/expenses", json={
        "category": "chef", "amount": 1200, "paid_amount": 200, "order_id": orders[0], "payment_date": "2024-05-03",
    })
    auth_client.post("/api/expenses", json={"category": "gas", "amount": 300, "paid_amount": 300})
    auth_client.post("/api/expenses", json={
        "category": "labours", "amount": 1000, "is_bulk_expense": True,
        "allocation_method": "equal", "order_ids": orders,
    })
    _pay(auth_client, role="chef", amount=500)
    _pay(auth_client, role=None, amount=100)

    body = auth_client.get("/api/workforce/outstanding").get_json()
    roles = {r["role"]: r for r in body["role_summary"]}
    assert roles["chef"]["total_dues"] == "1200.00"
    assert roles["chef"]["total_paid"] == "700.00"
    assert roles["chef"]["outstanding"] == "500.00"
    assert roles["gas"]["outstanding"] == "0.00"
    assert roles["labours"]["outstanding"] == "1000.00"
    # overpaying a role never makes its balance negative
    assert roles["other"]["total_payments"] == "100.00"
    assert roles["other"]["outstanding"] == "0.00"

    assert body["total_dues"] == "2500.00"
    assert body["total_paid"] == "1100.00"
    assert body["total_outstanding"] == "1500.00"

    events = {e["order_id"]: e for e in body["events"]}
    assert events[orders[0]]["total_amount"] == "1533.33"
    assert events[orders[1]]["total_amount"] == "333.33"
    assert events[orders[2]]["total_amount"] == "333.34"
    assert events[orders[0]]["event_name"] == "Wedding"
    assert events[orders[0]]["customer_name"] == "Lakshmi Rao"


def test_outstanding_with_no_data(auth_client):
    body = auth_client.get("/api/workforce/outstanding").get_json()
    assert body["events"] == []
    assert body["total_outstanding"] == "0.00"
    assert len(body["role_summary"]) == 9


def test_staff_cannot_record_payments(app, client):
    make_user(app, "cook", Role.STAFF.value)
    login(client, "cook")
    assert _pay(client).status_code == 403
    assert client.get("/api/workforce/payments").status_code == 200
