import pytest

from documents import build_pdf_bytes, fmt_money, inventory_template_data, render_html


STATEMENT = {
    "business": {"name": "Sri Sai Caterers", "phone": "9000000000"},
    "bills": [
        {"number": "BILL-1", "customer": "A & B", "event": "Reception", "total_amount": "1,000.00",
         "paid_amount": "500.00", "remaining_amount": "500.00"},
    ],
    "period": "2024-05-01 to 2024-05-02",
    "totals": {"total_amount": "1,000.00", "paid_amount": "500.00", "remaining_amount": "500.00"},
}


def test_render_is_deterministic():
    assert render_html("statement", STATEMENT) == render_html("statement", STATEMENT)


def test_render_escapes_user_text():
    html = render_html("statement", STATEMENT)
    assert "A &amp; B" in html
    assert "Sri Sai Caterers" in html
    assert "Cell: 9000000000" in html


def test_unknown_kind():
    with pytest.raises(ValueError):
        render_html("receipt", {})


def test_pdf_only_for_orders_and_bills():
    with pytest.raises(ValueError):
        build_pdf_bytes("statement", STATEMENT)


def test_fmt_money():
    assert fmt_money("1234567.891") == "1,234,567.89"
    assert fmt_money(None) == "0.00"


def test_inventory_rows_without_name_are_skipped():
    data = inventory_template_data([{"name": "Rice", "quantity": 50, "unit": "kg"}, {"quantity": 3}], {"name": "X"})
    assert [r["name"] for r in data["rows"]] == ["Rice"]
    assert "Rice" in render_html("inventory", data)


def test_order_documents(auth_client, three_session_order):
    order = auth_client.post("/api/orders", json=three_session_order).get_json()["order"]

    html = auth_client.get(f"/api/orders/{order['id']}/document.html").get_data(as_text=True)
    assert "ORDER-1" in html
    assert html.index("Idli") < html.index("Veg Biryani") < html.index("Roti")
    assert "Roti (butter)" in html

    pdf = auth_client.get(f"/api/orders/{order['id']}/document.pdf")
    assert pdf.status_code == 200
    assert pdf.data.startswith(b"%PDF")
    assert "ORDER-1.pdf" in pdf.headers["Content-Disposition"]


def test_inventory_document_endpoint(auth_client):
    resp = auth_client.post("/api/inventory/document.html", json={"items": [{"name": "Oil", "quantity": 10}]})
    assert resp.status_code == 200
    assert "Inventory Report" in resp.get_data(as_text=True)
    assert auth_client.post("/api/inventory/document.html", json={"items": "oil"}).status_code == 400


def test_business_settings_flow_into_documents(auth_client, three_session_order):
    auth_client.put("/api/settings", json={"name": "Annapurna Caterers", "phone": "9123456789"})
    order = auth_client.post("/api/orders", json=three_session_order).get_json()["order"]
    html = auth_client.get(f"/api/orders/{order['id']}/document.html").get_data(as_text=True)
    assert "Annapurna Caterers" in html
    assert "Cell: 9123456789" in html
