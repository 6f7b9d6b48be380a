def test_customer_crud(auth_client):
    resp = auth_client.post("/api/customers", json={"name": "  Kiran  ", "email": "KIRAN@Example.com"})
    assert resp.status_code == 201
    customer = resp.get_json()["customer"]
    assert customer["name"] == "Kiran"
    assert customer["email"] == "kiran@example.com"

    found = auth_client.get("/api/customers?q=kir").get_json()["customers"]
    assert [c["id"] for c in found] == [customer["id"]]

    resp = auth_client.put(f"/api/customers/{customer['id']}", json={"phone": "9000000001"})
    assert resp.get_json()["customer"]["phone"] == "9000000001"

    assert auth_client.put(f"/api/customers/{customer['id']}", json={"name": ""}).status_code == 400
    assert auth_client.delete(f"/api/customers/{customer['id']}").status_code == 200
    assert auth_client.get(f"/api/customers/{customer['id']}").status_code == 404


def test_customer_with_orders_cannot_be_deleted(auth_client, three_session_order, seed):
    auth_client.post("/api/orders", json=three_session_order)
    resp = auth_client.delete(f"/api/customers/{seed['customer_id']}")
    assert resp.status_code == 400


def test_menu_item_used_by_order_is_deactivated(auth_client, three_session_order, seed):
    auth_client.post("/api/orders", json=three_session_order)
    resp = auth_client.delete(f"/api/menu/{seed['roti']}")
    assert resp.get_json()["deactivated"] is True

    active = auth_client.get("/api/menu?active=1").get_json()["items"]
    assert seed["roti"] not in [m["id"] for m in active]


def test_menu_filter_by_type(auth_client, seed):
    items = auth_client.get("/api/menu?type=lunch").get_json()["items"]
    assert [m["name"] for m in items] == ["Veg Biryani"]


def test_supervisor_assignment(auth_client, three_session_order):
    sup = auth_client.post("/api/supervisors", json={"name": "Mahesh"}).get_json()["supervisor"]
    order = auth_client.post("/api/orders", json=dict(three_session_order, supervisor_id=sup["id"])).get_json()["order"]
    assert order["supervisor"]["name"] == "Mahesh"

    bad = auth_client.post("/api/orders", json=dict(three_session_order, supervisor_id="ghost"))
    assert bad.status_code == 404


def test_unknown_api_route_is_json(auth_client):
    resp = auth_client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.get_json() == {"success": False, "error": "Not found"}


def test_audit_log_records_actions(auth_client, seed):
    auth_client.post("/api/customers", json={"name": "Logged"})
    logs = auth_client.get("/api/audit-logs").get_json()["logs"]
    assert any(l["action"] == "create" and l["entity"] == "customer" for l in logs)
