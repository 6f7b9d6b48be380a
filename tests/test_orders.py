from database import db, Order


def _create(client, payload, **overrides):
    resp = client.post("/api/orders", json=dict(payload, **overrides))
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["order"]


def test_create_derives_total_and_event_date(auth_client, three_session_order):
    order = _create(auth_client, three_session_order)
    assert order["total_amount"] == "10500.00"
    assert order["remaining_amount"] == "9500.00"
    assert order["event_date"] == "2024-05-01"
    assert order["serial_number"] == 1
    assert [it["session_key"] for it in order["items"]] == [
        "session_LUNCH_1", "session_BREAKFAST_1", "session_DINNER_1",
    ]


def test_create_keeps_explicit_total(auth_client, three_session_order):
    order = _create(auth_client, three_session_order, total_amount=9000)
    assert order["total_amount"] == "9000.00"
    assert order["remaining_amount"] == "8000.00"


def test_create_validates_input(auth_client, three_session_order):
    resp = auth_client.post("/api/orders", json=dict(three_session_order, items=[]))
    assert resp.status_code == 400
    resp = auth_client.post("/api/orders", json=dict(three_session_order, customer_id="missing"))
    assert resp.status_code == 404
    resp = auth_client.post("/api/orders", json=dict(three_session_order, advance_paid="lots"))
    assert resp.status_code == 400


def test_status_change_creates_bill_once(auth_client, three_session_order):
    order = _create(auth_client, three_session_order)

    resp = auth_client.put(f"/api/orders/{order['id']}/status", json={"status": "completed"})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["bill_created"] is True
    assert body["bill"]["total_amount"] == "10500.00"
    assert body["bill"]["paid_amount"] == "1000.00"
    assert body["bill"]["status"] == "partial"

    again = auth_client.put(f"/api/orders/{order['id']}/status", json={"status": "in_progress"})
    assert again.get_json()["bill_created"] is False


def test_status_change_reports_bill_failure(auth_client, three_session_order, monkeypatch):
    import app as app_module

    def boom(_order):
        raise RuntimeError("db down")

    monkeypatch.setattr(app_module, "create_bill_for_order", boom)
    order = _create(auth_client, three_session_order)
    resp = auth_client.put(f"/api/orders/{order['id']}/status", json={"status": "completed"})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["success"] is True
    assert body["bill_created"] is False
    assert body["warning"] == "Status updated, but bill creation failed"
    assert body["order"]["status"] == "completed"


def test_status_change_rejects_unknown_status(auth_client, three_session_order):
    order = _create(auth_client, three_session_order)
    resp = auth_client.put(f"/api/orders/{order['id']}/status", json={"status": "done"})
    assert resp.status_code == 400


def test_full_update_replaces_items_and_syncs_bill(auth_client, three_session_order, seed):
    order = _create(auth_client, three_session_order)
    bill = auth_client.put(f"/api/orders/{order['id']}/status", json={"status": "completed"}).get_json()["bill"]

    resp = auth_client.put(f"/api/orders/{order['id']}", json={
        "meal_type_amounts": {"session_LUNCH_1": {"amount": 6000, "date": "2024-05-02", "menuType": "LUNCH"}},
        "items": [{"menu_item_id": seed["biryani"], "session_key": "session_LUNCH_1"}],
        "transport_cost": 0,
    })
    assert resp.status_code == 200
    updated = resp.get_json()["order"]
    assert updated["total_amount"] == "6000.00"
    assert len(updated["items"]) == 1

    bill = auth_client.get(f"/api/bills/{bill['id']}").get_json()["bill"]
    assert bill["total_amount"] == "6000.00"
    assert bill["remaining_amount"] == "5000.00"


def test_grouped_view(auth_client, three_session_order):
    order = _create(auth_client, three_session_order)
    dates = auth_client.get(f"/api/orders/{order['id']}/grouped").get_json()["dates"]
    assert [d["date"] for d in dates] == ["2024-05-01", "2024-05-02"]
    assert [s["label"] for s in dates[1]["sessions"]] == ["Lunch", "Dinner"]
    assert dates[1]["sessions"][1]["items"][0]["customization"] == "butter"


def test_detach_requires_confirmation(auth_client, three_session_order):
    order = _create(auth_client, three_session_order)
    resp = auth_client.post(f"/api/orders/{order['id']}/detach-session", json={"session_key": "session_DINNER_1"})
    assert resp.status_code == 400
    assert "Confirmation" in resp.get_json()["error"]


def test_detach_session_moves_session_and_items(auth_client, three_session_order):
    order = _create(auth_client, three_session_order)
    resp = auth_client.post(f"/api/orders/{order['id']}/detach-session", json={
        "session_key": "session_dinner_1", "confirm": True,
    })
    assert resp.status_code == 200
    body = resp.get_json()

    original, new_order = body["order"], body["new_order"]
    assert set(original["meal_type_amounts"]) == {"session_LUNCH_1", "session_BREAKFAST_1"}
    assert original["total_amount"] == "7500.00"
    assert original["remaining_amount"] == "6500.00"
    assert len(original["items"]) == 2

    assert list(new_order["meal_type_amounts"]) == ["session_DINNER_1"]
    assert new_order["total_amount"] == "3000.00"
    assert new_order["customer_id"] == original["customer_id"]
    assert new_order["event_date"] == "2024-05-02"
    assert new_order["number_of_members"] == 80
    assert [it["item_name"] for it in new_order["items"]] == ["Roti"]
    assert new_order["serial_number"] == 2


def test_detach_date_moves_every_session_on_that_date(auth_client, three_session_order):
    order = _create(auth_client, three_session_order)
    resp = auth_client.post(f"/api/orders/{order['id']}/detach-date", json={"date": "2024-05-02", "confirm": True})
    assert resp.status_code == 200
    body = resp.get_json()
    assert list(body["order"]["meal_type_amounts"]) == ["session_BREAKFAST_1"]
    assert body["order"]["total_amount"] == "2500.00"
    assert set(body["new_order"]["meal_type_amounts"]) == {"session_LUNCH_1", "session_DINNER_1"}
    assert body["new_order"]["total_amount"] == "8000.00"
    assert len(body["new_order"]["items"]) == 2


def test_detach_errors_leave_order_untouched(app, auth_client, three_session_order):
    order = _create(auth_client, three_session_order)
    url = f"/api/orders/{order['id']}"

    resp = auth_client.post(f"{url}/detach-session", json={"session_key": "session_SNACKS_9", "confirm": True})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Session not found in order"

    resp = auth_client.post(f"{url}/detach-date", json={"date": "2030-01-01", "confirm": True})
    assert resp.status_code == 400

    with app.app_context():
        assert Order.query.count() == 1
        assert len(db.session.get(Order, order["id"]).items) == 3


def test_detach_single_session_order_is_rejected(auth_client, seed):
    order = _create(auth_client, {
        "customer_id": seed["customer_id"],
        "meal_type_amounts": {"session_LUNCH_1": {"amount": 100, "date": "2024-01-01"}},
        "items": [{"menu_item_id": seed["biryani"], "session_key": "session_LUNCH_1"}],
    })
    resp = auth_client.post(f"/api/orders/{order['id']}/detach-session", json={
        "session_key": "session_LUNCH_1", "confirm": True,
    })
    assert resp.status_code == 400


def test_merge_rekeys_sessions_and_removes_secondary(app, auth_client, seed):
    lunch = {"amount": 5000, "date": "2024-06-01", "menuType": "LUNCH"}
    primary = _create(auth_client, {
        "customer_id": seed["customer_id"],
        "meal_type_amounts": {"session_LUNCH_1": lunch},
        "items": [{"menu_item_id": seed["biryani"], "session_key": "session_LUNCH_1"}],
        "advance_paid": 500,
    })
    secondary = _create(auth_client, {
        "customer_id": seed["customer_id"],
        "meal_type_amounts": {"session_LUNCH_1": dict(lunch, amount=3000, date="2024-06-02")},
        "items": [{"menu_item_id": seed["roti"], "session_key": "session_LUNCH_1"}],
        "advance_paid": 300,
    })

    resp = auth_client.post("/api/orders/merge", json={
        "primary_order_id": primary["id"], "secondary_order_ids": [secondary["id"]],
    })
    assert resp.status_code == 200
    merged = resp.get_json()["order"]
    assert set(merged["meal_type_amounts"]) == {"session_LUNCH_1", "session_LUNCH_2"}
    assert merged["total_amount"] == "8000.00"
    assert merged["advance_paid"] == "800.00"
    assert sorted(it["session_key"] for it in merged["items"]) == ["session_LUNCH_1", "session_LUNCH_2"]

    assert auth_client.get(f"/api/orders/{secondary['id']}").status_code == 404
    bill = auth_client.get(f"/api/bills/order/{primary['id']}").get_json()["bill"]
    assert bill["paid_amount"] == "800.00"
    assert bill["remaining_amount"] == "7200.00"

    dates = auth_client.get(f"/api/orders/{primary['id']}/grouped").get_json()["dates"]
    assert [d["date"] for d in dates] == ["2024-06-01", "2024-06-02"]


def test_merge_rejects_other_customers(app, auth_client, seed, three_session_order):
    from database import Customer
    with app.app_context():
        other = Customer(name="Someone Else")
        db.session.add(other)
        db.session.commit()
        other_id = other.id
    a = _create(auth_client, three_session_order)
    b = _create(auth_client, three_session_order, customer_id=other_id)
    resp = auth_client.post("/api/orders/merge", json={"primary_order_id": a["id"], "secondary_order_ids": [b["id"]]})
    assert resp.status_code == 400


def test_merge_requires_ids(auth_client):
    resp = auth_client.post("/api/orders/merge", json={"primary_order_id": "x"})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Missing primary or secondary order IDs"


def test_merge_keeps_secondary_sessions_distinct_when_new_keys_overlap_old_ones(auth_client, seed):
    primary = _create(auth_client, {
        "customer_id": seed["customer_id"],
        "meal_type_amounts": {"session_DINNER_1": {"amount": 3000, "date": "2024-05-01", "menuType": "DINNER"}},
        "items": [{"menu_item_id": seed["roti"], "session_key": "session_DINNER_1"}],
    })
    secondary = _create(auth_client, {
        "customer_id": seed["customer_id"],
        "meal_type_amounts": {
            "session_LUNCH_1": {"amount": 1000, "date": "2024-05-01", "menuType": "LUNCH"},
            "session_LUNCH_2": {"amount": 2000, "date": "2024-05-02", "menuType": "LUNCH"},
        },
        "items": [
            {"menu_item_id": seed["idli"], "session_key": "session_LUNCH_1"},
            {"menu_item_id": seed["biryani"], "session_key": "session_LUNCH_2"},
        ],
    })
    assert secondary["serial_number"] == 2

    resp = auth_client.post("/api/orders/merge", json={
        "primary_order_id": primary["id"], "secondary_order_ids": [secondary["id"]],
    })
    assert resp.status_code == 200
    merged = resp.get_json()["order"]
    assert set(merged["meal_type_amounts"]) == {"session_DINNER_1", "session_LUNCH_2", "session_LUNCH_2_2"}
    assert merged["total_amount"] == "6000.00"

    dates = auth_client.get(f"/api/orders/{primary['id']}/grouped").get_json()["dates"]
    shape = [
        (d["date"], [(s["key"], [it["item_name"] for it in s["items"]]) for s in d["sessions"]])
        for d in dates
    ]
    assert shape == [
        ("2024-05-01", [("session_LUNCH_2", ["Idli"]), ("session_DINNER_1", ["Roti"])]),
        ("2024-05-02", [("session_LUNCH_2_2", ["Veg Biryani"])]),
    ]


def test_merge_stores_resolved_menu_type_for_untyped_sessions(auth_client, seed):
    primary = _create(auth_client, {
        "customer_id": seed["customer_id"],
        "meal_type_amounts": {"session_DINNER_1": {"amount": 3000, "date": "2024-05-01", "menuType": "DINNER"}},
        "items": [{"menu_item_id": seed["roti"], "session_key": "session_DINNER_1"}],
    })
    secondary = _create(auth_client, {
        "customer_id": seed["customer_id"],
        "meal_type_amounts": {"session_LUNCH_1": {"amount": 1000, "date": "2024-05-01"}},
        "items": [{"menu_item_id": seed["biryani"], "session_key": "session_LUNCH_1"}],
    })

    merged = auth_client.post("/api/orders/merge", json={
        "primary_order_id": primary["id"], "secondary_order_ids": [secondary["id"]],
    }).get_json()["order"]
    assert merged["meal_type_amounts"]["session_LUNCH_2"]["menuType"] == "LUNCH"

    dates = auth_client.get(f"/api/orders/{primary['id']}/grouped").get_json()["dates"]
    assert [s["key"] for s in dates[0]["sessions"]] == ["session_LUNCH_2", "session_DINNER_1"]
