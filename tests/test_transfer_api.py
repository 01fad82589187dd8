def _create(client, auth, seed, qty=100):
    r = client.post(
        "/api/transfers",
        json={
            "title": "OPD weekly restock",
            "from_dept": "OPD",
            "to_dept": "PHARMACY",
            "items": [{"drug_id": seed.drug_ids["d1"], "requested_qty": qty, "unit_price": "2.00"}],
        },
        headers=auth("opd"),
    )
    assert r.status_code == 201, r.text
    return r.json()["data"]


def _action(client, auth, who, transfer_id, body):
    return client.post(f"/api/transfers/{transfer_id}/actions", json=body, headers=auth(who))


def _stock_qty(client, auth, who, dept, drug_id):
    r = client.get("/api/stock", params={"department": dept}, headers=auth(who))
    assert r.status_code == 200, r.text
    rows = [s for s in r.json()["data"] if s["drug_id"] == drug_id]
    return rows[0]["total_quantity"] if rows else None


def test_health(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "running" in r.json()["message"]


def test_requests_without_token_are_rejected(client):
    r = client.get("/api/transfers")
    assert r.status_code == 401
    assert r.json()["ok"] is False

    r = client.get("/api/transfers", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_full_workflow_over_http(client, auth, seed):
    tr = _create(client, auth, seed)
    assert tr["status"] == "PENDING"
    assert tr["available_actions"] == ["cancel"]
    item_id = tr["items"][0]["id"]

    r = _action(client, auth, "pharm", tr["id"], {"action": "approve", "items": [{"item_id": item_id}]})
    assert r.status_code == 200, r.text
    assert r.json()["data"]["status"] == "APPROVED"
    assert r.json()["data"]["available_actions"] == ["prepare"]

    r = _action(client, auth, "pharm", tr["id"], {
        "action": "prepare",
        "items": [{"item_id": item_id, "dispensed_qty": 100, "unit_price": "2.5", "expiry_date": "2028-01-31"}],
    })
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["status"] == "PREPARED"
    assert float(data["total_value"]) == 250.0
    assert data["items"][0]["expiry_date"] == "2028-01-31"

    r = _action(client, auth, "opd", tr["id"], {"action": "receive"})
    assert r.status_code == 200, r.text
    assert r.json()["data"]["status"] == "DELIVERED"
    assert r.json()["data"]["available_actions"] == []

    assert _stock_qty(client, auth, "pharm", "PHARMACY", seed.drug_ids["d1"]) == 400
    assert _stock_qty(client, auth, "opd", "OPD", seed.drug_ids["d1"]) == 100

    r = client.get("/api/transactions", params={"department": "OPD", "transfer_id": tr["id"]}, headers=auth("opd"))
    assert r.status_code == 200
    txns = r.json()["data"]
    assert len(txns) == 1
    assert txns[0]["type"] == "TRANSFER_IN"
    assert (txns[0]["before_qty"], txns[0]["after_qty"]) == (0, 100)


def test_business_errors_map_to_status_codes(client, auth, seed):
    tr = _create(client, auth, seed)

    r = _action(client, auth, "opd", tr["id"], {"action": "approve"})
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "FORBIDDEN"

    r = _action(client, auth, "opd", tr["id"], {"action": "receive"})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "INVALID_TRANSITION"

    r = _action(client, auth, "pharm", tr["id"], {"action": "ship"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "INVALID_ACTION"

    r = _action(client, auth, "pharm", tr["id"], {"action": "approve", "items": [{"item_id": "abc"}]})
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"

    r = _action(client, auth, "pharm", 999999, {"action": "approve"})
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NOT_FOUND"

    r = client.get(f"/api/transfers/{tr['id']}", headers=auth("opd"))
    assert r.json()["data"]["status"] == "PENDING"


def test_insufficient_stock_on_receive(client, auth, seed):
    r = client.post(
        "/api/transfers",
        json={
            "title": "Antibiotics",
            "from_dept": "OPD",
            "to_dept": "PHARMACY",
            "items": [{"drug_id": seed.drug_ids["d2"], "requested_qty": 50}],
        },
        headers=auth("opd"),
    )
    tr = r.json()["data"]
    _action(client, auth, "pharm", tr["id"], {"action": "approve"})
    _action(client, auth, "pharm", tr["id"], {"action": "prepare"})

    r = _action(client, auth, "opd", tr["id"], {"action": "receive"})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "INSUFFICIENT_STOCK"

    r = client.get(f"/api/transfers/{tr['id']}", headers=auth("opd"))
    assert r.json()["data"]["status"] == "PREPARED"
    assert _stock_qty(client, auth, "pharm", "PHARMACY", seed.drug_ids["d2"]) == 5


def test_create_rejects_bad_bodies(client, auth, seed):
    r = client.post("/api/transfers", json={"title": "x", "from_dept": "OPD", "to_dept": "PHARMACY", "items": []},
                    headers=auth("opd"))
    assert r.status_code == 422

    r = client.post(
        "/api/transfers",
        json={"title": "x", "from_dept": "OPD", "to_dept": "PHARMACY",
              "items": [{"drug_id": seed.drug_ids["d1"], "requested_qty": 1}]},
        headers=auth("pharm"),
    )
    assert r.status_code == 403


def test_list_transfers_scoped_to_department(client, auth, seed):
    _create(client, auth, seed)
    r = client.get("/api/transfers", headers=auth("opd"))
    assert r.status_code == 200
    assert len(r.json()["data"]) == 1

    r = client.get("/api/transfers", params={"status": "DELIVERED"}, headers=auth("admin"))
    assert r.json()["data"] == []

    r = client.get("/api/transfers", params={"department": "OPD"}, headers=auth("pharm"))
    assert r.status_code == 403


def test_stock_adjust_and_read_rules(client, auth, seed):
    d1 = seed.drug_ids["d1"]
    r = client.post("/api/stock/adjust",
                    json={"drug_id": d1, "department": "OPD", "quantity": 30, "reason": "count"},
                    headers=auth("opd"))
    assert r.status_code == 200, r.text
    assert r.json()["data"]["total_quantity"] == 30
    assert r.json()["data"]["drug"]["hospital_drug_code"] == "PARA500"

    r = client.post("/api/stock/adjust",
                    json={"drug_id": d1, "department": "OPD", "quantity": -50, "reason": "broken"},
                    headers=auth("opd"))
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "INSUFFICIENT_STOCK"
    assert _stock_qty(client, auth, "opd", "OPD", d1) == 30

    # cannot adjust another department's stock, even as admin
    r = client.post("/api/stock/adjust",
                    json={"drug_id": d1, "department": "OPD", "quantity": 1, "reason": "x"},
                    headers=auth("admin"))
    assert r.status_code == 403

    # cannot read another department's stock unless admin
    assert client.get("/api/stock", params={"department": "PHARMACY"}, headers=auth("opd")).status_code == 403
    assert client.get("/api/stock", params={"department": "OPD"}, headers=auth("admin")).status_code == 200

    r = client.get("/api/stock/summary", params={"department": "PHARMACY"}, headers=auth("pharm"))
    assert r.status_code == 200
    assert r.json()["data"]["total"] == 2
    assert r.json()["data"]["low_stock"] == 1
