from datetime import date, timedelta

import pytest

from conftest import auth_headers, grant, make_qc


@pytest.fixture
def seed(db, admin, inspector, product, warehouse):
    """Plain values only; the seeding session is closed before requests run."""
    viewer_role_user = inspector
    grant(db, viewer_role_user, "qc.view", "inventory.view")
    open_qc = make_qc(db, admin, product, passed=1)
    data = {
        "admin": auth_headers(admin),
        "viewer": auth_headers(viewer_role_user),
        "inspector_id": inspector.id,
        "product_id": product.id,
        "warehouse_id": warehouse.id,
        "open_qc_id": open_qc.id,
    }
    db.close()
    return data


def test_health(client):
    r = client.get("/")
    assert r.status_code == 200


def test_missing_token(client, seed):
    r = client.get("/api/qc")
    assert r.status_code == 401
    assert r.json() == {"ok": False, "error": {"msg": "Missing token", "code": None, "details": None}}


def test_end_to_end_receiving(client, seed):
    h = seed["admin"]

    r = client.post("/api/masters/warehouses", json={"code": "wh-east", "name": "East Hub"}, headers=h)
    assert r.status_code == 201, r.text
    wh_id = r.json()["data"]["id"]
    assert r.json()["data"]["code"] == "WH-EAST"

    r = client.post("/api/qc", headers=h, json={
        "qc_type": "standard",
        "invoice_reference": "INV-77",
        "products": [{
            "product_id": seed["product_id"],
            "batch_no": "LOT-9",
            "received_qty": 3,
            "unit_cost": "5.00",
            "exp_date": str(date.today() + timedelta(days=400)),
        }],
    })
    assert r.status_code == 201, r.text
    qc = r.json()["data"]
    assert qc["status"] == "pending"
    assert len(qc["products"][0]["items"]) == 3

    r = client.put(f"/api/qc/{qc['id']}/products/0/items", headers=h, json={"items": [
        {"item_index": 0, "status": "passed"},
        {"item_index": 1, "status": "passed"},
        {"item_index": 2, "status": "failed", "qc_reasons": ["damaged_product"]},
    ]})
    assert r.status_code == 200, r.text
    qc = r.json()["data"]
    assert qc["status"] == "in_progress"
    assert qc["overall_result"] == "partial_pass"
    assert qc["products"][0]["qc_summary"] == {"damaged_product": 1, "received_correctly": 2}

    r = client.post(f"/api/qc/{qc['id']}/submit", headers=h)
    assert r.status_code == 200, r.text
    assert r.json()["data"]["status"] == "pending_approval"

    r = client.post(f"/api/qc/{qc['id']}/approve", headers=h, json={"warehouse_id": wh_id})
    assert r.status_code == 200, r.text
    assert r.json()["data"]["status"] == "completed"
    wa = r.json()["meta"]["warehouse_approval"]
    assert wa["status"] == "pending"

    r = client.put(f"/api/warehouse-approvals/{wa['id']}/products/0", headers=h,
                   json={"storage_location": "E-1-4"})
    assert r.status_code == 200, r.text
    assert r.json()["data"]["products"][0]["storage_status"] == "stored"

    r = client.post(f"/api/warehouse-approvals/{wa['id']}/submit", headers=h)
    assert r.json()["data"]["status"] == "submitted"

    r = client.post(f"/api/warehouse-approvals/{wa['id']}/approve", headers=h)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["data"]["status"] == "approved"
    assert body["meta"]["inventory_created"] is True
    (inv_id,) = body["meta"]["inventory_ids"]

    r = client.get("/api/inventory", headers=h, params={"warehouse_id": wh_id})
    assert r.json()["meta"]["total"] == 1
    assert r.json()["data"][0]["quantity"] == 2

    r = client.post(f"/api/inventory/{inv_id}/reserve", headers=h, json={
        "quantity": 1, "reason": "Ward 3 order", "reserved_for": "hospital_order"})
    assert r.status_code == 200, r.text
    assert r.json()["data"]["available_quantity"] == 1
    assert r.json()["meta"]["reservation"]["quantity"] == 1

    r = client.post(f"/api/inventory/{inv_id}/reserve", headers=h, json={
        "quantity": 5, "reason": "too much", "reserved_for": "hospital_order"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "InsufficientAvailable"

    r = client.get(f"/api/inventory/{inv_id}/movements", headers=h)
    kinds = [m["movement_type"] for m in r.json()["data"]]
    assert kinds == ["reserve", "inward"]


def test_request_validation_is_400_with_fields(client, seed):
    r = client.post("/api/qc", headers=seed["admin"], json={"qc_type": "standard", "products": []})
    assert r.status_code == 400
    err = r.json()["error"]
    assert err["code"] == "ValidationError"
    assert "products" in [d["field"] for d in err["details"]]

    r = client.put("/api/inventory/bulk-update", headers=seed["admin"],
                   json={"ids": [1], "update": {"quantity": 5}})
    assert r.status_code == 400


def test_unknown_reference_is_field_error(client, seed):
    r = client.post("/api/inventory", headers=seed["admin"], json={
        "product_id": seed["product_id"], "warehouse_id": 999, "batch_no": "X", "quantity": 1})
    assert r.status_code == 400
    assert r.json()["error"]["details"] == {"warehouse_id": "Warehouse 999 not found"}


def test_not_found(client, seed):
    r = client.get("/api/qc/999", headers=seed["admin"])
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NotFoundError"


def test_permissions_are_enforced(client, seed):
    r = client.get("/api/qc", headers=seed["viewer"])
    assert r.status_code == 200
    assert r.json()["meta"]["total"] == 1

    r = client.post(f"/api/qc/{seed['open_qc_id']}/submit", headers=seed["viewer"])
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "PermissionDenied"

    r = client.get("/api/warehouse-approvals", headers=seed["viewer"])
    assert r.status_code == 403


def test_bulk_assign_statuses(client, seed):
    h = seed["admin"]
    r = client.post("/api/qc/bulk-assign", headers=h, json={
        "ids": [seed["open_qc_id"], 999], "assigned_to_id": seed["inspector_id"], "priority": "urgent"})
    assert r.status_code == 207
    assert r.json()["data"]["updated"] == 1

    r = client.put("/api/qc/bulk-assign", headers=h, json={
        "ids": [], "assigned_to_id": seed["inspector_id"]})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "EmptyIdList"

    r = client.put("/api/qc/bulk-assign", headers=h, json={
        "ids": [seed["open_qc_id"]], "assigned_to_id": 424242})
    assert r.status_code == 400
    assert "assigned_to_id" in r.json()["error"]["details"]

    r = client.get(f"/api/qc/{seed['open_qc_id']}", headers=h)
    assert r.json()["data"]["priority"] == "urgent"
    assert r.json()["data"]["assigned_to"]["id"] == seed["inspector_id"]


def test_inventory_bulk_update_and_export(client, seed):
    h = seed["admin"]
    ids = []
    for batch in ("E-1", "E-2"):
        r = client.post("/api/inventory", headers=h, json={
            "product_id": seed["product_id"], "warehouse_id": seed["warehouse_id"],
            "batch_no": batch, "quantity": 10, "unit_cost": "2.50"})
        assert r.status_code == 201, r.text
        ids.append(r.json()["data"]["id"])

    r = client.put("/api/inventory/bulk-update", headers=h,
                   json={"ids": ids, "update": {"minimum_stock": 15}})
    assert r.status_code == 200
    assert r.json()["data"]["updated"] == 2

    r = client.get("/api/inventory/alerts", headers=h, params={"alert_type": "low_stock"})
    assert r.json()["meta"]["counts"]["low_stock"] == 2

    r = client.get("/api/inventory/valuation", headers=h)
    assert r.json()["data"]["totals"]["quantity"] == 20

    r = client.get("/api/inventory/valuation/export", headers=h)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith(
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")
    assert "attachment" in r.headers["content-disposition"]
    assert r.content[:2] == b"PK"


def test_immutable_field_over_http(client, seed):
    h = seed["admin"]
    r = client.post("/api/inventory", headers=h, json={
        "product_id": seed["product_id"], "warehouse_id": seed["warehouse_id"],
        "batch_no": "IM-1", "quantity": 4})
    inv_id = r.json()["data"]["id"]

    r = client.put(f"/api/inventory/{inv_id}", headers=h, json={"reserved_quantity": 2})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "ImmutableField"


def test_utilize_and_workload_endpoints(client, seed):
    h = seed["admin"]
    r = client.post("/api/inventory", headers=h, json={
        "product_id": seed["product_id"], "warehouse_id": seed["warehouse_id"],
        "batch_no": "U-1", "quantity": 8})
    inv_id = r.json()["data"]["id"]

    r = client.post(f"/api/inventory/{inv_id}/utilize", headers=h, json={
        "quantity": 3, "hospital_name": "City General", "case_number": "C-12"})
    assert r.status_code == 200, r.text
    assert r.json()["data"]["quantity"] == 5
    assert r.json()["meta"]["utilization"]["reason"] == "Patient utilization"

    r = client.post(f"/api/inventory/{inv_id}/utilize", headers=h, json={"quantity": 6})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "InsufficientAvailable"

    r = client.get(f"/api/inventory/{inv_id}/utilizations", headers=h)
    assert r.json()["meta"]["total"] == 1
    assert r.json()["data"][0]["case_number"] == "C-12"

    r = client.get(f"/api/inventory/{inv_id}/movements", headers=h)
    assert [m["movement_type"] for m in r.json()["data"]] == ["outward", "inward"]

    r = client.get("/api/warehouse-approvals/workload", headers=h)
    assert r.status_code == 200
    assert r.json()["data"] == []


def test_page_size_is_capped(client, seed):
    r = client.get("/api/inventory", headers=seed["admin"], params={"limit": 101})
    assert r.status_code == 400
