"""HTTP surface: auth headers, role checks and error kind -> status mapping."""

import pytest

from scoopdesk.services import sale_service
from conftest import make_request


def _sale_body(session_id, product_id, quantity=2, amount=1000, method="CASH"):
    return {
        "cash_session_id": session_id,
        "items": [{"product_id": product_id, "quantity": quantity}],
        "payments": [{"method": method, "amount_cents": amount}],
    }


def test_health(client, db_session, cash_session):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["details"]["open_cash_sessions"] == 1


@pytest.mark.parametrize("headers", [{}, {"X-User-Id": "abc"}, {"X-User-Id": " "}])
def test_missing_or_bad_user_header_is_401(client, db_session, headers):
    response = client.get("/api/sales", headers=headers)
    assert response.status_code == 401


def test_manager_routes_reject_cashier(client, db_session, cashier_headers):
    response = client.get("/api/reports/dre", headers=cashier_headers)
    assert response.status_code == 403
    assert response.get_json()["required_roles"] == ["ADMIN", "MANAGER"]


def test_open_session_via_api(client, db_session, cashier_headers):
    response = client.post("/api/cash-sessions/open", json={"terminal_id": "T9", "initial_cash_cents": 5000},
                           headers=cashier_headers)
    assert response.status_code == 201
    session = response.get_json()["session"]
    assert session["status"] == "OPEN"
    assert session["initial_cash_cents"] == 5000

    duplicate = client.post("/api/cash-sessions/open", json={"terminal_id": "T9"}, headers=cashier_headers)
    assert duplicate.status_code == 409
    assert duplicate.get_json()["kind"] == "conflict"


def test_create_sale_via_api(client, db_session, cash_session, catalog, cashier_headers):
    response = client.post(
        "/api/sales",
        json=_sale_body(cash_session.id, catalog["picole"].id),
        headers=cashier_headers,
    )
    assert response.status_code == 201
    body = response.get_json()
    assert body["channel"] == "SALE"
    assert body["order"]["total_cents"] == 1000
    assert body["order"]["status"] == "COMPLETED"

    detail = client.get(f"/api/sales/{body['order']['id']}", headers=cashier_headers)
    assert detail.status_code == 200
    assert len(detail.get_json()["payments"]) == 1


@pytest.mark.parametrize("payload, kind", [
    ({"items": [], "payments": [{"method": "CASH", "amount_cents": 0}]}, "validation_error"),
    ({"payments": [{"method": "BOLETO", "amount_cents": 1000}]}, "validation_error"),
    ({"payments": [{"method": "CASH", "amount_cents": 1.5}]}, "validation_error"),
    ({"payments": [{"method": "CASH", "amount_cents": 990}]}, "validation_error"),
])
def test_sale_validation_errors_are_400(client, db_session, cash_session, catalog, cashier_headers, payload, kind):
    body = _sale_body(cash_session.id, catalog["picole"].id)
    body.update(payload)
    response = client.post("/api/sales", json=body, headers=cashier_headers)
    assert response.status_code == 400
    assert response.get_json()["kind"] == kind


def test_insufficient_stock_is_409(client, db_session, cash_session, catalog, cashier_headers):
    response = client.post(
        "/api/sales",
        json=_sale_body(cash_session.id, catalog["picole"].id, quantity=11, amount=5500),
        headers=cashier_headers,
    )
    assert response.status_code == 409
    body = response.get_json()
    assert body["kind"] == "insufficient_stock"
    assert body["details"]["product_id"] == catalog["picole"].id


def test_list_sales_unexpected_failure_is_500(client, db_session, cashier_headers, monkeypatch):
    def _broken(**kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(sale_service, "list_sales", _broken)
    response = client.get("/api/sales", headers=cashier_headers)
    assert response.status_code == 500
    assert response.get_json() == {"error": "Internal server error"}


def test_unknown_sale_is_404(client, db_session, cashier_headers):
    response = client.get("/api/sales/12345", headers=cashier_headers)
    assert response.status_code == 404
    assert response.get_json()["kind"] == "not_found"


def test_cancel_sale_via_api(client, db_session, cash_session, catalog, cashier_headers, manager_headers):
    sale = sale_service.create_sale(make_request(cash_session.id, [(catalog["picole"], 2)], [("CASH", 1000)])).order

    forbidden = client.post(f"/api/sales/{sale.id}/cancel", json={"reason": "x"}, headers=cashier_headers)
    assert forbidden.status_code == 403

    no_reason = client.post(f"/api/sales/{sale.id}/cancel", json={}, headers=manager_headers)
    assert no_reason.status_code == 400

    response = client.post(f"/api/sales/{sale.id}/cancel", json={"reason": "wrong flavor"}, headers=manager_headers)
    assert response.status_code == 200
    assert response.get_json()["sale"]["status"] == "CANCELLED"

    again = client.post(f"/api/sales/{sale.id}/cancel", json={"reason": "again"}, headers=manager_headers)
    assert again.status_code == 409
    assert again.get_json()["kind"] == "invalid_state"


def test_reports_for_manager(client, db_session, manager_headers):
    response = client.get(
        "/api/reports/sales-by-channel?start=2026-01-01&end=2026-02-01", headers=manager_headers,
    )
    assert response.status_code == 200
    assert [row["channel"] for row in response.get_json()["channels"]] == ["SALE", "COMANDA", "DELIVERY"]

    bad = client.get("/api/reports/dre?start=2026-02-01&end=2026-01-01", headers=manager_headers)
    assert bad.status_code == 400


def test_points_statement_route(client, db_session, customer, cashier_headers, manager_headers):
    adjusted = client.post(
        f"/api/rewards/customers/{customer.id}/points/adjust",
        json={"delta": 30, "reason": "welcome"},
        headers=manager_headers,
    )
    assert adjusted.status_code == 201

    response = client.get(f"/api/rewards/customers/{customer.id}/points", headers=cashier_headers)
    assert response.status_code == 200
    assert response.get_json()["loyalty_points"] == 30

    missing = client.get("/api/rewards/customers/999/points", headers=cashier_headers)
    assert missing.status_code == 404


def test_cors_header_for_dev_origin(client, db_session):
    response = client.get("/health", headers={"Origin": "http://localhost:5173"})
    assert response.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"
    other = client.get("/health", headers={"Origin": "http://evil.example"})
    assert "Access-Control-Allow-Origin" not in other.headers


def test_coupon_lifecycle_via_api(client, db_session, cashier_headers, manager_headers):
    created = client.post("/api/coupons", json={
        "code": "inverno", "discount_type": "FIXED", "discount_value": 200,
        "valid_from": "2026-01-01T00:00:00Z", "valid_to": "2099-01-01T00:00:00Z",
    }, headers=manager_headers)
    assert created.status_code == 201
    coupon_id = created.get_json()["coupon"]["id"]

    forbidden = client.patch(f"/api/coupons/{coupon_id}", json={"usage_limit": 5}, headers=cashier_headers)
    assert forbidden.status_code == 403

    locked = client.patch(f"/api/coupons/{coupon_id}", json={"discount_value": 900}, headers=manager_headers)
    assert locked.status_code == 400

    updated = client.patch(f"/api/coupons/{coupon_id}", json={"usage_limit": 5}, headers=manager_headers)
    assert updated.status_code == 200
    assert updated.get_json()["coupon"]["usage_limit"] == 5

    client.post(f"/api/coupons/{coupon_id}/deactivate", headers=manager_headers)
    activated = client.post(f"/api/coupons/{coupon_id}/activate", headers=manager_headers)
    assert activated.get_json()["coupon"]["status"] == "ACTIVE"

    history = client.get(f"/api/coupons/usages?coupon_id={coupon_id}", headers=manager_headers)
    assert history.get_json() == {"usages": [], "total_usages": 0, "total_discount_cents": 0}

    assert client.delete(f"/api/coupons/{coupon_id}", headers=manager_headers).status_code == 204
    assert client.delete(f"/api/coupons/{coupon_id}", headers=manager_headers).status_code == 404


def test_reward_expiry_job_route(client, db_session, cashier_headers, manager_headers):
    forbidden = client.post("/api/rewards/jobs/expire-points", json={}, headers=cashier_headers)
    assert forbidden.status_code == 403

    response = client.post(
        "/api/rewards/jobs/expire-cashback",
        json={"as_of": "2026-10-19T00:00:00Z", "dry_run": True},
        headers=manager_headers,
    )
    assert response.status_code == 200
    body = response.get_json()
    assert body["as_of"] == "2026-10-19T00:00:00Z"
    assert body["dry_run"] is True
    assert body["outcomes"] == []


def test_card_fee_and_cash_flow_reports(client, db_session, manager_headers):
    fees = client.get("/api/reports/card-fees?start=2026-01-01&end=2026-01-31", headers=manager_headers)
    assert fees.status_code == 200
    assert fees.get_json()["totals"]["fee_cents"] == 0

    flow = client.get("/api/reports/cash-flow?start=2026-01-01&end=2026-01-31", headers=manager_headers)
    assert flow.status_code == 200
    # a bare end date covers that whole day
    assert flow.get_json()["end"] == "2026-02-01T00:00:00Z"
    assert flow.get_json()["days"] == []
