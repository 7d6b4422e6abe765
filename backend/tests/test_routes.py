"""
HTTP surface tests: request parsing and error-to-status mapping.
"""

from datetime import timedelta
from decimal import Decimal


def _create_order(client, total=1000, reference="SO-HTTP", counterparty_id=None):
    response = client.post("/api/payables", json={
        "kind": "sales_order",
        "reference_number": reference,
        "total_amount_cents": total,
        "counterparty_id": counterparty_id,
    })
    assert response.status_code == 201
    return response.json["payable"]


def _record(client, payable_id, amount, today, **extra):
    body = {
        "payable_id": payable_id,
        "amount_cents": amount,
        "direction": "received",
        "method": "upi",
        "payment_date": today.isoformat(),
    }
    body.update(extra)
    return client.post("/api/payments", json=body)


# =============================================================================
# HEALTH
# =============================================================================

def test_health(client, db_session):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json["status"] == "healthy"
    assert response.json["checks"]["database"]["status"] == "healthy"


# =============================================================================
# PAYABLES & PAYMENTS
# =============================================================================

def test_payment_lifecycle_over_http(client, db_session, today):
    customer = client.post("/api/payables/customers", json={"name": "Asha Traders"}).json["customer"]
    order = _create_order(client, counterparty_id=customer["id"])

    response = _record(client, order["id"], 600, today, counterparty_id=customer["id"])
    assert response.status_code == 201
    payment = response.json["payment"]
    assert response.json["summary"]["payment_status"] == "partial"
    assert response.json["summary"]["remaining_cents"] == 400

    response = client.put(f"/api/payments/{payment['id']}", json={"amount_cents": 1000})
    assert response.status_code == 200
    assert response.json["summary"]["payment_status"] == "paid"

    response = client.get(f"/api/payables/counterparties/customer/{customer['id']}?verify=true")
    assert response.status_code == 200
    assert response.json["counterparty"]["outstanding_balance_cents"] == 0
    assert response.json["reconciliation"]["in_sync"] is True

    response = client.delete(f"/api/payments/{payment['id']}", json={"reason": "duplicate"})
    assert response.status_code == 200
    assert response.json["summary"]["payment_status"] == "pending"

    response = client.get(f"/api/payables/{order['id']}/payments")
    assert [e["event_type"] for e in response.json["events"]] == ["CREATED", "EDITED", "DELETED"]


def test_overpayment_returns_409_with_remaining(client, db_session, today):
    order = _create_order(client)
    _record(client, order["id"], 600, today)

    response = _record(client, order["id"], 500, today)
    assert response.status_code == 409
    assert response.json["error"] == "overpayment_rejected"
    assert response.json["remaining_cents"] == 400
    assert response.json["requested_cents"] == 500


def test_validation_errors_return_400(client, db_session, today):
    order = _create_order(client)

    response = _record(client, order["id"], 12.5, today)
    assert response.status_code == 400
    assert response.json["error"] == "invalid_amount"

    response = _record(client, order["id"], 100, today + timedelta(days=1))
    assert response.status_code == 400
    assert response.json["error"] == "invalid_date"

    response = _record(client, order["id"], 100, today, method="barter")
    assert response.status_code == 400
    assert response.json["error"] == "invalid_input"

    response = _record(client, None, 100, today)
    assert response.status_code == 400


def test_edit_cannot_change_direction(client, db_session, today):
    order = _create_order(client)
    payment = _record(client, order["id"], 100, today).json["payment"]

    response = client.put(f"/api/payments/{payment['id']}", json={"direction": "paid"})
    assert response.status_code == 400


def test_not_found_returns_404(client, db_session, today):
    assert client.get("/api/payables/999").status_code == 404
    assert client.get("/api/payments/999").status_code == 404
    assert client.delete("/api/payments/999").status_code == 404
    assert _record(client, 999, 100, today).status_code == 404
    assert client.get("/api/payables/counterparties/supplier/999").status_code == 404


def test_reconcile_endpoint(client, db_session, today):
    order = _create_order(client)
    _record(client, order["id"], 100, today)

    response = client.post("/api/payments/reconcile", json={})
    assert response.status_code == 200
    assert response.json["drifted_count"] == 0


# =============================================================================
# LOYALTY
# =============================================================================

def test_loyalty_flow_over_http(client, db_session):
    response = client.post("/api/loyalty/adjust", json={
        "user_id": 5, "coins": 50, "direction": "add", "reason": "bonus",
    })
    assert response.status_code == 201
    assert response.json["wallet"]["available_coins"] == 50

    response = client.post("/api/loyalty/redeem", json={"user_id": 5, "coins": 30})
    assert response.status_code == 201
    assert response.json["wallet"]["available_coins"] == 20

    response = client.post("/api/loyalty/redeem", json={"user_id": 5, "coins": 30})
    assert response.status_code == 409
    assert response.json["error"] == "insufficient_balance"
    assert response.json["shortfall"] == 10

    response = client.get("/api/loyalty/wallets/5/transactions?limit=1")
    assert response.status_code == 200
    assert response.json["transactions"][0]["transaction_type"] == "redeemed"
    next_before = response.json["next_before"]

    response = client.get(f"/api/loyalty/wallets/5/transactions?limit=1&before={next_before}")
    assert response.json["transactions"][0]["transaction_type"] == "manual_add"


def test_fractional_adjust_returns_400(client, db_session):
    response = client.post("/api/loyalty/adjust", json={
        "user_id": 5, "coins": 2.5, "direction": "add", "reason": "bonus",
    })
    assert response.status_code == 400
    assert response.json["error"] == "invalid_amount"

    wallet = client.get("/api/loyalty/wallets/5").json["wallet"]
    assert wallet["available_coins"] == 0


def test_earn_and_settings(client, db_session):
    response = client.put("/api/loyalty/settings", json={"coins_per_unit": "1", "updated_by_user_id": 1})
    assert response.status_code == 200
    assert Decimal(response.json["settings"]["coins_per_unit"]) == Decimal("1")

    response = client.post("/api/loyalty/earn", json={"user_id": 8, "base_amount_cents": 12345})
    assert response.status_code == 201
    assert response.json["transaction"]["coins_amount"] == 123

    response = client.put("/api/loyalty/settings", json={"is_enabled": False})
    response = client.post("/api/loyalty/earn", json={"user_id": 8, "base_amount_cents": 12345})
    assert response.status_code == 200
    assert response.json["transaction"] is None

    response = client.post("/api/loyalty/redeem", json={"user_id": 8, "coins": 20})
    assert response.status_code == 409
    assert response.json["error"] == "loyalty_disabled"

    response = client.put("/api/loyalty/settings", json={"bogus": 1})
    assert response.status_code == 400


def test_loyalty_reconcile_endpoint(client, db_session):
    client.post("/api/loyalty/adjust", json={
        "user_id": 3, "coins": 10, "direction": "add", "reason": "bonus",
    })
    response = client.post("/api/loyalty/reconcile", json={"user_id": 3})
    assert response.status_code == 200
    assert response.json["reports"][0]["in_sync"] is True


def test_bonus_and_stats_endpoints(client, db_session):
    response = client.post("/api/loyalty/bonus", json={
        "user_id": 6, "coins": 100, "reference_type": "referral", "reference_id": 19,
    })
    assert response.status_code == 201
    assert response.json["transaction"]["reference_type"] == "referral"
    assert response.json["transaction"]["reference_id"] == "19"
    assert response.json["wallet"]["available_coins"] == 100

    response = client.post("/api/loyalty/bonus", json={"user_id": 6, "coins": 100, "reference_type": "lottery"})
    assert response.status_code == 400

    response = client.get("/api/loyalty/stats")
    assert response.status_code == 200
    assert response.json["stats"]["total_users"] == 1
    assert response.json["stats"]["total_coins_issued"] == 100


def test_festive_switch_in_settings(client, db_session):
    response = client.put("/api/loyalty/settings", json={"festive_multiplier": "2", "coins_per_unit": "1"})
    assert response.json["settings"]["is_festive_active"] is False

    response = client.post("/api/loyalty/earn", json={"user_id": 8, "base_amount_cents": 10000})
    assert response.json["transaction"]["coins_amount"] == 100

    client.put("/api/loyalty/settings", json={"is_festive_active": True})
    response = client.post("/api/loyalty/earn", json={"user_id": 8, "base_amount_cents": 10000})
    assert response.json["transaction"]["coins_amount"] == 200
