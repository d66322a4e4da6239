from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from backoffice.main import create_app

from conftest import stock_of

HEADERS = {"X-Tenant-ID": "acme", "X-Actor-ID": "user-42"}


@pytest.fixture
def client(tenant_stores, clock):
    return TestClient(create_app(tenant_stores=tenant_stores, clock=clock))


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_tenant_header_is_required(client, seed):
    response = client.get("/api/v1/purchases", headers={"X-Actor-ID": "user-42"})

    assert response.status_code == 422


def test_invalid_tenant_identifier(client):
    response = client.get("/api/v1/purchases", headers={"X-Tenant-ID": "../etc", "X-Actor-ID": "user-42"})

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_unknown_purchase_is_404(client, seed):
    response = client.get("/api/v1/purchases/9999", headers=HEADERS)

    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "NOT_FOUND"
    assert body["context"] == {"entity": "Purchase", "entity_id": 9999}


def test_purchase_flow(client, handle, seed):
    created = client.post("/api/v1/purchases", headers=HEADERS, json={
        "branch_id": seed.main,
        "supplier_id": seed.supplier,
        "items": [{"product_id": seed.widget, "quantity": "10", "total_amount": "120"}],
    })
    assert created.status_code == 201
    purchase = created.json()
    assert purchase["po_number"] == "PO2025-00001"
    assert purchase["created_by"] == "user-42"
    assert Decimal(purchase["total"]) == Decimal("120")
    assert purchase["payments"] == []

    submitted = client.post(f"/api/v1/purchases/{purchase['id']}/submit", headers=HEADERS)
    assert submitted.json()["status"] == "submitted"

    payment = {"amount": "100", "currency_id": seed.usd, "payment_method_id": seed.cash}
    paid = client.post(f"/api/v1/purchases/{purchase['id']}/payments", headers=HEADERS, json=payment)
    assert paid.status_code == 201
    assert Decimal(paid.json()["amount_in_base_currency"]) == Decimal("100")

    overpaid = client.post(f"/api/v1/purchases/{purchase['id']}/payments", headers=HEADERS, json=payment)
    assert overpaid.status_code == 409
    assert overpaid.json()["code"] == "PAYMENT_EXCEEDS_DUE"

    line_id = purchase["items"][0]["id"]
    received = client.post(f"/api/v1/purchases/{purchase['id']}/receive", headers=HEADERS, json={
        "items": [{"item_id": line_id, "quantity_received": "10"}],
    })
    assert received.status_code == 200
    assert received.json()["status"] == "received"
    assert len(received.json()["payments"]) == 1
    assert stock_of(handle, seed.main, seed.widget) == Decimal("110")


def test_actor_header_is_required_for_writes(client, seed):
    response = client.post("/api/v1/purchases", headers={"X-Tenant-ID": "acme"}, json={
        "branch_id": seed.main,
        "supplier_id": seed.supplier,
        "items": [{"product_id": seed.widget, "quantity": "1", "total_amount": "10"}],
    })

    assert response.status_code == 422


def test_expense_rejection_needs_reason(client, seed):
    category = client.post("/api/v1/expenses/categories", headers=HEADERS, json={
        "branch_id": seed.main, "name": "Repairs",
    }).json()
    expense = client.post("/api/v1/expenses", headers=HEADERS, json={
        "branch_id": seed.main,
        "category_id": category["id"],
        "description": "Door lock",
        "amount": "45",
        "currency_id": seed.usd,
    }).json()
    client.post(f"/api/v1/expenses/{expense['id']}/submit", headers=HEADERS)

    missing = client.post(f"/api/v1/expenses/{expense['id']}/reject", headers=HEADERS, json={})
    assert missing.status_code == 422
    assert missing.json()["code"] == "MISSING_REJECTION_REASON"

    rejected = client.post(f"/api/v1/expenses/{expense['id']}/reject", headers=HEADERS, json={"reason": "No receipt"})
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "rejected"
    assert rejected.json()["rejection_reason"] == "No receipt"


def test_return_flow(client, handle, seed, make_sale):
    sale = make_sale([(seed.widget, "2", "25.00")])

    created = client.post("/api/v1/returns", headers=HEADERS, json={
        "branch_id": seed.main,
        "sale_id": sale.id,
        "reason": "Wrong colour",
        "items": [{"sale_item_id": sale.item_ids[0], "product_id": seed.widget, "quantity": "2", "condition": "good"}],
    })
    assert created.status_code == 201
    return_id = created.json()["id"]
    assert Decimal(created.json()["total_amount"]) == Decimal("50")

    early_refund = client.post(f"/api/v1/returns/{return_id}/refunds", headers=HEADERS, json={
        "amount": "10", "currency_id": seed.usd, "payment_method_id": seed.cash,
    })
    assert early_refund.status_code == 409
    assert early_refund.json()["code"] == "INVALID_STATE_TRANSITION"

    assert client.post(f"/api/v1/returns/{return_id}/approve", headers=HEADERS).json()["approved_by"] == "user-42"
    processed = client.post(f"/api/v1/returns/{return_id}/process", headers=HEADERS)
    assert processed.json()["status"] == "processed"
    assert stock_of(handle, seed.main, seed.widget) == Decimal("102")

    refund = client.post(f"/api/v1/returns/{return_id}/refunds", headers=HEADERS, json={
        "amount": "50", "currency_id": seed.usd, "payment_method_id": seed.cash,
    })
    assert refund.status_code == 201

    detail = client.get(f"/api/v1/returns/{return_id}", headers=HEADERS).json()
    assert Decimal(detail["total_refunded"]) == Decimal("50")
    assert len(detail["refunds"]) == 1


def test_expired_return_window_is_409(client, seed, make_sale):
    sale = make_sale([(seed.widget, "1", "25.00")], days_ago=45)

    response = client.post("/api/v1/returns", headers=HEADERS, json={
        "branch_id": seed.main,
        "sale_id": sale.id,
        "reason": "Late",
        "items": [{"sale_item_id": sale.item_ids[0], "product_id": seed.widget, "quantity": "1", "condition": "good"}],
    })

    assert response.status_code == 409
    assert response.json()["code"] == "RETURN_WINDOW_EXPIRED"
