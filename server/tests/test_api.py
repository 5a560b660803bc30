from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.main import create_app

API = "/api/v1"


@pytest.fixture
def client():
    settings = Settings(
        STORE_BACKEND="memory",
        RESEND_API_KEY=None,
        BILLING_SCHEDULER_ENABLED=False,
        STORE_READ_RETRY_DELAYS=[0],
    )
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def _register(client, client_id="c1", resource="Desk-12", service_type="dedicated-desk"):
    response = client.post(
        f"{API}/clients/",
        json={
            "client_id": client_id,
            "name": "Ana Reyes",
            "email": "tenant@example.com",
            "company_name": "Reyes Studio",
            "service_type": service_type,
            "assigned_resource": resource,
            "assigned_at": "2025-12-01",
        },
    )
    assert response.status_code == 201
    return response.json()


def _open_bill(client, period_start="2026-01-01", client_id="c1", resource="Desk-12"):
    return client.post(
        f"{API}/billing/bills",
        json={
            "client_id": client_id,
            "assigned_resource": resource,
            "service_type": "dedicated-desk",
            "period_start": period_start,
        },
    )


def test_root_and_health(client) -> None:
    assert client.get("/").json()["message"] == "Hub Billing API"

    health = client.get("/health").json()
    assert health == {"status": "healthy", "store": "memory", "scheduler": False}


def test_client_registration(client) -> None:
    created = _register(client)
    assert created["client_id"] == "c1"
    assert created["is_active"] is True

    duplicate = client.post(
        f"{API}/clients/",
        json={
            "client_id": "c1",
            "name": "Someone Else",
            "service_type": "virtual-office",
            "assigned_resource": "Gold",
            "assigned_at": "2026-01-01",
        },
    )
    assert duplicate.status_code == 409

    assert [c["client_id"] for c in client.get(f"{API}/clients/").json()] == ["c1"]
    assert client.get(f"{API}/clients/c1").json()["name"] == "Ana Reyes"

    missing = client.get(f"{API}/clients/ghost")
    assert missing.status_code == 404
    assert missing.json()["error"] == "client_not_found"

    deactivated = client.patch(f"{API}/clients/c1/status", json={"is_active": False})
    assert deactivated.json()["is_active"] is False
    assert client.get(f"{API}/clients/", params={"active_only": True}).json() == []


def test_invalid_client_payload_is_422(client) -> None:
    response = client.post(
        f"{API}/clients/",
        json={
            "name": "Ana Reyes",
            "email": "not-an-email",
            "service_type": "dedicated-desk",
            "assigned_resource": "Desk-12",
            "assigned_at": "2025-12-01",
        },
    )
    assert response.status_code == 422


def test_bill_lifecycle(client) -> None:
    _register(client)

    created = _open_bill(client)
    assert created.status_code == 201
    bill = created.json()["bill"]
    assert bill["status"] == "unpaid"
    assert bill["due_date"] == "2026-01-16"
    assert bill["fee_period"] == "2026-01"
    assert Decimal(str(bill["total"])) == Decimal("5500")
    bill_id = bill["bill_id"]

    overdue = client.post(f"{API}/billing/bills/{bill_id}/overdue", json={"now": "2026-01-17T09:00:00Z"})
    assert overdue.json()["bill"]["status"] == "overdue"

    for amount in (200, "100"):
        response = client.post(f"{API}/billing/bills/{bill_id}/fees", json={"fee_kind": "late", "amount": amount})
        assert response.status_code == 200
    assert Decimal(str(response.json()["bill"]["late_fee"])) == Decimal("300")

    paid = client.post(f"{API}/billing/bills/{bill_id}/pay", json={"damage_fee": 150})
    body = paid.json()["bill"]
    assert body["status"] == "paid"
    assert body["paid_at"] is not None
    assert Decimal(str(body["total"])) == Decimal("5950")

    again = client.post(f"{API}/billing/bills/{bill_id}/pay", json={})
    assert again.status_code == 409
    assert again.json()["error"] == "invalid_transition"
    assert again.json()["message"].endswith("Nothing was changed.")

    fetched = client.get(f"{API}/billing/bills/{bill_id}").json()["bill"]
    assert fetched["paid_at"] == body["paid_at"]


def test_duplicate_period_is_409(client) -> None:
    _register(client)
    assert _open_bill(client).status_code == 201

    duplicate = _open_bill(client, period_start="2026-01-20")

    assert duplicate.status_code == 409
    assert duplicate.json() == {
        "success": False,
        "error": "duplicate_period",
        "message": "A bill already exists for this client, resource and period. Nothing was changed.",
        "detail": "c1/Desk-12 already billed for 2026-01",
    }


def test_bill_errors(client) -> None:
    assert _open_bill(client, client_id="ghost").status_code == 404

    _register(client)
    bill_id = _open_bill(client).json()["bill"]["bill_id"]

    negative = client.post(f"{API}/billing/bills/{bill_id}/fees", json={"fee_kind": "late", "amount": -5})
    assert negative.status_code == 400
    assert negative.json()["error"] == "invalid_amount"

    garbage = client.post(f"{API}/billing/bills/{bill_id}/fees", json={"fee_kind": "late", "amount": "abc"})
    assert garbage.status_code == 400

    unknown_kind = client.post(f"{API}/billing/bills/{bill_id}/fees", json={"fee_kind": "rent", "amount": 5})
    assert unknown_kind.status_code == 422

    early = client.post(f"{API}/billing/bills/{bill_id}/overdue", json={"now": "2026-01-10T09:00:00Z"})
    assert early.status_code == 409

    missing = client.get(f"{API}/billing/bills/nope")
    assert missing.status_code == 404
    assert missing.json()["error"] == "bill_not_found"

    bad_service = client.post(
        f"{API}/billing/bills",
        json={"client_id": "c1", "assigned_resource": "Desk-12", "service_type": "hot-desk", "period_start": "2026-02-01"},
    )
    assert bad_service.status_code == 422


def test_listing_void_and_edit(client) -> None:
    _register(client)
    january = _open_bill(client).json()["bill"]["bill_id"]
    february = _open_bill(client, period_start="2026-02-01").json()["bill"]["bill_id"]
    _open_bill(client, resource="Desk-13")

    voided = client.post(f"{API}/billing/bills/{january}/void", json={"reason": "moved desks"})
    assert voided.json()["bill"]["status"] == "void"

    edited = client.patch(f"{API}/billing/bills/{february}", json={"parking_fee": 250, "notes": "parking added"})
    assert Decimal(str(edited.json()["bill"]["total"])) == Decimal("5750")

    listed = client.get(f"{API}/billing/clients/c1/bills", params={"assigned_resource": "Desk-12"}).json()["bills"]
    assert {b["bill_id"] for b in listed} == {january, february}

    unpaid = client.get(f"{API}/billing/clients/c1/bills", params={"status": "unpaid"}).json()["bills"]
    assert len(unpaid) == 2

    # The voided period can be billed again
    assert _open_bill(client).status_code == 201


def test_sweep_renew_and_stats(client) -> None:
    _register(client)
    _open_bill(client)

    renewed = client.post(f"{API}/billing/renew", json={"now": "2026-03-05T00:00:00Z"})
    assert renewed.json() == {"success": True, "created": 2}

    swept = client.post(f"{API}/billing/sweep", json={"now": "2026-03-05T00:00:00Z"})
    assert swept.json() == {"success": True, "overdue": 2}
    assert client.post(f"{API}/billing/sweep", json={"now": "2026-03-06T00:00:00Z"}).json()["overdue"] == 0

    stats = client.get(f"{API}/billing/stats").json()["stats"]
    assert stats["total"] == 3
    assert stats["by_status"] == {"unpaid": 1, "paid": 0, "overdue": 2, "void": 0}
    assert stats["by_service_type"]["dedicated-desk"] == 3
    assert Decimal(str(stats["revenue"]["overdue"])) == Decimal("11000")
    assert Decimal(str(stats["revenue"]["pending"])) == Decimal("5500")
