from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.models.bill import Bill, BillStatus, ServiceType

CREATED = datetime(2026, 1, 1, 8, tzinfo=timezone.utc)


def _doc(**overrides) -> dict:
    doc = {
        "billId": "b1",
        "clientId": "c1",
        "assignedResource": "Desk-12",
        "serviceType": "dedicated-desk",
        "amount": "5000",
        "cusaFee": "500",
        "startDate": "2026-01-01",
        "dueDate": "2026-01-16",
        "status": "unpaid",
        "createdAt": CREATED,
    }
    doc.update(overrides)
    return doc


def test_missing_fees_default_to_zero_and_total_is_derived() -> None:
    bill = Bill.from_document(_doc(parkingFee=None))

    assert bill.parking_fee == Decimal("0")
    assert bill.late_fee == Decimal("0")
    assert bill.total == Decimal("5500")


def test_legacy_service_type_labels_are_normalized() -> None:
    assert Bill.from_document(_doc(serviceType="Dedicated Desk")).service_type is ServiceType.DEDICATED_DESK


@pytest.mark.parametrize("value", [-1, "-0.01", True, "ten"])
def test_malformed_fee_is_rejected(value) -> None:
    with pytest.raises(ValidationError):
        Bill.from_document(_doc(lateFee=value))


def test_paid_bill_requires_paid_at_not_before_creation() -> None:
    with pytest.raises(ValidationError):
        Bill.from_document(_doc(status="paid"))

    with pytest.raises(ValidationError):
        Bill.from_document(_doc(status="paid", paidAt=datetime(2025, 12, 31, tzinfo=timezone.utc)))

    paid = Bill.from_document(_doc(status="paid", paidAt=datetime(2026, 1, 5, tzinfo=timezone.utc)))
    assert paid.status is BillStatus.PAID


def test_unpaid_bill_cannot_carry_paid_at() -> None:
    with pytest.raises(ValidationError):
        Bill.from_document(_doc(paidAt=datetime(2026, 1, 5, tzinfo=timezone.utc)))


def test_overdue_bill_requires_due_date() -> None:
    with pytest.raises(ValidationError):
        Bill.from_document(_doc(status="overdue", dueDate=None))


def test_document_serialization() -> None:
    bill = Bill.from_document(_doc())

    doc = bill.to_document()

    assert doc["amount"] == "5000"
    assert doc["dueDate"] == "2026-01-16"
    assert doc["createdAt"] == CREATED
    assert doc["status"] == "unpaid"
    assert doc["periodKey"] is None  # no feePeriod yet
    assert "total" not in doc
    assert Bill.from_document(doc) == bill


def test_void_bill_releases_its_period_key() -> None:
    open_bill = Bill.from_document(_doc(feePeriod="2026-01"))
    void = Bill.from_document(_doc(feePeriod="2026-01", status="void", voidedAt=CREATED))

    assert open_bill.period_key == "c1|Desk-12|2026-01"
    assert void.period_key is None


def test_naive_timestamps_are_treated_as_utc() -> None:
    bill = Bill.from_document(_doc(createdAt=datetime(2026, 1, 1, 8)))

    assert bill.created_at == CREATED
    assert bill.start_date == date(2026, 1, 1)
