from fastapi import APIRouter, Depends, Query, status
from typing import Optional

from app.api.deps import get_engine
from app.models.bill import BillStatus, ServiceType
from app.schemas.billing import (
    BillCreate,
    BillResponse,
    BillUpdate,
    BillVoid,
    ClockRequest,
    FeeApplication,
    PaymentRecord,
)
from app.services.billing import BillingEngine

router = APIRouter()


def _bill_payload(bill) -> dict:
    return {"success": True, "bill": BillResponse.from_bill(bill)}


@router.post("/bills", status_code=status.HTTP_201_CREATED)
async def create_bill(
    bill_data: BillCreate,
    engine: BillingEngine = Depends(get_engine)
):
    """Open a bill for a client's resource and billing period."""
    bill = await engine.factory.create_bill(
        bill_data.client_id,
        bill_data.assigned_resource,
        bill_data.service_type,
        bill_data.period_start,
        billing_cycle=bill_data.billing_cycle,
    )
    return _bill_payload(bill)


@router.get("/clients/{client_id}/bills")
async def list_client_bills(
    client_id: str,
    assigned_resource: Optional[str] = None,
    bill_status: Optional[BillStatus] = Query(None, alias="status"),
    service_type: Optional[ServiceType] = None,
    engine: BillingEngine = Depends(get_engine)
):
    """Bills for one client, most recent first."""
    bills = await engine.ledger.list_by_client(
        client_id,
        assigned_resource=assigned_resource,
        status=bill_status,
        service_type=service_type,
    )
    return {
        "success": True,
        "bills": [BillResponse.from_bill(bill) for bill in bills],
    }


@router.get("/bills/{bill_id}")
async def get_bill(
    bill_id: str,
    engine: BillingEngine = Depends(get_engine)
):
    """Get a single bill."""
    return _bill_payload(await engine.ledger.get(bill_id))


@router.post("/bills/{bill_id}/pay")
async def record_payment(
    bill_id: str,
    payment: PaymentRecord,
    engine: BillingEngine = Depends(get_engine)
):
    """Record payment, settling any late or damage fee in the same update."""
    bill = await engine.ledger.mark_paid(
        bill_id,
        paid_at=payment.paid_at,
        late_fee=payment.late_fee,
        damage_fee=payment.damage_fee,
    )
    return _bill_payload(bill)


@router.post("/bills/{bill_id}/overdue")
async def mark_overdue(
    bill_id: str,
    clock_request: Optional[ClockRequest] = None,
    engine: BillingEngine = Depends(get_engine)
):
    """Mark an unpaid bill past its due date as overdue."""
    now = clock_request.now if clock_request else None
    return _bill_payload(await engine.ledger.mark_overdue(bill_id, now))


@router.post("/bills/{bill_id}/fees")
async def apply_fee(
    bill_id: str,
    fee: FeeApplication,
    engine: BillingEngine = Depends(get_engine)
):
    """Add a late or damage fee to an open bill."""
    return _bill_payload(await engine.ledger.apply_fee(bill_id, fee.fee_kind, fee.amount))


@router.post("/bills/{bill_id}/void")
async def void_bill(
    bill_id: str,
    void: BillVoid,
    engine: BillingEngine = Depends(get_engine)
):
    """Cancel an open bill."""
    return _bill_payload(await engine.ledger.void_bill(bill_id, void.reason))


@router.patch("/bills/{bill_id}")
async def update_bill(
    bill_id: str,
    update: BillUpdate,
    engine: BillingEngine = Depends(get_engine)
):
    """Edit base fees or notes on an open bill."""
    bill = await engine.ledger.update_fees(
        bill_id,
        amount=update.amount,
        cusa_fee=update.cusa_fee,
        parking_fee=update.parking_fee,
        notes=update.notes,
    )
    return _bill_payload(bill)


@router.get("/stats")
async def get_billing_stats(
    engine: BillingEngine = Depends(get_engine)
):
    """Bill counts and revenue per service type and status."""
    return {"success": True, "stats": await engine.ledger.summarize()}


@router.post("/sweep")
async def run_sweep(
    clock_request: Optional[ClockRequest] = None,
    engine: BillingEngine = Depends(get_engine)
):
    """Mark every unpaid bill past its due date as overdue."""
    now = clock_request.now if clock_request else None
    count = await engine.clock.sweep(engine.ledger, now)
    return {"success": True, "overdue": count}


@router.post("/renew")
async def run_renewal(
    clock_request: Optional[ClockRequest] = None,
    engine: BillingEngine = Depends(get_engine)
):
    """Open next-period bills for every resource whose period has ended."""
    now = clock_request.now if clock_request else None
    created = await engine.clock.renew(engine.ledger, engine.factory, now)
    return {"success": True, "created": created}
