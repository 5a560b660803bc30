import html
import logging
from typing import Callable, List

from app.models.bill import Bill
from app.services import events
from app.services.email_service import EmailService
from app.services.events import BillEvent, EventBus

logger = logging.getLogger(__name__)


def _money(value) -> str:
    return f"{value:,.2f}"


def render_bill_created(bill: Bill) -> str:
    rows = [
        ("Base rent", bill.amount),
        ("CUSA", bill.cusa_fee),
        ("Parking", bill.parking_fee),
    ]
    lines = "".join(
        f"<tr><td>{label}</td><td style='text-align:right'>{_money(value)}</td></tr>" for label, value in rows
    )
    return (
        f"<p>Hi {html.escape(bill.client_name or 'there')},</p>"
        f"<p>Your bill for <strong>{html.escape(bill.assigned_resource)}</strong> "
        f"covering {html.escape(bill.fee_period or '')} is ready.</p>"
        f"<table>{lines}<tr><td><strong>Total</strong></td>"
        f"<td style='text-align:right'><strong>{_money(bill.total)}</strong></td></tr></table>"
        f"<p>Please settle it on or before {bill.due_date.isoformat() if bill.due_date else 'the due date'}.</p>"
    )


def render_bill_paid(bill: Bill) -> str:
    paid_on = bill.paid_at.date().isoformat() if bill.paid_at else ""
    return (
        f"<p>Hi {html.escape(bill.client_name or 'there')},</p>"
        f"<p>We received your payment of <strong>{_money(bill.total)}</strong> for "
        f"{html.escape(bill.assigned_resource)} ({html.escape(bill.fee_period or '')}) on {paid_on}.</p>"
        f"<p>Thank you!</p>"
    )


class BillingNotifier:
    """Emails the tenant when a bill is issued or paid."""

    def __init__(self, email_service: EmailService):
        self.email_service = email_service
        self._unsubscribers: List[Callable[[], None]] = []

    def attach(self, bus: EventBus) -> None:
        self._unsubscribers.append(bus.subscribe(events.BILL_CREATED, self.on_bill_created))
        self._unsubscribers.append(bus.subscribe(events.BILL_PAID, self.on_bill_paid))

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    async def on_bill_created(self, event: BillEvent) -> None:
        bill = event.bill
        if not bill.email:
            logger.debug(f"Bill {bill.bill_id} has no email on file, skipping notice")
            return
        await self.email_service.send(
            bill.email,
            f"Your bill for {bill.fee_period} is ready",
            render_bill_created(bill),
        )

    async def on_bill_paid(self, event: BillEvent) -> None:
        bill = event.bill
        if not bill.email:
            return
        await self.email_service.send(
            bill.email,
            f"Payment received for {bill.fee_period}",
            render_bill_paid(bill),
        )
