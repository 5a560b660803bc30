"""
Bill ledger: the authoritative store and query surface for bills.

Bills live at ``clients/{clientId}/bills/{billId}``. Every mutation is a
read-modify-write guarded by a compare-and-swap on the bill's ``version``
field, so two admins acting on the same bill can never silently lose an
update. A lost race re-reads the bill and re-applies the change; the
previous attempt is known not to have been written. Store failures on
writes are surfaced without retry.
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from app.core.config import settings
from app.core.errors import (
    BillNotFoundError,
    ConcurrentUpdateError,
    DuplicatePeriodError,
    InvalidAmountError,
    InvalidTransitionError,
)
from app.crud.clients import client_path
from app.db.base import DocumentExistsError, DocumentStore, read_with_retry
from app.models.bill import Bill, BillStatus, FeeKind, OPEN_STATUSES, ServiceType, utcnow
from app.services import events
from app.services.events import BillEvent, EventBus

logger = logging.getLogger(__name__)

BILLS_COLLECTION = "bills"

Mutator = Callable[[Bill], Optional[Dict[str, Any]]]


@dataclass(frozen=True)
class ResourceHistory:
    """What renewal needs to know about one client resource."""

    # Latest non-void bill; its cycle and base fees carry forward
    template: Bill
    # Latest period start of any status, so voided periods stay closed
    last_start: date
    # Start of the first bill; periods are counted from it
    anchor: date


def bills_path(client_id: str) -> str:
    return f"{client_path(client_id)}/{BILLS_COLLECTION}"


def bill_path(client_id: str, bill_id: str) -> str:
    return f"{bills_path(client_id)}/{bill_id}"


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """Validate a fee amount at the boundary: a finite, non-negative number."""
    if isinstance(value, bool) or value is None:
        raise InvalidAmountError(f"{field} must be a number, got {value!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidAmountError(f"{field} must be finite, got {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(f"{field} must be a number, got {value!r}")
    if not amount.is_finite():
        raise InvalidAmountError(f"{field} must be finite, got {value!r}")
    if amount < 0:
        raise InvalidAmountError(f"{field} cannot be negative, got {value}")
    return amount


def _day(moment: Union[date, datetime]) -> date:
    return moment.date() if isinstance(moment, datetime) else moment


class BillLedger:
    def __init__(
        self,
        store: DocumentStore,
        event_bus: Optional[EventBus] = None,
        read_retry_delays: Optional[List[float]] = None,
        max_cas_attempts: Optional[int] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.event_bus = event_bus
        self.read_retry_delays = settings.STORE_READ_RETRY_DELAYS if read_retry_delays is None else read_retry_delays
        self.max_cas_attempts = max_cas_attempts or settings.STORE_CAS_MAX_ATTEMPTS
        self._now = now

    async def initialize(self) -> None:
        """Create the unique index that keeps one open bill per client/resource/period."""
        await self.store.ensure_unique_index(BILLS_COLLECTION, "periodKey")

    async def _read(self, operation, description: str):
        return await read_with_retry(operation, self.read_retry_delays, description)

    async def _publish(self, event_type: str, bill: Bill) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(BillEvent(type=event_type, bill=bill))

    # Writes

    async def insert(self, bill: Bill) -> Bill:
        """Persist a new bill; the period key makes duplicates fail atomically."""
        try:
            await self.store.create(bill_path(bill.client_id, bill.bill_id), bill.to_document())
        except DocumentExistsError as e:
            if e.field == "periodKey":
                raise DuplicatePeriodError(
                    f"{bill.client_id}/{bill.assigned_resource} already billed for {bill.fee_period}",
                    client_id=bill.client_id,
                    assigned_resource=bill.assigned_resource,
                    fee_period=bill.fee_period,
                )
            raise
        logger.info(
            f"Created bill {bill.bill_id} for client {bill.client_id} "
            f"({bill.assigned_resource}, {bill.fee_period}) total {bill.total}"
        )
        await self._publish(events.BILL_CREATED, bill)
        return bill

    async def _mutate(self, bill_id: str, mutator: Mutator, event_type: Optional[str] = None) -> Tuple[Bill, bool]:
        """Apply ``mutator`` with compare-and-swap; returns (bill, changed)."""
        for attempt in range(self.max_cas_attempts):
            bill = await self.get(bill_id)
            changes = mutator(bill)
            if changes is None:
                return bill, False

            data = bill.model_dump()
            data.update(changes)
            data["version"] = bill.version + 1
            data["updated_at"] = self._now()
            candidate = Bill.model_validate(data)

            stored = await self.store.update(
                bill_path(bill.client_id, bill.bill_id),
                candidate.to_document(),
                conditions={"version": bill.version},
            )
            if stored is not None:
                updated = Bill.from_document(stored)
                if event_type:
                    await self._publish(event_type, updated)
                return updated, True

            logger.info(f"Bill {bill_id} changed concurrently (attempt {attempt + 1}), retrying")

        raise ConcurrentUpdateError(
            f"bill {bill_id} kept changing after {self.max_cas_attempts} attempts", bill_id=bill_id
        )

    async def mark_paid(
        self,
        bill_id: str,
        paid_at: Optional[datetime] = None,
        late_fee: Any = None,
        damage_fee: Any = None,
    ) -> Bill:
        """unpaid|overdue -> paid, optionally settling late/damage fees in the same write."""
        settled = {}
        for kind, value in ((FeeKind.LATE, late_fee), (FeeKind.DAMAGE, damage_fee)):
            if value is not None:
                settled[kind.field_name] = parse_amount(value, f"{kind.value} fee")

        def mutate(bill: Bill) -> Dict[str, Any]:
            if bill.status not in OPEN_STATUSES:
                raise InvalidTransitionError(
                    f"bill {bill.bill_id} is {bill.status.value} and cannot be paid", bill_id=bill.bill_id
                )
            when = paid_at or self._now()
            if when.tzinfo is None:
                when = when.replace(tzinfo=bill.created_at.tzinfo)
            if when < bill.created_at:
                raise InvalidTransitionError(
                    f"paidAt {when.isoformat()} precedes bill creation", bill_id=bill.bill_id
                )
            changes = {"status": BillStatus.PAID, "paid_at": when}
            for field, value in settled.items():
                changes[field] = getattr(bill, field) + value
            return changes

        bill, _ = await self._mutate(bill_id, mutate, events.BILL_PAID)
        logger.info(f"Bill {bill_id} marked paid at {bill.paid_at.isoformat()}")
        return bill

    async def transition_to_overdue(
        self, bill_id: str, now: Optional[Union[date, datetime]] = None
    ) -> Tuple[Bill, bool]:
        """unpaid -> overdue; returns (bill, changed) so sweeps can count."""
        today = _day(now or self._now())

        def mutate(bill: Bill) -> Optional[Dict[str, Any]]:
            if bill.status is BillStatus.OVERDUE:
                return None
            if bill.status is not BillStatus.UNPAID:
                raise InvalidTransitionError(
                    f"bill {bill.bill_id} is {bill.status.value} and cannot become overdue", bill_id=bill.bill_id
                )
            if bill.due_date is None or today <= bill.due_date:
                raise InvalidTransitionError(
                    f"bill {bill.bill_id} is not past its due date {bill.due_date}", bill_id=bill.bill_id
                )
            return {"status": BillStatus.OVERDUE}

        return await self._mutate(bill_id, mutate, events.BILL_OVERDUE)

    async def mark_overdue(self, bill_id: str, now: Optional[Union[date, datetime]] = None) -> Bill:
        """unpaid -> overdue; a no-op for bills already overdue."""
        bill, changed = await self.transition_to_overdue(bill_id, now)
        if changed:
            logger.info(f"Bill {bill_id} marked overdue (due {bill.due_date})")
        return bill

    async def apply_fee(self, bill_id: str, fee_kind: Union[FeeKind, str], amount: Any) -> Bill:
        """Add a late or damage fee to an open bill. Fees accumulate."""
        try:
            kind = FeeKind(fee_kind)
        except ValueError:
            raise InvalidAmountError(f"unknown fee kind {fee_kind!r}; expected late or damage")
        value = parse_amount(amount, f"{kind.value} fee")

        def mutate(bill: Bill) -> Optional[Dict[str, Any]]:
            if bill.status not in OPEN_STATUSES:
                raise InvalidTransitionError(
                    f"bill {bill.bill_id} is {bill.status.value}; fees can only be added to open bills",
                    bill_id=bill.bill_id,
                )
            if value == 0:
                return None
            return {kind.field_name: getattr(bill, kind.field_name) + value}

        bill, changed = await self._mutate(bill_id, mutate, events.BILL_FEE_APPLIED)
        if changed:
            logger.info(f"Applied {kind.value} fee {value} to bill {bill_id}; total now {bill.total}")
        return bill

    async def void_bill(self, bill_id: str, reason: Optional[str] = None) -> Bill:
        """unpaid|overdue -> void. The period can then be billed again."""

        def mutate(bill: Bill) -> Dict[str, Any]:
            if bill.status not in OPEN_STATUSES:
                raise InvalidTransitionError(
                    f"bill {bill.bill_id} is {bill.status.value} and cannot be voided", bill_id=bill.bill_id
                )
            return {"status": BillStatus.VOID, "voided_at": self._now(), "void_reason": reason}

        bill, _ = await self._mutate(bill_id, mutate, events.BILL_VOIDED)
        logger.info(f"Bill {bill_id} voided: {reason or 'no reason given'}")
        return bill

    async def update_fees(
        self,
        bill_id: str,
        amount: Any = None,
        cusa_fee: Any = None,
        parking_fee: Any = None,
        notes: Optional[str] = None,
    ) -> Bill:
        """Replace base fee components on an open bill (admin edit)."""
        changes: Dict[str, Any] = {}
        for field, value in (("amount", amount), ("cusa_fee", cusa_fee), ("parking_fee", parking_fee)):
            if value is not None:
                changes[field] = parse_amount(value, field)
        if notes is not None:
            changes["notes"] = notes

        def mutate(bill: Bill) -> Optional[Dict[str, Any]]:
            if bill.status not in OPEN_STATUSES:
                raise InvalidTransitionError(
                    f"bill {bill.bill_id} is {bill.status.value} and cannot be edited", bill_id=bill.bill_id
                )
            return changes or None

        bill, _ = await self._mutate(bill_id, mutate)
        return bill

    # Reads

    async def find(self, bill_id: str) -> Optional[Bill]:
        docs = await self._read(
            lambda: self.store.query_group(BILLS_COLLECTION, [("billId", "==", bill_id)], limit=1),
            "bill lookup",
        )
        return Bill.from_document(docs[0]) if docs else None

    async def get(self, bill_id: str) -> Bill:
        bill = await self.find(bill_id)
        if bill is None:
            raise BillNotFoundError(f"bill {bill_id} does not exist", bill_id=bill_id)
        return bill

    async def list_by_client(
        self,
        client_id: str,
        assigned_resource: Optional[str] = None,
        status: Optional[Union[BillStatus, str]] = None,
        service_type: Optional[Union[ServiceType, str]] = None,
    ) -> List[Bill]:
        """Bills for a client, newest first."""
        filters = []
        if assigned_resource is not None:
            filters.append(("assignedResource", "==", assigned_resource))
        if status is not None:
            filters.append(("status", "==", BillStatus(status).value))
        if service_type is not None:
            filters.append(("serviceType", "==", ServiceType(service_type).value))
        docs = await self._read(
            lambda: self.store.query(bills_path(client_id), filters, order_by=["-createdAt", "-billId"]),
            "bill query",
        )
        return [Bill.from_document(doc) for doc in docs]

    async def list_unpaid_due_before(self, day: date) -> List[Bill]:
        """Unpaid bills whose due date is strictly before ``day``."""
        docs = await self._read(
            lambda: self.store.query_group(
                BILLS_COLLECTION,
                [("status", "==", BillStatus.UNPAID.value), ("dueDate", "<", day.isoformat())],
                order_by=["dueDate"],
            ),
            "overdue scan",
        )
        return [Bill.from_document(doc) for doc in docs]

    async def list_resource_histories(self) -> List[ResourceHistory]:
        """Renewal state of every (client, resource) pair that has a non-void bill."""
        docs = await self._read(
            lambda: self.store.query_group(BILLS_COLLECTION, order_by=["startDate", "createdAt"]),
            "renewal scan",
        )
        anchors: Dict[Tuple[str, str], date] = {}
        last_starts: Dict[Tuple[str, str], date] = {}
        templates: Dict[Tuple[str, str], Bill] = {}
        for doc in docs:
            bill = Bill.from_document(doc)
            key = (bill.client_id, bill.assigned_resource)
            anchors.setdefault(key, bill.start_date)
            last_starts[key] = bill.start_date
            if bill.status is not BillStatus.VOID:
                templates[key] = bill
        return [
            ResourceHistory(template=template, last_start=last_starts[key], anchor=anchors[key])
            for key, template in templates.items()
        ]

    async def summarize(self) -> Dict[str, Any]:
        """Billing stats for the admin dashboard."""
        docs = await self._read(lambda: self.store.query_group(BILLS_COLLECTION), "billing stats")
        bills = [Bill.from_document(doc) for doc in docs]

        by_service = Counter(bill.service_type.value for bill in bills)
        by_status = Counter(bill.status.value for bill in bills)
        outstanding = sum((b.total for b in bills if b.status is BillStatus.UNPAID), Decimal("0"))
        overdue = sum((b.total for b in bills if b.status is BillStatus.OVERDUE), Decimal("0"))
        collected = sum((b.total for b in bills if b.status is BillStatus.PAID), Decimal("0"))

        return {
            "total": len(bills),
            "by_service_type": {kind.value: by_service.get(kind.value, 0) for kind in ServiceType},
            "by_status": {status.value: by_status.get(status.value, 0) for status in BillStatus},
            "revenue": {
                "pending": outstanding,
                "overdue": overdue,
                "collected": collected,
            },
        }
