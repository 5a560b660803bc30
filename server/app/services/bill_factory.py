import logging
from datetime import date, datetime
from typing import Any, Callable, Optional, Union

from bson import ObjectId

from app.core.config import settings
from app.core.errors import ConfigurationError, InactiveClientError, InvalidPeriodError
from app.crud.clients import require_client
from app.db.base import DocumentStore
from app.models.bill import Bill, BillingCycle, BillStatus, ServiceType, utcnow
from app.services.bill_ledger import BillLedger
from app.services.billing_clock import BillingClock, as_day
from app.services.fee_schedule import FeeDefaults, FeeSchedule

logger = logging.getLogger(__name__)


class BillFactory:
    """Builds a new, valid bill for a client's assignment and persists it."""

    def __init__(
        self,
        store: DocumentStore,
        ledger: BillLedger,
        fee_schedule: FeeSchedule,
        clock: BillingClock,
        default_cycle: Optional[Union[BillingCycle, str]] = None,
        now: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.ledger = ledger
        self.fee_schedule = fee_schedule
        self.clock = clock
        try:
            self.default_cycle = BillingCycle(default_cycle or settings.BILLING_DEFAULT_CYCLE)
        except ValueError:
            raise ConfigurationError(f"unknown billing cycle {default_cycle or settings.BILLING_DEFAULT_CYCLE!r}")
        self._now = now

    async def create_bill(
        self,
        client_id: str,
        assigned_resource: str,
        service_type: Union[ServiceType, str],
        period_start: Union[date, datetime],
        billing_cycle: Optional[Union[BillingCycle, Any]] = None,
        fees: Optional[FeeDefaults] = None,
    ) -> Bill:
        """
        Create the bill for one client/resource/period.

        Raises ClientNotFoundError or InactiveClientError when the client
        cannot be billed, InvalidPeriodError when the period starts before
        the assignment, ConfigurationError for unknown service types and
        DuplicatePeriodError when an open or paid bill already covers the
        period.

        ``fees`` replaces the scheduled base fees, e.g. to carry an admin
        rate edit into the next period.
        """
        if fees is None:
            fees = self.fee_schedule.resolve(service_type, assigned_resource)
        try:
            kind = ServiceType(service_type)
        except ValueError:
            raise ConfigurationError(f"unknown service type {service_type!r}")

        client = await require_client(self.store, client_id)
        if not client.is_active:
            raise InactiveClientError(f"client {client_id} is inactive", client_id=client_id)

        start = as_day(period_start)
        if start < client.assigned_at:
            raise InvalidPeriodError(
                f"period start {start} precedes assignment start {client.assigned_at}",
                client_id=client_id,
            )

        cycle = self._resolve_cycle(billing_cycle, client.billing_cycle, assigned_resource == client.assigned_resource)

        bill = Bill(
            bill_id=str(ObjectId()),
            client_id=client_id,
            assigned_resource=assigned_resource,
            service_type=kind,
            billing_cycle=cycle,
            amount=fees.amount,
            cusa_fee=fees.cusa_fee,
            parking_fee=fees.parking_fee,
            fee_period=self.clock.fee_period(start, cycle),
            start_date=start,
            due_date=self.clock.compute_due_date(start),
            status=BillStatus.UNPAID,
            created_at=self._now(),
            client_name=client.name,
            email=client.email,
            company_name=client.company_name,
        )
        return await self.ledger.insert(bill)

    def _resolve_cycle(self, requested: Any, client_cycle: BillingCycle, same_resource: bool) -> BillingCycle:
        if requested is not None:
            try:
                return BillingCycle(requested)
            except ValueError:
                raise ConfigurationError(f"unknown billing cycle {requested!r}")
        if same_resource:
            return client_cycle
        return self.default_cycle
