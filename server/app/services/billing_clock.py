"""
Temporal rules for billing: due dates, period boundaries, the overdue
sweep and recurring renewal of bills.
"""

import calendar
import logging
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Optional, Union

from app.core.config import settings
from app.core.errors import BillingError, DuplicatePeriodError, InvalidTransitionError
from app.models.bill import Bill, BillingCycle, BillStatus, utcnow
from app.services.fee_schedule import FeeDefaults

if TYPE_CHECKING:
    from app.services.bill_factory import BillFactory
    from app.services.bill_ledger import BillLedger

logger = logging.getLogger(__name__)

Moment = Union[date, datetime]


def as_day(moment: Moment) -> date:
    if isinstance(moment, datetime):
        return moment.date()
    return moment


def add_months(day: date, months: int) -> date:
    """Shift by calendar months, clamping to the last day of short months."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def period_label(period_start: date, cycle: BillingCycle) -> str:
    """Human readable label of the billing period starting on ``period_start``."""
    if cycle is BillingCycle.MONTHLY:
        return f"{period_start.year:04d}-{period_start.month:02d}"
    if cycle is BillingCycle.QUARTERLY:
        return f"{period_start.year:04d}-Q{(period_start.month - 1) // 3 + 1}"
    if cycle is BillingCycle.SEMIANNUALLY:
        return f"{period_start.year:04d}-H{(period_start.month - 1) // 6 + 1}"
    return f"{period_start.year:04d}"


class BillingClock:
    def __init__(self, grace_period_days: Optional[int] = None):
        grace = settings.BILLING_GRACE_PERIOD_DAYS if grace_period_days is None else grace_period_days
        if grace < 0:
            raise ValueError("grace period cannot be negative")
        self.grace_period = timedelta(days=grace)

    def compute_due_date(self, period_start: Moment) -> date:
        return as_day(period_start) + self.grace_period

    def period_end(self, period_start: Moment, cycle: BillingCycle = BillingCycle.MONTHLY) -> date:
        """First day of the following period."""
        return add_months(as_day(period_start), BillingCycle(cycle).months)

    def next_period_start(
        self, anchor: Moment, after: Moment, cycle: BillingCycle = BillingCycle.MONTHLY
    ) -> date:
        """
        First period boundary counted from ``anchor`` that falls after ``after``.

        Boundaries are always computed from the anchor, so a cycle anchored
        on the 31st returns to the 31st after a short month.
        """
        months = BillingCycle(cycle).months
        anchor, after = as_day(anchor), as_day(after)
        elapsed = (after.year - anchor.year) * 12 + after.month - anchor.month
        step = max(elapsed // months, 1)
        candidate = add_months(anchor, step * months)
        while candidate <= after:
            step += 1
            candidate = add_months(anchor, step * months)
        return candidate

    def fee_period(self, period_start: Moment, cycle: BillingCycle = BillingCycle.MONTHLY) -> str:
        return period_label(as_day(period_start), BillingCycle(cycle))

    def is_overdue(self, bill: Bill, now: Optional[Moment] = None) -> bool:
        if bill.status is not BillStatus.UNPAID or bill.due_date is None:
            return False
        return as_day(now or utcnow()) > bill.due_date

    async def sweep(self, ledger: "BillLedger", now: Optional[Moment] = None) -> int:
        """
        Mark every unpaid bill whose due date has passed as overdue.

        Returns the number of bills transitioned. Bills paid or voided
        between the scan and the transition are skipped, so repeated or
        concurrent runs never double count.
        """
        today = as_day(now or utcnow())
        candidates = await ledger.list_unpaid_due_before(today)
        count = 0
        for bill in candidates:
            if not self.is_overdue(bill, today):
                continue
            try:
                _, changed = await ledger.transition_to_overdue(bill.bill_id, today)
            except InvalidTransitionError as e:
                logger.info(f"Sweep skipped bill {bill.bill_id}: {e}")
                continue
            if changed:
                count += 1
        if count:
            logger.info(f"Sweep marked {count} bill(s) overdue as of {today.isoformat()}")
        return count

    async def renew(self, ledger: "BillLedger", factory: "BillFactory", now: Optional[Moment] = None) -> int:
        """
        Open the next period's bill for every client resource whose latest
        bill period has ended. Catches up on missed periods one at a time.

        The cycle and base fees come from the latest non-void bill, so admin
        rate edits carry forward. Periods an admin voided are not reopened.
        """
        today = as_day(now or utcnow())
        created = 0
        for history in await ledger.list_resource_histories():
            latest = history.template
            fees = FeeDefaults(amount=latest.amount, cusa_fee=latest.cusa_fee, parking_fee=latest.parking_fee)
            next_start = self.next_period_start(history.anchor, history.last_start, latest.billing_cycle)
            while next_start <= today:
                try:
                    bill = await factory.create_bill(
                        latest.client_id,
                        latest.assigned_resource,
                        latest.service_type,
                        next_start,
                        billing_cycle=latest.billing_cycle,
                        fees=fees,
                    )
                    created += 1
                    logger.info(
                        f"Renewed {bill.assigned_resource} for client {bill.client_id}: "
                        f"{bill.fee_period} due {bill.due_date}"
                    )
                except DuplicatePeriodError:
                    logger.debug(
                        f"Bill already exists for client {latest.client_id}, "
                        f"resource {latest.assigned_resource}, period starting {next_start}"
                    )
                except BillingError as e:
                    logger.warning(
                        f"Skipping renewal for client {latest.client_id}, resource {latest.assigned_resource}: {e}"
                    )
                    break
                next_start = self.next_period_start(history.anchor, next_start, latest.billing_cycle)
        return created
