"""
Background loop that renews recurring bills and sweeps overdue ones.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from app.models.bill import utcnow
from app.services.bill_factory import BillFactory
from app.services.bill_ledger import BillLedger
from app.services.billing_clock import BillingClock

logger = logging.getLogger(__name__)


class BillingScheduler:
    def __init__(
        self,
        clock: BillingClock,
        ledger: BillLedger,
        factory: BillFactory,
        interval_seconds: float,
        now: Callable[[], datetime] = utcnow,
    ):
        self.clock = clock
        self.ledger = ledger
        self.factory = factory
        self.interval_seconds = interval_seconds
        self._now = now
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Renew first so freshly ended periods get their next bill, then sweep."""
        moment = now or self._now()
        created = await self.clock.renew(self.ledger, self.factory, moment)
        overdue = await self.clock.sweep(self.ledger, moment)
        return {"created": created, "overdue": overdue}

    async def _loop(self) -> None:
        logger.info(f"Billing scheduler started (every {self.interval_seconds}s)")
        while True:
            try:
                result = await self.run_once()
                logger.info(f"Billing check completed: {result['created']} created, {result['overdue']} overdue")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Billing check failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="billing-scheduler")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
            logger.info("Billing scheduler stopped")
