"""
Wiring of the billing engine for one process.

``start_billing`` is called from the application lifespan and returns a
BillingEngine holding the store, the event bus and the services built on
them; ``BillingEngine.shutdown`` tears them down in reverse order.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from app.core.config import Settings, settings as default_settings
from app.core.database_mongo import close_store, connect_to_store
from app.db.base import DocumentStore
from app.services.bill_factory import BillFactory
from app.services.bill_ledger import BillLedger
from app.services.billing_clock import BillingClock
from app.services.billing_scheduler import BillingScheduler
from app.services.email_service import EmailService
from app.services.events import EventBus
from app.services.fee_schedule import FeeSchedule
from app.services.notifications import BillingNotifier

logger = logging.getLogger(__name__)


@dataclass
class BillingEngine:
    store: DocumentStore
    event_bus: EventBus
    fee_schedule: FeeSchedule
    clock: BillingClock
    ledger: BillLedger
    factory: BillFactory
    notifier: BillingNotifier
    scheduler: BillingScheduler

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        self.notifier.detach()
        await self.event_bus.close()
        await close_store(self.store)
        logger.info("Billing engine shut down")


def build_engine(
    store: DocumentStore,
    settings: Settings = default_settings,
    email_service: Optional[EmailService] = None,
) -> BillingEngine:
    """Assemble the engine over an already opened store."""
    event_bus = EventBus()
    fee_schedule = FeeSchedule(settings.FEE_SCHEDULE, settings.FEE_OVERRIDES)
    clock = BillingClock(settings.BILLING_GRACE_PERIOD_DAYS)
    ledger = BillLedger(
        store,
        event_bus,
        read_retry_delays=settings.STORE_READ_RETRY_DELAYS,
        max_cas_attempts=settings.STORE_CAS_MAX_ATTEMPTS,
    )
    factory = BillFactory(store, ledger, fee_schedule, clock, default_cycle=settings.BILLING_DEFAULT_CYCLE)
    email_service = email_service or EmailService(
        api_key=settings.RESEND_API_KEY or "",
        base_url=settings.RESEND_API_URL,
        sender=settings.EMAIL_FROM,
        timeout=settings.EMAIL_TIMEOUT_SECONDS,
    )
    notifier = BillingNotifier(email_service)
    notifier.attach(event_bus)
    scheduler = BillingScheduler(clock, ledger, factory, settings.BILLING_SCHEDULER_INTERVAL_SECONDS)
    return BillingEngine(
        store=store,
        event_bus=event_bus,
        fee_schedule=fee_schedule,
        clock=clock,
        ledger=ledger,
        factory=factory,
        notifier=notifier,
        scheduler=scheduler,
    )


async def start_billing(settings: Settings = default_settings) -> BillingEngine:
    store = await connect_to_store(settings)
    engine = build_engine(store, settings)
    await engine.ledger.initialize()
    if settings.BILLING_SCHEDULER_ENABLED:
        engine.scheduler.start()
    return engine
