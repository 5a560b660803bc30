import pytest
import pytest_asyncio

from app.core.config import DEFAULT_FEE_SCHEDULE
from app.db.memory import InMemoryDocumentStore
from app.services.bill_factory import BillFactory
from app.services.bill_ledger import BillLedger
from app.services.billing_clock import BillingClock
from app.services.events import EventBus
from app.services.fee_schedule import FeeSchedule
from helpers import FrozenClock, utc


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def clock():
    return FrozenClock(utc(2026, 1, 1, 8))


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def billing_clock():
    return BillingClock(grace_period_days=15)


@pytest.fixture
def fee_schedule():
    return FeeSchedule(DEFAULT_FEE_SCHEDULE, {})


@pytest_asyncio.fixture
async def ledger(store, bus, clock):
    ledger = BillLedger(store, bus, read_retry_delays=[0, 0], max_cas_attempts=3, now=clock)
    await ledger.initialize()
    return ledger


@pytest.fixture
def factory(store, ledger, fee_schedule, billing_clock, clock):
    return BillFactory(store, ledger, fee_schedule, billing_clock, default_cycle="monthly", now=clock)
