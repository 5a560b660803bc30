import asyncio
from datetime import date
from decimal import Decimal

import pytest

from app.crud import clients as client_crud
from app.models.bill import BillingCycle, BillStatus
from app.services.billing_scheduler import BillingScheduler
from helpers import seed_client, utc


@pytest.mark.asyncio
async def test_sweep_marks_past_due_bills_once(store, ledger, factory, billing_clock) -> None:
    await seed_client(store)
    bill = await factory.create_bill("c1", "Desk-12", "dedicated-desk", date(2026, 1, 1))

    assert await billing_clock.sweep(ledger, utc(2026, 1, 16)) == 0
    assert await billing_clock.sweep(ledger, utc(2026, 1, 17)) == 1
    assert (await ledger.get(bill.bill_id)).status is BillStatus.OVERDUE

    assert await billing_clock.sweep(ledger, utc(2026, 1, 20)) == 0
    assert (await ledger.get(bill.bill_id)).status is BillStatus.OVERDUE


@pytest.mark.asyncio
async def test_sweep_leaves_paid_and_void_bills_alone(store, ledger, factory, billing_clock) -> None:
    await seed_client(store)
    paid = await factory.create_bill("c1", "Desk-12", "dedicated-desk", date(2026, 1, 1))
    void = await factory.create_bill("c1", "Desk-13", "dedicated-desk", date(2026, 1, 1))
    open_bill = await factory.create_bill("c1", "Desk-14", "dedicated-desk", date(2026, 1, 1))
    await ledger.mark_paid(paid.bill_id)
    await ledger.void_bill(void.bill_id, "moved desks")

    assert await billing_clock.sweep(ledger, utc(2026, 2, 1)) == 1

    assert (await ledger.get(paid.bill_id)).status is BillStatus.PAID
    assert (await ledger.get(void.bill_id)).status is BillStatus.VOID
    assert (await ledger.get(open_bill.bill_id)).status is BillStatus.OVERDUE


@pytest.mark.asyncio
async def test_concurrent_sweeps_count_each_bill_once(store, ledger, factory, billing_clock) -> None:
    await seed_client(store)
    await factory.create_bill("c1", "Desk-12", "dedicated-desk", date(2026, 1, 1))
    await factory.create_bill("c1", "Desk-13", "dedicated-desk", date(2026, 1, 1))

    counts = await asyncio.gather(
        billing_clock.sweep(ledger, utc(2026, 1, 20)),
        billing_clock.sweep(ledger, utc(2026, 1, 20)),
    )

    assert sum(counts) == 2


@pytest.mark.asyncio
async def test_renew_opens_next_period(store, ledger, factory, billing_clock) -> None:
    await seed_client(store)
    await factory.create_bill("c1", "Desk-12", "dedicated-desk", date(2026, 1, 1))

    assert await billing_clock.renew(ledger, factory, utc(2026, 1, 31)) == 0
    assert await billing_clock.renew(ledger, factory, utc(2026, 2, 1)) == 1

    latest = (await ledger.list_by_client("c1"))[0]
    assert latest.start_date == date(2026, 2, 1)
    assert latest.fee_period == "2026-02"
    assert latest.due_date == date(2026, 2, 16)
    assert latest.status is BillStatus.UNPAID

    assert await billing_clock.renew(ledger, factory, utc(2026, 2, 2)) == 0
    assert len(await ledger.list_by_client("c1")) == 2


@pytest.mark.asyncio
async def test_renew_catches_up_missed_periods(store, ledger, factory, billing_clock) -> None:
    await seed_client(store)
    await factory.create_bill("c1", "Desk-12", "dedicated-desk", date(2026, 1, 1))

    assert await billing_clock.renew(ledger, factory, utc(2026, 4, 15)) == 3

    periods = [b.fee_period for b in await ledger.list_by_client("c1")]
    assert sorted(periods) == ["2026-01", "2026-02", "2026-03", "2026-04"]


@pytest.mark.asyncio
async def test_renew_keeps_the_cycle_of_the_latest_bill(store, ledger, factory, billing_clock) -> None:
    await client_crud.create_client(
        store,
        name="Kite Labs",
        service_type="private-office",
        assigned_resource="Suite 3",
        assigned_at=date(2026, 1, 1),
        billing_cycle=BillingCycle.QUARTERLY,
        client_id="c2",
    )
    await factory.create_bill("c2", "Suite 3", "private-office", date(2026, 1, 1))

    assert await billing_clock.renew(ledger, factory, utc(2026, 3, 31)) == 0
    assert await billing_clock.renew(ledger, factory, utc(2026, 4, 1)) == 1

    latest = (await ledger.list_by_client("c2"))[0]
    assert latest.fee_period == "2026-Q2"
    assert latest.billing_cycle is BillingCycle.QUARTERLY


@pytest.mark.asyncio
async def test_renew_skips_inactive_clients(store, ledger, factory, billing_clock) -> None:
    await seed_client(store)
    await seed_client(store, client_id="c2", assigned_resource="Desk-20")
    await factory.create_bill("c1", "Desk-12", "dedicated-desk", date(2026, 1, 1))
    await factory.create_bill("c2", "Desk-20", "dedicated-desk", date(2026, 1, 1))
    await client_crud.set_client_active(store, "c1", False)

    assert await billing_clock.renew(ledger, factory, utc(2026, 2, 1)) == 1

    assert len(await ledger.list_by_client("c1")) == 1
    assert len(await ledger.list_by_client("c2")) == 2


@pytest.mark.asyncio
async def test_scheduler_renews_then_sweeps(store, ledger, factory, billing_clock, clock) -> None:
    await seed_client(store)
    await factory.create_bill("c1", "Desk-12", "dedicated-desk", date(2026, 1, 1))
    scheduler = BillingScheduler(billing_clock, ledger, factory, interval_seconds=3600, now=clock)

    clock.set(utc(2026, 2, 10))
    result = await scheduler.run_once()

    assert result == {"created": 1, "overdue": 1}
    statuses = {b.fee_period: b.status for b in await ledger.list_by_client("c1")}
    assert statuses == {"2026-01": BillStatus.OVERDUE, "2026-02": BillStatus.UNPAID}


@pytest.mark.asyncio
async def test_scheduler_start_and_stop(store, ledger, factory, billing_clock, clock) -> None:
    scheduler = BillingScheduler(billing_clock, ledger, factory, interval_seconds=3600, now=clock)

    scheduler.start()
    await asyncio.sleep(0)
    assert scheduler.running

    await scheduler.stop()
    assert not scheduler.running
    await scheduler.stop()


@pytest.mark.asyncio
async def test_renew_does_not_reopen_a_voided_period(store, ledger, factory, billing_clock) -> None:
    await seed_client(store)
    january = await factory.create_bill("c1", "Desk-12", "dedicated-desk", date(2026, 1, 1))
    await ledger.mark_paid(january.bill_id)
    assert await billing_clock.renew(ledger, factory, utc(2026, 2, 1)) == 1
    february = (await ledger.list_by_client("c1"))[0]
    await ledger.void_bill(february.bill_id, "tenant moved out early")

    assert await billing_clock.renew(ledger, factory, utc(2026, 2, 2)) == 0
    periods = sorted((b.fee_period, b.status.value) for b in await ledger.list_by_client("c1"))
    assert periods == [("2026-01", "paid"), ("2026-02", "void")]

    # Later periods still renew from the last live bill
    assert await billing_clock.renew(ledger, factory, utc(2026, 3, 1)) == 1
    latest = (await ledger.list_by_client("c1"))[0]
    assert latest.fee_period == "2026-03"
    assert latest.status is BillStatus.UNPAID


@pytest.mark.asyncio
async def test_fully_voided_resource_is_not_renewed(store, ledger, factory, billing_clock) -> None:
    await seed_client(store)
    january = await factory.create_bill("c1", "Desk-12", "dedicated-desk", date(2026, 1, 1))
    await ledger.void_bill(january.bill_id, "billed by mistake")

    assert await billing_clock.renew(ledger, factory, utc(2026, 3, 1)) == 0


@pytest.mark.asyncio
async def test_renew_carries_edited_rates_forward(store, ledger, factory, billing_clock) -> None:
    await seed_client(store)
    january = await factory.create_bill("c1", "Desk-12", "dedicated-desk", date(2026, 1, 1))
    await ledger.update_fees(january.bill_id, amount="8000", parking_fee=250)
    await ledger.apply_fee(january.bill_id, "late", 200)

    assert await billing_clock.renew(ledger, factory, utc(2026, 2, 1)) == 1

    february = (await ledger.list_by_client("c1"))[0]
    assert february.fee_period == "2026-02"
    assert february.amount == Decimal("8000")
    assert february.cusa_fee == Decimal("500")
    assert february.parking_fee == Decimal("250")
    assert february.late_fee == Decimal("0")
    assert february.total == Decimal("8750")


@pytest.mark.asyncio
async def test_renew_keeps_month_end_anchor(store, ledger, factory, billing_clock) -> None:
    await seed_client(store)
    await factory.create_bill("c1", "Desk-12", "dedicated-desk", date(2026, 1, 31))

    assert await billing_clock.renew(ledger, factory, utc(2026, 4, 30)) == 3

    starts = sorted(b.start_date for b in await ledger.list_by_client("c1"))
    assert starts == [date(2026, 1, 31), date(2026, 2, 28), date(2026, 3, 31), date(2026, 4, 30)]
