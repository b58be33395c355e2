import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import event, select

from momentcart.background_workers.reservation_reaper import ReservationReaper
from momentcart.checkout.services import CartItem, CheckoutSessionStateMachine
from momentcart.schema.full_schema import CheckoutSession, CheckoutStatus, ReleaseReason, Reservation, ReservationStatus


@pytest.fixture
def reaper(session_factory, machine, clock):
    return ReservationReaper(session_factory, machine, batch_size=10, poll_interval=0.01, clock=clock)


async def load(session_factory, checkout_id):
    async with session_factory() as session:
        checkout = (await session.execute(
            select(CheckoutSession).where(CheckoutSession.public_id == checkout_id)
        )).scalar_one()
        holds = (await session.execute(
            select(Reservation).where(Reservation.checkout_session_id == checkout_id)
        )).scalars().all()
    return checkout, list(holds)


@pytest.mark.asyncio
async def test_sweep_expires_lapsed_holds_and_their_session(seed, machine, reaper, session_factory, clock):
    catalog = await seed(stocks=(1,))
    checkout, _ = await machine.start(catalog.creator_id, "ikey-reap-0001", catalog.link_code, [CartItem(catalog.variant_ids[0], 1)])

    nothing = await reaper.sweep_once()
    assert nothing.touched == 0

    clock.advance(minutes=16)
    result = await reaper.sweep_once()

    assert result.reservations_expired == 1
    assert result.sessions_expired == 1
    assert result.failures == 0

    expired, [hold] = await load(session_factory, checkout.public_id)
    assert expired.status == CheckoutStatus.EXPIRED
    assert expired.expired_at == clock()
    assert hold.status == ReservationStatus.EXPIRED
    assert hold.release_reason == ReleaseReason.EXPIRED

    # the freed unit goes to the next shopper
    again, created = await machine.start(catalog.creator_id, "ikey-reap-0002", catalog.link_code, [CartItem(catalog.variant_ids[0], 1)])
    assert created
    assert again.status == CheckoutStatus.PENDING

    second_pass = await reaper.sweep_once()
    assert second_pass.touched == 0


@pytest.mark.asyncio
async def test_sweep_expires_session_past_its_ttl(session_factory, seed, clock):
    # holds outlive the session here, so only the session TTL can end it
    machine = CheckoutSessionStateMachine(
        session_factory, clock=clock, session_ttl=timedelta(minutes=5), reservation_ttl=timedelta(minutes=15),
    )
    reaper = ReservationReaper(session_factory, machine, clock=clock)
    catalog = await seed(stocks=(2,))
    checkout, _ = await machine.start(catalog.creator_id, "ikey-ttl-00001", catalog.link_code, [CartItem(catalog.variant_ids[0], 2)])

    clock.advance(minutes=6)
    result = await reaper.sweep_once()

    assert result.reservations_expired == 0
    assert result.sessions_expired == 1

    expired, [hold] = await load(session_factory, checkout.public_id)
    assert expired.status == CheckoutStatus.EXPIRED
    assert hold.status == ReservationStatus.EXPIRED
    async with session_factory() as session:
        assert await machine.inventory.available_quantity(session, catalog.variant_ids[0]) == 2


@pytest.mark.asyncio
async def test_sweep_leaves_confirmed_and_cancelled_sessions_alone(seed, machine, reaper, session_factory, clock):
    catalog = await seed(stocks=(5,))
    variant_id = catalog.variant_ids[0]
    confirmed, _ = await machine.start(catalog.creator_id, "ikey-keep-0001", catalog.link_code, [CartItem(variant_id, 1)])
    cancelled, _ = await machine.start(catalog.creator_id, "ikey-keep-0002", catalog.link_code, [CartItem(variant_id, 1)])
    await machine.confirm(confirmed.public_id, "order-77")
    await machine.cancel(cancelled.public_id)

    clock.advance(hours=2)
    result = await reaper.sweep_once()

    assert result.touched == 0
    kept, [hold] = await load(session_factory, confirmed.public_id)
    assert kept.status == CheckoutStatus.CONFIRMED
    assert hold.status == ReservationStatus.CONFIRMED
    gone, _ = await load(session_factory, cancelled.public_id)
    assert gone.status == CheckoutStatus.CANCELLED


@pytest.mark.asyncio
async def test_run_loop_sweeps_until_stopped(seed, machine, reaper, session_factory, clock):
    catalog = await seed(stocks=(1,))
    checkout, _ = await machine.start(catalog.creator_id, "ikey-loop-0001", catalog.link_code, [CartItem(catalog.variant_ids[0], 1)])
    clock.advance(minutes=16)

    task = asyncio.create_task(reaper.run())
    for _ in range(200):
        current, _ = await load(session_factory, checkout.public_id)
        if current.status == CheckoutStatus.EXPIRED:
            break
        await asyncio.sleep(0.01)

    reaper.stop()
    await asyncio.wait_for(task, timeout=5)

    assert current.status == CheckoutStatus.EXPIRED
    assert task.done() and task.exception() is None


@pytest.mark.asyncio
async def test_sweep_takes_session_row_before_reservation_rows(engine, seed, machine, reaper, clock):
    catalog = await seed(stocks=(1,))
    await machine.start(catalog.creator_id, "ikey-order-0001", catalog.link_code, [CartItem(catalog.variant_ids[0], 1)])
    clock.advance(minutes=16)

    statements = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(" ".join(statement.split()))

    event.listen(engine.sync_engine, "before_cursor_execute", record)
    try:
        result = await reaper.sweep_once()
    finally:
        event.remove(engine.sync_engine, "before_cursor_execute", record)

    assert result.reservations_expired == 1
    first_session_read = next(i for i, s in enumerate(statements) if "FROM checkout_sessions" in s)
    first_hold_write = next(i for i, s in enumerate(statements) if s.startswith("UPDATE reservations"))
    assert first_session_read < first_hold_write
