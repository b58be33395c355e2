from datetime import timedelta

import pytest
from sqlalchemy import func, select
from uuid6 import uuid7

from momentcart.checkout.services import CartItem
from momentcart.common.errors import (
    InsufficientInventory, InvalidOffer, InvalidState, KeyConflict, LinkUnavailable, NotFound, ReservationConflict,
)
from momentcart.schema.full_schema import (
    CheckoutSession, CheckoutStatus, OfferStatus, ReleaseReason, Reservation, ReservationStatus, ShortLink,
)


async def reservations_of(session_factory, checkout_id):
    async with session_factory() as session:
        res = await session.execute(select(Reservation).where(Reservation.checkout_session_id == checkout_id))
        return list(res.scalars().all())


async def count_rows(session_factory, model):
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_happy_path_start_then_confirm(seed, machine, session_factory, clock):
    catalog = await seed(stocks=(10,))
    variant_id = catalog.variant_ids[0]

    checkout, created = await machine.start(
        catalog.creator_id, "ikey-happy-0001", catalog.link_code, [CartItem(variant_id, 1)],
        visitor_id="visitor_1",
    )

    assert created is True
    assert checkout.status == CheckoutStatus.PENDING
    assert (checkout.subtotal, checkout.discount, checkout.total) == (2999, 600, 2399)
    assert checkout.currency == "USD"
    assert checkout.expires_at == clock() + timedelta(minutes=30)
    assert checkout.line_items == [{
        "variant_id": variant_id,
        "external_variant_id": "44000",
        "title": "Tee 0",
        "quantity": 1,
        "unit_price": 2999,
        "offer_price": 2399,
        "line_discount": 600,
        "line_total": 2399,
    }]
    assert checkout.external_checkout_url == (
        f"https://test-shop.myshopify.com/cart/44000:1?checkout[note]={checkout.public_id}"
    )
    assert checkout.visitor_id == "visitor_1"

    async with session_factory() as session:
        assert await machine.inventory.available_quantity(session, variant_id) == 9

    [held] = await reservations_of(session_factory, checkout.public_id)
    assert held.status == ReservationStatus.PENDING
    assert held.expires_at == clock() + timedelta(minutes=15)

    clock.advance(minutes=5)
    confirmed = await machine.confirm(checkout.public_id, "shopify-order-1001")
    assert confirmed.status == CheckoutStatus.CONFIRMED
    assert confirmed.external_order_ref == "shopify-order-1001"
    assert confirmed.confirmed_at == clock()

    [held] = await reservations_of(session_factory, checkout.public_id)
    assert held.status == ReservationStatus.CONFIRMED
    async with session_factory() as session:
        assert await machine.inventory.available_quantity(session, variant_id) == 9


@pytest.mark.asyncio
async def test_start_with_same_key_returns_existing_session(seed, machine, session_factory):
    catalog = await seed(stocks=(10,))
    items = [CartItem(catalog.variant_ids[0], 2)]

    first, created_first = await machine.start(catalog.creator_id, "ikey-retry-0001", catalog.link_code, items)
    again, created_again = await machine.start(catalog.creator_id, "ikey-retry-0001", catalog.link_code, items)

    assert created_first is True
    assert created_again is False
    assert again.public_id == first.public_id
    assert await count_rows(session_factory, CheckoutSession) == 1
    assert len(await reservations_of(session_factory, first.public_id)) == 1

    # the replay does not count as another click
    async with session_factory() as session:
        link = await session.get(ShortLink, catalog.link_id)
    assert link.click_count == 1


@pytest.mark.asyncio
async def test_key_reused_by_other_creator_conflicts(seed, machine):
    catalog = await seed(stocks=(10,))
    await machine.start(catalog.creator_id, "ikey-shared-0001", catalog.link_code, [CartItem(catalog.variant_ids[0], 1)])

    with pytest.raises(KeyConflict):
        await machine.start("creator_2", "ikey-shared-0001", catalog.link_code, [CartItem(catalog.variant_ids[0], 1)])


@pytest.mark.asyncio
async def test_repeated_variant_lines_are_merged(seed, machine, session_factory):
    catalog = await seed(stocks=(3,))
    variant_id = catalog.variant_ids[0]

    checkout, _ = await machine.start(
        catalog.creator_id, "ikey-merge-0001", catalog.link_code, [CartItem(variant_id, 1), CartItem(variant_id, 2)],
    )

    assert checkout.line_items[0]["quantity"] == 3
    [held] = await reservations_of(session_factory, checkout.public_id)
    assert held.quantity == 3


@pytest.mark.asyncio
async def test_failed_line_leaves_no_reservation_no_session_no_click(seed, machine, session_factory):
    catalog = await seed(stocks=(5, 0))

    with pytest.raises(InsufficientInventory):
        await machine.start(
            catalog.creator_id, "ikey-partial-0001", catalog.link_code,
            [CartItem(catalog.variant_ids[0], 1), CartItem(catalog.variant_ids[1], 1)],
        )

    assert await count_rows(session_factory, Reservation) == 0
    assert await count_rows(session_factory, CheckoutSession) == 0
    async with session_factory() as session:
        link = await session.get(ShortLink, catalog.link_id)
    assert link.click_count == 0


@pytest.mark.asyncio
async def test_start_rejects_inactive_offer_and_foreign_link(seed, machine, session_factory):
    paused = await seed(offer_status=OfferStatus.PAUSED)
    with pytest.raises(InvalidOffer):
        await machine.start(paused.creator_id, "ikey-paused-0001", paused.link_code, [CartItem(paused.variant_ids[0], 1)])

    other = await seed(creator_id="creator_2", code="live0002")
    with pytest.raises(NotFound):
        await machine.start(paused.creator_id, "ikey-foreign-0001", other.link_code, [CartItem(other.variant_ids[0], 1)])

    assert await count_rows(session_factory, CheckoutSession) == 0


@pytest.mark.asyncio
async def test_start_with_capped_link_is_unavailable(seed, machine):
    catalog = await seed(stocks=(10,), max_clicks=1)
    item = [CartItem(catalog.variant_ids[0], 1)]

    await machine.start(catalog.creator_id, "ikey-cap-0001", catalog.link_code, item)
    with pytest.raises(LinkUnavailable):
        await machine.start(catalog.creator_id, "ikey-cap-0002", catalog.link_code, item)


@pytest.mark.asyncio
async def test_confirm_twice_is_a_noop(seed, machine, session_factory, clock):
    catalog = await seed(stocks=(10,))
    checkout, _ = await machine.start(catalog.creator_id, "ikey-twice-0001", catalog.link_code, [CartItem(catalog.variant_ids[0], 1)])

    first = await machine.confirm(checkout.public_id, "order-1")
    clock.advance(minutes=1)
    second = await machine.confirm(checkout.public_id, "order-2")

    assert second.status == CheckoutStatus.CONFIRMED
    assert second.external_order_ref == "order-1"
    assert second.confirmed_at == first.confirmed_at
    [held] = await reservations_of(session_factory, checkout.public_id)
    assert held.status == ReservationStatus.CONFIRMED
    assert held.confirmed_at == first.confirmed_at


@pytest.mark.asyncio
async def test_cancel_releases_stock(seed, machine, session_factory):
    catalog = await seed(stocks=(1,))
    variant_id = catalog.variant_ids[0]
    checkout, _ = await machine.start(catalog.creator_id, "ikey-cancel-0001", catalog.link_code, [CartItem(variant_id, 1)])

    cancelled = await machine.cancel(checkout.public_id, "shopper closed the tab")

    assert cancelled.status == CheckoutStatus.CANCELLED
    assert cancelled.cancel_reason == "shopper closed the tab"
    [held] = await reservations_of(session_factory, checkout.public_id)
    assert held.status == ReservationStatus.RELEASED
    assert held.release_reason == ReleaseReason.CANCELLED
    async with session_factory() as session:
        assert await machine.inventory.available_quantity(session, variant_id) == 1

    with pytest.raises(InvalidState):
        await machine.cancel(checkout.public_id, "again")
    with pytest.raises(InvalidState):
        await machine.confirm(checkout.public_id, "order-late")


@pytest.mark.asyncio
async def test_confirm_after_reservation_lapsed_conflicts_and_stays_pending(seed, machine, clock):
    catalog = await seed(stocks=(10,))
    checkout, _ = await machine.start(catalog.creator_id, "ikey-lapse-0001", catalog.link_code, [CartItem(catalog.variant_ids[0], 1)])

    clock.advance(minutes=16)  # hold lapsed, session ttl not yet
    with pytest.raises(ReservationConflict):
        await machine.confirm(checkout.public_id, "order-too-late")

    current = await machine.get(checkout.public_id)
    assert current.status == CheckoutStatus.PENDING


@pytest.mark.asyncio
async def test_confirm_after_session_ttl_is_invalid(seed, machine, clock):
    catalog = await seed(stocks=(10,))
    checkout, _ = await machine.start(catalog.creator_id, "ikey-ttl-0001", catalog.link_code, [CartItem(catalog.variant_ids[0], 1)])

    clock.advance(minutes=30)
    with pytest.raises(InvalidState):
        await machine.confirm(checkout.public_id, "order-too-late")


@pytest.mark.asyncio
async def test_get_unknown_session_is_not_found(machine):
    with pytest.raises(NotFound):
        await machine.get(uuid7())


@pytest.mark.asyncio
async def test_cancel_after_session_ttl_is_invalid_and_left_to_the_reaper(seed, machine, session_factory, clock):
    catalog = await seed(stocks=(10,))
    checkout, _ = await machine.start(catalog.creator_id, "ikey-late-cancel-01", catalog.link_code, [CartItem(catalog.variant_ids[0], 1)])

    clock.advance(minutes=45)
    with pytest.raises(InvalidState):
        await machine.cancel(checkout.public_id, "changed my mind")

    current = await machine.get(checkout.public_id)
    assert current.status == CheckoutStatus.PENDING
    assert current.cancel_reason is None
    [held] = await reservations_of(session_factory, checkout.public_id)
    assert held.status == ReservationStatus.PENDING

    assert await machine.expire(checkout.public_id) is True
    [held] = await reservations_of(session_factory, checkout.public_id)
    assert held.status == ReservationStatus.EXPIRED
    assert held.release_reason == ReleaseReason.EXPIRED


@pytest.mark.asyncio
async def test_cart_line_outside_the_offer_is_rejected(seed, machine, session_factory):
    catalog = await seed(stocks=(5, 5), offer_variants=[0])

    with pytest.raises(InvalidOffer) as exc:
        await machine.start(
            catalog.creator_id, "ikey-scope-0001", catalog.link_code,
            [CartItem(catalog.variant_ids[0], 1), CartItem(catalog.variant_ids[1], 1)],
        )
    assert exc.value.details["variant_ids"] == [catalog.variant_ids[1]]

    assert await count_rows(session_factory, Reservation) == 0
    assert await count_rows(session_factory, CheckoutSession) == 0
    async with session_factory() as session:
        link = await session.get(ShortLink, catalog.link_id)
    assert link.click_count == 0

    checkout, created = await machine.start(
        catalog.creator_id, "ikey-scope-0002", catalog.link_code, [CartItem(catalog.variant_ids[0], 1)],
    )
    assert created
    assert checkout.total == 2399


@pytest.mark.asyncio
async def test_offer_without_products_is_not_found(seed, machine):
    catalog = await seed(stocks=(5,), offer_variants=[])

    with pytest.raises(NotFound):
        await machine.start(catalog.creator_id, "ikey-empty-offer-1", catalog.link_code, [CartItem(catalog.variant_ids[0], 1)])
