from datetime import datetime
from typing import List, Optional, Set
from uuid import UUID
from sqlalchemy import and_, exists, or_, select
from momentcart.schema.full_schema import (
    CheckoutSession, CheckoutStatus, CommerceConnection, OfferProduct, Reservation, ReservationStatus,
)


async def get_by_idempotency_key(session, idempotency_key: str) -> Optional[CheckoutSession]:
    stmt = select(CheckoutSession).where(CheckoutSession.idempotency_key == idempotency_key)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_by_public_id(session, public_id: UUID, lock: bool = False) -> Optional[CheckoutSession]:
    stmt = (
        select(CheckoutSession)
        .where(CheckoutSession.public_id == public_id)
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update()
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_connection(session, connection_id: int) -> Optional[CommerceConnection]:
    return await session.get(CommerceConnection, connection_id)


async def expirable_session_ids(session, at: datetime, limit: int) -> List[UUID]:
    """Pending sessions past their own TTL, or left without any live hold."""
    live_hold = exists().where(
        Reservation.checkout_session_id == CheckoutSession.public_id,
        or_(
            Reservation.status == ReservationStatus.CONFIRMED,
            and_(Reservation.status == ReservationStatus.PENDING, Reservation.expires_at > at),
        ),
    )
    stmt = (
        select(CheckoutSession.public_id)
        .where(
            CheckoutSession.status == CheckoutStatus.PENDING,
            or_(CheckoutSession.expires_at <= at, ~live_hold),
        )
        .order_by(CheckoutSession.expires_at)
        .limit(limit)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def get_offer_variant_ids(session, offer_id: int) -> Set[int]:
    res = await session.execute(select(OfferProduct.variant_id).where(OfferProduct.offer_id == offer_id))
    return set(res.scalars().all())
