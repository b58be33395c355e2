from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import UUID
from sqlalchemy import and_, func, or_, select, update
from momentcart.schema.full_schema import ReleaseReason, Reservation, ReservationStatus, Variant


def _live_condition(at: Optional[datetime]):
    # pending holds count until they lapse; confirmed holds always count
    if at is None:
        return Reservation.status.in_((ReservationStatus.PENDING, ReservationStatus.CONFIRMED))
    return or_(
        Reservation.status == ReservationStatus.CONFIRMED,
        and_(Reservation.status == ReservationStatus.PENDING, Reservation.expires_at > at),
    )


async def lock_variants(session, variant_ids: Iterable[int]) -> Dict[int, Variant]:
    """Row-lock variants in id order so concurrent checkouts cannot deadlock."""
    ids = sorted(set(variant_ids))
    if not ids:
        return {}
    stmt = (
        select(Variant)
        .where(Variant.id.in_(ids))
        .order_by(Variant.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    res = await session.execute(stmt)
    return {v.id: v for v in res.scalars().all()}


async def get_variant(session, variant_id: int) -> Optional[Variant]:
    return await session.get(Variant, variant_id)


async def expire_lapsed_for_variant(session, variant_id: int, at: datetime) -> int:
    stmt = (
        update(Reservation)
        .where(
            Reservation.variant_id == variant_id,
            Reservation.status == ReservationStatus.PENDING,
            Reservation.expires_at <= at,
        )
        .values(status=ReservationStatus.EXPIRED, release_reason=ReleaseReason.EXPIRED, released_at=at)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount or 0


async def reserved_quantity(session, variant_id: int, at: Optional[datetime] = None) -> int:
    stmt = (
        select(func.coalesce(func.sum(Reservation.quantity), 0))
        .where(Reservation.variant_id == variant_id, _live_condition(at))
    )
    res = await session.execute(stmt)
    return int(res.scalar_one())


async def insert_reservation(session, reservation: Reservation) -> Reservation:
    session.add(reservation)
    await session.flush()
    return reservation


async def get_reservation(session, reservation_id: int) -> Optional[Reservation]:
    return await session.get(Reservation, reservation_id, populate_existing=True)


async def confirm_reservation(session, reservation_id: int, at: datetime) -> Optional[int]:
    stmt = (
        update(Reservation)
        .where(
            Reservation.id == reservation_id,
            Reservation.status == ReservationStatus.PENDING,
            Reservation.expires_at > at,
        )
        .values(status=ReservationStatus.CONFIRMED, confirmed_at=at)
        .returning(Reservation.id)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def release_reservation(session, reservation_id: int, reason: ReleaseReason, at: datetime) -> Optional[int]:
    if reason == ReleaseReason.EXPIRED:
        # a confirmed hold never expires
        cond = Reservation.status == ReservationStatus.PENDING
        new_status = ReservationStatus.EXPIRED
    else:
        cond = Reservation.status.in_((ReservationStatus.PENDING, ReservationStatus.CONFIRMED))
        new_status = ReservationStatus.RELEASED

    stmt = (
        update(Reservation)
        .where(Reservation.id == reservation_id, cond)
        .values(status=new_status, release_reason=reason, released_at=at)
        .returning(Reservation.id)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def reservations_for_checkout(session, checkout_session_id: UUID, lock: bool = False) -> List[Reservation]:
    stmt = (
        select(Reservation)
        .where(Reservation.checkout_session_id == checkout_session_id)
        .order_by(Reservation.id)
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update()
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def lapsed_reservation_ids(session, at: datetime, limit: int) -> List[int]:
    stmt = (
        select(Reservation.id)
        .where(Reservation.status == ReservationStatus.PENDING, Reservation.expires_at <= at)
        .order_by(Reservation.expires_at)
        .limit(limit)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def has_live_reservations(session, checkout_session_id: UUID, at: datetime) -> bool:
    stmt = (
        select(Reservation.id)
        .where(Reservation.checkout_session_id == checkout_session_id, _live_condition(at))
        .limit(1)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none() is not None
