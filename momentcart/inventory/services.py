from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional
from uuid import UUID
from momentcart.common.errors import InsufficientInventory, InvalidOffer, InvalidState, NotFound, ReservationConflict
from momentcart.common.logging_setup import get_logger
from momentcart.common.utils import now
from momentcart.config.settings import config_settings
from momentcart.inventory import repository
from momentcart.schema.full_schema import ReleaseReason, Reservation, ReservationStatus, Variant

logger = get_logger("momentcart.inventory")


class InventoryReservationManager:
    """Sole writer of reservation rows.

    Every method runs inside the caller's transaction (`session`), so a failure
    further along the caller's unit of work rolls the reservation back with it.
    """

    def __init__(self, clock: Callable[[], datetime] = now, reservation_ttl: Optional[timedelta] = None):
        self.clock = clock
        self.reservation_ttl = reservation_ttl or timedelta(minutes=config_settings.RESERVATION_TTL_MINUTES)

    async def lock_variants(self, session, variant_ids: Iterable[int]) -> Dict[int, Variant]:
        return await repository.lock_variants(session, variant_ids)

    async def available_quantity(self, session, variant_id: int, at: Optional[datetime] = None) -> int:
        at = at or self.clock()
        variant = await repository.get_variant(session, variant_id)
        if variant is None:
            raise NotFound("variant", variant_id)
        reserved = await repository.reserved_quantity(session, variant_id, at)
        return max(0, variant.stock_qty - reserved)

    async def has_live_reservations(self, session, checkout_session_id: UUID, at: Optional[datetime] = None) -> bool:
        return await repository.has_live_reservations(session, checkout_session_id, at or self.clock())

    async def reserve(
        self,
        session,
        variant_id: int,
        quantity: int,
        checkout_session_id: UUID,
        ttl: Optional[timedelta] = None,
        at: Optional[datetime] = None,
    ) -> Reservation:
        if quantity <= 0:
            raise InvalidOffer("Quantity must be positive", {"variant_id": variant_id, "quantity": quantity})
        at = at or self.clock()
        ttl = ttl or self.reservation_ttl

        # the variant row lock serializes every reserve against this variant
        locked = await repository.lock_variants(session, [variant_id])
        variant = locked.get(variant_id)
        if variant is None:
            raise NotFound("variant", variant_id)

        lapsed = await repository.expire_lapsed_for_variant(session, variant_id, at)
        if lapsed:
            logger.info("reservation.expired_inline", extra={"variant_id": variant_id, "count": lapsed})

        reserved = await repository.reserved_quantity(session, variant_id)
        available = max(0, variant.stock_qty - reserved)
        if quantity > available:
            raise InsufficientInventory(variant_id, quantity, available)

        reservation = await repository.insert_reservation(session, Reservation(
            variant_id=variant_id,
            checkout_session_id=checkout_session_id,
            quantity=quantity,
            status=ReservationStatus.PENDING,
            expires_at=at + ttl,
            created_at=at,
        ))
        logger.debug(
            "reservation.created",
            extra={"variant_id": variant_id, "quantity": quantity, "available_after": available - quantity},
        )
        return reservation

    async def confirm(self, session, reservation_id: int, at: Optional[datetime] = None) -> Reservation:
        at = at or self.clock()
        confirmed_id = await repository.confirm_reservation(session, reservation_id, at)
        reservation = await repository.get_reservation(session, reservation_id)
        if reservation is None:
            raise NotFound("reservation", reservation_id)
        if confirmed_id is None:
            if reservation.status == ReservationStatus.PENDING:
                raise InvalidState("Reservation has expired", {"reservation_id": reservation_id})
            raise InvalidState(
                f"Reservation is {reservation.status.value}, expected pending",
                {"reservation_id": reservation_id},
            )
        return reservation

    async def confirm_for_checkout(self, session, checkout_session_id: UUID, at: Optional[datetime] = None) -> List[Reservation]:
        """Confirm every hold of one checkout or none of them.

        Already confirmed holds are left as they are. Raising rolls back whatever
        the caller's transaction already confirmed.
        """
        at = at or self.clock()
        reservations = await repository.reservations_for_checkout(session, checkout_session_id, lock=True)
        if not reservations:
            raise ReservationConflict("Checkout has no reservations to confirm")

        for r in reservations:
            if r.status == ReservationStatus.CONFIRMED:
                continue
            if r.status != ReservationStatus.PENDING or r.expires_at <= at:
                logger.warning(
                    "reservation.confirm_conflict",
                    extra={"reservation_id": r.id, "reservation_status": r.status.value},
                )
                raise ReservationConflict(
                    "A reservation for this checkout is no longer held",
                    {"reservation_id": str(r.public_id), "reservation_status": r.status.value},
                )
            r.status = ReservationStatus.CONFIRMED
            r.confirmed_at = at

        await session.flush()
        return reservations

    async def release(
        self,
        session,
        reservation_id: int,
        reason: ReleaseReason,
        at: Optional[datetime] = None,
    ) -> Reservation:
        """Free a hold. Releasing an already released or expired hold is a no-op."""
        at = at or self.clock()
        released_id = await repository.release_reservation(session, reservation_id, reason, at)
        reservation = await repository.get_reservation(session, reservation_id)
        if reservation is None:
            raise NotFound("reservation", reservation_id)
        if released_id is not None:
            logger.debug("reservation.released", extra={"reservation_id": reservation_id, "reason": reason.value})
        return reservation

    async def expire(self, session, reservation_id: int, at: Optional[datetime] = None) -> bool:
        """Expire a pending hold; False when it was no longer pending."""
        at = at or self.clock()
        expired_id = await repository.release_reservation(session, reservation_id, ReleaseReason.EXPIRED, at)
        return expired_id is not None

    async def release_for_checkout(
        self,
        session,
        checkout_session_id: UUID,
        reason: ReleaseReason,
        at: Optional[datetime] = None,
    ) -> List[Reservation]:
        at = at or self.clock()
        reservations = await repository.reservations_for_checkout(session, checkout_session_id, lock=True)
        released = []
        for r in reservations:
            released.append(await self.release(session, r.id, reason, at))
        return released
