from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Tuple
from uuid import UUID
from uuid6 import uuid7
from sqlalchemy.exc import IntegrityError
from momentcart.checkout import repository
from momentcart.checkout.utils import build_external_checkout_url, idempotency_lock_key, merge_cart_items
from momentcart.common.errors import InvalidOffer, InvalidState, KeyConflict, NotFound
from momentcart.common.logging_setup import get_logger
from momentcart.common.retries import retry_with_db_circuit
from momentcart.common.utils import isoformat, now
from momentcart.config.settings import config_settings
from momentcart.db.utils import acquire_xact_lock
from momentcart.inventory.services import InventoryReservationManager
from momentcart.links.services import AttributionResolver
from momentcart.pricing.services import CartLine, PricingCalculator
from momentcart.schema.full_schema import CheckoutSession, CheckoutStatus, ReleaseReason

logger = get_logger("momentcart.checkout")

SessionBuilder = Callable[[Any], Awaitable[CheckoutSession]]


@dataclass(frozen=True)
class CartItem:
    variant_id: int
    quantity: int


class IdempotencyGuard:
    """Collapses repeated checkout starts with the same key onto one session.

    The existence check and the insert share one transaction guarded by a
    per-key advisory lock; the unique index on the key backs it up.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def get_or_create(self, creator_id: str, idempotency_key: str, builder: SessionBuilder) -> Tuple[CheckoutSession, bool]:
        try:
            return await self._get_or_create_once(creator_id, idempotency_key, builder)
        except IntegrityError:
            # another request committed the same key first; its session wins
            async with self.session_factory() as session:
                existing = await repository.get_by_idempotency_key(session, idempotency_key)
            if existing is None:
                raise
            logger.info("checkout.idempotency_race_lost", extra={"idempotency_key": idempotency_key})
            self._ensure_owner(existing, creator_id)
            return existing, False

    async def _get_or_create_once(self, creator_id: str, idempotency_key: str, builder: SessionBuilder):
        async with self.session_factory() as session:
            async with session.begin():
                await acquire_xact_lock(session, idempotency_lock_key(idempotency_key))

                existing = await repository.get_by_idempotency_key(session, idempotency_key)
                if existing is not None:
                    self._ensure_owner(existing, creator_id)
                    return existing, False

                checkout = await builder(session)
                session.add(checkout)
                await session.flush()
                return checkout, True

    @staticmethod
    def _ensure_owner(existing: CheckoutSession, creator_id: str) -> None:
        if existing.creator_id != creator_id:
            raise KeyConflict()


class CheckoutSessionStateMachine:
    """Drives a checkout session through pending -> confirmed | cancelled | expired."""

    def __init__(
        self,
        session_factory,
        *,
        clock: Callable[[], datetime] = now,
        session_ttl: Optional[timedelta] = None,
        reservation_ttl: Optional[timedelta] = None,
        resolver: Optional[AttributionResolver] = None,
        pricing: Optional[PricingCalculator] = None,
        inventory: Optional[InventoryReservationManager] = None,
        idempotency: Optional[IdempotencyGuard] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.session_ttl = session_ttl or timedelta(minutes=config_settings.CHECKOUT_SESSION_TTL_MINUTES)
        self.resolver = resolver or AttributionResolver(session_factory, clock=clock)
        self.pricing = pricing or PricingCalculator(clock=clock)
        self.inventory = inventory or InventoryReservationManager(clock=clock, reservation_ttl=reservation_ttl)
        self.idempotency = idempotency or IdempotencyGuard(session_factory)

    @retry_with_db_circuit()
    async def start(
        self,
        creator_id: str,
        idempotency_key: str,
        short_link_code: str,
        cart_items: Sequence[CartItem],
        *,
        visitor_id: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Tuple[CheckoutSession, bool]:
        at = self.clock()

        async def build(session) -> CheckoutSession:
            return await self._build_session(
                session, creator_id, idempotency_key, short_link_code, cart_items, at,
                visitor_id=visitor_id, user_agent=user_agent, ip_address=ip_address,
            )

        checkout, created = await self.idempotency.get_or_create(creator_id, idempotency_key, build)
        if created:
            logger.info(
                "checkout.started",
                extra={"checkout_id": str(checkout.public_id), "total": checkout.total, "currency": checkout.currency},
            )
        else:
            logger.info("checkout.replayed", extra={"checkout_id": str(checkout.public_id)})
        return checkout, created

    async def _build_session(
        self,
        session,
        creator_id: str,
        idempotency_key: str,
        short_link_code: str,
        cart_items: Sequence[CartItem],
        at: datetime,
        **visitor: Optional[str],
    ) -> CheckoutSession:
        resolved = await self.resolver.resolve_in(session, short_link_code, at)
        if resolved.short_link.creator_id != creator_id:
            raise NotFound("short_link", short_link_code)

        merged = merge_cart_items((item.variant_id, item.quantity) for item in cart_items)
        if not merged:
            raise InvalidOffer("Cart is empty")

        offer_variant_ids = await repository.get_offer_variant_ids(session, resolved.offer.id)
        if not offer_variant_ids:
            raise NotFound("offer_products", resolved.offer.public_id)
        outside = [variant_id for variant_id in merged if variant_id not in offer_variant_ids]
        if outside:
            raise InvalidOffer("Cart items are not part of this offer", {"variant_ids": outside})

        variants = await self.inventory.lock_variants(session, merged.keys())
        for variant_id in merged:
            if variant_id not in variants:
                raise NotFound("variant", variant_id)

        connection_ids = {v.connection_id for v in variants.values()}
        if len(connection_ids) != 1:
            raise InvalidOffer("Cart items must come from a single storefront")
        connection = await repository.get_connection(session, connection_ids.pop())
        if connection is None or connection.creator_id != creator_id:
            raise NotFound("commerce_connection", None)

        lines = [
            CartLine(
                variant_id=variant_id,
                quantity=quantity,
                unit_price=variants[variant_id].unit_price,
                currency=variants[variant_id].currency,
                external_variant_id=variants[variant_id].external_id,
                title=variants[variant_id].title,
            )
            for variant_id, quantity in merged.items()
        ]
        priced = self.pricing.price(resolved.offer, lines, at)

        public_id = uuid7()
        # merged is sorted by variant id, the same order the row locks were taken in
        for variant_id, quantity in merged.items():
            await self.inventory.reserve(session, variant_id, quantity, public_id, at=at)

        return CheckoutSession(
            public_id=public_id,
            creator_id=creator_id,
            idempotency_key=idempotency_key,
            short_link_id=resolved.short_link.id,
            attribution_context_id=resolved.attribution_context.id,
            offer_id=resolved.offer.id,
            connection_id=connection.id,
            status=CheckoutStatus.PENDING,
            line_items=[line.to_dict() for line in priced.lines],
            subtotal=priced.subtotal,
            discount=priced.discount,
            total=priced.total,
            currency=priced.currency,
            expires_at=at + self.session_ttl,
            external_checkout_url=build_external_checkout_url(connection.shop_domain, priced.lines, public_id),
            created_at=at,
            updated_at=at,
            **visitor,
        )

    @retry_with_db_circuit()
    async def get(self, checkout_id: UUID) -> CheckoutSession:
        async with self.session_factory() as session:
            checkout = await repository.get_by_public_id(session, checkout_id)
        if checkout is None:
            raise NotFound("checkout_session", checkout_id)
        return checkout

    @retry_with_db_circuit()
    async def confirm(self, checkout_id: UUID, external_order_ref: str) -> CheckoutSession:
        at = self.clock()
        async with self.session_factory() as session:
            async with session.begin():
                checkout = await repository.get_by_public_id(session, checkout_id, lock=True)
                if checkout is None:
                    raise NotFound("checkout_session", checkout_id)

                if checkout.status == CheckoutStatus.CONFIRMED:
                    logger.info("checkout.confirm_replayed", extra={"checkout_id": str(checkout_id)})
                    return checkout
                if checkout.status != CheckoutStatus.PENDING:
                    raise InvalidState(f"Checkout session is {checkout.status.value}", {"checkout_id": str(checkout_id)})
                if checkout.expires_at <= at:
                    raise InvalidState("Checkout session has expired", {"checkout_id": str(checkout_id)})

                await self.inventory.confirm_for_checkout(session, checkout.public_id, at)

                checkout.status = CheckoutStatus.CONFIRMED
                checkout.external_order_ref = external_order_ref
                checkout.confirmed_at = at
                checkout.updated_at = at
                await session.flush()

        logger.info("checkout.confirmed", extra={"checkout_id": str(checkout_id)})
        return checkout

    @retry_with_db_circuit()
    async def cancel(self, checkout_id: UUID, reason: Optional[str] = None) -> CheckoutSession:
        at = self.clock()
        async with self.session_factory() as session:
            async with session.begin():
                checkout = await repository.get_by_public_id(session, checkout_id, lock=True)
                if checkout is None:
                    raise NotFound("checkout_session", checkout_id)
                if checkout.status != CheckoutStatus.PENDING:
                    raise InvalidState(f"Checkout session is {checkout.status.value}", {"checkout_id": str(checkout_id)})
                # past its TTL the session belongs to the reaper
                if checkout.expires_at <= at:
                    raise InvalidState("Checkout session has expired", {"checkout_id": str(checkout_id)})

                await self.inventory.release_for_checkout(session, checkout.public_id, ReleaseReason.CANCELLED, at)

                checkout.status = CheckoutStatus.CANCELLED
                checkout.cancelled_at = at
                checkout.cancel_reason = reason
                checkout.updated_at = at
                await session.flush()

        logger.info("checkout.cancelled", extra={"checkout_id": str(checkout_id), "reason": reason})
        return checkout

    async def expire_in(self, session, checkout_id: UUID, at: datetime) -> bool:
        """Expire a pending session whose TTL passed or whose holds are all gone.

        Runs in the caller's transaction. Returns False when the session is not
        expirable (already terminal, or still holding live stock within its TTL).
        """
        checkout = await repository.get_by_public_id(session, checkout_id, lock=True)
        if checkout is None or checkout.status != CheckoutStatus.PENDING:
            return False
        if checkout.expires_at > at and await self.inventory.has_live_reservations(session, checkout_id, at):
            return False

        await self.inventory.release_for_checkout(session, checkout_id, ReleaseReason.EXPIRED, at)
        checkout.status = CheckoutStatus.EXPIRED
        checkout.expired_at = at
        checkout.updated_at = at
        await session.flush()
        return True

    @retry_with_db_circuit()
    async def expire(self, checkout_id: UUID, at: Optional[datetime] = None) -> bool:
        at = at or self.clock()
        async with self.session_factory() as session:
            async with session.begin():
                expired = await self.expire_in(session, checkout_id, at)
        if expired:
            logger.info("checkout.expired", extra={"checkout_id": str(checkout_id)})
        return expired


def checkout_to_dict(checkout: CheckoutSession) -> Dict[str, Any]:
    return {
        "id": str(checkout.public_id),
        "creator_id": checkout.creator_id,
        "status": checkout.status.value,
        "line_items": checkout.line_items,
        "subtotal": checkout.subtotal,
        "discount": checkout.discount,
        "total": checkout.total,
        "currency": checkout.currency,
        "expires_at": isoformat(checkout.expires_at),
        "external_checkout_url": checkout.external_checkout_url,
        "external_order_ref": checkout.external_order_ref,
        "confirmed_at": isoformat(checkout.confirmed_at),
        "cancelled_at": isoformat(checkout.cancelled_at),
        "cancel_reason": checkout.cancel_reason,
        "expired_at": isoformat(checkout.expired_at),
        "created_at": isoformat(checkout.created_at),
    }
