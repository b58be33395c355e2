import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional
from momentcart.checkout import repository as checkout_repository
from momentcart.checkout.services import CheckoutSessionStateMachine
from momentcart.common.logging_setup import get_logger
from momentcart.common.utils import now
from momentcart.inventory import repository as inventory_repository

logger = get_logger("momentcart.reaper")

DEFAULT_BATCH = 100
DEFAULT_POLL_SECONDS = 30.0


@dataclass
class SweepResult:
    reservations_expired: int = 0
    sessions_expired: int = 0
    failures: int = 0

    @property
    def touched(self) -> int:
        return self.reservations_expired + self.sessions_expired


class ReservationReaper:
    """Periodic sweep that expires lapsed holds and the sessions left without stock.

    Each item is handled in its own transaction so one bad row cannot stall the
    batch; confirm and reserve re-check expiry themselves, so sweep frequency only
    affects how long stale holds linger.
    """

    def __init__(
        self,
        session_factory: Callable[[], Any],
        state_machine: CheckoutSessionStateMachine,
        *,
        batch_size: int = DEFAULT_BATCH,
        poll_interval: float = DEFAULT_POLL_SECONDS,
        clock: Callable[[], datetime] = now,
    ):
        self.session_factory = session_factory
        self.state_machine = state_machine
        self.inventory = state_machine.inventory
        self.batch_size = batch_size
        self.poll_interval = poll_interval
        self.clock = clock
        self._stop = asyncio.Event()

    def stop(self):
        self._stop.set()

    async def run(self):
        logger.info("reaper.starting", extra={"poll_interval": self.poll_interval, "batch_size": self.batch_size})
        while not self._stop.is_set():
            try:
                result = await self.sweep_once()
                if result.touched or result.failures:
                    logger.info(
                        "reaper.sweep_done",
                        extra={
                            "reservations_expired": result.reservations_expired,
                            "sessions_expired": result.sessions_expired,
                            "failures": result.failures,
                        },
                    )
            except Exception:
                logger.exception("reaper.sweep_failed")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("reaper.stopped")

    async def sweep_once(self, at: Optional[datetime] = None) -> SweepResult:
        at = at or self.clock()
        result = SweepResult()

        async with self.session_factory() as session:
            reservation_ids = await inventory_repository.lapsed_reservation_ids(session, at, self.batch_size)

        for reservation_id in reservation_ids:
            try:
                await self._expire_reservation(reservation_id, at, result)
            except Exception:
                result.failures += 1
                logger.exception("reaper.reservation_failed", extra={"reservation_id": reservation_id})

        async with self.session_factory() as session:
            checkout_ids = await checkout_repository.expirable_session_ids(session, at, self.batch_size)

        for checkout_id in checkout_ids:
            try:
                async with self.session_factory() as session:
                    async with session.begin():
                        expired = await self.state_machine.expire_in(session, checkout_id, at)
                if expired:
                    result.sessions_expired += 1
            except Exception:
                result.failures += 1
                logger.exception("reaper.session_failed", extra={"checkout_id": str(checkout_id)})

        return result

    async def _expire_reservation(self, reservation_id: int, at: datetime, result: SweepResult) -> None:
        session_expired = False
        async with self.session_factory() as session:
            async with session.begin():
                # unlocked read; the session row is locked before any reservation row,
                # the same order confirm and cancel use
                reservation = await inventory_repository.get_reservation(session, reservation_id)
                if reservation is None:
                    return
                checkout_id = reservation.checkout_session_id
                await checkout_repository.get_by_public_id(session, checkout_id, lock=True)

                if not await self.inventory.expire(session, reservation_id, at):
                    return
                session_expired = await self.state_machine.expire_in(session, checkout_id, at)

        result.reservations_expired += 1
        if session_expired:
            result.sessions_expired += 1
