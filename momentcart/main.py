import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI
from momentcart.api import cur_version
from momentcart.api.routers import public_routers
from momentcart.background_workers.reservation_reaper import ReservationReaper
from momentcart.checkout.services import CheckoutSessionStateMachine
from momentcart.common import logger
from momentcart.common.custom_exceptions import register_all_exceptions
from momentcart.common.logging_setup import setup_logging, stop_logging
from momentcart.config.settings import config_settings
from momentcart.db.connection import async_engine, async_session
from momentcart.middlewares.request_id_middleware import RequestIdMiddleware

REAPER_SHUTDOWN_TIMEOUT = 10.0


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    setup_logging()

    reaper = None
    reaper_task = None
    if config_settings.ENABLE_REAPER:
        reaper = ReservationReaper(
            async_session,
            CheckoutSessionStateMachine(async_session),
            batch_size=config_settings.REAPER_BATCH_SIZE,
            poll_interval=config_settings.REAPER_INTERVAL_SECONDS,
        )
        reaper_task = asyncio.create_task(reaper.run(), name="reservation-reaper")
    app.state.reaper = reaper

    try:
        yield
    finally:
        # new requests are no longer accepted at this point
        if reaper is not None:
            reaper.stop()
            try:
                await asyncio.wait_for(reaper_task, timeout=REAPER_SHUTDOWN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("reaper.shutdown_timeout")
                reaper_task.cancel()
        # safe to dispose DB engine after workers exit
        await async_engine.dispose()
        stop_logging()


def create_app():
    app = FastAPI(
        title="MomentCart",
        version=cur_version,
        lifespan=app_lifespan)

    app.include_router(public_routers)

    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    return app


app = create_app()
