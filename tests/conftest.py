import os

os.environ.setdefault("ENV", "dev")
os.environ.setdefault("ENABLE_REAPER", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.pytest-momentcart.db")

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from sqlmodel import SQLModel

from momentcart.checkout.services import CheckoutSessionStateMachine
from momentcart.common.dependencies import get_clock
from momentcart.db.connection import build_engine, build_session_factory
from momentcart.db.dependencies import get_session, get_session_factory
from momentcart.main import app
from momentcart.schema.full_schema import (
    AttributionContext, CommerceConnection, Offer, OfferProduct, OfferStatus, OfferType, ShortLink, SurfaceType, Variant,
)

url_prefix = "/api/v1"

CREATOR_ID = "creator_1"
START_AT = datetime(2026, 3, 6, 18, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta) -> datetime:
        self.current = self.current + timedelta(**delta)
        return self.current


@dataclass
class Catalog:
    creator_id: str
    connection_id: int
    variant_ids: List[int]
    offer: Offer
    link_code: str
    link_id: int
    extra: dict = field(default_factory=dict)


@pytest.fixture
def clock():
    return FakeClock(START_AT)


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'momentcart.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def machine(session_factory, clock):
    return CheckoutSessionStateMachine(session_factory, clock=clock)


@pytest.fixture
def seed(session_factory):
    """Factory that writes a storefront, variants, one offer and one short link."""

    async def _seed(
        stocks=(10,),
        unit_price: int = 2999,
        currency: str = "USD",
        offer_type: OfferType = OfferType.PERCENTAGE_OFF,
        offer_value: int = 20,
        offer_status: OfferStatus = OfferStatus.ACTIVE,
        max_clicks: Optional[int] = None,
        link_expires_at: Optional[datetime] = None,
        creator_id: str = CREATOR_ID,
        code: str = "live0001",
        offer_variants: Optional[Sequence[int]] = None,
    ) -> Catalog:
        async with session_factory() as session:
            async with session.begin():
                connection = CommerceConnection(creator_id=creator_id, shop_domain="test-shop")
                session.add(connection)
                await session.flush()

                variants = [
                    Variant(
                        connection_id=connection.id,
                        external_id=f"4400{i}",
                        title=f"Tee {i}",
                        unit_price=unit_price,
                        currency=currency,
                        stock_qty=stock,
                    )
                    for i, stock in enumerate(stocks)
                ]
                session.add_all(variants)

                offer = Offer(
                    creator_id=creator_id,
                    name="Live drop",
                    offer_type=offer_type,
                    value=offer_value,
                    status=offer_status,
                )
                ctx = AttributionContext(
                    creator_id=creator_id,
                    surface=SurfaceType.LIVE,
                    platform="youtube",
                    stream_id="stream_1",
                    moment_id="moment_7",
                    campaign="friday-drop",
                )
                session.add_all([offer, ctx])
                await session.flush()

                # indexes into `stocks`; every seeded variant by default
                in_offer = range(len(variants)) if offer_variants is None else offer_variants
                session.add_all([OfferProduct(offer_id=offer.id, variant_id=variants[i].id) for i in in_offer])

                link = ShortLink(
                    code=code,
                    creator_id=creator_id,
                    offer_id=offer.id,
                    attribution_context_id=ctx.id,
                    max_clicks=max_clicks,
                    expires_at=link_expires_at,
                )
                session.add(link)
                await session.flush()

                return Catalog(
                    creator_id=creator_id,
                    connection_id=connection.id,
                    variant_ids=[v.id for v in variants],
                    offer=offer,
                    link_code=link.code,
                    link_id=link.id,
                )

    return _seed


@pytest.fixture
async def ac_client(session_factory, clock):

    async def _get_session():
        async with session_factory() as session:
            yield session

    async def _get_session_factory():
        yield session_factory

    async def _get_clock():
        return clock

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_session_factory] = _get_session_factory
    app.dependency_overrides[get_clock] = _get_clock

    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac

    app.dependency_overrides.clear()
