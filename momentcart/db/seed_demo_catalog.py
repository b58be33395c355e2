# seed_demo_catalog.py
import asyncio
from dotenv import load_dotenv

load_dotenv()

from sqlmodel import SQLModel
from momentcart.common.logging_setup import get_logger, setup_logging, stop_logging
from momentcart.common.utils import now
from momentcart.db.connection import async_engine, async_session
from momentcart.links.services import ShortLinkService
from momentcart.schema.full_schema import (
    CommerceConnection, Offer, OfferProduct, OfferStatus, OfferType, SurfaceType, Variant,
)

logger = get_logger("momentcart.seed")

DEMO_CREATOR_ID = "creator_demo"

VARIANTS = [
    # external id, sku, title, price (cents), stock
    ("44012345678901", "TEE-BLU-M", "Fly High Tee - Blue / M", 2999, 10),
    ("44012345678902", "TEE-BLU-L", "Fly High Tee - Blue / L", 2999, 4),
    ("44012345678903", "HOOD-FOR-M", "Mystical Forest Hoodie / M", 5499, 1),
]


async def main(create_tables: bool = True):
    setup_logging()

    if create_tables:
        async with async_engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async with async_session() as session:
        async with session.begin():
            connection = CommerceConnection(creator_id=DEMO_CREATOR_ID, platform="shopify", shop_domain="demo-shop")
            session.add(connection)
            await session.flush()

            synced_at = now()
            variants = [
                Variant(
                    connection_id=connection.id,
                    external_id=ext_id,
                    sku=sku,
                    title=title,
                    unit_price=price,
                    currency="USD",
                    stock_qty=stock,
                    stock_synced_at=synced_at,
                )
                for ext_id, sku, title, price, stock in VARIANTS
            ]
            session.add_all(variants)

            offer = Offer(
                creator_id=DEMO_CREATOR_ID,
                name="Live drop: 20% off",
                offer_type=OfferType.PERCENTAGE_OFF,
                value=20,
                status=OfferStatus.ACTIVE,
            )
            session.add(offer)
            await session.flush()
            session.add_all([OfferProduct(offer_id=offer.id, variant_id=v.id) for v in variants])
            offer_public_id = offer.public_id

    link = await ShortLinkService(async_session).create(
        DEMO_CREATOR_ID,
        offer_public_id,
        SurfaceType.LIVE,
        name="Friday live stream",
        attribution={"platform": "youtube", "campaign": "friday-drop"},
    )
    logger.info("seed.done", extra={"link_code": link.short_link.code, "variants": len(VARIANTS)})

    await async_engine.dispose()
    stop_logging()


if __name__ == "__main__":
    asyncio.run(main())
