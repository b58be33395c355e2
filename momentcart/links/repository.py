from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID
from sqlalchemy import or_, select, update
from momentcart.db.utils import insert_for
from momentcart.schema.full_schema import AttributionContext, Offer, ShortLink


async def claim_click(session, code: str, at: datetime) -> Optional[int]:
    """Count one click if the link is still usable at `at`; returns the link id.

    Availability check and increment are one conditional UPDATE, so concurrent
    clicks near the cap cannot both pass.
    """
    stmt = (
        update(ShortLink)
        .where(
            ShortLink.code == code,
            ShortLink.is_revoked.is_(False),
            or_(ShortLink.expires_at.is_(None), ShortLink.expires_at > at),
            or_(ShortLink.max_clicks.is_(None), ShortLink.click_count < ShortLink.max_clicks),
        )
        .values(click_count=ShortLink.click_count + 1, last_clicked_at=at)
        .returning(ShortLink.id)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_short_link_by_code(session, code: str) -> Optional[ShortLink]:
    res = await session.execute(select(ShortLink).where(ShortLink.code == code))
    return res.scalar_one_or_none()


async def get_short_link(session, link_id: int) -> Optional[ShortLink]:
    # reload after a bulk UPDATE so the identity map sees the new click count
    return await session.get(ShortLink, link_id, populate_existing=True)


async def get_offer(session, offer_id: int) -> Optional[Offer]:
    return await session.get(Offer, offer_id)


async def get_offer_for_creator(session, offer_public_id: UUID, creator_id: str) -> Optional[Offer]:
    stmt = select(Offer).where(Offer.public_id == offer_public_id, Offer.creator_id == creator_id)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_attribution_context(session, ctx_id: int) -> Optional[AttributionContext]:
    return await session.get(AttributionContext, ctx_id)


async def insert_attribution_context(session, values: Dict[str, Any]) -> AttributionContext:
    ctx = AttributionContext(**values)
    session.add(ctx)
    await session.flush()
    return ctx


async def insert_short_link(session, values: Dict[str, Any]) -> Optional[int]:
    """Insert a link; returns None when the code is already taken."""
    # keyed by mapped attribute: `meta` lives in the "metadata" column
    stmt = (
        insert_for(session, ShortLink)
        .values({getattr(ShortLink, key): value for key, value in values.items()})
        .on_conflict_do_nothing(index_elements=["code"])
        .returning(ShortLink.id)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def revoke_short_link(session, code: str, creator_id: str, at: datetime) -> Optional[int]:
    stmt = (
        update(ShortLink)
        .where(ShortLink.code == code, ShortLink.creator_id == creator_id)
        .values(is_revoked=True, revoked_at=at)
        .returning(ShortLink.id)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()
