from fastapi import Depends, Header
from momentcart.common.dependencies import get_clock
from momentcart.db.dependencies import get_session_factory
from momentcart.links.services import AttributionResolver, ShortLinkService


async def get_resolver(session_factory=Depends(get_session_factory), clock=Depends(get_clock)) -> AttributionResolver:
    return AttributionResolver(session_factory, clock=clock)


async def get_link_service(session_factory=Depends(get_session_factory), clock=Depends(get_clock)) -> ShortLinkService:
    return ShortLinkService(session_factory, clock=clock)


async def get_creator_id(x_creator_id: str = Header(alias="X-Creator-Id", min_length=1, max_length=64)) -> str:
    # creator auth lives in front of this service; it forwards the verified id
    return x_creator_id
