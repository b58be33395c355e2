from fastapi import APIRouter, Depends, status
from momentcart.common.constants import request_id_ctx
from momentcart.common.utils import success_response
from momentcart.config.settings import config_settings
from momentcart.links.dependencies import get_creator_id, get_link_service, get_resolver
from momentcart.links.models import CreateLinkInput
from momentcart.links.services import AttributionResolver, ShortLinkService

links_router = APIRouter()


@links_router.get("/go/{code}")
async def resolve_short_link(code: str, resolver: AttributionResolver = Depends(get_resolver)):
    # preview only; the click is counted when checkout starts
    resolved = await resolver.preview(code)
    return success_response(resolved.to_dict(), request_id=request_id_ctx.get())


@links_router.post("/links")
async def create_short_link(
    body: CreateLinkInput,
    creator_id: str = Depends(get_creator_id),
    links: ShortLinkService = Depends(get_link_service),
):
    created = await links.create(
        creator_id,
        body.offer_id,
        body.surface,
        name=body.name,
        expires_at=body.expires_at,
        max_clicks=body.max_clicks,
        attribution=body.attribution_values(),
    )
    data = created.to_dict()
    data["url"] = f"{config_settings.PUBLIC_BASE_URL}/go/{created.short_link.code}"
    return success_response(data, status_code=status.HTTP_201_CREATED, request_id=request_id_ctx.get())


@links_router.delete("/links/{code}")
async def revoke_short_link(
    code: str,
    creator_id: str = Depends(get_creator_id),
    links: ShortLinkService = Depends(get_link_service),
):
    await links.revoke(creator_id, code)
    return success_response({"code": code, "revoked": True}, request_id=request_id_ctx.get())
