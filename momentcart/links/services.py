import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from uuid import UUID
from momentcart.common.errors import LinkUnavailable, NotFound
from momentcart.common.logging_setup import get_logger
from momentcart.common.retries import retry_with_db_circuit
from momentcart.common.utils import isoformat, now
from momentcart.links import repository
from momentcart.schema.full_schema import AttributionContext, Offer, ShortLink, SurfaceType

logger = get_logger("momentcart.links")

SHORT_CODE_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
SHORT_CODE_LENGTH = 8
CODE_GENERATION_ATTEMPTS = 5


def generate_short_code() -> str:
    return "".join(secrets.choice(SHORT_CODE_ALPHABET) for _ in range(SHORT_CODE_LENGTH))


def unavailable_reason(link: ShortLink, at: datetime) -> Optional[str]:
    if link.is_revoked:
        return "revoked"
    if link.expires_at is not None and link.expires_at <= at:
        return "expired"
    if link.max_clicks is not None and link.click_count >= link.max_clicks:
        return "exhausted"
    return None


@dataclass
class ResolvedLink:
    short_link: ShortLink
    offer: Offer
    attribution_context: AttributionContext

    def to_dict(self) -> Dict[str, Any]:
        link, offer, ctx = self.short_link, self.offer, self.attribution_context
        return {
            "short_link": {
                "code": link.code,
                "name": link.name,
                "click_count": link.click_count,
                "max_clicks": link.max_clicks,
                "expires_at": isoformat(link.expires_at),
            },
            "offer": {
                "id": str(offer.public_id),
                "name": offer.name,
                "type": offer.offer_type.value,
                "value": offer.value,
                "status": offer.status.value,
            },
            "attribution_context": attribution_to_dict(ctx),
        }


def attribution_to_dict(ctx: AttributionContext) -> Dict[str, Any]:
    return {
        "id": str(ctx.public_id),
        "surface": ctx.surface.value,
        "platform": ctx.platform,
        "live_session_id": ctx.live_session_id,
        "stream_id": ctx.stream_id,
        "replay_id": ctx.replay_id,
        "moment_id": ctx.moment_id,
        "campaign": ctx.campaign,
        "source": ctx.source,
        "medium": ctx.medium,
        "metadata": ctx.meta,
    }


class AttributionResolver:
    """Turns a short-link code into the offer and attribution context behind it."""

    def __init__(self, session_factory, clock: Callable[[], datetime] = now):
        self.session_factory = session_factory
        self.clock = clock

    @retry_with_db_circuit()
    async def resolve(self, code: str) -> ResolvedLink:
        async with self.session_factory() as session:
            async with session.begin():
                return await self.resolve_in(session, code, self.clock())

    @retry_with_db_circuit()
    async def preview(self, code: str) -> ResolvedLink:
        """Look a link up without counting a click.

        The click is claimed once, when the shopper starts checkout through it.
        """
        async with self.session_factory() as session:
            link = await repository.get_short_link_by_code(session, code)
            if link is None:
                raise NotFound("short_link", code)
            reason = unavailable_reason(link, self.clock())
            if reason is not None:
                logger.info("link.unavailable", extra={"link_code": code, "reason": reason})
                raise LinkUnavailable(code, reason)
            return await self._load(session, link)

    async def resolve_in(self, session, code: str, at: datetime) -> ResolvedLink:
        """Resolve inside the caller's transaction; the click rolls back with it."""
        link_id = await repository.claim_click(session, code, at)

        if link_id is None:
            link = await repository.get_short_link_by_code(session, code)
            if link is None:
                raise NotFound("short_link", code)
            reason = unavailable_reason(link, at) or "exhausted"
            logger.info("link.unavailable", extra={"link_code": code, "reason": reason})
            raise LinkUnavailable(code, reason)

        link = await repository.get_short_link(session, link_id)
        logger.debug("link.resolved", extra={"link_code": code, "click_count": link.click_count})
        return await self._load(session, link)

    async def _load(self, session, link: ShortLink) -> ResolvedLink:
        offer = await repository.get_offer(session, link.offer_id)
        if offer is None:
            raise NotFound("offer", link.offer_id)
        ctx = await repository.get_attribution_context(session, link.attribution_context_id)
        if ctx is None:
            raise NotFound("attribution_context", link.attribution_context_id)
        return ResolvedLink(short_link=link, offer=offer, attribution_context=ctx)


class ShortLinkService:
    """Creator-side link management: issue and revoke links."""

    def __init__(self, session_factory, clock: Callable[[], datetime] = now):
        self.session_factory = session_factory
        self.clock = clock

    @retry_with_db_circuit()
    async def create(
        self,
        creator_id: str,
        offer_id: UUID,
        surface: SurfaceType,
        *,
        name: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        max_clicks: Optional[int] = None,
        attribution: Optional[Dict[str, Any]] = None,
    ) -> ResolvedLink:
        async with self.session_factory() as session:
            async with session.begin():
                offer = await repository.get_offer_for_creator(session, offer_id, creator_id)
                if offer is None:
                    raise NotFound("offer", offer_id)

                ctx = await repository.insert_attribution_context(session, {
                    "creator_id": creator_id,
                    "surface": surface,
                    **(attribution or {}),
                })

                link_id = None
                for _ in range(CODE_GENERATION_ATTEMPTS):
                    code = generate_short_code()
                    link_id = await repository.insert_short_link(session, {
                        "code": code,
                        "creator_id": creator_id,
                        "offer_id": offer.id,
                        "attribution_context_id": ctx.id,
                        "name": name,
                        "expires_at": expires_at,
                        "max_clicks": max_clicks,
                        "meta": {},
                    })
                    if link_id is not None:
                        break
                    logger.warning("link.code_collision", extra={"link_code": code})

                if link_id is None:
                    raise RuntimeError("could not allocate a unique short link code")

                link = await repository.get_short_link(session, link_id)

        logger.info("link.created", extra={"link_code": link.code, "surface": surface.value})
        return ResolvedLink(short_link=link, offer=offer, attribution_context=ctx)

    @retry_with_db_circuit()
    async def revoke(self, creator_id: str, code: str) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                link_id = await repository.revoke_short_link(session, code, creator_id, self.clock())
                if link_id is None:
                    raise NotFound("short_link", code)

        logger.info("link.revoked", extra={"link_code": code})
