import asyncio
from datetime import timedelta

import pytest

from momentcart.common.errors import LinkUnavailable, NotFound
from momentcart.links.services import AttributionResolver, ShortLinkService
from momentcart.schema.full_schema import ShortLink, SurfaceType


@pytest.mark.asyncio
async def test_resolve_returns_offer_and_attribution(seed, session_factory, clock):
    catalog = await seed()
    resolver = AttributionResolver(session_factory, clock=clock)

    resolved = await resolver.resolve(catalog.link_code)

    assert resolved.offer.id == catalog.offer.id
    assert resolved.attribution_context.surface == SurfaceType.LIVE
    assert resolved.attribution_context.moment_id == "moment_7"
    assert resolved.short_link.click_count == 1
    assert resolved.short_link.last_clicked_at == clock()


@pytest.mark.asyncio
async def test_unknown_code_is_not_found(seed, session_factory, clock):
    await seed()
    resolver = AttributionResolver(session_factory, clock=clock)

    with pytest.raises(NotFound):
        await resolver.resolve("nope1234")


@pytest.mark.asyncio
async def test_expired_link_does_not_resolve(seed, session_factory, clock):
    catalog = await seed(link_expires_at=clock() + timedelta(minutes=5))
    resolver = AttributionResolver(session_factory, clock=clock)

    await resolver.resolve(catalog.link_code)
    clock.advance(minutes=5)

    with pytest.raises(LinkUnavailable) as exc:
        await resolver.resolve(catalog.link_code)
    assert exc.value.reason == "expired"


@pytest.mark.asyncio
async def test_revoked_link_does_not_resolve(seed, session_factory, clock):
    catalog = await seed()
    links = ShortLinkService(session_factory, clock=clock)
    resolver = AttributionResolver(session_factory, clock=clock)

    await links.revoke(catalog.creator_id, catalog.link_code)

    with pytest.raises(LinkUnavailable) as exc:
        await resolver.resolve(catalog.link_code)
    assert exc.value.reason == "revoked"


@pytest.mark.asyncio
async def test_revoke_by_other_creator_is_not_found(seed, session_factory, clock):
    catalog = await seed()
    links = ShortLinkService(session_factory, clock=clock)

    with pytest.raises(NotFound):
        await links.revoke("someone_else", catalog.link_code)


@pytest.mark.asyncio
async def test_click_cap_holds_under_concurrency(seed, session_factory, clock):
    catalog = await seed(max_clicks=3)
    resolver = AttributionResolver(session_factory, clock=clock)

    results = await asyncio.gather(
        *[resolver.resolve(catalog.link_code) for _ in range(10)],
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 3
    assert len(failures) == 7
    assert all(isinstance(f, LinkUnavailable) and f.reason == "exhausted" for f in failures)

    async with session_factory() as session:
        link = await session.get(ShortLink, catalog.link_id)
    assert link.click_count == 3


@pytest.mark.asyncio
async def test_create_link_writes_its_own_attribution(seed, session_factory, clock):
    catalog = await seed()
    links = ShortLinkService(session_factory, clock=clock)
    resolver = AttributionResolver(session_factory, clock=clock)

    created = await links.create(
        catalog.creator_id,
        catalog.offer.public_id,
        SurfaceType.REPLAY,
        name="replay link",
        max_clicks=5,
        attribution={"replay_id": "replay_9", "campaign": "recap"},
    )
    assert len(created.short_link.code) == 8
    assert created.short_link.click_count == 0

    resolved = await resolver.resolve(created.short_link.code)
    assert resolved.attribution_context.surface == SurfaceType.REPLAY
    assert resolved.attribution_context.replay_id == "replay_9"
    assert resolved.offer.id == catalog.offer.id


@pytest.mark.asyncio
async def test_create_link_for_foreign_offer_is_not_found(seed, session_factory, clock):
    catalog = await seed()
    links = ShortLinkService(session_factory, clock=clock)

    with pytest.raises(NotFound):
        await links.create("someone_else", catalog.offer.public_id, SurfaceType.DM)


@pytest.mark.asyncio
async def test_preview_does_not_count_a_click(seed, session_factory, clock):
    catalog = await seed(max_clicks=1)
    resolver = AttributionResolver(session_factory, clock=clock)

    for _ in range(3):
        previewed = await resolver.preview(catalog.link_code)
    assert previewed.short_link.click_count == 0
    assert previewed.offer.id == catalog.offer.id

    await resolver.resolve(catalog.link_code)
    with pytest.raises(LinkUnavailable) as exc:
        await resolver.preview(catalog.link_code)
    assert exc.value.reason == "exhausted"

    with pytest.raises(NotFound):
        await resolver.preview("nope1234")
