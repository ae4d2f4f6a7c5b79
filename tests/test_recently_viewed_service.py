"""Behaviour of the recently-viewed service."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import update

from app.db_models import RecentlyViewedItem
from app.errors import InvalidInput, UpstreamUnavailable
from app.utils import utcnow


@pytest.mark.anyio("asyncio")
async def test_repeat_view_updates_timestamp_in_place(services, fake_tmdb) -> None:
    async with services() as bundle:
        first = await bundle.recently_viewed.record_view("neo", 603, "movie")
        first_id, first_viewed_at = first.id, first.viewed_at
        second = await bundle.recently_viewed.record_view("neo", 603, "movie")
        items = await bundle.recently_viewed.list_items("neo")

    assert second.id == first_id
    assert second.viewed_at >= first_viewed_at
    assert len(items) == 1
    # Metadata is only fetched for the first view.
    assert fake_tmdb.paths() == ["/3/movie/603"]


@pytest.mark.anyio("asyncio")
async def test_view_from_watchlist_upserts(services, fake_tmdb) -> None:
    async with services() as bundle:
        created = await bundle.recently_viewed.record_view(
            "neo", 1399, "tv", from_watchlist=True
        )
        again = await bundle.recently_viewed.record_view(
            "neo", 1399, "tv", from_watchlist=True
        )
        items = await bundle.recently_viewed.list_items("neo")

    assert created.title == "Game of Thrones"
    assert again.id == created.id
    assert len(items) == 1
    assert fake_tmdb.paths() == ["/3/tv/1399"]


@pytest.mark.anyio("asyncio")
async def test_list_is_newest_first_and_limited(services) -> None:
    async with services() as bundle:
        await bundle.recently_viewed.record_view("neo", 603, "movie")
        await bundle.recently_viewed.record_view("neo", 550, "movie")
        await bundle.recently_viewed.record_view("neo", 1399, "tv")

        # Age the rows so ordering does not depend on clock resolution.
        base = utcnow() - timedelta(days=1)
        async with bundle.database.session_factory() as session:
            for offset, title_id in enumerate((603, 550, 1399)):
                await session.execute(
                    update(RecentlyViewedItem)
                    .where(RecentlyViewedItem.title_id == title_id)
                    .values(viewed_at=base + timedelta(minutes=offset))
                )
            for index in range(25):
                session.add(
                    RecentlyViewedItem(
                        user_id="neo",
                        title_id=10_000 + index,
                        media_type="movie",
                        title=f"Filler {index}",
                        viewed_at=base - timedelta(days=1, minutes=index),
                    )
                )
            await session.commit()

        await bundle.recently_viewed.record_view("neo", 603, "movie")
        items = await bundle.recently_viewed.list_items("neo")

    assert len(items) == 20
    assert [item.title_id for item in items[:3]] == [603, 1399, 550]
    assert items[3].title_id == 10_000


@pytest.mark.anyio("asyncio")
async def test_invalid_media_type_rejected(services) -> None:
    async with services() as bundle:
        with pytest.raises(InvalidInput):
            await bundle.recently_viewed.record_view("neo", 603, "anime")


@pytest.mark.anyio("asyncio")
async def test_catalog_failure_surfaces_as_upstream_unavailable(services, fake_tmdb) -> None:
    fake_tmdb.fail = True
    async with services() as bundle:
        with pytest.raises(UpstreamUnavailable, match="Failed to fetch TV show details"):
            await bundle.recently_viewed.record_view("neo", 1399, "tv")
        items = await bundle.recently_viewed.list_items("neo")

    assert items == []


@pytest.mark.anyio("asyncio")
async def test_clear_only_affects_caller(services) -> None:
    async with services() as bundle:
        await bundle.recently_viewed.record_view("neo", 603, "movie")
        await bundle.recently_viewed.record_view("neo", 550, "movie")
        await bundle.recently_viewed.record_view("trinity", 603, "movie")
        deleted = await bundle.recently_viewed.clear("neo")
        neo_items = await bundle.recently_viewed.list_items("neo")
        trinity_items = await bundle.recently_viewed.list_items("trinity")

    assert deleted == 2
    assert neo_items == []
    assert len(trinity_items) == 1
