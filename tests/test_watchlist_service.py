"""Behaviour of the watchlist service against a real SQLite database."""

from __future__ import annotations

from sqlalchemy import event, func, select
from sqlalchemy.exc import IntegrityError

import pytest

from app.db_models import RecentlyViewedItem, WatchlistItem
from app.errors import AlreadyTracked, InvalidInput, NotFound, UpstreamUnavailable
from app.services.watchlist import Requester, WatchlistService

from conftest import RecordingNotifier

NEO = Requester(user_id="neo", email="neo@example.com", name="Neo")
TRINITY = Requester(user_id="trinity", email="trinity@example.com", name="Trinity")


async def _count(database, model, **filters) -> int:
    async with database.session_factory() as session:
        statement = select(func.count()).select_from(model)
        for column, value in filters.items():
            statement = statement.where(getattr(model, column) == value)
        return int(await session.scalar(statement) or 0)


@pytest.mark.anyio("asyncio")
async def test_add_then_list_contains_single_unwatched_entry(services) -> None:
    async with services() as bundle:
        item = await bundle.watchlist.add_item(NEO, 603, "movie")
        items = await bundle.watchlist.list_items("neo")

    assert [entry.id for entry in items] == [item.id]
    entry = items[0]
    assert (entry.title_id, entry.media_type) == (603, "movie")
    assert entry.watched is False
    assert entry.watched_at is None
    assert entry.title == "The Matrix"
    assert entry.year == "1999"
    assert entry.genre == "Action"


@pytest.mark.anyio("asyncio")
async def test_second_add_reports_already_tracked(services) -> None:
    async with services() as bundle:
        await bundle.watchlist.add_item(NEO, 603, "movie")
        with pytest.raises(AlreadyTracked, match="Movie already in watchlist"):
            await bundle.watchlist.add_item(NEO, 603, "movie")
        count = await _count(bundle.database, WatchlistItem, user_id="neo", title_id=603)

    assert count == 1


@pytest.mark.anyio("asyncio")
async def test_same_title_id_tracked_separately_per_media_type_and_user(services) -> None:
    async with services() as bundle:
        await bundle.watchlist.add_item(NEO, 603, "movie")
        await bundle.watchlist.add_item(TRINITY, 603, "movie")
        await bundle.watchlist.add_item(NEO, 1399, "tv")
        with pytest.raises(AlreadyTracked, match="TV show already in watchlist"):
            await bundle.watchlist.add_item(NEO, 1399, "tv")
        neo_items = await bundle.watchlist.list_items("neo")

    assert [(item.title_id, item.media_type) for item in neo_items] == [
        (1399, "tv"),
        (603, "movie"),
    ]


@pytest.mark.anyio("asyncio")
async def test_add_rejects_unknown_media_type_without_calling_catalog(services, fake_tmdb) -> None:
    async with services() as bundle:
        with pytest.raises(InvalidInput):
            await bundle.watchlist.add_item(NEO, 603, "person")

    assert fake_tmdb.requests == []


@pytest.mark.anyio("asyncio")
async def test_add_surfaces_catalog_failure(services) -> None:
    async with services() as bundle:
        with pytest.raises(UpstreamUnavailable) as excinfo:
            await bundle.watchlist.add_item(NEO, 424242, "movie")
        count = await _count(bundle.database, WatchlistItem)

    assert excinfo.value.status_code == 404
    assert count == 0


@pytest.mark.anyio("asyncio")
async def test_add_sends_email_only_when_requested_and_identity_complete(services) -> None:
    async with services() as bundle:
        await bundle.watchlist.add_item(NEO, 603, "movie", send_email=True)
        await bundle.watchlist.add_item(NEO, 550, "movie", send_email=False)
        await bundle.watchlist.add_item(
            Requester(user_id="anon", email="anon@example.com"), 603, "movie", send_email=True
        )
        sent = list(bundle.notifier.sent)

    assert sent == [
        {
            "to": "neo@example.com",
            "name": "Neo",
            "title": "The Matrix",
            "poster": "https://image.tmdb.org/t/p/w500/matrix.jpg",
        }
    ]


@pytest.mark.anyio("asyncio")
async def test_notification_failure_does_not_fail_add(services) -> None:
    async with services(notifier=RecordingNotifier(fail=True)) as bundle:
        item = await bundle.watchlist.add_item(NEO, 603, "movie", send_email=True)
        items = await bundle.watchlist.list_items("neo")

    assert [entry.id for entry in items] == [item.id]


@pytest.mark.anyio("asyncio")
async def test_toggle_watched_records_recent_view(services) -> None:
    async with services() as bundle:
        item = await bundle.watchlist.add_item(NEO, 603, "movie")
        updated = await bundle.watchlist.set_watched("neo", item.id, True)
        recent = await bundle.recently_viewed.list_items("neo")

    assert updated.watched is True
    assert updated.watched_at is not None
    assert [(entry.title_id, entry.media_type) for entry in recent] == [(603, "movie")]
    assert recent[0].title == "The Matrix"
    assert recent[0].viewed_at == updated.watched_at


@pytest.mark.anyio("asyncio")
async def test_toggle_watched_is_idempotent(services) -> None:
    async with services() as bundle:
        item = await bundle.watchlist.add_item(NEO, 603, "movie")
        first = await bundle.watchlist.set_watched("neo", item.id, True)
        first_watched_at = first.watched_at
        second = await bundle.watchlist.set_watched("neo", item.id, True)
        recent_count = await _count(bundle.database, RecentlyViewedItem, user_id="neo")

    assert second.watched is True
    assert second.watched_at == first_watched_at
    assert recent_count == 1


@pytest.mark.anyio("asyncio")
async def test_toggle_back_to_unwatched_clears_timestamp(services) -> None:
    async with services() as bundle:
        item = await bundle.watchlist.add_item(NEO, 603, "movie")
        await bundle.watchlist.set_watched("neo", item.id, True)
        updated = await bundle.watchlist.set_watched("neo", item.id, False)
        recent = await bundle.recently_viewed.list_items("neo")

    assert updated.watched is False
    assert updated.watched_at is None
    assert len(recent) == 1


@pytest.mark.anyio("asyncio")
async def test_toggle_watched_updates_existing_recent_view(services) -> None:
    async with services() as bundle:
        earlier = await bundle.recently_viewed.record_view("neo", 603, "movie")
        earlier_viewed_at = earlier.viewed_at
        item = await bundle.watchlist.add_item(NEO, 603, "movie")
        await bundle.watchlist.set_watched("neo", item.id, True)
        recent = await bundle.recently_viewed.list_items("neo")

    assert len(recent) == 1
    assert recent[0].id == earlier.id
    assert recent[0].viewed_at >= earlier_viewed_at


@pytest.mark.anyio("asyncio")
async def test_other_users_items_are_not_found(services) -> None:
    async with services() as bundle:
        item = await bundle.watchlist.add_item(NEO, 603, "movie")
        with pytest.raises(NotFound):
            await bundle.watchlist.remove_item("trinity", item.id)
        with pytest.raises(NotFound):
            await bundle.watchlist.set_watched("trinity", item.id, True)
        remaining = await bundle.watchlist.list_items("neo")

    assert [entry.id for entry in remaining] == [item.id]
    assert remaining[0].watched is False


@pytest.mark.anyio("asyncio")
async def test_remove_and_clear(services) -> None:
    async with services() as bundle:
        matrix = await bundle.watchlist.add_item(NEO, 603, "movie")
        await bundle.watchlist.add_item(NEO, 550, "movie")
        await bundle.watchlist.add_item(NEO, 1399, "tv")
        await bundle.watchlist.add_item(TRINITY, 603, "movie")

        await bundle.watchlist.remove_item("neo", matrix.id)
        after_remove = await bundle.watchlist.list_items("neo")
        cleared = await bundle.watchlist.clear("neo")
        neo_after_clear = await bundle.watchlist.list_items("neo")
        trinity_items = await bundle.watchlist.list_items("trinity")

    assert {item.title_id for item in after_remove} == {550, 1399}
    assert cleared == 2
    assert neo_after_clear == []
    assert len(trinity_items) == 1


@pytest.mark.anyio("asyncio")
async def test_concurrent_duplicate_reports_already_tracked(services, monkeypatch) -> None:
    async with services() as bundle:
        await bundle.watchlist.add_item(NEO, 603, "movie")

        lookups = []
        original = WatchlistService._find_by_title

        async def _miss_first(session, user_id, title_id, media_type):
            lookups.append(title_id)
            if len(lookups) == 1:
                return None
            return await original(session, user_id, title_id, media_type)

        # The first lookup misses, as it would for the loser of a race.
        monkeypatch.setattr(WatchlistService, "_find_by_title", staticmethod(_miss_first))
        with pytest.raises(AlreadyTracked):
            await bundle.watchlist.add_item(NEO, 603, "movie")
        count = await _count(bundle.database, WatchlistItem, user_id="neo")

    assert lookups == [603, 603]
    assert count == 1


@pytest.mark.anyio("asyncio")
async def test_missing_user_row_is_not_reported_as_duplicate(services) -> None:
    async with services() as bundle:

        @event.listens_for(bundle.database.engine.sync_engine, "connect")
        def _enforce_foreign_keys(dbapi_connection, _record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        # Reconnect so every pooled connection enforces foreign keys.
        await bundle.database.engine.dispose()

        with pytest.raises(IntegrityError):
            await bundle.watchlist.add_item(NEO, 603, "movie")
        count = await _count(bundle.database, WatchlistItem)

    assert count == 0
