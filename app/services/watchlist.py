"""Watchlist operations for a resolved user identity."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import WatchlistItem
from ..errors import AlreadyTracked, InvalidInput, NotFound, UpstreamUnavailable
from ..models import MEDIA_TYPES
from ..utils import utcnow
from .mailer import WatchlistNotifier
from .recently_viewed import upsert_recently_viewed
from .tmdb import TitleMetadata, TMDBClient, UpstreamError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Requester:
    """The caller of a watchlist operation."""

    user_id: str
    email: str | None = None
    name: str | None = None


def _label(media_type: str) -> str:
    return "TV show" if media_type == "tv" else "Movie"


def _detail_label(media_type: str) -> str:
    return "TV show" if media_type == "tv" else "movie"


class WatchlistService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: TMDBClient,
        notifier: WatchlistNotifier,
    ):
        self._session_factory = session_factory
        self._catalog = catalog
        self._notifier = notifier

    async def list_items(self, user_id: str) -> list[WatchlistItem]:
        async with self._session_factory() as session:
            result = await session.scalars(
                select(WatchlistItem)
                .where(WatchlistItem.user_id == user_id)
                .order_by(WatchlistItem.added_at.desc())
            )
            return list(result)

    async def add_item(
        self,
        requester: Requester,
        title_id: int,
        media_type: str = "movie",
        *,
        send_email: bool = False,
    ) -> WatchlistItem:
        """Track a title for ``requester``.

        The unique constraint on ``(user_id, title_id, media_type)`` decides
        concurrent adds; the loser reports ``AlreadyTracked`` like a sequential
        duplicate would. Other integrity failures, such as a missing user row,
        propagate unchanged.
        """

        if media_type not in MEDIA_TYPES:
            raise InvalidInput("Invalid media type")

        try:
            metadata = await self._catalog.title_metadata(media_type, title_id)
        except UpstreamError as exc:
            logger.error("TMDB API error for %s %s: %s", media_type, title_id, exc)
            raise UpstreamUnavailable(
                f"Failed to fetch {_detail_label(media_type)} details from TMDB"
            ) from exc

        already_tracked = AlreadyTracked(f"{_label(media_type)} already in watchlist")
        async with self._session_factory() as session:
            existing = await self._find_by_title(
                session, requester.user_id, title_id, media_type
            )
            if existing is not None:
                raise already_tracked

            item = WatchlistItem(
                user_id=requester.user_id,
                title_id=title_id,
                media_type=media_type,
                title=metadata.title,
                poster_url=metadata.poster_url,
                year=metadata.year,
                rating=metadata.rating,
                genre=metadata.genre,
                added_at=utcnow(),
                watched=False,
                watched_at=None,
            )
            session.add(item)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                winner = await self._find_by_title(
                    session, requester.user_id, title_id, media_type
                )
                if winner is None:
                    raise
                raise already_tracked from exc

        if send_email and requester.email and requester.name:
            await self._notify(requester, metadata)
        return item

    async def set_watched(self, user_id: str, item_id: str, watched: bool) -> WatchlistItem:
        """Flag an item watched or unwatched.

        Becoming watched also records a recently-viewed entry from the cached
        metadata; that side effect never fails the toggle.
        """

        async with self._session_factory() as session:
            item = await self._find_owned(session, user_id, item_id)
            became_watched = watched and not item.watched
            if watched != item.watched:
                item.watched = watched
                item.watched_at = utcnow() if watched else None
            await session.commit()

            if became_watched:
                try:
                    await upsert_recently_viewed(
                        session,
                        user_id,
                        TitleMetadata(
                            title_id=item.title_id,
                            media_type=item.media_type,
                            title=item.title,
                            poster_url=item.poster_url,
                            year=item.year or "",
                            rating=item.rating or 0.0,
                            genre=item.genre or "",
                        ),
                        viewed_at=item.watched_at,
                    )
                    await session.commit()
                except SQLAlchemyError:
                    logger.exception(
                        "Error adding watchlist item %s to recently viewed", item_id
                    )
                    await session.rollback()
                    await session.refresh(item)
            return item

    async def remove_item(self, user_id: str, item_id: str) -> None:
        async with self._session_factory() as session:
            item = await self._find_owned(session, user_id, item_id)
            await session.delete(item)
            await session.commit()

    async def clear(self, user_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(WatchlistItem).where(WatchlistItem.user_id == user_id)
            )
            await session.commit()
            return result.rowcount or 0

    async def _notify(self, requester: Requester, metadata: TitleMetadata) -> None:
        try:
            await self._notifier.send_watchlist_added(
                requester.email or "",
                requester.name or "",
                metadata.title,
                metadata.poster_url,
            )
        except Exception:
            logger.exception(
                "Failed to send watchlist email for %s to %s",
                metadata.title,
                requester.email,
            )

    @staticmethod
    async def _find_by_title(
        session: AsyncSession, user_id: str, title_id: int, media_type: str
    ) -> WatchlistItem | None:
        return await session.scalar(
            select(WatchlistItem).where(
                WatchlistItem.user_id == user_id,
                WatchlistItem.title_id == title_id,
                WatchlistItem.media_type == media_type,
            )
        )

    @staticmethod
    async def _find_owned(
        session: AsyncSession, user_id: str, item_id: str
    ) -> WatchlistItem:
        item = await session.scalar(
            select(WatchlistItem).where(
                WatchlistItem.id == item_id,
                WatchlistItem.user_id == user_id,
            )
        )
        if item is None:
            raise NotFound("Watchlist item not found")
        return item
