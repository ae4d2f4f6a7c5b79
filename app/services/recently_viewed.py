"""Recently-viewed history: one row per title, refreshed on every view."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..database import upsert_statement
from ..db_models import RecentlyViewedItem
from ..errors import InternalError, InvalidInput, UpstreamUnavailable
from ..models import MEDIA_TYPES
from ..utils import new_id, utcnow
from .tmdb import TitleMetadata, TMDBClient, UpstreamError

logger = logging.getLogger(__name__)

_METADATA_COLUMNS = ("title", "poster_url", "year", "rating", "genre")


async def upsert_recently_viewed(
    session: AsyncSession,
    user_id: str,
    metadata: TitleMetadata,
    *,
    viewed_at: datetime | None = None,
) -> RecentlyViewedItem:
    """Insert a view or move an existing one to ``viewed_at``.

    Runs as a single ``INSERT ... ON CONFLICT DO UPDATE`` keyed on
    ``(user_id, title_id, media_type)``; only ``viewed_at`` changes on conflict.
    The caller owns the transaction.
    """

    moment = viewed_at or utcnow()
    table = RecentlyViewedItem.__table__
    statement = upsert_statement(
        session,
        table,
        {
            "id": new_id(),
            "user_id": user_id,
            "title_id": metadata.title_id,
            "media_type": metadata.media_type,
            "title": metadata.title,
            "poster_url": metadata.poster_url,
            "year": metadata.year,
            "rating": metadata.rating,
            "genre": metadata.genre,
            "viewed_at": moment,
        },
        conflict_columns=("user_id", "title_id", "media_type"),
        update_columns=("viewed_at",),
    )
    await session.execute(statement)
    item = await session.scalar(
        select(RecentlyViewedItem)
        .where(
            RecentlyViewedItem.user_id == user_id,
            RecentlyViewedItem.title_id == metadata.title_id,
            RecentlyViewedItem.media_type == metadata.media_type,
        )
        .execution_options(populate_existing=True)
    )
    if item is None:
        raise InternalError("Recently viewed entry missing after upsert")
    return item


def metadata_from_row(row: RecentlyViewedItem) -> TitleMetadata:
    return TitleMetadata(
        title_id=row.title_id,
        media_type=row.media_type,
        **{column: getattr(row, column) for column in _METADATA_COLUMNS},
    )


class RecentlyViewedService:
    """Records and lists the titles a user has looked at most recently."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: TMDBClient,
        *,
        limit: int = 20,
    ):
        self._session_factory = session_factory
        self._catalog = catalog
        self._limit = limit

    async def list_items(self, user_id: str) -> list[RecentlyViewedItem]:
        async with self._session_factory() as session:
            result = await session.scalars(
                select(RecentlyViewedItem)
                .where(RecentlyViewedItem.user_id == user_id)
                .order_by(RecentlyViewedItem.viewed_at.desc())
                .limit(self._limit)
            )
            return list(result)

    async def record_view(
        self,
        user_id: str,
        title_id: int,
        media_type: str = "movie",
        *,
        from_watchlist: bool = False,
    ) -> RecentlyViewedItem:
        """Record that ``user_id`` viewed a title.

        A repeat view only moves ``viewed_at``. Catalog metadata is fetched only
        when the title has not been seen before.
        """

        if media_type not in MEDIA_TYPES:
            raise InvalidInput("Invalid media type")

        now = utcnow()
        async with self._session_factory() as session:
            existing = await session.scalar(
                select(RecentlyViewedItem).where(
                    RecentlyViewedItem.user_id == user_id,
                    RecentlyViewedItem.title_id == title_id,
                    RecentlyViewedItem.media_type == media_type,
                )
            )

            if existing is not None and not from_watchlist:
                existing.viewed_at = now
                await session.commit()
                return existing

            if existing is not None:
                metadata = metadata_from_row(existing)
            else:
                metadata = await self._fetch_metadata(title_id, media_type)

            item = await upsert_recently_viewed(session, user_id, metadata, viewed_at=now)
            await session.commit()
            return item

    async def clear(self, user_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(RecentlyViewedItem).where(RecentlyViewedItem.user_id == user_id)
            )
            await session.commit()
            return result.rowcount or 0

    async def _fetch_metadata(self, title_id: int, media_type: str) -> TitleMetadata:
        try:
            return await self._catalog.title_metadata(media_type, title_id)
        except UpstreamError as exc:
            label = "TV show" if media_type == "tv" else "movie"
            logger.error("TMDB API error for %s %s: %s", media_type, title_id, exc)
            raise UpstreamUnavailable(
                f"Failed to fetch {label} details from TMDB"
            ) from exc
