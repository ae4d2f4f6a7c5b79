"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .utils import new_id, utcnow


class User(Base):
    """An account created by the first successful sign-in."""

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("provider", "provider_account_id", name="uq_user_provider_account"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True, default=new_id)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    image: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider: Mapped[str] = mapped_column(String(32))
    provider_account_id: Mapped[str] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class WatchlistItem(Base):
    """A title tracked by a user, with cached catalog metadata."""

    __tablename__ = "watchlist_items"
    __table_args__ = (
        UniqueConstraint("user_id", "title_id", "media_type", name="uq_watchlist_user_title"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    title_id: Mapped[int] = mapped_column(Integer)
    media_type: Mapped[str] = mapped_column(String(8), default="movie")
    title: Mapped[str] = mapped_column(String(500))
    poster_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    year: Mapped[str] = mapped_column(String(4), default="")
    rating: Mapped[float] = mapped_column(Float, default=0.0)
    genre: Mapped[str] = mapped_column(String(120), default="")
    added_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    watched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    watched_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class RecentlyViewedItem(Base):
    """The latest view of a title by a user."""

    __tablename__ = "recently_viewed_items"
    __table_args__ = (
        UniqueConstraint("user_id", "title_id", "media_type", name="uq_recently_viewed_user_title"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    title_id: Mapped[int] = mapped_column(Integer)
    media_type: Mapped[str] = mapped_column(String(8), default="movie")
    title: Mapped[str] = mapped_column(String(500))
    poster_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    year: Mapped[str] = mapped_column(String(4), default="")
    rating: Mapped[float] = mapped_column(Float, default=0.0)
    genre: Mapped[str] = mapped_column(String(120), default="")
    viewed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
