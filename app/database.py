"""Database utilities for the CineTaste service."""

from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import MetaData, Table, inspect, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base with consistent constraint naming."""

    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


class Database:
    """Thin wrapper managing the SQLAlchemy async engine and sessions."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def create_all(self) -> None:
        """Create database tables if they do not yet exist."""

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        """Add columns introduced after the first watchlist schema shipped.

        The first watchlist table tracked movies only and had no watched
        timestamp; rows from that era are movies.
        """

        inspector = inspect(sync_connection)
        if "watchlist_items" not in inspector.get_table_names():
            return

        existing_columns = {
            column["name"] for column in inspector.get_columns("watchlist_items")
        }

        def _ensure_column(name: str, ddl: str, init_sql: str | None = None) -> None:
            if name in existing_columns:
                return
            sync_connection.execute(text(ddl))
            if init_sql:
                sync_connection.execute(text(init_sql))
            existing_columns.add(name)

        _ensure_column(
            "media_type",
            "ALTER TABLE watchlist_items ADD COLUMN media_type VARCHAR(8) DEFAULT 'movie'",
            "UPDATE watchlist_items SET media_type = 'movie' WHERE media_type IS NULL",
        )
        _ensure_column(
            "watched",
            "ALTER TABLE watchlist_items ADD COLUMN watched BOOLEAN DEFAULT 0",
            "UPDATE watchlist_items SET watched = 0 WHERE watched IS NULL",
        )
        _ensure_column(
            "watched_at",
            "ALTER TABLE watchlist_items ADD COLUMN watched_at DATETIME",
        )

    async def dispose(self) -> None:
        """Dispose of the underlying database engine."""

        await self._engine.dispose()


def upsert_statement(
    session: AsyncSession,
    table: Table,
    values: dict[str, Any],
    *,
    conflict_columns: Iterable[str],
    update_columns: Iterable[str],
):
    """Build an ``INSERT ... ON CONFLICT DO UPDATE`` for the session's dialect.

    Only SQLite and PostgreSQL are supported; both accept the same conflict
    clause keyed on a unique constraint's columns.
    """

    dialect_name = session.bind.dialect.name
    if dialect_name == "sqlite":
        statement = sqlite.insert(table).values(**values)
    elif dialect_name == "postgresql":
        statement = postgresql.insert(table).values(**values)
    else:
        raise RuntimeError(f"Upserts are not supported on {dialect_name}")

    return statement.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={column: statement.excluded[column] for column in update_columns},
    )
