"""Pytest configuration and test helpers."""

from __future__ import annotations

import json
import sys
from base64 import b64encode
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator

import httpx
import pytest
from itsdangerous import TimestampSigner


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.config import Settings  # noqa: E402
from app.database import Database  # noqa: E402
from app.services.recently_viewed import RecentlyViewedService  # noqa: E402
from app.services.tmdb import TMDBClient  # noqa: E402
from app.services.watchlist import WatchlistService  # noqa: E402

TEST_SECRET = "test-signing-secret"
TMDB_BASE_URL = "https://tmdb.test/3"

MOVIES: dict[int, dict[str, Any]] = {
    603: {
        "id": 603,
        "title": "The Matrix",
        "poster_path": "/matrix.jpg",
        "release_date": "1999-03-30",
        "vote_average": 8.2,
        "genres": [{"id": 28, "name": "Action"}, {"id": 878, "name": "Science Fiction"}],
    },
    550: {
        "id": 550,
        "title": "Fight Club",
        "poster_path": None,
        "release_date": "1999-10-15",
        "vote_average": 8.4,
        "genres": [{"id": 18, "name": "Drama"}],
    },
}
SHOWS: dict[int, dict[str, Any]] = {
    1399: {
        "id": 1399,
        "name": "Game of Thrones",
        "poster_path": "/got.jpg",
        "first_air_date": "2011-04-17",
        "vote_average": 8.4,
        "genres": [{"id": 10765, "name": "Sci-Fi & Fantasy"}],
    },
}


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(database_path: Path | None = None, **overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base: dict[str, Any] = {
        "AUTH_SECRET": TEST_SECRET,
        "TMDB_API_KEY": "tmdb-read-token",
        "TMDB_API_URL": TMDB_BASE_URL,
        "ENVIRONMENT": "development",
        "SMTP_HOST": "",
        "FIREBASE_PROJECT_ID": "",
        "GOOGLE_CLIENT_ID": "",
    }
    if database_path is not None:
        base["DATABASE_URL"] = f"sqlite+aiosqlite:///{database_path}"
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


class FakeTMDB:
    """``httpx.MockTransport`` handler serving a handful of canned titles."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.fail = False

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            return httpx.Response(503, json={"status_message": "Service unavailable"})

        path = request.url.path.removeprefix("/3")
        parts = [part for part in path.split("/") if part]
        if len(parts) >= 2 and parts[0] in {"movie", "tv"} and parts[1].isdigit():
            store = MOVIES if parts[0] == "movie" else SHOWS
            title = store.get(int(parts[1]))
            if title is None:
                return httpx.Response(404, json={"status_message": "Not found"})
            if len(parts) == 2:
                return httpx.Response(200, json=title)
            if parts[2] == "credits":
                return httpx.Response(200, json={"id": title["id"], "cast": [], "crew": []})
            if parts[2] == "recommendations":
                return httpx.Response(200, json={"page": 1, "results": []})
        if parts and parts[0] in {"movie", "tv", "search", "discover", "genre"}:
            return httpx.Response(
                200, json={"page": int(request.url.params.get("page", "1")), "results": []}
            )
        return httpx.Response(404, json={"status_message": "Not found"})


@dataclass
class RecordingNotifier:
    sent: list[dict[str, Any]] = field(default_factory=list)
    fail: bool = False

    async def send_watchlist_added(
        self, recipient: str, user_name: str, title: str, poster_url: str | None = None
    ) -> None:
        if self.fail:
            raise OSError("SMTP connection refused")
        self.sent.append(
            {"to": recipient, "name": user_name, "title": title, "poster": poster_url}
        )


@dataclass
class ServiceBundle:
    database: Database
    catalog: TMDBClient
    watchlist: WatchlistService
    recently_viewed: RecentlyViewedService
    notifier: RecordingNotifier


@pytest.fixture
def fake_tmdb() -> FakeTMDB:
    return FakeTMDB()


@pytest.fixture
def services(tmp_path, fake_tmdb):
    """Return an async context manager wiring the services to a fresh database."""

    @asynccontextmanager
    async def _open(*, notifier: RecordingNotifier | None = None) -> AsyncIterator[ServiceBundle]:
        settings = build_settings(tmp_path / "services.db")
        database = Database(settings.database_url)
        await database.create_all()
        recorder = notifier or RecordingNotifier()
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(fake_tmdb), base_url=TMDB_BASE_URL
        ) as http_client:
            catalog = TMDBClient(settings, http_client)
            try:
                yield ServiceBundle(
                    database=database,
                    catalog=catalog,
                    watchlist=WatchlistService(
                        database.session_factory, catalog, recorder  # type: ignore[arg-type]
                    ),
                    recently_viewed=RecentlyViewedService(
                        database.session_factory, catalog, limit=settings.recently_viewed_limit
                    ),
                    notifier=recorder,
                )
            finally:
                await database.dispose()

    return _open


def session_cookie(user: dict[str, Any], secret: str = TEST_SECRET) -> str:
    """Sign a cookie the way Starlette's ``SessionMiddleware`` does."""

    data = b64encode(json.dumps({"user": user}).encode("utf-8"))
    return TimestampSigner(secret).sign(data).decode("utf-8")
