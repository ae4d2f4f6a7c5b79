"""Client for The Movie Database (TMDB) catalog API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import httpx

from ..config import Settings
from ..utils import extract_year

logger = logging.getLogger(__name__)

PLACEHOLDER_POSTER = "/placeholder-movie.jpg"

MOVIE_LIST_PATHS: dict[str, str] = {
    "popular": "/movie/popular",
    "top_rated": "/movie/top_rated",
    "now_playing": "/movie/now_playing",
    "upcoming": "/movie/upcoming",
}
TV_LIST_PATHS: dict[str, str] = {
    "popular": "/tv/popular",
    "top_rated": "/tv/top_rated",
    "on_the_air": "/tv/on_the_air",
    "airing_today": "/tv/airing_today",
    # Movie category names mapped onto their closest TV list.
    "now_playing": "/tv/on_the_air",
    "upcoming": "/tv/airing_today",
}


class UpstreamError(RuntimeError):
    """Raised when a TMDB request fails or returns a non-success status."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class TitleMetadata:
    """Catalog fields cached on watchlist and recently-viewed rows."""

    title_id: int
    media_type: str
    title: str
    poster_url: str | None
    year: str
    rating: float
    genre: str


class TMDBClient:
    """Thin wrapper around the TMDB v3 HTTP API.

    Every call issues a single GET and returns the decoded JSON body. There is
    no retry and no caching; failures surface as :class:`UpstreamError`.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            logger.warning("TMDB_API_KEY is not configured; catalog requests will fail")
        self._settings = settings
        self._client = http_client
        self._image_base_url = settings.tmdb_image_base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._settings.tmdb_api_key:
            headers["Authorization"] = f"Bearer {self._settings.tmdb_api_key}"
        return headers

    async def _get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        try:
            response = await self._client.get(
                path, params=dict(params or {}), headers=self._headers()
            )
        except httpx.HTTPError as exc:
            logger.warning("TMDB request to %s failed: %s", path, exc)
            raise UpstreamError(f"TMDB request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.warning(
                "TMDB API error for %s: %s %s",
                path,
                response.status_code,
                response.reason_phrase,
            )
            raise UpstreamError(
                f"TMDB API error: {response.reason_phrase or response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError("TMDB returned a non-JSON response") from exc

    # Movie lists -----------------------------------------------------------

    async def popular_movies(self, page: int = 1) -> dict[str, Any]:
        return await self._get(MOVIE_LIST_PATHS["popular"], {"page": page})

    async def top_rated_movies(self, page: int = 1) -> dict[str, Any]:
        return await self._get(MOVIE_LIST_PATHS["top_rated"], {"page": page})

    async def now_playing_movies(self, page: int = 1) -> dict[str, Any]:
        return await self._get(MOVIE_LIST_PATHS["now_playing"], {"page": page})

    async def upcoming_movies(self, page: int = 1) -> dict[str, Any]:
        return await self._get(MOVIE_LIST_PATHS["upcoming"], {"page": page})

    async def movie_genres(self) -> dict[str, Any]:
        return await self._get("/genre/movie/list")

    async def discover_movies(
        self,
        *,
        genre: str | None = None,
        year: str | None = None,
        sort_by: str | None = None,
        page: int = 1,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"page": page}
        if genre:
            params["with_genres"] = genre
        if year:
            params["year"] = year
        if sort_by:
            params["sort_by"] = sort_by
        return await self._get("/discover/movie", params)

    # TV lists --------------------------------------------------------------

    async def popular_tv(self, page: int = 1) -> dict[str, Any]:
        return await self._get(TV_LIST_PATHS["popular"], {"page": page})

    async def top_rated_tv(self, page: int = 1) -> dict[str, Any]:
        return await self._get(TV_LIST_PATHS["top_rated"], {"page": page})

    async def on_the_air_tv(self, page: int = 1) -> dict[str, Any]:
        return await self._get(TV_LIST_PATHS["on_the_air"], {"page": page})

    async def airing_today_tv(self, page: int = 1) -> dict[str, Any]:
        return await self._get(TV_LIST_PATHS["airing_today"], {"page": page})

    # Search ----------------------------------------------------------------

    async def search_movies(self, query: str, page: int = 1) -> dict[str, Any]:
        return await self._get("/search/movie", {"query": query, "page": page})

    async def search_tv(self, query: str, page: int = 1) -> dict[str, Any]:
        return await self._get("/search/tv", {"query": query, "page": page})

    async def search_people(self, query: str, page: int = 1) -> dict[str, Any]:
        return await self._get("/search/person", {"query": query, "page": page})

    async def search_multi(self, query: str, page: int = 1) -> dict[str, Any]:
        return await self._get("/search/multi", {"query": query, "page": page})

    # Details ---------------------------------------------------------------

    async def movie_details(self, movie_id: int) -> dict[str, Any]:
        return await self._get(f"/movie/{movie_id}")

    async def movie_credits(self, movie_id: int) -> dict[str, Any]:
        return await self._get(f"/movie/{movie_id}/credits")

    async def movie_recommendations(self, movie_id: int, page: int = 1) -> dict[str, Any]:
        return await self._get(f"/movie/{movie_id}/recommendations", {"page": page})

    async def tv_details(self, tv_id: int) -> dict[str, Any]:
        return await self._get(f"/tv/{tv_id}")

    async def tv_credits(self, tv_id: int) -> dict[str, Any]:
        return await self._get(f"/tv/{tv_id}/credits")

    async def tv_recommendations(self, tv_id: int, page: int = 1) -> dict[str, Any]:
        return await self._get(f"/tv/{tv_id}/recommendations", {"page": page})

    async def person_details(self, person_id: int) -> dict[str, Any]:
        return await self._get(f"/person/{person_id}")

    async def person_movie_credits(self, person_id: int) -> dict[str, Any]:
        return await self._get(f"/person/{person_id}/movie_credits")

    async def person_tv_credits(self, person_id: int) -> dict[str, Any]:
        return await self._get(f"/person/{person_id}/tv_credits")

    # Composite helpers used by the HTTP layer --------------------------------

    async def list_titles(
        self, media_type: str, category: str | None, page: int = 1
    ) -> dict[str, Any]:
        """Return a category listing; unknown categories fall back to popular."""

        paths = TV_LIST_PATHS if media_type == "tv" else MOVIE_LIST_PATHS
        path = paths.get((category or "").strip().lower(), paths["popular"])
        return await self._get(path, {"page": page})

    async def search(self, media_type: str, query: str, page: int = 1) -> dict[str, Any]:
        if media_type == "tv":
            return await self.search_tv(query, page)
        if media_type == "multi":
            return await self.search_multi(query, page)
        return await self.search_movies(query, page)

    async def title_details(self, media_type: str, title_id: int) -> dict[str, Any]:
        if media_type == "tv":
            return await self.tv_details(title_id)
        return await self.movie_details(title_id)

    async def title_bundle(self, media_type: str, title_id: int) -> dict[str, Any]:
        """Fetch details, credits and recommendations concurrently."""

        if media_type == "tv":
            calls = (
                self.tv_details(title_id),
                self.tv_credits(title_id),
                self.tv_recommendations(title_id),
            )
        else:
            calls = (
                self.movie_details(title_id),
                self.movie_credits(title_id),
                self.movie_recommendations(title_id),
            )
        details, credits, recommendations = await asyncio.gather(*calls)
        return {
            "details": details,
            "credits": credits,
            "recommendations": recommendations,
        }

    async def person_bundle(self, person_id: int) -> dict[str, Any]:
        person, movie_credits, tv_credits = await asyncio.gather(
            self.person_details(person_id),
            self.person_movie_credits(person_id),
            self.person_tv_credits(person_id),
        )
        return {
            "person": person,
            "movieCredits": movie_credits,
            "tvCredits": tv_credits,
        }

    async def suggestions(self, query: str, *, limit: int = 8) -> list[dict[str, Any]]:
        """Return popular multi-search hits that have artwork to display."""

        data = await self.search_multi(query, 1)
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            return []

        def _displayable(item: Any) -> bool:
            if not isinstance(item, dict) or item.get("adult"):
                return False
            if item.get("media_type") == "person":
                return bool(item.get("profile_path"))
            if item.get("media_type") in {"movie", "tv"}:
                return bool(item.get("poster_path"))
            return True

        filtered = [item for item in results if _displayable(item)]
        filtered.sort(key=lambda item: item.get("popularity") or 0, reverse=True)
        return filtered[:limit]

    async def title_metadata(self, media_type: str, title_id: int) -> TitleMetadata:
        details = await self.title_details(media_type, title_id)
        return self.extract_metadata(details, media_type=media_type, title_id=title_id)

    def extract_metadata(
        self, details: Mapping[str, Any], *, media_type: str, title_id: int
    ) -> TitleMetadata:
        """Pick the cached watchlist fields out of a detail payload."""

        if media_type == "tv":
            title = details.get("name") or details.get("original_name")
            release_date = details.get("first_air_date")
        else:
            title = details.get("title") or details.get("original_title")
            release_date = details.get("release_date")

        genres = details.get("genres") or []
        first_genre = genres[0] if genres and isinstance(genres[0], dict) else {}
        try:
            rating = float(details.get("vote_average") or 0)
        except (TypeError, ValueError):
            rating = 0.0

        return TitleMetadata(
            title_id=title_id,
            media_type=media_type,
            title=str(title or ""),
            poster_url=self.image_url(details.get("poster_path")),
            year=extract_year(release_date),
            rating=rating,
            genre=str(first_genre.get("name") or ""),
        )

    def image_url(self, path: str | None, size: str = "w500") -> str:
        if not path:
            return PLACEHOLDER_POSTER
        if path.startswith("http"):
            return path
        return f"{self._image_base_url}/{size}{path}"
