"""Pydantic models describing request and response payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

MediaType = Literal["movie", "tv"]
MEDIA_TYPES: frozenset[str] = frozenset({"movie", "tv"})


def _isoformat_utc(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="milliseconds") + "Z"


# Stored timestamps are naive UTC; render them the way browsers emit them.
UtcDateTime = Annotated[datetime, PlainSerializer(_isoformat_utc, when_used="json")]


class CamelModel(BaseModel):
    """Base model serialising to camelCase and reading ORM attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class UserPayload(CamelModel):
    id: str
    name: str | None = None
    email: str | None = None
    image: str | None = None


class SessionPayload(CamelModel):
    """Session-shaped response handed to the mobile client."""

    user: UserPayload
    expires: UtcDateTime
    token_expires: UtcDateTime | None = None


class WatchlistItemOut(CamelModel):
    id: str
    user_id: str
    title_id: int
    media_type: str
    title: str
    poster_url: str | None = None
    year: str = ""
    rating: float = 0.0
    genre: str = ""
    added_at: UtcDateTime
    watched: bool = False
    watched_at: UtcDateTime | None = None


class RecentlyViewedItemOut(CamelModel):
    id: str
    user_id: str
    title_id: int
    media_type: str
    title: str
    poster_url: str | None = None
    year: str = ""
    rating: float = 0.0
    genre: str = ""
    viewed_at: UtcDateTime


class AddWatchlistRequest(BaseModel):
    """Body of ``POST /watchlist``; ``movieId`` is accepted for older clients."""

    model_config = ConfigDict(populate_by_name=True)

    title_id: int = Field(validation_alias=AliasChoices("titleId", "movieId", "title_id"))
    media_type: str = Field(
        default="movie", validation_alias=AliasChoices("mediaType", "media_type")
    )
    send_email: bool = Field(
        default=False,
        validation_alias=AliasChoices("sendEmail", "sendmail", "send_email"),
    )


class ToggleWatchedRequest(BaseModel):
    watched: bool


class RecordViewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title_id: int = Field(validation_alias=AliasChoices("titleId", "movieId", "title_id"))
    media_type: str = Field(
        default="movie", validation_alias=AliasChoices("mediaType", "media_type")
    )
    from_watchlist: bool = Field(
        default=False,
        validation_alias=AliasChoices("fromWatchlist", "from_watchlist"),
    )


class TokenRequest(BaseModel):
    token: str | None = None


class ProviderTokenRequest(BaseModel):
    firebase_id_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("firebaseIdToken", "idToken", "firebase_id_token"),
    )


class TokenResponse(BaseModel):
    token: str


class ProviderTokenResponse(BaseModel):
    token: str
    user: UserPayload


class SuccessResponse(BaseModel):
    success: bool = True
