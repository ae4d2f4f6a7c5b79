"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Literal

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="CineTaste", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./cinetaste.db", alias="DATABASE_URL"
    )

    auth_secret: str | None = Field(
        default=None,
        alias="AUTH_SECRET",
        validation_alias=AliasChoices("AUTH_SECRET", "NEXTAUTH_SECRET"),
    )
    session_secret: str | None = Field(default=None, alias="SESSION_SECRET")

    google_client_id: str | None = Field(default=None, alias="GOOGLE_CLIENT_ID")
    google_client_secret: str | None = Field(
        default=None, alias="GOOGLE_CLIENT_SECRET"
    )
    firebase_project_id: str | None = Field(
        default=None, alias="FIREBASE_PROJECT_ID"
    )

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_image_base_url: str = Field(
        default="https://image.tmdb.org/t/p", alias="TMDB_IMAGE_BASE_URL"
    )

    smtp_host: str | None = Field(
        default=None,
        alias="SMTP_HOST",
        validation_alias=AliasChoices("SMTP_HOST", "EMAIL_SERVER_HOST"),
    )
    smtp_port: int = Field(
        default=465,
        alias="SMTP_PORT",
        validation_alias=AliasChoices("SMTP_PORT", "EMAIL_SERVER_PORT"),
    )
    smtp_user: str | None = Field(
        default=None,
        alias="SMTP_USER",
        validation_alias=AliasChoices("SMTP_USER", "EMAIL_SERVER_USER"),
    )
    smtp_password: str | None = Field(
        default=None,
        alias="SMTP_PASSWORD",
        validation_alias=AliasChoices("SMTP_PASSWORD", "EMAIL_SERVER_PASSWORD"),
    )
    smtp_from: str | None = Field(
        default=None,
        alias="SMTP_FROM",
        validation_alias=AliasChoices("SMTP_FROM", "EMAIL_FROM"),
    )
    smtp_use_ssl: bool = Field(default=True, alias="SMTP_USE_SSL")

    mobile_scheme: str = Field(default="cinetaste://", alias="MOBILE_SCHEME")
    bootstrap_token_ttl_seconds: int = Field(
        default=300, alias="BOOTSTRAP_TOKEN_TTL", ge=30, le=3_600
    )
    provider_token_ttl_seconds: int = Field(
        default=604_800, alias="PROVIDER_TOKEN_TTL", ge=300
    )
    mobile_session_ttl_seconds: int = Field(
        default=86_400, alias="MOBILE_SESSION_TTL", ge=60
    )
    recently_viewed_limit: int = Field(
        default=20, alias="RECENTLY_VIEWED_LIMIT", ge=1, le=200
    )

    cors_origins: tuple[str, ...] = Field(default=("*",), alias="CORS_ORIGINS")

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("mobile_scheme", mode="before")
    @classmethod
    def _normalise_mobile_scheme(cls, value: object) -> str:
        """Accept ``cinetaste``, ``cinetaste:`` or ``cinetaste://``."""

        scheme = str(value or "").strip()
        scheme = scheme.split(":", 1)[0].strip().lower()
        if not scheme:
            raise ValueError("MOBILE_SCHEME must not be empty")
        return f"{scheme}://"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, value: object) -> tuple[str, ...]:
        if value is None:
            return ("*",)
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("CORS_ORIGINS must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            entry = entry.rstrip("/")
            if entry and entry not in cleaned:
                cleaned.append(entry)
        return tuple(cleaned) or ("*",)

    @property
    def google_oauth_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def smtp_enabled(self) -> bool:
        """Return whether enough SMTP settings exist to send mail."""

        return bool(self.smtp_host and self.smtp_from)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
