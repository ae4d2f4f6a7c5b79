"""Entry point for the FastAPI-powered CineTaste service."""

from __future__ import annotations

import json
import logging
import secrets
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import timedelta
from typing import Any, TypeVar

import httpx
from authlib.integrations.starlette_client import OAuthError
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from .auth import (
    SESSION_CALLBACK_KEY,
    SESSION_USER_KEY,
    Identity,
    build_oauth,
    get_token_bridge,
    require_identity,
    resolve_post_login_redirect,
    session_user,
)
from .config import Settings, settings
from .database import Database
from .errors import (
    InvalidInput,
    NotFound,
    ServiceError,
    ServiceNotConfigured,
    UpstreamUnavailable,
)
from .models import (
    AddWatchlistRequest,
    ProviderTokenRequest,
    ProviderTokenResponse,
    RecentlyViewedItemOut,
    RecordViewRequest,
    SuccessResponse,
    ToggleWatchedRequest,
    TokenRequest,
    TokenResponse,
    UserPayload,
    WatchlistItemOut,
)
from .services.identity_provider import FirebaseTokenVerifier
from .services.mailer import WatchlistNotifier
from .services.recently_viewed import RecentlyViewedService
from .services.tmdb import TMDBClient, UpstreamError
from .services.tokens import TokenBridge
from .services.users import UserStore
from .services.watchlist import WatchlistService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ServiceT = TypeVar("ServiceT")

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    app_settings: Settings = fastapi_app.state.settings
    exit_stack = AsyncExitStack()

    tmdb_client_kwargs: dict[str, Any] = {
        "base_url": str(app_settings.tmdb_api_url),
        "timeout": httpx.Timeout(15.0, connect=5.0),
    }
    transport = getattr(fastapi_app.state, "tmdb_transport", None)
    if transport is not None:
        tmdb_client_kwargs["transport"] = transport
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(**tmdb_client_kwargs)
    )

    database = Database(app_settings.database_url)
    await database.create_all()

    catalog = TMDBClient(app_settings, tmdb_http_client)
    notifier = WatchlistNotifier(app_settings)
    fastapi_app.state.database = database
    fastapi_app.state.catalog = catalog
    fastapi_app.state.user_store = UserStore(database.session_factory)
    fastapi_app.state.watchlist_service = WatchlistService(
        database.session_factory, catalog, notifier
    )
    fastapi_app.state.recently_viewed_service = RecentlyViewedService(
        database.session_factory, catalog, limit=app_settings.recently_viewed_limit
    )
    fastapi_app.state.provider_verifier = (
        FirebaseTokenVerifier(app_settings.firebase_project_id)
        if app_settings.firebase_project_id
        else None
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app(
    app_settings: Settings | None = None,
    *,
    tmdb_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    app_settings = app_settings or settings
    fastapi_app = FastAPI(
        title=app_settings.app_name,
        description="Movie and TV watchlists backed by TMDB",
        version="1.0.0",
        lifespan=lifespan,
    )

    signing_secret = app_settings.auth_secret
    if not signing_secret:
        logger.warning(
            "AUTH_SECRET is not set; bridge tokens will not survive a restart"
        )
        signing_secret = secrets.token_urlsafe(32)

    fastapi_app.state.settings = app_settings
    fastapi_app.state.tmdb_transport = tmdb_transport
    fastapi_app.state.token_bridge = TokenBridge(
        signing_secret,
        bootstrap_ttl=timedelta(seconds=app_settings.bootstrap_token_ttl_seconds),
        provider_ttl=timedelta(seconds=app_settings.provider_token_ttl_seconds),
        session_ttl=timedelta(seconds=app_settings.mobile_session_ttl_seconds),
    )
    fastapi_app.state.oauth = build_oauth(app_settings)

    allow_any_origin = "*" in app_settings.cors_origins
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=list(app_settings.cors_origins),
        allow_credentials=not allow_any_origin,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )
    fastapi_app.add_middleware(
        SessionMiddleware,
        secret_key=app_settings.session_secret or signing_secret,
        same_site="lax",
        https_only=app_settings.environment == "production",
    )

    register_exception_handlers(fastapi_app)
    register_routes(fastapi_app)
    return fastapi_app


def _state_service(request: Request, name: str, expected: type[ServiceT]) -> ServiceT:
    service = getattr(request.app.state, name, None)
    if not isinstance(service, expected):
        raise RuntimeError(f"{name} not initialised")
    return service


def get_watchlist_service(request: Request) -> WatchlistService:
    return _state_service(request, "watchlist_service", WatchlistService)


def get_recently_viewed_service(request: Request) -> RecentlyViewedService:
    return _state_service(request, "recently_viewed_service", RecentlyViewedService)


def get_catalog(request: Request) -> TMDBClient:
    return _state_service(request, "catalog", TMDBClient)


def get_user_store(request: Request) -> UserStore:
    return _state_service(request, "user_store", UserStore)


def register_exception_handlers(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(ServiceError)
    async def service_error_handler(_: Request, exc: ServiceError) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @fastapi_app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        _: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = [
            {
                "loc": [str(part) for part in error.get("loc", ())],
                "msg": str(error.get("msg", "")),
            }
            for error in exc.errors()
        ]
        return JSONResponse(
            {"error": "Invalid request", "details": details}, status_code=400
        )

    @fastapi_app.exception_handler(StarletteHTTPException)
    async def http_error_handler(
        _: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            {"error": str(exc.detail)},
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @fastapi_app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
        )
        return JSONResponse({"error": "Internal server error"}, status_code=500)


def register_routes(fastapi_app: FastAPI) -> None:
    register_auth_routes(fastapi_app)
    register_watchlist_routes(fastapi_app)
    register_recently_viewed_routes(fastapi_app)
    register_catalog_routes(fastapi_app)

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}


def register_auth_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.post("/auth/bridge-token", response_model=TokenResponse)
    async def issue_bridge_token(request: Request) -> TokenResponse:
        bridge = get_token_bridge(request)
        return TokenResponse(token=bridge.issue_bootstrap_token(session_user(request)))

    @fastapi_app.get("/auth/session-from-token")
    async def session_from_token_status() -> dict[str, str]:
        return {"message": "Mobile session endpoint is working"}

    @fastapi_app.post("/auth/session-from-token")
    async def session_from_token(request: Request) -> JSONResponse:
        raw_body = await request.body()
        if not raw_body.strip():
            raise InvalidInput("Request body is empty")
        try:
            payload = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidInput("Invalid JSON format") from exc
        token = payload.get("token") if isinstance(payload, dict) else None
        if not token or not isinstance(token, str):
            raise InvalidInput("Token required")

        session = get_token_bridge(request).resolve_session(token)
        return JSONResponse(session.model_dump(mode="json", by_alias=True))

    @fastapi_app.post("/auth/verify-token")
    async def verify_token(
        request: Request,
        body: TokenRequest,
        user_store: UserStore = Depends(get_user_store),
    ) -> dict[str, Any]:
        if not body.token:
            raise InvalidInput("Token required")
        claims = get_token_bridge(request).verify(body.token)
        user = await user_store.get(claims.user_id)
        if user is None:
            raise NotFound("User not found")
        return {"user": UserPayload.model_validate(user).model_dump(mode="json")}

    @fastapi_app.post("/auth/provider-token", response_model=ProviderTokenResponse)
    async def provider_token(
        request: Request,
        body: ProviderTokenRequest,
        user_store: UserStore = Depends(get_user_store),
    ) -> ProviderTokenResponse:
        if not body.firebase_id_token:
            raise InvalidInput("Firebase ID token required")
        verifier = getattr(request.app.state, "provider_verifier", None)
        if not isinstance(verifier, FirebaseTokenVerifier):
            raise ServiceNotConfigured("Firebase sign-in is not configured")

        identity = await verifier.verify(body.firebase_id_token)
        profile = identity.to_user()
        user = await user_store.upsert_from_provider(
            "firebase",
            identity.uid,
            email=profile["email"],
            name=profile["name"],
            image=profile["image"],
            user_id=identity.uid,
        )
        payload = UserPayload.model_validate(user)
        token = get_token_bridge(request).issue_provider_token(payload.model_dump())
        logger.info("Issued provider token for %s", payload.email)
        return ProviderTokenResponse(token=token, user=payload)

    @fastapi_app.get("/auth/signin/google")
    async def google_signin(
        request: Request,
        callback_url: str | None = Query(default=None, alias="callbackUrl"),
    ):
        oauth = request.app.state.oauth
        if oauth is None:
            raise ServiceNotConfigured("Google sign-in is not configured")
        if callback_url:
            request.session[SESSION_CALLBACK_KEY] = callback_url
        redirect_uri = request.url_for("google_oauth_callback")
        return await oauth.google.authorize_redirect(request, str(redirect_uri))

    @fastapi_app.get("/auth/callback/google", name="google_oauth_callback")
    async def google_callback(
        request: Request, user_store: UserStore = Depends(get_user_store)
    ) -> RedirectResponse:
        oauth = request.app.state.oauth
        if oauth is None:
            raise ServiceNotConfigured("Google sign-in is not configured")
        base_url = str(request.base_url)
        try:
            token = await oauth.google.authorize_access_token(request)
        except OAuthError as exc:
            logger.warning("Google sign-in failed: %s", exc.error)
            return RedirectResponse(
                f"{base_url.rstrip('/')}/auth/error?error={exc.error}", status_code=302
            )

        userinfo = token.get("userinfo") or await oauth.google.userinfo(token=token)
        user = await user_store.upsert_from_provider(
            "google",
            str(userinfo["sub"]),
            email=userinfo.get("email"),
            name=userinfo.get("name"),
            image=userinfo.get("picture"),
        )
        session_payload = UserPayload.model_validate(user).model_dump()
        request.session[SESSION_USER_KEY] = session_payload

        callback_url = request.session.pop(SESSION_CALLBACK_KEY, None)
        target = resolve_post_login_redirect(
            callback_url,
            base_url,
            mobile_scheme=request.app.state.settings.mobile_scheme,
            bridge=get_token_bridge(request),
            user=session_payload,
        )
        return RedirectResponse(target, status_code=302)

    @fastapi_app.post("/auth/signout", response_model=SuccessResponse)
    async def signout(request: Request) -> SuccessResponse:
        request.session.clear()
        return SuccessResponse()

    @fastapi_app.get("/auth/session")
    async def current_session(request: Request) -> dict[str, Any]:
        user = session_user(request)
        if user is None:
            return {}
        return {"user": user}


def register_watchlist_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/watchlist", response_model=list[WatchlistItemOut])
    async def list_watchlist(
        identity: Identity = Depends(require_identity),
        service: WatchlistService = Depends(get_watchlist_service),
    ):
        return await service.list_items(identity.user_id)

    @fastapi_app.post("/watchlist", response_model=WatchlistItemOut)
    async def add_to_watchlist(
        body: AddWatchlistRequest,
        identity: Identity = Depends(require_identity),
        service: WatchlistService = Depends(get_watchlist_service),
    ):
        return await service.add_item(
            identity.as_requester(),
            body.title_id,
            body.media_type,
            send_email=body.send_email,
        )

    @fastapi_app.put("/watchlist/{item_id}", response_model=WatchlistItemOut)
    async def toggle_watched(
        item_id: str,
        body: ToggleWatchedRequest,
        identity: Identity = Depends(require_identity),
        service: WatchlistService = Depends(get_watchlist_service),
    ):
        return await service.set_watched(identity.user_id, item_id, body.watched)

    @fastapi_app.delete("/watchlist/{item_id}", response_model=SuccessResponse)
    async def remove_from_watchlist(
        item_id: str,
        identity: Identity = Depends(require_identity),
        service: WatchlistService = Depends(get_watchlist_service),
    ) -> SuccessResponse:
        await service.remove_item(identity.user_id, item_id)
        return SuccessResponse()

    @fastapi_app.delete("/watchlist")
    async def clear_watchlist(
        identity: Identity = Depends(require_identity),
        service: WatchlistService = Depends(get_watchlist_service),
    ) -> dict[str, Any]:
        deleted = await service.clear(identity.user_id)
        return {"success": True, "deleted": deleted}


def register_recently_viewed_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/recently-viewed", response_model=list[RecentlyViewedItemOut])
    async def list_recently_viewed(
        identity: Identity = Depends(require_identity),
        service: RecentlyViewedService = Depends(get_recently_viewed_service),
    ):
        return await service.list_items(identity.user_id)

    @fastapi_app.post("/recently-viewed", response_model=RecentlyViewedItemOut)
    async def record_view(
        body: RecordViewRequest,
        identity: Identity = Depends(require_identity),
        service: RecentlyViewedService = Depends(get_recently_viewed_service),
    ):
        return await service.record_view(
            identity.user_id,
            body.title_id,
            body.media_type,
            from_watchlist=body.from_watchlist,
        )

    @fastapi_app.delete("/recently-viewed")
    async def clear_recently_viewed(
        identity: Identity = Depends(require_identity),
        service: RecentlyViewedService = Depends(get_recently_viewed_service),
    ) -> dict[str, Any]:
        deleted = await service.clear(identity.user_id)
        return {"success": True, "deleted": deleted}


def register_catalog_routes(fastapi_app: FastAPI) -> None:
    def _media_type(value: str | None, *, allowed: set[str]) -> str:
        media_type = (value or "movie").strip().lower()
        if media_type not in allowed:
            raise InvalidInput("Invalid media type")
        return media_type

    @fastapi_app.get("/catalog/suggestions")
    async def search_suggestions(
        q: str | None = None, catalog: TMDBClient = Depends(get_catalog)
    ) -> dict[str, Any]:
        query = (q or "").strip()
        if len(query) < 2:
            return {"results": []}
        try:
            results = await catalog.suggestions(query)
        except UpstreamError:
            logger.exception("Error fetching search suggestions for %r", query)
            return {"results": []}
        return {"results": results}

    @fastapi_app.get("/catalog/genres")
    async def movie_genres(catalog: TMDBClient = Depends(get_catalog)) -> Any:
        try:
            return await catalog.movie_genres()
        except UpstreamError as exc:
            raise UpstreamUnavailable("Failed to fetch genres", status_code=500) from exc

    @fastapi_app.get("/catalog/discover")
    async def discover(
        genre: str | None = None,
        year: str | None = None,
        sort_by: str | None = Query(default=None, alias="sortBy"),
        page: int = Query(default=1, ge=1, le=500),
        catalog: TMDBClient = Depends(get_catalog),
    ) -> Any:
        try:
            return await catalog.discover_movies(
                genre=genre, year=year, sort_by=sort_by, page=page
            )
        except UpstreamError as exc:
            raise UpstreamUnavailable("Failed to fetch movies", status_code=500) from exc

    @fastapi_app.get("/catalog/{title_id}")
    async def title_details(
        title_id: int,
        media_type: str = Query(default="movie", alias="type"),
        catalog: TMDBClient = Depends(get_catalog),
    ) -> dict[str, Any]:
        media_type = _media_type(media_type, allowed={"movie", "tv"})
        try:
            return await catalog.title_bundle(media_type, title_id)
        except UpstreamError as exc:
            label = "TV show" if media_type == "tv" else "movie"
            raise UpstreamUnavailable(
                f"Failed to fetch {label} details", status_code=500
            ) from exc

    @fastapi_app.get("/catalog")
    async def list_catalog(
        q: str | None = None,
        category: str | None = None,
        media_type: str = Query(default="movie", alias="type"),
        page: int = Query(default=1, ge=1, le=500),
        catalog: TMDBClient = Depends(get_catalog),
    ) -> Any:
        query = (q or "").strip()
        try:
            if query:
                media_type = _media_type(media_type, allowed={"movie", "tv", "multi"})
                return await catalog.search(media_type, query, page)
            media_type = _media_type(media_type, allowed={"movie", "tv"})
            return await catalog.list_titles(media_type, category, page)
        except UpstreamError as exc:
            label = "TV shows" if media_type == "tv" else "movies"
            raise UpstreamUnavailable(f"Failed to fetch {label}", status_code=500) from exc

    @fastapi_app.get("/people/{person_id}")
    async def person_details(
        person_id: int, catalog: TMDBClient = Depends(get_catalog)
    ) -> dict[str, Any]:
        try:
            return await catalog.person_bundle(person_id)
        except UpstreamError as exc:
            raise UpstreamUnavailable(
                "Failed to fetch person details", status_code=500
            ) from exc


app = create_app()

