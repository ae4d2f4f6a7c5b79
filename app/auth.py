"""Request identity resolution and the Google sign-in helpers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal
from urllib.parse import urlencode, urlparse

from authlib.integrations.starlette_client import OAuth
from fastapi import Request

from .config import Settings
from .errors import InvalidOrExpiredToken, Unauthenticated
from .services.tokens import TokenBridge
from .services.watchlist import Requester

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user"
SESSION_CALLBACK_KEY = "callback_url"
EXPO_SCHEME = "exp://"


@dataclass(slots=True, frozen=True)
class Identity:
    """The effective caller of a protected endpoint."""

    user_id: str
    email: str | None = None
    name: str | None = None
    image: str | None = None
    source: Literal["session", "bearer"] = "session"

    def as_requester(self) -> Requester:
        return Requester(user_id=self.user_id, email=self.email, name=self.name)


def session_user(request: Request) -> dict[str, Any] | None:
    """Return the user stored in the signed cookie session, if any."""

    if "session" not in request.scope:
        return None
    user = request.session.get(SESSION_USER_KEY)
    if isinstance(user, dict) and user.get("id"):
        return user
    return None


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization")
    if not header:
        return None
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    credentials = credentials.strip()
    return credentials or None


def resolve_identity(request: Request, bridge: TokenBridge) -> Identity | None:
    """Resolve the caller: cookie session first, then a bearer bridge token."""

    user = session_user(request)
    if user is not None:
        return Identity(
            user_id=str(user["id"]),
            email=user.get("email"),
            name=user.get("name"),
            image=user.get("image"),
            source="session",
        )

    token = bearer_token(request)
    if token is None:
        return None
    try:
        claims = bridge.verify(token)
    except InvalidOrExpiredToken:
        return None
    return Identity(
        user_id=claims.user_id,
        email=claims.email,
        name=claims.name,
        image=claims.image,
        source="bearer",
    )


def get_token_bridge(request: Request) -> TokenBridge:
    bridge = getattr(request.app.state, "token_bridge", None)
    if not isinstance(bridge, TokenBridge):
        raise RuntimeError("Token bridge not initialised")
    return bridge


async def require_identity(request: Request) -> Identity:
    """FastAPI dependency guarding endpoints that need a signed-in caller."""

    identity = resolve_identity(request, get_token_bridge(request))
    if identity is None:
        raise Unauthenticated()
    return identity


def build_oauth(settings: Settings) -> OAuth | None:
    """Register the Google OpenID Connect client when credentials are configured."""

    if not settings.google_oauth_enabled:
        logger.info("Google OAuth credentials missing; web sign-in disabled")
        return None
    oauth = OAuth()
    oauth.register(
        name="google",
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    return oauth


def resolve_post_login_redirect(
    url: str | None,
    base_url: str,
    *,
    mobile_scheme: str,
    bridge: TokenBridge,
    user: dict[str, Any] | None,
) -> str:
    """Pick where to send the browser after a successful sign-in.

    Expo development clients cannot read the web session, so they are sent to
    the app's deep link with a bootstrap token attached.
    """

    base_url = base_url.rstrip("/")
    if not url:
        return base_url
    if url.startswith(mobile_scheme):
        return url
    if url.startswith(EXPO_SCHEME):
        token = bridge.issue_bootstrap_token(user)
        query = urlencode({"success": "true", "token": token})
        return f"{mobile_scheme}auth-callback?{query}"
    if url.startswith("/") and not url.startswith("//"):
        return f"{base_url}{url}"

    parsed = urlparse(url)
    base = urlparse(base_url)
    if (parsed.scheme, parsed.netloc) == (base.scheme, base.netloc):
        return url
    return base_url
