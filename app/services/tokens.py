"""Signed bridge tokens letting the mobile client reuse a web sign-in."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Literal

from jose import JWTError, jwt

from ..errors import InvalidOrExpiredToken, Unauthenticated
from ..models import SessionPayload, UserPayload
from ..utils import from_epoch_ms, to_epoch_ms, utcnow

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

TokenKind = Literal["bootstrap", "provider"]


@dataclass(slots=True, frozen=True)
class BridgeClaims:
    """Identity embedded in a verified bridge token."""

    user_id: str
    email: str | None
    name: str | None
    image: str | None
    issued_at_ms: int
    expires_at: datetime
    kind: str

    def to_user(self) -> UserPayload:
        return UserPayload(
            id=self.user_id, name=self.name, email=self.email, image=self.image
        )


class TokenBridge:
    """Issue and verify stateless HS256 tokens.

    Tokens cannot be revoked individually; rotating the secret invalidates all
    of them. Expiry is checked against the injected clock so that a token is
    valid for ``[issued, issued + ttl)``.
    """

    def __init__(
        self,
        secret: str,
        *,
        bootstrap_ttl: timedelta = timedelta(minutes=5),
        provider_ttl: timedelta = timedelta(days=7),
        session_ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ):
        if not secret:
            raise ValueError("A signing secret is required for bridge tokens")
        self._secret = secret
        self._ttls: dict[str, timedelta] = {
            "bootstrap": bootstrap_ttl,
            "provider": provider_ttl,
        }
        self._session_ttl = session_ttl
        self._clock = clock

    def issue_bootstrap_token(
        self, session_user: dict[str, Any] | None, *, now: datetime | None = None
    ) -> str:
        """Mint a five-minute token for the user of an active cookie session."""

        if not session_user or not session_user.get("id"):
            raise Unauthenticated("No active session")
        token = self._issue(session_user, "bootstrap", now=now)
        logger.info("Created mobile token for user %s", session_user.get("email"))
        return token

    def issue_provider_token(
        self, user: dict[str, Any], *, now: datetime | None = None
    ) -> str:
        """Mint a long-lived token for an identity verified by the provider."""

        return self._issue(user, "provider", now=now)

    def _issue(
        self, user: dict[str, Any], kind: TokenKind, *, now: datetime | None
    ) -> str:
        issued_at_ms = to_epoch_ms(now or self._clock())
        expires_at_ms = issued_at_ms + self._ttl_ms(kind)
        claims = {
            "userId": str(user["id"]),
            "email": user.get("email"),
            "name": user.get("name"),
            "image": user.get("image"),
            "timestamp": issued_at_ms,
            "kind": kind,
            "iat": issued_at_ms // 1000,
            # Rounded up so that standard JWT checks never expire it early.
            "exp": -(-expires_at_ms // 1000),
        }
        return jwt.encode(claims, self._secret, algorithm=ALGORITHM)

    def _ttl_ms(self, kind: str) -> int:
        return self._ttls[kind] // timedelta(milliseconds=1)

    def verify(self, token: str | None, *, now: datetime | None = None) -> BridgeClaims:
        """Return the claims of a valid token or raise ``InvalidOrExpiredToken``."""

        if not token:
            raise InvalidOrExpiredToken()
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"verify_exp": False, "verify_iat": False},
            )
        except JWTError as exc:
            logger.info("Token verification failed: %s", exc)
            raise InvalidOrExpiredToken() from exc

        user_id = payload.get("userId")
        expires = payload.get("exp")
        if not user_id or not isinstance(expires, (int, float)):
            raise InvalidOrExpiredToken()

        kind = str(payload.get("kind") or "bootstrap")
        issued_at_ms = payload.get("timestamp")
        expires_at_ms = int(expires * 1000)
        if isinstance(issued_at_ms, int) and kind in self._ttls:
            expires_at_ms = min(expires_at_ms, issued_at_ms + self._ttl_ms(kind))
        else:
            issued_at_ms = int(payload.get("iat") or 0) * 1000

        if to_epoch_ms(now or self._clock()) >= expires_at_ms:
            raise InvalidOrExpiredToken()

        return BridgeClaims(
            user_id=str(user_id),
            email=payload.get("email"),
            name=payload.get("name"),
            image=payload.get("image"),
            issued_at_ms=issued_at_ms,
            expires_at=from_epoch_ms(expires_at_ms),
            kind=kind,
        )

    def resolve_session(
        self, token: str | None, *, now: datetime | None = None
    ) -> SessionPayload:
        """Shape a verified token like a cookie session.

        ``expires`` is a fixed window from now and does not follow the token's
        own expiry, which is reported separately as ``token_expires``.
        """

        current = now or self._clock()
        claims = self.verify(token, now=current)
        logger.info("Returning session for user %s", claims.email)
        return SessionPayload(
            user=claims.to_user(),
            expires=current + self._session_ttl,
            token_expires=claims.expires_at,
        )
