"""Verification of Firebase ID tokens presented by the mobile client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from google.auth import exceptions as google_exceptions
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from starlette.concurrency import run_in_threadpool

from ..errors import InvalidCredential

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProviderIdentity:
    uid: str
    email: str | None
    name: str | None
    picture: str | None

    def to_user(self) -> dict[str, Any]:
        return {
            "id": self.uid,
            "email": self.email,
            "name": self.name or self.email,
            "image": self.picture,
        }


class FirebaseTokenVerifier:
    """Checks Firebase ID token signatures and claims against Google's keys.

    Built once when the application starts; the transport request object keeps
    a pooled HTTP session for fetching the public certificates.
    """

    def __init__(self, project_id: str):
        if not project_id:
            raise ValueError("A Firebase project id is required")
        self._project_id = project_id
        self._request = google_requests.Request()

    @property
    def project_id(self) -> str:
        return self._project_id

    async def verify(self, token: str) -> ProviderIdentity:
        try:
            claims = await run_in_threadpool(
                id_token.verify_firebase_token,
                token,
                self._request,
                self._project_id,
            )
        except (ValueError, google_exceptions.GoogleAuthError) as exc:
            logger.warning("Firebase ID token rejected: %s", exc)
            raise InvalidCredential("Invalid Firebase ID token") from exc

        if not claims or not claims.get("sub"):
            raise InvalidCredential("Invalid Firebase ID token")

        identity = ProviderIdentity(
            uid=str(claims.get("user_id") or claims["sub"]),
            email=claims.get("email"),
            name=claims.get("name"),
            picture=claims.get("picture"),
        )
        logger.info("Firebase ID token verified for %s", identity.uid)
        return identity
