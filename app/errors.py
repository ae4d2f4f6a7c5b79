"""Exception hierarchy shared by the services and the HTTP layer."""

from __future__ import annotations


class ServiceError(Exception):
    """Base error carrying the HTTP status it should be reported with."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, status_code: int | None = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class Unauthenticated(ServiceError):
    status_code = 401
    default_message = "Unauthorized"


class InvalidInput(ServiceError):
    status_code = 400
    default_message = "Invalid request"


class NotFound(ServiceError):
    status_code = 404
    default_message = "Not found"


class AlreadyTracked(ServiceError):
    status_code = 400
    default_message = "Already in watchlist"


class UpstreamUnavailable(ServiceError):
    """The catalog could not supply data needed by the operation."""

    status_code = 404
    default_message = "Catalog data unavailable"


class InvalidOrExpiredToken(ServiceError):
    status_code = 401
    default_message = "Invalid or expired token"


class InvalidCredential(ServiceError):
    status_code = 401
    default_message = "Invalid credential"


class ServiceNotConfigured(ServiceError):
    status_code = 503
    default_message = "Service not configured"


class InternalError(ServiceError):
    pass
