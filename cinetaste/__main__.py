"""Module executed when running ``python -m cinetaste``."""

from __future__ import annotations

import logging

import uvicorn

from app.config import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    """Serve the API with uvicorn on the configured host and port.

    Forwarded headers are trusted so OAuth callback URLs keep the public
    scheme and host when the service runs behind a reverse proxy.
    """

    logging.basicConfig(level=logging.INFO)
    settings = get_settings()
    development = settings.environment == "development"
    logger.info(
        "Starting %s on %s:%s (%s)",
        settings.app_name,
        settings.server_host,
        settings.server_port,
        settings.environment,
    )
    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=development,
        proxy_headers=True,
        forwarded_allow_ips="*",
        log_level="debug" if development else "info",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
