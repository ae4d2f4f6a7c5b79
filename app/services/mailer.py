"""Watchlist notification emails sent over SMTP."""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from html import escape

from starlette.concurrency import run_in_threadpool

from ..config import Settings

logger = logging.getLogger(__name__)


class WatchlistNotifier:
    """Sends the "added to your watchlist" email.

    When SMTP is not configured the notification is logged and skipped.
    """

    def __init__(self, settings: Settings):
        self._settings = settings

    @property
    def enabled(self) -> bool:
        return self._settings.smtp_enabled

    def build_message(
        self,
        recipient: str,
        user_name: str,
        title: str,
        poster_url: str | None = None,
    ) -> EmailMessage:
        safe_name = escape(user_name)
        safe_title = escape(title)
        poster_html = ""
        if poster_url and poster_url.startswith("http"):
            poster_html = (
                f'<img src="{escape(poster_url, quote=True)}" alt="{safe_title}" '
                'style="max-width: 200px; border-radius: 8px;">'
            )

        message = EmailMessage()
        message["Subject"] = f"{title} added to your watchlist"
        message["From"] = self._settings.smtp_from or ""
        message["To"] = recipient
        message.set_content(
            f"Hi {user_name}!\n\n"
            f"You've successfully added {title} to your watchlist.\n"
            "You can view your complete watchlist anytime by visiting your dashboard.\n\n"
            "Happy watching!\n"
        )
        message.add_alternative(
            '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
            f"<h2>Hi {safe_name}!</h2>"
            f"<p>You've successfully added <strong>{safe_title}</strong> to your watchlist.</p>"
            f"{poster_html}"
            "<p>You can view your complete watchlist anytime by visiting your dashboard.</p>"
            "<p>Happy watching!</p>"
            "</div>",
            subtype="html",
        )
        return message

    async def send_watchlist_added(
        self,
        recipient: str,
        user_name: str,
        title: str,
        poster_url: str | None = None,
    ) -> None:
        if not self.enabled:
            logger.info("SMTP not configured, skipping watchlist email to %s", recipient)
            return
        message = self.build_message(recipient, user_name, title, poster_url)
        await run_in_threadpool(self._deliver, message)
        logger.info("Sent watchlist email for %s to %s", title, recipient)

    def _deliver(self, message: EmailMessage) -> None:
        settings = self._settings
        if settings.smtp_use_ssl:
            smtp: smtplib.SMTP = smtplib.SMTP_SSL(
                settings.smtp_host,
                settings.smtp_port,
                context=ssl.create_default_context(),
                timeout=20,
            )
        else:
            smtp = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=20)
        with smtp:
            if not settings.smtp_use_ssl:
                smtp.ehlo()
                if smtp.has_extn("starttls"):
                    smtp.starttls(context=ssl.create_default_context())
            if settings.smtp_user and settings.smtp_password:
                smtp.login(settings.smtp_user, settings.smtp_password)
            smtp.send_message(message)
