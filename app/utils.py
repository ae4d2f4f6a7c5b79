"""Utility helpers for the CineTaste service."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

_EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, as stored in the database."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    """Return a new opaque row identifier."""

    return uuid.uuid4().hex


def to_epoch_ms(moment: datetime) -> int:
    """Convert a naive-UTC or aware datetime into epoch milliseconds."""

    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    """Inverse of :func:`to_epoch_ms`, naive UTC."""

    return _EPOCH + timedelta(milliseconds=value)


def extract_year(value: Any) -> str:
    """Return the four-digit year prefix of a TMDB date string, or ``""``."""

    if not isinstance(value, str) or len(value) < 4:
        return ""
    year = value.split("-", 1)[0]
    if len(year) != 4 or not year.isdigit():
        return ""
    return year

