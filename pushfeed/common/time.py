"""Common time utilities."""

from __future__ import annotations

import datetime as dt


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp suitable for DB defaults."""
    return dt.datetime.now(dt.UTC)


def from_epoch_seconds(value: int | float) -> dt.datetime:
    """Convert a Unix timestamp into an aware UTC datetime."""
    return dt.datetime.fromtimestamp(value, tz=dt.UTC)
