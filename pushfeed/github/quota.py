"""Rate-limit quota snapshots derived from GitHub response headers."""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from pushfeed.common.time import from_epoch_seconds, utcnow

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

REMAINING_HEADER = "x-ratelimit-remaining"
RESET_HEADER = "x-ratelimit-reset"
LIMIT_HEADER = "x-ratelimit-limit"


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


@dc.dataclass(frozen=True, slots=True)
class QuotaSnapshot:
    """Quota state reported by the most recent GitHub response.

    ``None`` fields mean the server has not told us yet.
    """

    remaining: int | None = None
    reset_at: dt.datetime | None = None
    limit: int | None = None

    @classmethod
    def from_headers(
        cls,
        headers: cabc.Mapping[str, str],
        *,
        assume_exhausted: bool = False,
    ) -> QuotaSnapshot:
        """Build a snapshot from ``x-ratelimit-*`` headers.

        With ``assume_exhausted`` a missing remaining header reads as zero,
        which is how quota refusals without headers are recorded.
        """
        remaining = _parse_int(headers.get(REMAINING_HEADER))
        if remaining is None and assume_exhausted:
            remaining = 0
        reset_raw = _parse_int(headers.get(RESET_HEADER))
        reset_at = from_epoch_seconds(reset_raw) if reset_raw is not None else None
        return cls(
            remaining=remaining,
            reset_at=reset_at,
            limit=_parse_int(headers.get(LIMIT_HEADER)),
        )

    def is_exhausted(self, now: dt.datetime | None = None) -> bool:
        """Return True when no requests remain before a future reset."""
        if self.remaining is None or self.remaining > 0 or self.reset_at is None:
            return False
        return self.reset_at > (now or utcnow())
