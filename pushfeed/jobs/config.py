"""Configuration for the scheduled pipeline jobs.

Usage
-----
Create a configuration with defaults:

>>> config = JobsConfig()
>>> config.cache_ttl_hours
24

Or load from environment variables:

>>> import os
>>> os.environ["PUSHFEED_ENRICHMENT_BATCH_SIZE"] = "25"
>>> config = JobsConfig.from_env()
>>> config.batch_size
25

"""

from __future__ import annotations

import dataclasses as dc
import datetime as dt
import os

from pushfeed.logging import LOG_LEVEL_ENV_VAR, normalize_log_level


@dc.dataclass(frozen=True, slots=True)
class JobsConfig:
    """Configuration for ingestion and enrichment jobs.

    Attributes
    ----------
    cache_ttl_hours
        Age in hours below which cached actors and repositories are reused
        without contacting GitHub. Default is 24 hours.
    batch_size
        Number of pending push events enqueued per sweep. Default is 10.
    log_level
        femtologging level applied when a job configures logging.

    """

    cache_ttl_hours: int = 24
    batch_size: int = 10
    log_level: str = "INFO"

    @property
    def cache_ttl(self) -> dt.timedelta:
        """Return the cache TTL as a timedelta."""
        return dt.timedelta(hours=self.cache_ttl_hours)

    @staticmethod
    def _parse_positive_int(env_var: str, default: int) -> int:
        """Read a positive integer env var, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            msg = f"{env_var} must be an integer, got: {raw!r}"
            raise ValueError(msg) from exc
        if value < 1:
            msg = f"{env_var} must be positive, got: {value}"
            raise ValueError(msg)
        return value

    @classmethod
    def from_env(cls) -> JobsConfig:
        """Create configuration from environment variables.

        Reads ``PUSHFEED_ENRICHMENT_CACHE_TTL_HOURS``,
        ``PUSHFEED_ENRICHMENT_BATCH_SIZE`` and ``PUSHFEED_LOG_LEVEL``. An
        unrecognised log level falls back to ``INFO``.

        Raises
        ------
        ValueError
            If either numeric setting is not a positive integer.

        """
        log_level, _ = normalize_log_level(os.environ.get(LOG_LEVEL_ENV_VAR))
        return cls(
            cache_ttl_hours=cls._parse_positive_int(
                "PUSHFEED_ENRICHMENT_CACHE_TTL_HOURS", 24
            ),
            batch_size=cls._parse_positive_int("PUSHFEED_ENRICHMENT_BATCH_SIZE", 10),
            log_level=log_level,
        )
