"""Retry policy tables consulted by the Dramatiq actors.

Each table maps a failure kind to how many attempts a message gets and
whether the failure should be discarded outright. Dramatiq calls
:meth:`RetryTable.should_retry` as the actor's ``retry_when`` predicate and
applies its own exponential backoff between ``min_backoff_ms`` and
``max_backoff_ms``.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import enum

from pushfeed.enrichment.errors import EnrichmentError, PushEventNotFoundError
from pushfeed.github.errors import (
    ApiError,
    GitHubClientError,
    NetworkError,
    RateLimitExceeded,
)


class RetryKind(enum.StrEnum):
    """Failure kinds the job layer distinguishes when retrying."""

    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    API = "api"
    ENRICHMENT = "enrichment"
    NOT_FOUND = "not_found"


def classify_error(exc: BaseException) -> RetryKind | None:
    """Return the retry kind for ``exc``, or None when it is unclassified."""
    if isinstance(exc, GitHubClientError):
        return RetryKind(exc.kind.value)
    if isinstance(exc, PushEventNotFoundError):
        return RetryKind.NOT_FOUND
    if isinstance(exc, EnrichmentError):
        return RetryKind.ENRICHMENT
    return None


@dc.dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How often a failure kind may be attempted.

    ``max_attempts`` counts the first delivery, so a value of 3 allows two
    retries. ``discard`` drops the message on the first failure.
    """

    max_attempts: int = 1
    discard: bool = False

    @classmethod
    def discarded(cls) -> RetryPolicy:
        """Return a policy that never retries."""
        return cls(max_attempts=1, discard=True)


@dc.dataclass(frozen=True, slots=True)
class RetryTable:
    """Policies keyed by :class:`RetryKind` plus the backoff envelope."""

    policies: cabc.Mapping[RetryKind, RetryPolicy]
    min_backoff_ms: int = 15_000
    max_backoff_ms: int = 900_000

    def policy_for(self, exc: BaseException) -> RetryPolicy | None:
        """Return the policy governing ``exc``, if any."""
        kind = classify_error(exc)
        if kind is None:
            return None
        return self.policies.get(kind)

    def should_retry(self, retries: int, exc: BaseException) -> bool:
        """Decide whether a failed message should be redelivered.

        Parameters
        ----------
        retries : int
            Number of retries already performed for the message.
        exc : BaseException
            The exception raised by the latest attempt.

        Returns
        -------
        bool
            True when the message should be retried. Unclassified errors and
            discarded kinds are never retried.

        """
        policy = self.policy_for(exc)
        if policy is None or policy.discard:
            return False
        return retries + 1 < policy.max_attempts

    @property
    def discarded_errors(self) -> tuple[type[BaseException], ...]:
        """Return exception types to hand Dramatiq as ``throws``."""
        discarded: list[type[BaseException]] = []
        for kind, policy in self.policies.items():
            if policy.discard:
                discarded.extend(_KIND_EXCEPTIONS[kind])
        return tuple(discarded)


_KIND_EXCEPTIONS: dict[RetryKind, tuple[type[BaseException], ...]] = {
    RetryKind.NETWORK: (NetworkError,),
    RetryKind.RATE_LIMIT: (RateLimitExceeded,),
    RetryKind.API: (ApiError,),
    RetryKind.ENRICHMENT: (EnrichmentError,),
    RetryKind.NOT_FOUND: (PushEventNotFoundError,),
}


INGEST_RETRY_TABLE = RetryTable(
    policies={
        RetryKind.RATE_LIMIT: RetryPolicy(max_attempts=3),
        RetryKind.NETWORK: RetryPolicy(max_attempts=5),
        RetryKind.API: RetryPolicy.discarded(),
    },
)

ENRICH_RETRY_TABLE = RetryTable(
    policies={
        RetryKind.RATE_LIMIT: RetryPolicy(max_attempts=3),
        RetryKind.NETWORK: RetryPolicy(max_attempts=5),
        RetryKind.ENRICHMENT: RetryPolicy(max_attempts=3),
        RetryKind.NOT_FOUND: RetryPolicy.discarded(),
    },
    min_backoff_ms=5_000,
    max_backoff_ms=300_000,
)
