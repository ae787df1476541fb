"""Enrichment status lifecycle for push events.

Transitions are pure functions returning the new status; callers persist the
result in a single write.
"""

from __future__ import annotations

import enum

from .errors import EnrichmentStateError


class EnrichmentStatus(enum.StrEnum):
    """Persisted enrichment status of a push event."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class EnrichmentOutcome(enum.StrEnum):
    """Outcome reported for a single enrichment attempt."""

    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


_ALLOWED: dict[EnrichmentStatus, frozenset[EnrichmentStatus]] = {
    EnrichmentStatus.PENDING: frozenset({EnrichmentStatus.IN_PROGRESS}),
    EnrichmentStatus.IN_PROGRESS: frozenset(
        {EnrichmentStatus.COMPLETED, EnrichmentStatus.FAILED}
    ),
    EnrichmentStatus.COMPLETED: frozenset({EnrichmentStatus.PENDING}),
    EnrichmentStatus.FAILED: frozenset({EnrichmentStatus.PENDING}),
}


def can_transition(
    current: EnrichmentStatus | str, target: EnrichmentStatus | str
) -> bool:
    """Return True when ``current`` may move to ``target``."""
    try:
        source = EnrichmentStatus(current)
        destination = EnrichmentStatus(target)
    except ValueError:
        return False
    return destination in _ALLOWED[source]


def transition(
    current: EnrichmentStatus | str, target: EnrichmentStatus | str
) -> EnrichmentStatus:
    """Validate a status change and return the new status.

    Raises
    ------
    EnrichmentStateError
        If the lifecycle does not allow moving from ``current`` to ``target``.

    """
    if not can_transition(current, target):
        raise EnrichmentStateError.invalid_transition(str(current), str(target))
    return EnrichmentStatus(target)


def conclude(
    *, actor_enriched: bool, repository_enriched: bool
) -> tuple[EnrichmentStatus, EnrichmentOutcome]:
    """Map per-resource results onto the final status and reported outcome.

    A partial result persists as ``completed``; only the outcome tells it
    apart from a full success.
    """
    if actor_enriched and repository_enriched:
        return (EnrichmentStatus.COMPLETED, EnrichmentOutcome.COMPLETED)
    if actor_enriched or repository_enriched:
        return (EnrichmentStatus.COMPLETED, EnrichmentOutcome.PARTIAL)
    return (EnrichmentStatus.FAILED, EnrichmentOutcome.FAILED)
