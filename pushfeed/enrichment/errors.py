"""Enrichment error types."""

from __future__ import annotations


class EnrichmentError(RuntimeError):
    """Raised when an enrichment attempt fails for internal reasons.

    The push event has been moved to ``failed`` by the time this is raised;
    the job layer retries it a bounded number of times.
    """

    def __init__(self, message: str, *, push_event_id: int) -> None:
        """Record the push event whose enrichment failed."""
        self.push_event_id = push_event_id
        super().__init__(message)

    @classmethod
    def internal(cls, push_event_id: int, cause: BaseException) -> EnrichmentError:
        """Return an error wrapping an unexpected failure mid-enrichment."""
        return cls(
            f"enrichment of push event {push_event_id} failed: "
            f"{type(cause).__name__}: {cause}",
            push_event_id=push_event_id,
        )

    @classmethod
    def nothing_enriched(cls, push_event_id: int) -> EnrichmentError:
        """Return an error for an attempt that enriched neither resource."""
        return cls(
            f"push event {push_event_id} could not be enriched from GitHub",
            push_event_id=push_event_id,
        )


class PushEventNotFoundError(LookupError):
    """Raised when the push event to enrich does not exist."""

    def __init__(self, push_event_id: int) -> None:
        """Name the missing push event."""
        self.push_event_id = push_event_id
        super().__init__(f"push event {push_event_id} not found")
