"""Shared Silver-layer error types."""

from __future__ import annotations

import typing as typ


class ParseError(ValueError):
    """Raised when a raw event cannot be turned into a structured record."""


class PushEventParseError(ParseError):
    """Raised when a push event payload is unusable.

    ``missing_fields`` lists every field that failed validation, not only the
    first one encountered.
    """

    def __init__(
        self, message: str, *, missing_fields: typ.Sequence[str] = ()
    ) -> None:
        """Record the offending fields alongside the message."""
        self.missing_fields = tuple(missing_fields)
        super().__init__(message)

    @classmethod
    def wrong_type(cls, event_type: object) -> PushEventParseError:
        """Return an error for payloads that are not push events."""
        return cls(f"expected a PushEvent payload, got type {event_type!r}")

    @classmethod
    def missing(cls, fields: typ.Sequence[str]) -> PushEventParseError:
        """Return an error naming all missing push fields."""
        joined = ", ".join(fields)
        return cls(f"push event missing required fields: {joined}", missing_fields=fields)


class EnrichmentStateError(RuntimeError):
    """Raised when an enrichment status change is not permitted."""

    def __init__(self, message: str, *, current: str, target: str) -> None:
        """Store both ends of the rejected transition."""
        self.current = current
        self.target = target
        super().__init__(message)

    @classmethod
    def invalid_transition(cls, current: str, target: str) -> EnrichmentStateError:
        """Return an error for a transition outside the lifecycle."""
        return cls(
            f"cannot move enrichment status from {current} to {target}",
            current=current,
            target=target,
        )
