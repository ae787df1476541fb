"""Silver layer: structured push events, extraction and enrichment lifecycle."""

from __future__ import annotations

from .errors import EnrichmentStateError, ParseError, PushEventParseError
from .extraction import PushFields, extract_push_fields
from .lifecycle import (
    EnrichmentOutcome,
    EnrichmentStatus,
    can_transition,
    conclude,
    transition,
)
from .storage import Actor, PushEvent, RepositoryProfile

__all__ = [
    "Actor",
    "EnrichmentOutcome",
    "EnrichmentStateError",
    "EnrichmentStatus",
    "ParseError",
    "PushEvent",
    "PushEventParseError",
    "PushFields",
    "RepositoryProfile",
    "can_transition",
    "conclude",
    "extract_push_fields",
    "transition",
]
