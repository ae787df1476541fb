"""Enrichment of push events with actor and repository metadata."""

from __future__ import annotations

from .errors import EnrichmentError, PushEventNotFoundError
from .resources import ResourceKind, ResourceLocator
from .service import (
    DEFAULT_CACHE_TTL,
    CachePersistError,
    EnrichmentResult,
    EnrichmentService,
)

__all__ = [
    "DEFAULT_CACHE_TTL",
    "CachePersistError",
    "EnrichmentError",
    "EnrichmentResult",
    "EnrichmentService",
    "PushEventNotFoundError",
    "ResourceKind",
    "ResourceLocator",
]
