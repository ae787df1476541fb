"""GitHub events client and ingestion worker primitives."""

from __future__ import annotations

from .client import (
    EventsPage,
    GitHubEventsClient,
    ResourceResponse,
    classify_response,
)
from .config import GitHubClientConfig
from .errors import (
    ApiError,
    ErrorKind,
    GitHubClientError,
    GitHubConfigError,
    NetworkError,
    RateLimitExceeded,
)
from .ingestion import EventIngestionWorker, IngestionPersistError, IngestionResult
from .observability import (
    ErrorCategory,
    IngestionEventLogger,
    IngestionEventType,
    IngestionRunContext,
    categorize_error,
)
from .quota import QuotaSnapshot

__all__ = [
    "ApiError",
    "ErrorCategory",
    "ErrorKind",
    "EventIngestionWorker",
    "EventsPage",
    "GitHubClientConfig",
    "GitHubClientError",
    "GitHubConfigError",
    "GitHubEventsClient",
    "IngestionEventLogger",
    "IngestionEventType",
    "IngestionPersistError",
    "IngestionResult",
    "IngestionRunContext",
    "NetworkError",
    "QuotaSnapshot",
    "RateLimitExceeded",
    "ResourceResponse",
    "categorize_error",
    "classify_response",
]
