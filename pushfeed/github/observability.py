"""Observability primitives for event feed ingestion.

Provides structured logging and error categorization for ingestion runs and
per-item failures. All events are emitted as single-line structured log
messages suitable for parsing by log aggregators.
"""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from pushfeed.bronze.errors import PayloadStorageError
from pushfeed.logging import get_logger, log_error, log_info, log_warning
from pushfeed.silver.errors import ParseError

from .errors import (
    ApiError,
    GitHubConfigError,
    NetworkError,
    RateLimitExceeded,
)

if typ.TYPE_CHECKING:
    import datetime as dt

    from .ingestion import IngestionResult

logger = get_logger(__name__)

# HTTP status code threshold for server errors (5xx)
_HTTP_SERVER_ERROR_THRESHOLD = 500


class IngestionEventType(enum.StrEnum):
    """Structured log event types for ingestion observability."""

    RUN_STARTED = "ingestion.run.started"
    RUN_COMPLETED = "ingestion.run.completed"
    RUN_FAILED = "ingestion.run.failed"
    RUN_NOT_MODIFIED = "ingestion.run.not_modified"
    ITEM_FAILED = "ingestion.item.failed"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    CLIENT_ERROR = "client_error"
    SCHEMA_DRIFT = "schema_drift"
    PAYLOAD_STORAGE = "payload_storage"
    CONFIGURATION = "configuration"
    DATABASE_CONNECTIVITY = "database_connectivity"
    DATA_INTEGRITY = "data_integrity"
    DATABASE_ERROR = "database_error"
    UNKNOWN = "unknown"


@dataclasses.dataclass(frozen=True, slots=True)
class IngestionRunContext:
    """Shared context for a single feed polling run."""

    etag: str | None
    started_at: dt.datetime


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (NetworkError, ErrorCategory.TRANSIENT),
    (RateLimitExceeded, ErrorCategory.RATE_LIMITED),
    (ParseError, ErrorCategory.SCHEMA_DRIFT),
    (PayloadStorageError, ErrorCategory.PAYLOAD_STORAGE),
    (GitHubConfigError, ErrorCategory.CONFIGURATION),
    (OperationalError, ErrorCategory.DATABASE_CONNECTIVITY),
    (InterfaceError, ErrorCategory.DATABASE_CONNECTIVITY),
    (IntegrityError, ErrorCategory.DATA_INTEGRITY),
    (SQLAlchemyError, ErrorCategory.DATABASE_ERROR),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alerting purposes.

    Returns:
        ErrorCategory indicating the type of failure for alert routing.

    """
    # ApiError splits on status code: 5xx outlived the transport retries
    if isinstance(exc, ApiError):
        if (
            exc.status_code is not None
            and exc.status_code >= _HTTP_SERVER_ERROR_THRESHOLD
        ):
            return ErrorCategory.TRANSIENT
        return ErrorCategory.CLIENT_ERROR

    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category

    return ErrorCategory.UNKNOWN


class IngestionEventLogger:
    """Emit structured ingestion events via femtologging.

    Events are emitted at INFO level for run progress, WARNING for per-item
    failures that the batch survives, and ERROR for failed runs.
    """

    def log_run_started(self, context: IngestionRunContext) -> None:
        """Log ingestion run start."""
        log_info(
            logger,
            "[%s] has_etag=%s started_at=%s",
            IngestionEventType.RUN_STARTED,
            context.etag is not None,
            context.started_at.isoformat(),
        )

    def log_not_modified(
        self, context: IngestionRunContext, duration: dt.timedelta
    ) -> None:
        """Log a run that ended on a 304 from the feed."""
        log_info(
            logger,
            "[%s] duration_seconds=%.3f",
            IngestionEventType.RUN_NOT_MODIFIED,
            duration.total_seconds(),
        )

    def log_run_completed(
        self,
        context: IngestionRunContext,
        result: IngestionResult,
        duration: dt.timedelta,
    ) -> None:
        """Log successful ingestion run completion with counts."""
        log_info(
            logger,
            "[%s] duration_seconds=%.3f seen=%d raw_created=%d "
            "push_events_created=%d skipped=%d errors=%d etag_changed=%s",
            IngestionEventType.RUN_COMPLETED,
            duration.total_seconds(),
            result.seen,
            result.raw_created,
            result.push_events_created,
            result.skipped,
            result.errors,
            result.etag != context.etag,
        )

    def log_run_failed(
        self,
        context: IngestionRunContext,
        error: BaseException,
        duration: dt.timedelta,
    ) -> None:
        """Log failed ingestion run with error categorization."""
        log_error(
            logger,
            "[%s] has_etag=%s duration_seconds=%.3f error_type=%s "
            "error_category=%s error_message=%s",
            IngestionEventType.RUN_FAILED,
            context.etag is not None,
            duration.total_seconds(),
            type(error).__name__,
            categorize_error(error),
            str(error),
            exc_info=error,
        )

    def log_item_failed(self, event_id: str, error: BaseException) -> None:
        """Log a single feed item that could not be ingested."""
        log_warning(
            logger,
            "[%s] event_id=%s error_type=%s error_category=%s error_message=%s",
            IngestionEventType.ITEM_FAILED,
            event_id,
            type(error).__name__,
            categorize_error(error),
            str(error),
        )
