"""Scheduled jobs wiring the pipeline to a Dramatiq broker.

Public API
----------
ingest_github_events_job
    Actor polling the events feed once, carrying the ETag between runs.
enrich_push_event_job
    Actor enriching a single push event.
enrich_pending_push_events_job
    Actor enqueueing enrichment for a batch of pending push events.
JobsConfig
    Environment-driven settings for the actors.
RetryPolicy, RetryTable
    Per-failure-kind retry rules consulted through ``retry_when``.

"""

from pushfeed.jobs.actors import (
    enrich_pending_push_events_job,
    enrich_push_event_job,
    ingest_github_events_job,
)
from pushfeed.jobs.config import JobsConfig
from pushfeed.jobs.retry import (
    ENRICH_RETRY_TABLE,
    INGEST_RETRY_TABLE,
    RetryKind,
    RetryPolicy,
    RetryTable,
    classify_error,
)

__all__ = [
    "ENRICH_RETRY_TABLE",
    "INGEST_RETRY_TABLE",
    "JobsConfig",
    "RetryKind",
    "RetryPolicy",
    "RetryTable",
    "classify_error",
    "enrich_pending_push_events_job",
    "enrich_push_event_job",
    "ingest_github_events_job",
]
