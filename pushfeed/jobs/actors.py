"""Dramatiq actors driving feed ingestion and push event enrichment.

Usage
-----
Poll the events feed once:

>>> ingest_github_events_job.send(database_url="postgresql+asyncpg://...")

Enqueue enrichment for the oldest pending push events:

>>> enrich_pending_push_events_job.send(
...     database_url="postgresql+asyncpg://...",
...     batch_size=25,
... )

Retries follow :data:`~pushfeed.jobs.retry.INGEST_RETRY_TABLE` and
:data:`~pushfeed.jobs.retry.ENRICH_RETRY_TABLE`.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
import typing as typ

import dramatiq
from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pushfeed.bronze.cursors import GITHUB_EVENTS_ETAG_KEY, CursorStore
from pushfeed.bronze.objectstore import AzureBlobObjectStore, ObjectStorageConfig
from pushfeed.bronze.payloads import PayloadStore
from pushfeed.enrichment.errors import EnrichmentError, PushEventNotFoundError
from pushfeed.enrichment.resources import ResourceLocator
from pushfeed.enrichment.service import EnrichmentService
from pushfeed.github.client import GitHubEventsClient
from pushfeed.github.config import GitHubClientConfig
from pushfeed.github.ingestion import EventIngestionWorker
from pushfeed.logging import (
    configure_logging,
    format_log_message,
    get_logger,
    log_debug,
    log_exception,
    log_info,
    log_warning,
)
from pushfeed.silver.lifecycle import EnrichmentOutcome, EnrichmentStatus
from pushfeed.silver.storage import PushEvent

from ._broker import ensure_broker_configured
from .config import JobsConfig
from .retry import ENRICH_RETRY_TABLE, INGEST_RETRY_TABLE

type SessionFactory = async_sessionmaker[AsyncSession]

logger = get_logger(__name__)

# Module-level caches for reusing expensive resources across actor invocations
_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_SESSION_FACTORY_CACHE: dict[str, SessionFactory] = {}
_CACHE_LOCK = threading.Lock()
_logging_configured = False


def _ensure_engine(database_url: str) -> AsyncEngine:
    """Return the cached engine for *database_url*, creating it if absent.

    Precondition: the caller **must** hold ``_CACHE_LOCK``.
    """
    if database_url not in _ENGINE_CACHE:
        _ENGINE_CACHE[database_url] = create_async_engine(database_url)
    return _ENGINE_CACHE[database_url]


def _get_or_create_session_factory(
    database_url: str,
) -> tuple[AsyncEngine, SessionFactory]:
    """Get or create the engine and session factory for *database_url*.

    Thread-safe: uses a lock to prevent race conditions in Dramatiq workers.
    """
    with _CACHE_LOCK:
        engine = _ensure_engine(database_url)
        if database_url not in _SESSION_FACTORY_CACHE:
            _SESSION_FACTORY_CACHE[database_url] = async_sessionmaker(
                engine, expire_on_commit=False
            )
        return (engine, _SESSION_FACTORY_CACHE[database_url])


def _ensure_logging_configured(config: JobsConfig) -> None:
    """Configure femtologging once per worker process."""
    global _logging_configured

    with _CACHE_LOCK:
        if _logging_configured:
            return
        configure_logging(config.log_level)
        _logging_configured = True


def _build_client() -> GitHubEventsClient:
    """Create a GitHub client from ``PUSHFEED_GITHUB_*`` settings."""
    return GitHubEventsClient(GitHubClientConfig.from_env())


def _build_payload_store() -> tuple[PayloadStore, AzureBlobObjectStore | None]:
    """Create the payload store and, when enabled, its blob backend."""
    config = ObjectStorageConfig.from_env()
    if not config.enabled:
        return (PayloadStore(config), None)
    object_store = AzureBlobObjectStore.from_config(config)
    return (PayloadStore(config, object_store), object_store)


@contextlib.asynccontextmanager
async def _pipeline_resources() -> typ.AsyncIterator[
    tuple[GitHubEventsClient, PayloadStore]
]:
    """Yield a client and payload store, closing both afterwards."""
    client = _build_client()
    payload_store, object_store = _build_payload_store()
    try:
        yield (client, payload_store)
    finally:
        await client.aclose()
        if object_store is not None:
            await object_store.aclose()


def _run_actor_async[T](
    database_url: str,
    async_fn: typ.Callable[[SessionFactory], typ.Awaitable[T]],
) -> T:
    """Execute common async scaffolding for Dramatiq actors.

    Each invocation runs on a fresh event loop, so pooled connections are
    released before the loop closes.
    """
    ensure_broker_configured()
    _ensure_logging_configured(JobsConfig.from_env())
    engine, session_factory = _get_or_create_session_factory(database_url)

    async def run() -> T:
        try:
            return await async_fn(session_factory)
        finally:
            await engine.dispose()

    return asyncio.run(run())


async def _ingest_once(session_factory: SessionFactory) -> dict[str, typ.Any]:
    cursors = CursorStore(session_factory)
    etag = await cursors.get(GITHUB_EVENTS_ETAG_KEY)
    log_debug(logger, "Polling events feed with stored ETag %s", etag)
    async with _pipeline_resources() as (client, payload_store):
        worker = EventIngestionWorker(
            session_factory, client, payload_store=payload_store
        )
        result = await worker.ingest(etag)
    if result.etag != etag:
        await cursors.set(GITHUB_EVENTS_ETAG_KEY, result.etag)
    return {
        "etag": result.etag,
        "not_modified": result.not_modified,
        "seen": result.seen,
        "raw_created": result.raw_created,
        "push_events_created": result.push_events_created,
        "skipped": result.skipped,
        "errors": result.errors,
    }


async def _enrich_one(
    session_factory: SessionFactory, push_event_id: int, config: JobsConfig
) -> str:
    async with session_factory() as session:
        push_event = await session.get(PushEvent, push_event_id)
        if push_event is None:
            raise PushEventNotFoundError(push_event_id)
        status = push_event.status

    if status in (EnrichmentStatus.COMPLETED, EnrichmentStatus.IN_PROGRESS):
        log_info(
            logger,
            "Skipping enrichment of push event %s with status %s",
            push_event_id,
            status,
        )
        return status.value

    async with _pipeline_resources() as (client, payload_store):
        service = EnrichmentService(
            session_factory,
            client,
            payload_store=payload_store,
            locator=ResourceLocator(api_url=client.config.api_url),
            cache_ttl=config.cache_ttl,
        )
        if status is EnrichmentStatus.FAILED:
            log_debug(logger, "Resetting failed push event %s", push_event_id)
            await service.reset(push_event_id)
        try:
            result = await service.enrich(push_event_id)
        except EnrichmentError as exc:
            log_exception(
                logger,
                format_log_message(
                    "Enrichment of push event %s failed", push_event_id
                ),
                exc,
            )
            raise

    if result.outcome is EnrichmentOutcome.FAILED:
        log_warning(
            logger, "Push event %s enriched neither resource", push_event_id
        )
        raise EnrichmentError.nothing_enriched(push_event_id)
    return result.outcome.value


async def _enqueue_pending(
    session_factory: SessionFactory, database_url: str, batch_size: int
) -> int:
    async with session_factory() as session:
        ids = (
            await session.scalars(
                select(PushEvent.id)
                .where(PushEvent.enrichment_status == EnrichmentStatus.PENDING.value)
                .order_by(PushEvent.id)
                .limit(batch_size)
            )
        ).all()
    for push_event_id in ids:
        enrich_push_event_job.send(database_url, push_event_id)
    log_info(logger, "Enqueued enrichment for %d pending push events", len(ids))
    return len(ids)


ensure_broker_configured()


@dramatiq.actor(
    retry_when=INGEST_RETRY_TABLE.should_retry,
    throws=INGEST_RETRY_TABLE.discarded_errors,
    min_backoff=INGEST_RETRY_TABLE.min_backoff_ms,
    max_backoff=INGEST_RETRY_TABLE.max_backoff_ms,
)
def ingest_github_events_job(database_url: str) -> dict[str, typ.Any]:
    """Dramatiq actor polling the events feed once.

    The stored ETag is sent with the request and replaced by the one GitHub
    returns.

    Parameters
    ----------
    database_url
        SQLAlchemy URL for the database.

    Returns
    -------
    dict[str, Any]
        Counts for the run and the ETag now stored.

    """
    return _run_actor_async(database_url, _ingest_once)


@dramatiq.actor(
    retry_when=ENRICH_RETRY_TABLE.should_retry,
    throws=ENRICH_RETRY_TABLE.discarded_errors,
    min_backoff=ENRICH_RETRY_TABLE.min_backoff_ms,
    max_backoff=ENRICH_RETRY_TABLE.max_backoff_ms,
)
def enrich_push_event_job(database_url: str, push_event_id: int) -> str:
    """Dramatiq actor enriching a single push event.

    Completed and in-progress push events are left alone. A failed push
    event is reset first, since every message is an explicit request.

    Parameters
    ----------
    database_url
        SQLAlchemy URL for the database.
    push_event_id
        Primary key of the push event to enrich.

    Returns
    -------
    str
        The enrichment outcome, or the status of a skipped push event.

    Raises
    ------
    PushEventNotFoundError
        If the push event does not exist; the message is discarded.
    EnrichmentError
        If neither resource could be enriched, or enrichment failed
        internally.

    """
    config = JobsConfig.from_env()

    async def execute(session_factory: SessionFactory) -> str:
        return await _enrich_one(session_factory, push_event_id, config)

    return _run_actor_async(database_url, execute)


@dramatiq.actor
def enrich_pending_push_events_job(
    database_url: str, batch_size: int | None = None
) -> int:
    """Dramatiq actor enqueueing enrichment for pending push events.

    Parameters
    ----------
    database_url
        SQLAlchemy URL for the database.
    batch_size
        Maximum number of push events to enqueue; defaults to
        ``PUSHFEED_ENRICHMENT_BATCH_SIZE``.

    Returns
    -------
    int
        Number of enrichment messages sent.

    """
    size = batch_size or JobsConfig.from_env().batch_size

    async def execute(session_factory: SessionFactory) -> int:
        return await _enqueue_pending(session_factory, database_url, size)

    return _run_actor_async(database_url, execute)
