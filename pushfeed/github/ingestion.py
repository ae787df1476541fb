"""Polling worker for the public GitHub events feed.

One :meth:`EventIngestionWorker.ingest` call performs a single conditional
fetch of the feed, records every new item as a Bronze ``raw_events`` row and
extracts push events into Silver ``push_events`` rows awaiting enrichment.
Each item is handled in its own session so a bad item never aborts the batch,
and unique constraints make overlapping or repeated runs idempotent.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import logging
import typing as typ

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from pushfeed.bronze.errors import PayloadStorageError
from pushfeed.bronze.payloads import RawEventPayloadReader
from pushfeed.bronze.storage import UNKNOWN_EVENT_TYPE, RawEvent, attach_payload
from pushfeed.common.time import utcnow
from pushfeed.silver.errors import ParseError
from pushfeed.silver.extraction import extract_push_fields
from pushfeed.silver.lifecycle import EnrichmentStatus
from pushfeed.silver.storage import PushEvent

from .observability import IngestionEventLogger, IngestionRunContext

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from pushfeed.bronze.payloads import Payload, PayloadStore
    from pushfeed.silver.extraction import PushFields

    from .client import GitHubEventsClient
    from .quota import QuotaSnapshot

    type SessionFactory = async_sessionmaker[AsyncSession]

logger = logging.getLogger(__name__)


class IngestionPersistError(RuntimeError):
    """Raised when a conflicting row cannot be reloaded after rollback."""

    @classmethod
    def raw_event(cls, event_id: str) -> IngestionPersistError:
        """Return an error for a raw event lost after a unique conflict."""
        return cls(f"expected existing raw_event {event_id} after rollback")

    @classmethod
    def push_event(cls, push_id: str) -> IngestionPersistError:
        """Return an error for a push event lost after a unique conflict."""
        return cls(f"expected existing push_event {push_id} after rollback")


_ITEM_ERRORS = (
    ParseError,
    PayloadStorageError,
    SQLAlchemyError,
    IngestionPersistError,
)


@dataclasses.dataclass(frozen=True, slots=True)
class IngestionResult:
    """Summary of a single polling run.

    ``etag`` is the token to send with the next request; it equals the input
    token when the feed answered 304.
    """

    etag: str | None
    not_modified: bool = False
    seen: int = 0
    raw_created: int = 0
    push_events_created: int = 0
    skipped: int = 0
    errors: int = 0
    quota: QuotaSnapshot | None = None


@dataclasses.dataclass(slots=True)
class _RunCounters:
    seen: int = 0
    raw_created: int = 0
    push_events_created: int = 0
    skipped: int = 0
    errors: int = 0


class EventIngestionWorker:
    """Fetch the events feed and persist raw and push events idempotently."""

    def __init__(
        self,
        session_factory: SessionFactory,
        client: GitHubEventsClient,
        *,
        payload_store: PayloadStore | None = None,
        event_logger: IngestionEventLogger | None = None,
    ) -> None:
        """Create a worker bound to a session factory and GitHub client."""
        self._session_factory = session_factory
        self._client = client
        self._payload_store = payload_store
        self._reader = RawEventPayloadReader(payload_store)
        self._event_logger = event_logger or IngestionEventLogger()

    async def ingest(self, etag: str | None = None) -> IngestionResult:
        """Run one polling pass against the events feed.

        Parameters
        ----------
        etag : str, optional
            Token returned by the previous pass.

        Returns
        -------
        IngestionResult
            Counts for the pass and the token for the next one.

        Raises
        ------
        GitHubClientError
            If the feed itself cannot be fetched.

        """
        started_at = utcnow()
        context = IngestionRunContext(etag=etag, started_at=started_at)
        self._event_logger.log_run_started(context)

        try:
            result = await self._ingest_inner(etag)
        except BaseException as exc:
            self._event_logger.log_run_failed(context, exc, utcnow() - started_at)
            raise

        duration = utcnow() - started_at
        if result.not_modified:
            self._event_logger.log_not_modified(context, duration)
        else:
            self._event_logger.log_run_completed(context, result, duration)
        return result

    async def _ingest_inner(self, etag: str | None) -> IngestionResult:
        page = await self._client.fetch_events(etag)
        if page.not_modified:
            return IngestionResult(etag=etag, not_modified=True, quota=page.quota)

        counters = _RunCounters()
        for item in page.items:
            counters.seen += 1
            await self._ingest_item_safely(item, counters)

        return IngestionResult(
            etag=page.etag,
            seen=counters.seen,
            raw_created=counters.raw_created,
            push_events_created=counters.push_events_created,
            skipped=counters.skipped,
            errors=counters.errors,
            quota=page.quota,
        )

    async def _ingest_item_safely(self, item: object, counters: _RunCounters) -> None:
        if not isinstance(item, cabc.Mapping) or item.get("id") in (None, ""):
            logger.debug("Skipping feed item without an id")
            counters.skipped += 1
            return
        event_id = str(item["id"])
        try:
            await self._ingest_item(event_id, dict(item), counters)
        except _ITEM_ERRORS as exc:
            counters.errors += 1
            self._event_logger.log_item_failed(event_id, exc)

    async def _ingest_item(
        self, event_id: str, item: Payload, counters: _RunCounters
    ) -> None:
        async with self._session_factory() as session:
            raw_event = await _load_raw_event(session, event_id)
            payload: Payload | None = item
            if raw_event is None:
                raw_event, created = await self._create_raw_event(
                    session, event_id, item
                )
                if created:
                    counters.raw_created += 1
            else:
                payload = None

            if raw_event.is_processed:
                counters.skipped += 1
                return

            if not raw_event.is_push_event:
                raw_event.mark_processed()
                await session.commit()
                return

            existing = await _load_push_event_for(session, raw_event.id)
            if existing is None:
                if payload is None:
                    payload = await self._reader.read(raw_event)
                fields = extract_push_fields(payload)
                if await self._create_push_event(session, raw_event, fields):
                    counters.push_events_created += 1
                return

            raw_event.mark_processed()
            await session.commit()

    async def _create_raw_event(
        self, session: AsyncSession, event_id: str, item: Payload
    ) -> tuple[RawEvent, bool]:
        """Insert a raw event, or load the row a concurrent run created."""
        object_key = None
        if self._payload_store is not None:
            object_key = await self._payload_store.store(event_id, item)
        raw_event = RawEvent(
            event_id=event_id,
            event_type=str(item.get("type") or UNKNOWN_EVENT_TYPE),
        )
        attach_payload(raw_event, None if object_key else item, object_key)
        session.add(raw_event)
        try:
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            existing = await _load_raw_event(session, event_id)
            if existing is None:
                raise IngestionPersistError.raw_event(event_id) from exc
            return (existing, False)
        return (raw_event, True)

    async def _create_push_event(
        self, session: AsyncSession, raw_event: RawEvent, fields: PushFields
    ) -> bool:
        """Insert the push event and mark its raw event processed together.

        Returns False when another run already recorded the same push.
        """
        raw_event_id = raw_event.id
        session.add(
            PushEvent(
                raw_event_id=raw_event_id,
                push_id=fields.push_id,
                repository_id=fields.repository_id,
                ref=fields.ref,
                head=fields.head,
                before=fields.before,
                enrichment_status=EnrichmentStatus.PENDING.value,
            )
        )
        raw_event.mark_processed()
        try:
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            existing = await session.scalar(
                select(PushEvent).where(PushEvent.push_id == fields.push_id)
            )
            if existing is None:
                raise IngestionPersistError.push_event(fields.push_id) from exc
            reloaded = await session.get(RawEvent, raw_event_id)
            if reloaded is not None:
                reloaded.mark_processed()
                await session.commit()
            return False
        return True


async def _load_raw_event(session: AsyncSession, event_id: str) -> RawEvent | None:
    return await session.scalar(select(RawEvent).where(RawEvent.event_id == event_id))


async def _load_push_event_for(
    session: AsyncSession, raw_event_id: int
) -> PushEvent | None:
    return await session.scalar(
        select(PushEvent).where(PushEvent.raw_event_id == raw_event_id)
    )
