"""Enrich push events with cached actor and repository metadata.

Each resource is resolved independently. A fresh cache row is linked without
touching the network; otherwise the resource is fetched and the cache row
upserted by the id GitHub returns. Client failures for one resource only mark
that resource as not enriched. Unexpected failures move the push event to
``failed`` and surface as :class:`EnrichmentError`.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging
import typing as typ

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from pushfeed.bronze.payloads import RawEventPayloadReader
from pushfeed.bronze.storage import RawEvent
from pushfeed.common.time import utcnow
from pushfeed.github.errors import GitHubClientError
from pushfeed.silver.errors import EnrichmentStateError
from pushfeed.silver.lifecycle import (
    EnrichmentOutcome,
    EnrichmentStatus,
    conclude,
    transition,
)
from pushfeed.silver.storage import Actor, PushEvent, RepositoryProfile

from .errors import EnrichmentError, PushEventNotFoundError
from .resources import (
    RepositoryResource,
    ResourceKind,
    ResourceLocator,
    UserResource,
    decode_repository,
    decode_user,
    payload_resource_id,
)

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from pushfeed.bronze.payloads import Payload, PayloadStore
    from pushfeed.github.client import GitHubEventsClient

    type SessionFactory = async_sessionmaker[AsyncSession]

type CacheModel = type[Actor] | type[RepositoryProfile]

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = dt.timedelta(hours=24)


class CachePersistError(RuntimeError):
    """Raised when a cache row vanishes after a unique conflict."""

    def __init__(self, kind: ResourceKind, github_id: str) -> None:
        """Name the cache row that could not be reloaded."""
        super().__init__(f"expected existing {kind} {github_id} after rollback")


@dataclasses.dataclass(frozen=True, slots=True)
class EnrichmentResult:
    """Outcome of a single enrichment attempt.

    A ``partial`` outcome is persisted with the ``completed`` status; only
    this result distinguishes it from a full success.
    """

    push_event_id: int
    actor_enriched: bool
    repository_enriched: bool
    outcome: EnrichmentOutcome

    @property
    def status(self) -> EnrichmentStatus:
        """Return the status persisted for this outcome."""
        if self.outcome is EnrichmentOutcome.FAILED:
            return EnrichmentStatus.FAILED
        return EnrichmentStatus.COMPLETED


class EnrichmentService:
    """Attach actor and repository cache rows to pending push events."""

    def __init__(
        self,
        session_factory: SessionFactory,
        client: GitHubEventsClient,
        *,
        payload_store: PayloadStore | None = None,
        locator: ResourceLocator | None = None,
        cache_ttl: dt.timedelta = DEFAULT_CACHE_TTL,
    ) -> None:
        """Bind the service to persistence and the GitHub client."""
        self._session_factory = session_factory
        self._client = client
        self._reader = RawEventPayloadReader(payload_store)
        self._locator = locator or ResourceLocator()
        self._cache_ttl = cache_ttl

    async def enrich(
        self, push_event_id: int, *, cache_ttl: dt.timedelta | None = None
    ) -> EnrichmentResult:
        """Enrich one pending push event.

        Parameters
        ----------
        push_event_id : int
            Primary key of the push event.
        cache_ttl : timedelta, optional
            Maximum age of a reusable cache row; defaults to the service TTL.

        Returns
        -------
        EnrichmentResult
            Which resources were enriched and the overall outcome.

        Raises
        ------
        PushEventNotFoundError
            If no push event has ``push_event_id``.
        EnrichmentStateError
            If the push event is not ``pending``; the row is left untouched.
        EnrichmentError
            If enrichment failed internally; the row is left ``failed``.

        """
        ttl = self._cache_ttl if cache_ttl is None else cache_ttl
        try:
            await self._start(push_event_id)
        except (PushEventNotFoundError, EnrichmentStateError):
            raise
        except Exception as exc:
            logger.exception(
                "Starting enrichment of push event %s failed", push_event_id
            )
            await self._force_failed(push_event_id)
            raise EnrichmentError.internal(push_event_id, exc) from exc
        try:
            return await self._enrich_started(push_event_id, ttl)
        except Exception as exc:
            logger.exception("Enrichment of push event %s failed", push_event_id)
            await self._force_failed(push_event_id)
            raise EnrichmentError.internal(push_event_id, exc) from exc

    async def reset(self, push_event_id: int) -> EnrichmentStatus:
        """Return a completed or failed push event to ``pending``.

        Raises
        ------
        PushEventNotFoundError
            If no push event has ``push_event_id``.
        EnrichmentStateError
            If the push event is ``pending`` or ``in_progress``.

        """
        async with self._session_factory() as session:
            push_event = await _require_push_event(session, push_event_id)
            status = transition(push_event.enrichment_status, EnrichmentStatus.PENDING)
            push_event.enrichment_status = status.value
            await session.commit()
            return status

    async def _start(self, push_event_id: int) -> None:
        async with self._session_factory() as session:
            push_event = await _require_push_event(session, push_event_id)
            status = transition(
                push_event.enrichment_status, EnrichmentStatus.IN_PROGRESS
            )
            push_event.enrichment_status = status.value
            await session.commit()

    async def _enrich_started(
        self, push_event_id: int, ttl: dt.timedelta
    ) -> EnrichmentResult:
        async with self._session_factory() as session:
            push_event = await _require_push_event(session, push_event_id)
            repository_ref = push_event.repository_id
            raw_event = await session.get(RawEvent, push_event.raw_event_id)
            payload: Payload = (
                await self._reader.read(raw_event) if raw_event is not None else {}
            )

        now = utcnow()
        actor_id = await self._resolve_actor(payload, ttl, now)
        profile_id = await self._resolve_repository(payload, repository_ref, ttl, now)
        status, outcome = conclude(
            actor_enriched=actor_id is not None,
            repository_enriched=profile_id is not None,
        )

        async with self._session_factory() as session:
            push_event = await _require_push_event(session, push_event_id)
            if actor_id is not None:
                push_event.actor_id = actor_id
            if profile_id is not None:
                push_event.repository_profile_id = profile_id
            push_event.enrichment_status = transition(
                push_event.enrichment_status, status
            ).value
            await session.commit()

        logger.info(
            "Enriched push event %s: actor=%s repository=%s outcome=%s",
            push_event_id,
            actor_id is not None,
            profile_id is not None,
            outcome,
        )
        return EnrichmentResult(
            push_event_id=push_event_id,
            actor_enriched=actor_id is not None,
            repository_enriched=profile_id is not None,
            outcome=outcome,
        )

    async def _resolve_actor(
        self, payload: Payload, ttl: dt.timedelta, now: dt.datetime
    ) -> int | None:
        cached = await self._fresh_cache_id(
            Actor, payload_resource_id(payload, ResourceKind.ACTOR), ttl, now
        )
        if cached is not None:
            return cached
        url = self._locator.actor_url(payload)
        data = await self._fetch(ResourceKind.ACTOR, url)
        if data is None:
            return None
        user = decode_user(data)
        if user is None:
            logger.warning("Actor response from %s has no id", url)
            return None
        return await self._upsert_actor(user, data, now)

    async def _resolve_repository(
        self,
        payload: Payload,
        repository_id: str,
        ttl: dt.timedelta,
        now: dt.datetime,
    ) -> int | None:
        cached = await self._fresh_cache_id(
            RepositoryProfile,
            payload_resource_id(payload, ResourceKind.REPOSITORY),
            ttl,
            now,
        )
        if cached is not None:
            return cached
        url = self._locator.repository_url(payload, repository_id)
        data = await self._fetch(ResourceKind.REPOSITORY, url)
        if data is None:
            return None
        repo = decode_repository(data)
        if repo is None:
            logger.warning("Repository response from %s has no id", url)
            return None
        return await self._upsert_repository(repo, data, now)

    async def _fresh_cache_id(
        self,
        model: CacheModel,
        github_id: str | None,
        ttl: dt.timedelta,
        now: dt.datetime,
    ) -> int | None:
        """Return the id of a fresh cache row for ``github_id``, if any."""
        if github_id is None:
            return None
        async with self._session_factory() as session:
            row = await session.scalar(select(model).where(model.github_id == github_id))
            if row is None or not row.is_fresh(ttl, now):
                return None
            logger.debug("Reusing cached %s %s", model.__tablename__, github_id)
            return row.id

    async def _fetch(
        self, kind: ResourceKind, url: str | None
    ) -> dict[str, typ.Any] | None:
        """Fetch a resource body; client failures count as not enriched."""
        if url is None:
            logger.info("No %s URL derivable; skipping", kind)
            return None
        try:
            response = await self._client.fetch_resource(url)
        except GitHubClientError as exc:
            logger.warning(
                "Fetching %s from %s failed (%s): %s", kind, url, exc.kind, exc
            )
            return None
        if response.not_modified or response.data is None:
            return None
        return response.data

    async def _upsert_actor(
        self, user: UserResource, data: dict[str, typ.Any], now: dt.datetime
    ) -> int:
        def refresh(row: Actor) -> None:
            row.login = user.login
            row.avatar_url = user.avatar_url
            row.raw_data = data
            row.fetched_at = now

        return await self._upsert(
            ResourceKind.ACTOR, Actor, str(user.id), refresh
        )

    async def _upsert_repository(
        self,
        repo: RepositoryResource,
        data: dict[str, typ.Any],
        now: dt.datetime,
    ) -> int:
        def refresh(row: RepositoryProfile) -> None:
            row.full_name = repo.full_name
            row.description = repo.description
            row.raw_data = data
            row.fetched_at = now

        return await self._upsert(
            ResourceKind.REPOSITORY, RepositoryProfile, str(repo.id), refresh
        )

    async def _upsert[RowT: (Actor, RepositoryProfile)](
        self,
        kind: ResourceKind,
        model: type[RowT],
        github_id: str,
        refresh: typ.Callable[[RowT], None],
    ) -> int:
        """Create or refresh the cache row keyed by ``github_id``.

        A concurrent enrichment may insert the same row first; the unique
        conflict is resolved by reloading and refreshing that row.
        """
        async with self._session_factory() as session:
            row = await _load_cached(session, model, github_id)
            if row is None:
                row = model(github_id=github_id)
                refresh(row)
                session.add(row)
                try:
                    await session.flush()
                    row_id = row.id
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    row = await _load_cached(session, model, github_id)
                    if row is None:
                        raise CachePersistError(kind, github_id) from exc
                else:
                    return row_id
            refresh(row)
            row_id = row.id
            await session.commit()
            return row_id

    async def _force_failed(self, push_event_id: int) -> None:
        """Move the push event to ``failed`` in a fresh session."""
        try:
            async with self._session_factory() as session:
                push_event = await session.get(PushEvent, push_event_id)
                if push_event is None:
                    return
                push_event.enrichment_status = EnrichmentStatus.FAILED.value
                await session.commit()
        except SQLAlchemyError:
            logger.exception(
                "Could not mark push event %s as failed", push_event_id
            )


async def _load_cached[RowT: (Actor, RepositoryProfile)](
    session: AsyncSession, model: type[RowT], github_id: str
) -> RowT | None:
    return await session.scalar(select(model).where(model.github_id == github_id))


async def _require_push_event(session: AsyncSession, push_event_id: int) -> PushEvent:
    push_event = await session.get(PushEvent, push_event_id)
    if push_event is None:
        raise PushEventNotFoundError(push_event_id)
    return push_event
