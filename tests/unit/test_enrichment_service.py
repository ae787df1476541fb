"""Unit tests for push event enrichment."""

from __future__ import annotations

import datetime as dt
import typing as typ

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pushfeed.bronze import RawEvent, attach_payload
from pushfeed.common.time import utcnow
from pushfeed.enrichment import (
    EnrichmentError,
    EnrichmentService,
    PushEventNotFoundError,
)
from pushfeed.enrichment import service as enrichment_service
from pushfeed.enrichment.resources import ResourceLocator
from pushfeed.silver import (
    Actor,
    EnrichmentOutcome,
    EnrichmentStateError,
    EnrichmentStatus,
    PushEvent,
    RepositoryProfile,
)
from tests.helpers.fake_github import FakeGitHub, ok, rate_limited
from tests.helpers.github_events import (
    API_URL,
    push_event_item,
    repository_resource,
    repository_url,
    user_resource,
    user_url,
)

if typ.TYPE_CHECKING:
    from pushfeed.enrichment import EnrichmentResult
    from pushfeed.github.client import GitHubEventsClient

type SessionFactory = async_sessionmaker[AsyncSession]


async def _seed_push_event(
    session_factory: SessionFactory,
    *,
    status: EnrichmentStatus = EnrichmentStatus.PENDING,
    item: dict[str, typ.Any] | None = None,
) -> int:
    item = item or push_event_item("1001")
    async with session_factory() as session:
        raw = attach_payload(
            RawEvent(event_id=str(item["id"]), event_type="PushEvent"), item, None
        )
        raw.mark_processed()
        session.add(raw)
        await session.flush()
        push = PushEvent(
            raw_event_id=raw.id,
            push_id=str(item["payload"]["push_id"]),
            repository_id=str(item["repo"]["name"]),
            ref="refs/heads/main",
            head="c0ffee",
            before="",
            enrichment_status=status.value,
        )
        session.add(push)
        await session.flush()
        push_event_id = push.id
        await session.commit()
    return push_event_id


async def _seed_cache(
    session_factory: SessionFactory, *, age: dt.timedelta, login: str = "cached"
) -> None:
    fetched_at = utcnow() - age
    async with session_factory() as session:
        session.add(
            Actor(github_id="7", login=login, raw_data={"id": 7}, fetched_at=fetched_at)
        )
        session.add(
            RepositoryProfile(
                github_id="42",
                full_name="octo-org/octo-repo",
                raw_data={"id": 42},
                fetched_at=fetched_at,
            )
        )
        await session.commit()


async def _load(session_factory: SessionFactory, push_event_id: int) -> PushEvent:
    async with session_factory() as session:
        push = await session.get(PushEvent, push_event_id)
    assert push is not None, "push event should exist"
    return push


def _service(
    session_factory: SessionFactory, client: GitHubEventsClient
) -> EnrichmentService:
    return EnrichmentService(
        session_factory, client, locator=ResourceLocator(api_url=API_URL)
    )


async def _enrich(
    session_factory: SessionFactory, fake: FakeGitHub, push_event_id: int
) -> EnrichmentResult:
    client = fake.client()
    try:
        return await _service(session_factory, client).enrich(push_event_id)
    finally:
        await client.aclose()


def _full_github() -> FakeGitHub:
    return (
        FakeGitHub()
        .script(user_url(), ok(user_resource()))
        .script(repository_url(), ok(repository_resource()))
    )


class TestEnrichOutcomes:
    """Per-resource results map onto outcomes and statuses."""

    @pytest.mark.asyncio
    async def test_full_enrichment_links_both_resources(
        self, session_factory: SessionFactory
    ) -> None:
        """Both resources fetched means a completed push event."""
        push_event_id = await _seed_push_event(session_factory)

        result = await _enrich(session_factory, _full_github(), push_event_id)

        assert result.outcome is EnrichmentOutcome.COMPLETED
        assert result.actor_enriched
        assert result.repository_enriched
        push = await _load(session_factory, push_event_id)
        assert push.status is EnrichmentStatus.COMPLETED
        assert push.actor_id is not None
        assert push.repository_profile_id is not None
        async with session_factory() as session:
            actor = await session.get(Actor, push.actor_id)
            profile = await session.get(RepositoryProfile, push.repository_profile_id)
        assert actor is not None
        assert actor.github_id == "7"
        assert actor.login == "octocat"
        assert profile is not None
        assert profile.full_name == "octo-org/octo-repo"
        assert profile.description == "A repository for tests"

    @pytest.mark.asyncio
    async def test_missing_repository_is_partial(
        self, session_factory: SessionFactory
    ) -> None:
        """A repository 404 leaves a completed push with only the actor."""
        push_event_id = await _seed_push_event(session_factory)
        fake = FakeGitHub().script(user_url(), ok(user_resource()))

        result = await _enrich(session_factory, fake, push_event_id)

        assert result.outcome is EnrichmentOutcome.PARTIAL
        assert result.status is EnrichmentStatus.COMPLETED
        push = await _load(session_factory, push_event_id)
        assert push.status is EnrichmentStatus.COMPLETED
        assert push.actor_id is not None
        assert push.repository_profile_id is None

    @pytest.mark.asyncio
    async def test_rate_limit_blocks_remaining_fetches(
        self, session_factory: SessionFactory
    ) -> None:
        """A quota refusal fails the actor and fast-fails the repository."""
        push_event_id = await _seed_push_event(session_factory)
        fake = (
            FakeGitHub()
            .script(user_url(), rate_limited(429))
            .script(repository_url(), ok(repository_resource()))
        )

        result = await _enrich(session_factory, fake, push_event_id)

        assert not result.actor_enriched
        assert not result.repository_enriched, "exhausted quota blocks the repo too"
        assert result.outcome is EnrichmentOutcome.FAILED

    @pytest.mark.asyncio
    async def test_nothing_enriched_fails(
        self, session_factory: SessionFactory
    ) -> None:
        """Neither resource available moves the push event to failed."""
        push_event_id = await _seed_push_event(session_factory)

        result = await _enrich(session_factory, FakeGitHub(), push_event_id)

        assert result.outcome is EnrichmentOutcome.FAILED
        push = await _load(session_factory, push_event_id)
        assert push.status is EnrichmentStatus.FAILED
        assert push.actor_id is None
        assert push.repository_profile_id is None

    @pytest.mark.asyncio
    async def test_resource_without_id_is_not_enriched(
        self, session_factory: SessionFactory
    ) -> None:
        """Bodies missing an id cannot key a cache row."""
        push_event_id = await _seed_push_event(session_factory)
        fake = (
            FakeGitHub()
            .script(user_url(), ok({"login": "octocat"}))
            .script(repository_url(), ok(repository_resource()))
        )

        result = await _enrich(session_factory, fake, push_event_id)

        assert result.outcome is EnrichmentOutcome.PARTIAL
        assert not result.actor_enriched


class TestCaching:
    """Cache rows are reused within the TTL."""

    @pytest.mark.asyncio
    async def test_fresh_cache_skips_network(
        self, session_factory: SessionFactory
    ) -> None:
        """Rows fetched an hour ago are linked without requests."""
        await _seed_cache(session_factory, age=dt.timedelta(hours=1))
        push_event_id = await _seed_push_event(session_factory)
        fake = _full_github()

        result = await _enrich(session_factory, fake, push_event_id)

        assert result.outcome is EnrichmentOutcome.COMPLETED
        assert fake.requests == [], "fresh cache rows must not be refetched"

    @pytest.mark.asyncio
    async def test_stale_cache_is_refreshed_in_place(
        self, session_factory: SessionFactory
    ) -> None:
        """Rows older than the TTL are refetched and updated."""
        await _seed_cache(session_factory, age=dt.timedelta(hours=25))
        push_event_id = await _seed_push_event(session_factory)
        fake = _full_github()

        result = await _enrich(session_factory, fake, push_event_id)

        assert result.outcome is EnrichmentOutcome.COMPLETED
        assert len(fake.requests) == 2
        async with session_factory() as session:
            actors = (await session.scalars(select(Actor))).all()
        assert [actor.login for actor in actors] == ["octocat"]
        assert actors[0].is_fresh(dt.timedelta(hours=1))

    @pytest.mark.asyncio
    async def test_cache_rows_are_shared(
        self, session_factory: SessionFactory
    ) -> None:
        """Two pushes by the same actor share one cache row."""
        first = await _seed_push_event(session_factory)
        second = await _seed_push_event(
            session_factory, item=push_event_item("1002", push_id=5002)
        )
        fake = _full_github()

        await _enrich(session_factory, fake, first)
        await _enrich(session_factory, fake, second)

        assert len(fake.requests) == 2, "second push should hit the cache"
        async with session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(Actor))
        assert count == 1

    @pytest.mark.asyncio
    async def test_zero_ttl_always_refetches(
        self, session_factory: SessionFactory
    ) -> None:
        """A zero TTL refetches rows however recently they were cached."""
        await _seed_cache(session_factory, age=dt.timedelta(hours=1))
        push_event_id = await _seed_push_event(session_factory)
        fake = _full_github()
        client = fake.client()
        try:
            result = await _service(session_factory, client).enrich(
                push_event_id, cache_ttl=dt.timedelta(0)
            )
        finally:
            await client.aclose()

        assert result.outcome is EnrichmentOutcome.COMPLETED
        assert len(fake.requests) == 2
        async with session_factory() as session:
            actor = await session.scalar(select(Actor))
        assert actor is not None
        assert actor.login == "octocat"


class TestLifecycleGuards:
    """Status preconditions and failure handling."""

    @pytest.mark.asyncio
    async def test_unknown_push_event(self, session_factory: SessionFactory) -> None:
        """Enriching a missing row raises not found."""
        with pytest.raises(PushEventNotFoundError):
            await _enrich(session_factory, FakeGitHub(), 404)

    @pytest.mark.asyncio
    async def test_non_pending_is_rejected_untouched(
        self, session_factory: SessionFactory
    ) -> None:
        """Completed push events are not re-enriched implicitly."""
        push_event_id = await _seed_push_event(
            session_factory, status=EnrichmentStatus.COMPLETED
        )
        fake = _full_github()

        with pytest.raises(EnrichmentStateError):
            await _enrich(session_factory, fake, push_event_id)

        assert fake.requests == []
        push = await _load(session_factory, push_event_id)
        assert push.status is EnrichmentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_internal_error_marks_failed(
        self, session_factory: SessionFactory
    ) -> None:
        """Unexpected exceptions leave the row failed and are wrapped."""
        push_event_id = await _seed_push_event(session_factory)

        class _ExplodingClient:
            async def fetch_resource(
                self, url: str, etag: str | None = None
            ) -> typ.NoReturn:
                del url, etag
                msg = "boom"
                raise RuntimeError(msg)

        service = _service(
            session_factory, typ.cast("GitHubEventsClient", _ExplodingClient())
        )

        with pytest.raises(EnrichmentError) as excinfo:
            await service.enrich(push_event_id)

        assert excinfo.value.push_event_id == push_event_id
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        push = await _load(session_factory, push_event_id)
        assert push.status is EnrichmentStatus.FAILED

    @pytest.mark.asyncio
    async def test_reset_then_enrich_again(
        self, session_factory: SessionFactory
    ) -> None:
        """A failed push event can be reset and retried."""
        push_event_id = await _seed_push_event(
            session_factory, status=EnrichmentStatus.FAILED
        )
        client = _full_github().client()
        service = _service(session_factory, client)

        assert await service.reset(push_event_id) is EnrichmentStatus.PENDING
        result = await service.enrich(push_event_id)
        await client.aclose()

        assert result.outcome is EnrichmentOutcome.COMPLETED

    @pytest.mark.asyncio
    async def test_reset_rejects_pending(self, session_factory: SessionFactory) -> None:
        """Only finished push events can be reset."""
        push_event_id = await _seed_push_event(session_factory)
        client = FakeGitHub().client()
        try:
            with pytest.raises(EnrichmentStateError):
                await _service(session_factory, client).reset(push_event_id)
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_failed_start_marks_failed(
        self, session_factory: SessionFactory
    ) -> None:
        """A persistence error while claiming the row is wrapped and recorded."""
        push_event_id = await _seed_push_event(session_factory)
        fake = _full_github()
        client = fake.client()
        service = _service(_failing_first_commit(session_factory), client)

        try:
            with pytest.raises(EnrichmentError) as excinfo:
                await service.enrich(push_event_id)
        finally:
            await client.aclose()

        assert isinstance(excinfo.value.__cause__, OperationalError)
        assert fake.requests == [], "no resource is fetched after a failed start"
        push = await _load(session_factory, push_event_id)
        assert push.status is EnrichmentStatus.FAILED


class _CommitFailsSession(AsyncSession):
    async def commit(self) -> None:
        raise OperationalError(
            "UPDATE push_events", {}, Exception("database is locked")
        )


def _failing_first_commit(session_factory: SessionFactory) -> SessionFactory:
    """Wrap ``session_factory`` so the first session's commit fails."""
    failing = async_sessionmaker(class_=_CommitFailsSession, **session_factory.kw)
    opened = 0

    def factory() -> AsyncSession:
        nonlocal opened
        opened += 1
        return failing() if opened == 1 else session_factory()

    return typ.cast("SessionFactory", factory)


class TestCacheConflicts:
    """Concurrent cache inserts converge on one row."""

    @pytest.mark.asyncio
    async def test_upsert_conflict_refreshes_existing_row(
        self, session_factory: SessionFactory, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """An insert racing another writer reloads and refreshes that row."""
        await _seed_cache(session_factory, age=dt.timedelta(hours=25))
        push_event_id = await _seed_push_event(session_factory)
        real_load = enrichment_service._load_cached
        hidden: list[str] = []

        async def _load_missing_actor_once(
            session: AsyncSession, model: type[typ.Any], github_id: str
        ) -> typ.Any:  # noqa: ANN401
            if model is Actor and not hidden:
                hidden.append(github_id)
                return None
            return await real_load(session, model, github_id)

        monkeypatch.setattr(
            enrichment_service, "_load_cached", _load_missing_actor_once
        )

        result = await _enrich(session_factory, _full_github(), push_event_id)

        assert hidden == ["7"], "the first actor lookup should miss"
        assert result.outcome is EnrichmentOutcome.COMPLETED
        async with session_factory() as session:
            actors = (await session.scalars(select(Actor))).all()
        assert [actor.login for actor in actors] == ["octocat"]
        assert actors[0].is_fresh(dt.timedelta(hours=1))
        push = await _load(session_factory, push_event_id)
        assert push.actor_id == actors[0].id
