"""Silver models: structured push events and their enrichment caches."""

from __future__ import annotations

import datetime as dt
import typing as typ

from sqlalchemy import JSON, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pushfeed.bronze.storage import Base, RawEvent, UTCDateTime
from pushfeed.common.time import utcnow

from .lifecycle import EnrichmentStatus


class _CachedResource:
    """Freshness check shared by the enrichment cache tables."""

    if typ.TYPE_CHECKING:
        fetched_at: dt.datetime

    def is_fresh(self, ttl: dt.timedelta, now: dt.datetime | None = None) -> bool:
        """Return True when the row was fetched within ``ttl`` of ``now``."""
        reference = now or utcnow()
        return self.fetched_at > reference - ttl


class Actor(_CachedResource, Base):
    """Cached GitHub user resource for push event actors."""

    __tablename__ = "actors"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    github_id: Mapped[str] = mapped_column(String(64), unique=True)
    login: Mapped[str | None] = mapped_column(String(255), default=None)
    avatar_url: Mapped[str | None] = mapped_column(String(1024), default=None)
    raw_data: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)
    fetched_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)

    push_events: Mapped[list[PushEvent]] = relationship(back_populates="actor")


class RepositoryProfile(_CachedResource, Base):
    """Cached GitHub repository resource for push event repositories."""

    __tablename__ = "repository_profiles"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    github_id: Mapped[str] = mapped_column(String(64), unique=True)
    full_name: Mapped[str | None] = mapped_column(String(255), default=None)
    description: Mapped[str | None] = mapped_column(Text(), default=None)
    raw_data: Mapped[dict[str, typ.Any]] = mapped_column(JSON, default=dict)
    fetched_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)

    push_events: Mapped[list[PushEvent]] = relationship(
        back_populates="repository_profile"
    )


class PushEvent(Base):
    """Push extracted from a raw event, awaiting or carrying enrichment."""

    __tablename__ = "push_events"
    __table_args__ = (
        Index("ix_push_events_enrichment_status", "enrichment_status"),
        Index("ix_push_events_repository_id", "repository_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    raw_event_id: Mapped[int] = mapped_column(
        ForeignKey("raw_events.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    push_id: Mapped[str] = mapped_column(String(64), unique=True)
    repository_id: Mapped[str] = mapped_column(String(255))
    ref: Mapped[str] = mapped_column(String(255))
    head: Mapped[str] = mapped_column("head_sha", String(64))
    before: Mapped[str] = mapped_column(
        "before_sha", String(64), nullable=False, default=""
    )
    enrichment_status: Mapped[str] = mapped_column(
        String(32), default=EnrichmentStatus.PENDING.value
    )
    actor_id: Mapped[int | None] = mapped_column(
        ForeignKey("actors.id", ondelete="SET NULL"), default=None
    )
    repository_profile_id: Mapped[int | None] = mapped_column(
        ForeignKey("repository_profiles.id", ondelete="SET NULL"), default=None
    )
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )

    raw_event: Mapped[RawEvent] = relationship(back_populates="push_event")
    actor: Mapped[Actor | None] = relationship(back_populates="push_events")
    repository_profile: Mapped[RepositoryProfile | None] = relationship(
        back_populates="push_events"
    )

    @property
    def status(self) -> EnrichmentStatus:
        """Return the enrichment status as an enum member."""
        return EnrichmentStatus(self.enrichment_status)
