"""Persistence models for raw GitHub events and pipeline cursors."""

from __future__ import annotations

import datetime as dt
import typing as typ

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine

    from pushfeed.silver.storage import PushEvent

from pushfeed.bronze.errors import PayloadInvariantError, TimezoneAwareRequiredError
from pushfeed.common.time import utcnow

PUSH_EVENT_TYPE = "PushEvent"
UNKNOWN_EVENT_TYPE = "Unknown"


class Base(DeclarativeBase):
    """Base declarative class for all pushfeed models."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise TimezoneAwareRequiredError.for_column()
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class RawEvent(Base):
    """Raw event exactly as received from the GitHub event feed.

    The body lives either inline in ``payload`` or in object storage under
    ``object_key``; exactly one of the two is set.
    """

    __tablename__ = "raw_events"
    __table_args__ = (
        CheckConstraint(
            "payload IS NOT NULL OR object_key IS NOT NULL",
            name="ck_raw_events_payload_location",
        ),
        Index("ix_raw_events_event_type", "event_type"),
        Index("ix_raw_events_object_key", "object_key"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(64), unique=True)
    event_type: Mapped[str] = mapped_column(String(64))
    payload: Mapped[dict[str, typ.Any] | None] = mapped_column(
        JSON(none_as_null=True), default=None
    )
    object_key: Mapped[str | None] = mapped_column(String(512), default=None)
    ingested_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    processed_at: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )

    push_event: Mapped[PushEvent | None] = relationship(
        back_populates="raw_event",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )

    @property
    def is_push_event(self) -> bool:
        """Return True when the raw event carries a push."""
        return self.event_type == PUSH_EVENT_TYPE

    @property
    def is_processed(self) -> bool:
        """Return True once the raw event has been fully handled."""
        return self.processed_at is not None

    def mark_processed(self, at: dt.datetime | None = None) -> None:
        """Stamp the processed timestamp; later calls keep the first stamp."""
        if self.processed_at is None:
            self.processed_at = at or utcnow()


def attach_payload(
    raw_event: RawEvent,
    payload: dict[str, typ.Any] | None,
    object_key: str | None,
) -> RawEvent:
    """Record where a raw event's body lives, enforcing a single location."""
    if object_key and payload is not None:
        raise PayloadInvariantError.both(raw_event.event_id)
    if object_key:
        raw_event.object_key = object_key
        raw_event.payload = None
        return raw_event
    if not payload:
        raise PayloadInvariantError.neither(raw_event.event_id)
    raw_event.object_key = None
    raw_event.payload = payload
    return raw_event


class Cursor(Base):
    """Small key/value row carrying state between independent runs."""

    __tablename__ = "cursors"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(255), unique=True)
    value: Mapped[str | None] = mapped_column(Text(), default=None)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


async def init_storage(engine: AsyncEngine) -> None:
    """Create every pushfeed table if absent."""
    # Registers the Silver tables on Base.metadata before create_all.
    import pushfeed.silver.storage  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
