"""Key/value cursor persistence shared between polling runs."""

from __future__ import annotations

import typing as typ

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .storage import Cursor

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

GITHUB_EVENTS_ETAG_KEY = "github_events_etag"


class CursorPersistError(RuntimeError):
    """Raised when a cursor row vanishes after a conflicting insert."""

    def __init__(self, key: str) -> None:
        """Name the cursor key that could not be reloaded."""
        super().__init__(f"expected existing cursor {key!r} after rollback")


class CursorStore:
    """Persist small opaque values such as the event feed ETag."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for cursor reads and writes."""
        self._session_factory = session_factory

    async def get(self, key: str) -> str | None:
        """Return the value stored under ``key``, or None when unset."""
        async with self._session_factory() as session:
            return await session.scalar(select(Cursor.value).where(Cursor.key == key))

    async def set(self, key: str, value: str | None) -> str | None:
        """Create or update ``key`` with ``value`` and return the stored value.

        Concurrent writers may race to create the row; the loser reloads the
        winner's row and overwrites its value.
        """
        async with self._session_factory() as session:
            cursor = await self._load(session, key)
            if cursor is None:
                session.add(Cursor(key=key, value=value))
                try:
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    cursor = await self._load(session, key)
                    if cursor is None:
                        raise CursorPersistError(key) from exc
                else:
                    return value
            cursor.value = value
            await session.commit()
            return cursor.value

    @staticmethod
    async def _load(session: AsyncSession, key: str) -> Cursor | None:
        return await session.scalar(select(Cursor).where(Cursor.key == key))
