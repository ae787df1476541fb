"""Shared test utilities."""

from __future__ import annotations

import asyncio
import typing as typ

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

if typ.TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine


def run_async[T](coro: typ.Coroutine[typ.Any, typ.Any, T]) -> T:
    """Run async coroutines in sync test and BDD step functions."""
    return asyncio.run(coro)


def sqlite_url(tmp_path: Path, name: str = "pushfeed_test.db") -> str:
    """Return an aiosqlite URL for a database file under ``tmp_path``."""
    return f"sqlite+aiosqlite:///{tmp_path / name}"


def sqlite_engine(
    tmp_path: Path, name: str = "pushfeed_test.db", **engine_kwargs: object
) -> AsyncEngine:
    """Create a SQLite engine that enforces foreign keys on every connection."""
    engine = create_async_engine(sqlite_url(tmp_path, name), **engine_kwargs)

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(
        dbapi_connection: typ.Any,  # noqa: ANN401
        _record: object,
    ) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine
