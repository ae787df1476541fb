"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import contextlib
import os
import socket
import typing as typ

import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from pushfeed.bronze.storage import init_storage
from tests.helpers import sqlite_engine

if typ.TYPE_CHECKING:
    from pathlib import Path


def _find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@contextlib.asynccontextmanager
async def _database_engine(tmp_path: Path) -> typ.AsyncIterator[AsyncEngine]:
    """Yield an initialised engine; ``PUSHFEED_TEST_DB=pglite`` selects Postgres."""
    if os.getenv("PUSHFEED_TEST_DB", "sqlite").lower() != "pglite":
        engine = sqlite_engine(tmp_path)
        try:
            await init_storage(engine)
            yield engine
        finally:
            await engine.dispose()
        return

    from py_pglite import PGliteConfig, PGliteManager

    config = PGliteConfig(
        use_tcp=True,
        tcp_host="127.0.0.1",
        tcp_port=_find_free_port(),
        work_dir=tmp_path / "pglite",
    )
    with PGliteManager(config):
        engine = create_async_engine(
            "postgresql+asyncpg://postgres:postgres@"
            f"{config.tcp_host}:{config.tcp_port}/postgres"
        )
        try:
            await init_storage(engine)
            yield engine
        finally:
            await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> typ.AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a fresh async session factory over a per-test database."""
    async with _database_engine(tmp_path) as engine:
        yield async_sessionmaker(engine, expire_on_commit=False)
