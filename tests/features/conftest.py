"""Shared fixtures for BDD feature tests."""

from __future__ import annotations

import typing as typ

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import NullPool

from pushfeed.bronze import init_storage
from tests.helpers import run_async, sqlite_engine

if typ.TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession


@pytest.fixture
def feature_session_factory(
    tmp_path: Path,
) -> typ.Iterator[async_sessionmaker[AsyncSession]]:
    """Provision a fresh SQLite database for each scenario.

    Steps run in separate event loops, so connections are never pooled.
    """
    engine = sqlite_engine(tmp_path, "feature.db", poolclass=NullPool)
    run_async(init_storage(engine))
    yield async_sessionmaker(engine, expire_on_commit=False)
    run_async(engine.dispose())
