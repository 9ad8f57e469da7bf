"""Shared test fixtures: tmp-path SQLite engine, sessions, registry."""

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from tenacity import wait_none

from shadow_registry.config import Settings, create_app_engine
from shadow_registry.models.base import Base
from shadow_registry.services.registry import ShadowRegistry
from shadow_registry.services.shadow_store import ShadowStore


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the developer's .env and environment."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        storage_timeout_seconds=5.0,
    )


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """Function-scoped file engine with all tables created."""
    engine = create_app_engine(f"sqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(
    engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def registry(
    tmp_path: Path, settings: Settings
) -> AsyncIterator[ShadowRegistry]:
    """Initialized registry stored under tmp_path; closed on teardown."""
    reg = ShadowRegistry(tmp_path / "registry", settings=settings)
    await reg.initialize()
    yield reg
    await reg.close()


@pytest.fixture
def _disable_retry_wait() -> Any:
    """Disable tenacity wait time for fast tests."""
    retrying = ShadowStore._transact.retry  # type: ignore[attr-defined]
    original_wait = retrying.wait
    retrying.wait = wait_none()
    yield
    retrying.wait = original_wait
