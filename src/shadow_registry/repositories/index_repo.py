"""SQL implementation of ShadowIndex, backed by the shadow_index table."""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shadow_registry.constants import (
    BUCKET_PATTERN,
    BUCKET_STRUCTURAL,
    SCHEMA_VERSION,
)
from shadow_registry.models.shadow import ShadowIndexEntry

# Rows per INSERT; keeps bound parameters under the SQLite limit
_REBUILD_BATCH = 250


def bucket_keys(structural_hash: str, pattern_hash: str) -> tuple[str, str]:
    return (
        f"{BUCKET_STRUCTURAL}:{structural_hash}",
        f"{BUCKET_PATTERN}:{pattern_hash}",
    )


class SqlShadowIndex:
    """Index repo that owns its own sessions.

    The index is published after the record transaction commits, so it
    runs in its own short-lived session rather than the caller's.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._session_factory = session_factory

    async def add(
        self, shadow_id: str, structural_hash: str, pattern_hash: str
    ) -> None:
        rows = [
            {
                "bucket_key": key,
                "shadow_id": shadow_id,
                "schema_version": SCHEMA_VERSION,
            }
            for key in bucket_keys(structural_hash, pattern_hash)
        ]
        async with self._session_factory() as session, session.begin():
            await session.execute(
                sqlite_insert(ShadowIndexEntry)
                .values(rows)
                .on_conflict_do_nothing()
            )

    async def candidates(
        self, structural_hash: str, pattern_hash: str
    ) -> list[str]:
        keys = bucket_keys(structural_hash, pattern_hash)
        async with self._session_factory() as session:
            result = await session.execute(
                select(ShadowIndexEntry.shadow_id)
                .where(ShadowIndexEntry.bucket_key.in_(keys))
                .distinct()
            )
            return list(result.scalars().all())

    async def rebuild(
        self, entries: Iterable[tuple[str, str, str]]
    ) -> int:
        rows = [
            {
                "bucket_key": key,
                "shadow_id": shadow_id,
                "schema_version": SCHEMA_VERSION,
            }
            for shadow_id, structural, pattern in entries
            for key in bucket_keys(structural, pattern)
        ]
        async with self._session_factory() as session, session.begin():
            await session.execute(sa_delete(ShadowIndexEntry))
            for start in range(0, len(rows), _REBUILD_BATCH):
                await session.execute(
                    sqlite_insert(ShadowIndexEntry)
                    .values(rows[start : start + _REBUILD_BATCH])
                    .on_conflict_do_nothing()
                )
        return len(rows)

    async def count(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(ShadowIndexEntry)
            )
            return result.scalar_one()

    async def clear(self) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(sa_delete(ShadowIndexEntry))
