"""In-memory fake repositories for testing.

Dict-backed implementation of ShadowRepository plus an index double
that can be told to fail. No SQLAlchemy, no I/O.
"""

from __future__ import annotations

from collections.abc import Iterable

from shadow_registry.constants import ShadowStatus
from shadow_registry.domain.shadow import Shadow
from shadow_registry.repositories.memory_index import InMemoryShadowIndex
from shadow_registry.resilience.errors import StorageError


class FakeShadowRepository:
    """Dict-backed ShadowRepository for testing."""

    def __init__(self) -> None:
        self._store: dict[str, Shadow] = {}

    async def get(self, shadow_id: str) -> Shadow | None:
        return self._store.get(shadow_id)

    async def get_many(
        self, shadow_ids: Iterable[str]
    ) -> dict[str, Shadow]:
        return {
            sid: self._store[sid] for sid in shadow_ids if sid in self._store
        }

    async def exists(self, shadow_id: str) -> bool:
        return shadow_id in self._store

    async def add(self, shadow: Shadow) -> Shadow:
        self._store[shadow.shadow_id] = shadow
        return shadow

    async def update(self, shadow: Shadow) -> Shadow:
        if shadow.shadow_id not in self._store:
            raise StorageError(f"Shadow {shadow.shadow_id} does not exist")
        self._store[shadow.shadow_id] = shadow
        return shadow

    async def find_live(self, original_id: str) -> Shadow | None:
        for shadow in self._store.values():
            if shadow.original_id == original_id and shadow.is_live:
                return shadow
        return None

    async def list_shadows(
        self,
        status: ShadowStatus | None = None,
        limit: int | None = None,
    ) -> list[Shadow]:
        rows = sorted(
            (
                s
                for s in self._store.values()
                if status is None or s.status == status
            ),
            key=lambda s: (-s.died_at.timestamp(), s.shadow_id),
        )
        return rows[:limit] if limit is not None else rows

    async def count(self) -> int:
        return len(self._store)

    async def corrupt_records(self) -> dict[str, str]:
        return {}


class FailingShadowIndex(InMemoryShadowIndex):
    """Index double whose lookups (and optionally writes) raise."""

    def __init__(self, *, fail_writes: bool = False) -> None:
        super().__init__()
        self.fail_writes = fail_writes
        self.lookups = 0

    async def add(
        self, shadow_id: str, structural_hash: str, pattern_hash: str
    ) -> None:
        if self.fail_writes:
            raise RuntimeError("index unavailable")
        await super().add(shadow_id, structural_hash, pattern_hash)

    async def candidates(
        self, structural_hash: str, pattern_hash: str
    ) -> list[str]:
        self.lookups += 1
        raise RuntimeError("index unavailable")
