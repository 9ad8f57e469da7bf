"""In-process ShadowIndex. Lost on restart; rebuilt by initialize()."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

from shadow_registry.repositories.index_repo import bucket_keys


class InMemoryShadowIndex:
    def __init__(self) -> None:
        self._buckets: defaultdict[str, set[str]] = defaultdict(set)

    async def add(
        self, shadow_id: str, structural_hash: str, pattern_hash: str
    ) -> None:
        for key in bucket_keys(structural_hash, pattern_hash):
            self._buckets[key].add(shadow_id)

    async def candidates(
        self, structural_hash: str, pattern_hash: str
    ) -> list[str]:
        found: set[str] = set()
        for key in bucket_keys(structural_hash, pattern_hash):
            found |= self._buckets.get(key, set())
        return sorted(found)

    async def rebuild(
        self, entries: Iterable[tuple[str, str, str]]
    ) -> int:
        self._buckets.clear()
        for shadow_id, structural, pattern in entries:
            await self.add(shadow_id, structural, pattern)
        return await self.count()

    async def count(self) -> int:
        return sum(len(ids) for ids in self._buckets.values())

    async def clear(self) -> None:
        self._buckets.clear()
