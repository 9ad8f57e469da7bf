"""Protocol-based repository interfaces.

SQL implementations satisfy these protocols structurally (no inheritance).
Test doubles can be plain classes matching the same signature.
"""

from collections.abc import Iterable
from typing import Protocol

from shadow_registry.constants import ShadowStatus
from shadow_registry.domain.shadow import Shadow


class ShadowRepository(Protocol):
    async def get(self, shadow_id: str) -> Shadow | None: ...
    async def get_many(self, shadow_ids: Iterable[str]) -> dict[str, Shadow]: ...
    async def exists(self, shadow_id: str) -> bool: ...
    async def add(self, shadow: Shadow) -> Shadow: ...
    async def update(self, shadow: Shadow) -> Shadow: ...
    async def find_live(self, original_id: str) -> Shadow | None: ...
    async def list_shadows(
        self,
        status: ShadowStatus | None = None,
        limit: int | None = None,
    ) -> list[Shadow]: ...
    async def count(self) -> int: ...
    async def corrupt_records(self) -> dict[str, str]: ...


class ShadowIndex(Protocol):
    """Bucket index from DNA hashes to shadow ids.

    Derived data: it may lag or be lost, and can always be rebuilt from
    the Shadow records.
    """

    async def add(
        self, shadow_id: str, structural_hash: str, pattern_hash: str
    ) -> None: ...
    async def candidates(
        self, structural_hash: str, pattern_hash: str
    ) -> list[str]: ...
    async def rebuild(
        self, entries: Iterable[tuple[str, str, str]]
    ) -> int: ...
    async def count(self) -> int: ...
    async def clear(self) -> None: ...
