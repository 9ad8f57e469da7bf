"""Write-side view of the Shadow repository inside one transaction."""

from __future__ import annotations

from shadow_registry.domain.shadow import Shadow
from shadow_registry.repositories.protocols import ShadowRepository


class ShadowUnitOfWork:
    """Tracks every Shadow created or changed in the current transaction.

    Reads see this transaction's own pending writes. After commit the
    store uses ``touched`` to invalidate its cache and ``created`` to
    publish index entries.
    """

    def __init__(self, repo: ShadowRepository) -> None:
        self.repo = repo
        self._pending: dict[str, Shadow] = {}
        self.created: list[Shadow] = []

    async def get(self, shadow_id: str) -> Shadow | None:
        if shadow_id in self._pending:
            return self._pending[shadow_id]
        return await self.repo.get(shadow_id)

    async def add(self, shadow: Shadow) -> Shadow:
        await self.repo.add(shadow)
        self._pending[shadow.shadow_id] = shadow
        self.created.append(shadow)
        return shadow

    async def save(self, shadow: Shadow) -> Shadow:
        await self.repo.update(shadow)
        self._pending[shadow.shadow_id] = shadow
        return shadow

    @property
    def touched(self) -> list[Shadow]:
        return list(self._pending.values())
