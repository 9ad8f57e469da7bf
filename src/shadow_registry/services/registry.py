"""Registry facade: one handle per registry location.

Each ShadowRegistry owns its engine, store, index, cache and services.
There is no module-level instance; callers create and close registries
explicitly, or use ``async with``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from types import TracebackType
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from shadow_registry.analysis import vibration
from shadow_registry.analysis.fingerprint import coerce_atom
from shadow_registry.analysis.fingerprint import compute_dna as _compute_dna
from shadow_registry.config import Settings, create_app_engine
from shadow_registry.constants import (
    EvolutionType,
    IndexBackend,
    ShadowStatus,
)
from shadow_registry.domain.atom import Atom
from shadow_registry.domain.dna import DNA
from shadow_registry.domain.results import (
    IntegrityWarning,
    LineageResult,
    SimilarityMatch,
)
from shadow_registry.domain.shadow import Connection, Inheritance, Shadow
from shadow_registry.logger import RegistryAuditLogger
from shadow_registry.logging_config import setup_logging
from shadow_registry.repositories.index_repo import SqlShadowIndex
from shadow_registry.repositories.memory_index import InMemoryShadowIndex
from shadow_registry.repositories.protocols import ShadowIndex
from shadow_registry.resilience.errors import ShadowRegistryError
from shadow_registry.services.lineage_service import (
    LineageService,
    ancestry_overlap,
)
from shadow_registry.services.shadow_store import ShadowStore
from shadow_registry.services.similarity_service import SimilarityService
from shadow_registry.services.unit_of_work import ShadowUnitOfWork

logger = logging.getLogger(__name__)


class ShadowRegistry:
    """Entry point for recording dead atoms and querying their history."""

    def __init__(
        self,
        location: str | Path | None = None,
        settings: Settings | None = None,
        index: ShadowIndex | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._location = Path(location) if location is not None else None
        self._index_override = index
        self._engine: AsyncEngine | None = None
        self._store: ShadowStore | None = None
        self._similarity: SimilarityService | None = None
        self._lineage: LineageService | None = None
        self._audit: RegistryAuditLogger | None = None
        self._initialized = False

    # ── Lifecycle ───────────────────────────────────────────

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def store(self) -> ShadowStore:
        if self._store is None:
            raise ShadowRegistryError(
                "ShadowRegistry is not initialized; call initialize()"
            )
        return self._store

    @property
    def lineage(self) -> LineageService:
        self._require()
        assert self._lineage is not None
        return self._lineage

    @property
    def similarity(self) -> SimilarityService:
        self._require()
        assert self._similarity is not None
        return self._similarity

    def _require(self) -> None:
        if not self._initialized:
            raise ShadowRegistryError(
                "ShadowRegistry is not initialized; call initialize()"
            )

    def _build_index(
        self, session_factory: async_sessionmaker[Any]
    ) -> ShadowIndex:
        if self._index_override is not None:
            return self._index_override
        if self._settings.index_backend == IndexBackend.MEMORY:
            return InMemoryShadowIndex()
        return SqlShadowIndex(session_factory)

    async def initialize(self) -> None:
        """Open storage and prepare tables. Safe to call repeatedly."""
        if self._initialized:
            return
        setup_logging(self._settings.log_level)

        if self._location is not None:
            self._location.mkdir(parents=True, exist_ok=True)
        elif not self._settings.database_url:
            self._settings.data_dir.mkdir(parents=True, exist_ok=True)
        url = self._settings.resolved_database_url(self._location)

        engine = create_app_engine(url)
        session_factory = async_sessionmaker(engine, expire_on_commit=False)
        if self._settings.audit_log_enabled:
            self._audit = RegistryAuditLogger(
                self._settings.log_dir, level=self._settings.log_level
            )
        store = ShadowStore(
            session_factory,
            self._build_index(session_factory),
            self._settings,
            audit=self._audit,
        )
        try:
            await store.initialize(engine)
        except Exception:
            await engine.dispose()
            raise

        self._engine = engine
        self._store = store
        self._similarity = SimilarityService(store)
        self._lineage = LineageService(store, audit=self._audit)
        self._initialized = True
        logger.info("event=registry_initialized url=%s", url)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        if self._audit is not None:
            self._audit.close()
        self._engine = None
        self._store = None
        self._similarity = None
        self._lineage = None
        self._audit = None
        self._initialized = False

    async def __aenter__(self) -> ShadowRegistry:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ── Fingerprinting ──────────────────────────────────────

    @staticmethod
    def compute_dna(atom: Atom | dict[str, Any]) -> DNA:
        return _compute_dna(atom)

    # ── Store ───────────────────────────────────────────────

    async def create_shadow(
        self,
        atom: Atom | dict[str, Any],
        *,
        reason: str | None = None,
        replacement_id: str | None = None,
        parent_shadow_id: str | None = None,
        evolution_type: EvolutionType | None = None,
        commits: list[str] | None = None,
        risk: float = 0.0,
        dna: DNA | None = None,
    ) -> Shadow:
        """Record the death of ``atom`` and return its Shadow."""
        self._require()
        parsed = coerce_atom(atom)
        return await self.store.create_shadow(
            parsed,
            dna=dna,
            reason=reason,
            replacement_id=replacement_id,
            parent_shadow_id=parent_shadow_id,
            evolution_type=evolution_type,
            commits=commits,
            risk=risk,
        )

    async def get_shadow(self, shadow_id: str) -> Shadow | None:
        self._require()
        return await self.store.get_shadow(shadow_id)

    async def exists(self, shadow_id: str) -> bool:
        self._require()
        return await self.store.exists(shadow_id)

    async def list_shadows(
        self,
        status: ShadowStatus | None = None,
        limit: int | None = None,
    ) -> list[Shadow]:
        self._require()
        return await self.store.list_shadows(status=status, limit=limit)

    async def rebuild_index(self) -> int:
        self._require()
        return await self.store.rebuild_index()

    # ── Similarity ──────────────────────────────────────────

    async def find_similar(
        self,
        dna: DNA,
        top_k: int | None = None,
        min_similarity: float | None = None,
        *,
        include_replaced: bool = False,
    ) -> list[SimilarityMatch]:
        return await self.similarity.find_similar(
            dna, top_k, min_similarity, include_replaced=include_replaced
        )

    async def find_best_match(
        self,
        dna: DNA,
        min_similarity: float | None = None,
        *,
        include_replaced: bool = False,
    ) -> SimilarityMatch | None:
        return await self.similarity.find_best_match(
            dna, min_similarity, include_replaced=include_replaced
        )

    # ── Lineage ─────────────────────────────────────────────

    async def mark_replaced(
        self,
        shadow_id: str,
        replacement_id: str,
        evolution_type: EvolutionType | None = None,
    ) -> Shadow | None:
        return await self.lineage.mark_replaced(
            shadow_id, replacement_id, evolution_type
        )

    async def mark_split(
        self,
        shadow_id: str,
        replacement_ids: list[str],
        evolution_type: EvolutionType | None = EvolutionType.SPLIT,
    ) -> Shadow | None:
        return await self.lineage.mark_split(
            shadow_id, replacement_ids, evolution_type
        )

    async def mark_merged(
        self,
        shadow_ids: list[str],
        replacement_id: str,
        evolution_type: EvolutionType | None = EvolutionType.MERGED,
    ) -> list[Shadow]:
        return await self.lineage.mark_merged(
            shadow_ids, replacement_id, evolution_type
        )

    async def get_lineage(self, shadow_id: str) -> LineageResult:
        return await self.lineage.get_lineage(shadow_id)

    async def compare_lineage(self, a_id: str, b_id: str) -> float:
        return await self.lineage.compare_lineage(a_id, b_id)

    @staticmethod
    def compare_ancestry(
        a: Atom | dict[str, Any], b: Atom | dict[str, Any]
    ) -> float:
        """Jaccard overlap of the ancestor ids carried by two live atoms."""
        return ancestry_overlap(coerce_atom(a), coerce_atom(b))

    async def verify_integrity(self) -> list[IntegrityWarning]:
        return await self.lineage.verify_integrity()

    # ── Vibration ───────────────────────────────────────────

    async def compute_vibration(
        self,
        shadow_id: str,
        connections: list[Connection | dict[str, Any]],
        resolver: vibration.FileResolver | None = None,
        *,
        persist: bool = True,
    ) -> Inheritance | None:
        """Score live references to a Shadow; None if it does not exist.

        With ``persist`` the new Inheritance replaces the stored one.
        """
        self._require()
        shadow = await self.store.get_shadow(shadow_id)
        if shadow is None:
            return None
        inheritance = vibration.compute_vibration(shadow, connections, resolver)
        if not persist:
            return inheritance

        async def op(uow: ShadowUnitOfWork) -> None:
            current = await uow.get(shadow_id)
            if current is not None:
                await uow.save(replace(current, inheritance=inheritance))

        await self.store.write(op)
        return inheritance

    async def is_zombie(
        self, shadow_id: str, threshold: float | None = None
    ) -> bool:
        self._require()
        shadow = await self.store.get_shadow(shadow_id)
        if shadow is None:
            return False
        if threshold is None:
            threshold = self._settings.zombie_threshold
        return vibration.is_zombie(shadow, threshold)

    async def find_zombies(
        self, threshold: float | None = None
    ) -> list[Shadow]:
        """Still-deleted Shadows whose stored vibration reaches threshold."""
        self._require()
        if threshold is None:
            threshold = self._settings.zombie_threshold
        live = await self.store.list_shadows(status=ShadowStatus.DELETED)
        return [s for s in live if vibration.is_zombie(s, threshold)]
