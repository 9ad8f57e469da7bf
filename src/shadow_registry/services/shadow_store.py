"""Shadow Store: durable Shadow records plus the derived bucket index.

Writes are serialized through one asyncio.Lock, bounded by
asyncio.timeout, retried on transient SQLite contention and guarded by
a circuit breaker. Reads take no lock and keep working while the write
circuit is open (degraded read-only mode).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, TypeVar

from circuitbreaker import (  # pyright: ignore[reportUnknownVariableType]
    CircuitBreaker,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from shadow_registry.analysis.fingerprint import coerce_atom, compute_dna
from shadow_registry.config import Settings
from shadow_registry.constants import (
    CB_STORAGE_FAILURE_THRESHOLD,
    CB_STORAGE_RECOVERY_TIMEOUT,
    ERROR_TRUNCATION_CHARS,
    RETRY_INITIAL_WAIT,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_WAIT,
    SCHEMA_VERSION,
    SCHEMA_VERSION_KEY,
    SHADOW_ID_PREFIX,
    UNKNOWN_DEATH_REASON,
    EvolutionType,
    ShadowStatus,
)
from shadow_registry.domain.atom import Atom
from shadow_registry.domain.dna import DNA
from shadow_registry.domain.shadow import (
    Death,
    Lineage,
    Shadow,
    ShadowMetadata,
)
from shadow_registry.logger import RegistryAuditLogger
from shadow_registry.models.base import Base
from shadow_registry.models.shadow import RegistryMeta
from shadow_registry.repositories.protocols import (
    ShadowIndex,
    ShadowRepository,
)
from shadow_registry.repositories.shadow_repo import SqlShadowRepository
from shadow_registry.resilience.errors import (
    InvalidStatusTransition,
    StorageError,
    StorageUnavailable,
    ValidationError,
    classify_error,
    is_retryable,
)
from shadow_registry.services.cache import ShadowCache
from shadow_registry.services.unit_of_work import ShadowUnitOfWork

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DOMAIN_ERRORS = (ValidationError, InvalidStatusTransition)


def _is_storage_failure(
    thrown_type: type, thrown_value: BaseException
) -> bool:
    """Return True if the error should count against the write circuit.

    Rejected input is the caller's fault, not a storage failure.
    """
    return not issubclass(thrown_type, _DOMAIN_ERRORS)


def new_shadow_id() -> str:
    return SHADOW_ID_PREFIX + uuid.uuid4().hex


def lifespan_days(born_at: datetime | None, died_at: datetime) -> int:
    """Whole days between birth and death; 0 when birth is unknown."""
    if born_at is None:
        return 0
    if born_at.tzinfo is None:
        born_at = born_at.replace(tzinfo=UTC)
    return max(0, (died_at - born_at).days)


def ensure_transition(shadow: Shadow, requested: ShadowStatus) -> None:
    """Only DELETED may move; every other status is terminal."""
    if shadow.status != ShadowStatus.DELETED:
        raise InvalidStatusTransition(
            shadow.shadow_id, str(shadow.status), str(requested)
        )


class ShadowStore:
    """Owns the records, the index handle and the read cache."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        index: ShadowIndex,
        settings: Settings | None = None,
        *,
        repo_factory: Callable[[AsyncSession], ShadowRepository]
        | None = None,
        audit: RegistryAuditLogger | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._index = index
        self._settings = settings or Settings()
        self._repo_factory = repo_factory or SqlShadowRepository
        self._audit = audit
        self._cache = ShadowCache(self._settings.cache_size)
        self._write_lock = asyncio.Lock()
        # Bumped on every commit; reads that straddle a commit skip the cache
        self._commits = 0
        self._breaker = CircuitBreaker(  # pyright: ignore[reportUnknownMemberType]
            failure_threshold=CB_STORAGE_FAILURE_THRESHOLD,
            recovery_timeout=CB_STORAGE_RECOVERY_TIMEOUT,
            expected_exception=_is_storage_failure,
            name=f"shadow_store_writes_{id(self):x}",
        )

    # ── Accessors ───────────────────────────────────────────

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def cache(self) -> ShadowCache:
        return self._cache

    @property
    def index(self) -> ShadowIndex:
        return self._index

    @property
    def writes_suspended(self) -> bool:
        """True while the write circuit is open."""
        return bool(self._breaker.opened)  # pyright: ignore[reportUnknownMemberType]

    # ── Lifecycle ───────────────────────────────────────────

    async def initialize(self, engine: Any) -> None:
        """Create tables, stamp or validate the schema, repair the index."""
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await self._bounded(self._stamp_schema(), "schema check")

        records = await self.count()
        if records and await self._bounded(self._index.count(), "index") == 0:
            logger.info("event=index_empty_rebuilding records=%d", records)
            await self.rebuild_index()

    async def _stamp_schema(self) -> None:
        async with self._session_factory() as session, session.begin():
            meta = await session.get(RegistryMeta, SCHEMA_VERSION_KEY)
            if meta is None:
                session.add(
                    RegistryMeta(
                        key=SCHEMA_VERSION_KEY, value=str(SCHEMA_VERSION)
                    )
                )
                logger.info(
                    "event=schema_stamped version=%d", SCHEMA_VERSION
                )
            elif meta.value != str(SCHEMA_VERSION):
                raise StorageError(
                    f"Registry schema version {meta.value} does not match "
                    f"supported version {SCHEMA_VERSION}"
                )

    # ── Read path (no lock) ─────────────────────────────────

    async def _bounded(self, call: Awaitable[T], action: str) -> T:
        """Await ``call`` under the storage timeout."""
        try:
            async with asyncio.timeout(
                self._settings.storage_timeout_seconds
            ):
                return await call
        except TimeoutError as exc:
            raise StorageUnavailable(
                f"Shadow store {action} timed out after "
                f"{self._settings.storage_timeout_seconds}s"
            ) from exc

    async def _read(self, op: Callable[[ShadowRepository], Awaitable[T]]) -> T:
        async def run() -> T:
            async with self._session_factory() as session:
                return await op(self._repo_factory(session))

        return await self._bounded(run(), "read")

    async def index_candidates(
        self, structural_hash: str, pattern_hash: str
    ) -> list[str]:
        return await self._bounded(
            self._index.candidates(structural_hash, pattern_hash), "index"
        )

    async def get_shadow(self, shadow_id: str) -> Shadow | None:
        cached = self._cache.get(shadow_id)
        if cached is not None:
            return cached
        seen_commits = self._commits
        shadow = await self._read(lambda repo: repo.get(shadow_id))
        if shadow is not None and seen_commits == self._commits:
            self._cache.set(shadow)
        return shadow

    async def get_many(self, shadow_ids: list[str]) -> dict[str, Shadow]:
        found: dict[str, Shadow] = {}
        missing: list[str] = []
        for sid in shadow_ids:
            cached = self._cache.get(sid)
            if cached is not None:
                found[sid] = cached
            else:
                missing.append(sid)
        if missing:
            loaded = await self._read(lambda repo: repo.get_many(missing))
            found.update(loaded)
        return found

    async def exists(self, shadow_id: str) -> bool:
        if self._cache.has(shadow_id):
            return True
        return await self._read(lambda repo: repo.exists(shadow_id))

    async def find_live(self, original_id: str) -> Shadow | None:
        return await self._read(lambda repo: repo.find_live(original_id))

    async def list_shadows(
        self,
        status: ShadowStatus | None = None,
        limit: int | None = None,
    ) -> list[Shadow]:
        """Newest first (by diedAt)."""
        return await self._read(
            lambda repo: repo.list_shadows(status=status, limit=limit)
        )

    async def count(self) -> int:
        return await self._read(lambda repo: repo.count())

    async def corrupt_records(self) -> dict[str, str]:
        """Records that scans skip because they cannot be decoded."""
        return await self._read(lambda repo: repo.corrupt_records())

    async def schema_version(self) -> int | None:
        async def run() -> str | None:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(RegistryMeta.value).where(
                        RegistryMeta.key == SCHEMA_VERSION_KEY
                    )
                )
                return result.scalar_one_or_none()

        value = await self._bounded(run(), "read")
        return int(value) if value is not None else None

    # ── Write path (single writer) ──────────────────────────

    @retry(
        stop=stop_after_attempt(RETRY_MAX_ATTEMPTS),
        wait=wait_exponential_jitter(
            initial=RETRY_INITIAL_WAIT, max=RETRY_MAX_WAIT
        ),
        retry=retry_if_exception(is_retryable),
        reraise=True,
    )
    async def _transact(
        self, op: Callable[[ShadowUnitOfWork], Awaitable[T]]
    ) -> tuple[T, ShadowUnitOfWork]:
        try:
            async with asyncio.timeout(
                self._settings.storage_timeout_seconds
            ):
                async with self._session_factory() as session, session.begin():
                    uow = ShadowUnitOfWork(self._repo_factory(session))
                    result = await op(uow)
                return result, uow
        except TimeoutError as exc:
            raise StorageUnavailable(
                "Shadow store write timed out after "
                f"{self._settings.storage_timeout_seconds}s"
            ) from exc

    async def write(
        self, op: Callable[[ShadowUnitOfWork], Awaitable[T]]
    ) -> T:
        """Run ``op`` in one transaction: fully applied or not at all.

        After commit, touched ids are evicted from the cache and new
        Shadows are published to the index.

        Raises:
            StorageUnavailable: the write circuit is open or the write
                timed out.
        """
        async with self._write_lock:
            if self._breaker.opened:  # pyright: ignore[reportUnknownMemberType]
                raise StorageUnavailable(
                    "Shadow store writes are suspended after repeated "
                    "failures; reads remain available"
                )
            try:
                with self._breaker:  # pyright: ignore[reportUnknownMemberType]
                    result, uow = await self._transact(op)
            except _DOMAIN_ERRORS:
                raise
            except Exception as exc:
                logger.error(
                    "event=shadow_write_failed class=%s error=%s",
                    classify_error(exc).value,
                    str(exc)[:ERROR_TRUNCATION_CHARS],
                )
                raise

            self._commits += 1
            for shadow in uow.touched:
                self._cache.delete(shadow.shadow_id)
            for shadow in uow.created:
                await self._publish(shadow)
            return result

    async def _publish(self, shadow: Shadow) -> None:
        """Add index entries. The record is already durable."""
        try:
            await self._bounded(
                self._index.add(
                    shadow.shadow_id,
                    shadow.dna.structural_hash,
                    shadow.dna.pattern_hash,
                ),
                "index publish",
            )
        except Exception as exc:
            # Search falls back to a scan until the next rebuild
            logger.warning(
                "event=index_publish_failed shadow=%s error=%s",
                shadow.shadow_id,
                str(exc)[:ERROR_TRUNCATION_CHARS],
            )

    async def create_shadow(
        self,
        atom: Atom | dict[str, Any],
        *,
        dna: DNA | None = None,
        reason: str | None = None,
        replacement_id: str | None = None,
        parent_shadow_id: str | None = None,
        evolution_type: EvolutionType | None = None,
        commits: list[str] | None = None,
        risk: float = 0.0,
        died_at: datetime | None = None,
    ) -> Shadow:
        """Persist a Shadow for a dead atom.

        Status is REPLACED when ``replacement_id`` is given, else DELETED.
        A second call for an originalId that already has a live (DELETED)
        Shadow returns that Shadow unchanged.
        Without ``parent_shadow_id`` the atom's ``ancestry.replaced``, if
        any, names the parent.
        """
        parsed = coerce_atom(atom)
        ancestry = parsed.ancestry
        reported_generation = 0
        if parent_shadow_id is None and ancestry is not None:
            parent_shadow_id = ancestry.replaced
            reported_generation = ancestry.generation
        if dna is None:
            dna = compute_dna(parsed)
        dna.validate()
        if risk < 0:
            raise ValidationError("risk must be >= 0")

        died = died_at or datetime.now(UTC)
        status = (
            ShadowStatus.REPLACED if replacement_id else ShadowStatus.DELETED
        )
        candidate = Shadow(
            shadow_id=new_shadow_id(),
            original_id=parsed.id,
            status=status,
            replaced_by=replacement_id,
            born_at=parsed.created_at,
            died_at=died,
            lifespan=lifespan_days(parsed.created_at, died),
            dna=dna,
            metadata=ShadowMetadata(
                name=parsed.name,
                file_path=parsed.file_path,
                line_number=parsed.line_number,
                is_exported=parsed.is_exported,
                data_flow=parsed.data_flow_dict(),
            ),
            lineage=Lineage(
                evolution_type=evolution_type,
                successor_ids=(replacement_id,) if replacement_id else (),
            ),
            death=Death(
                reason=reason or UNKNOWN_DEATH_REASON,
                commits_involved=tuple(commits or ()),
                risk_introduced=risk,
                replacement_id=replacement_id,
            ),
        )

        async def op(uow: ShadowUnitOfWork) -> tuple[Shadow, bool, Shadow | None]:
            live = await uow.repo.find_live(parsed.id)
            if live is not None and status == ShadowStatus.DELETED:
                return live, False, None
            shadow = candidate
            parent: Shadow | None = None
            if parent_shadow_id is not None:
                parent = await uow.get(parent_shadow_id)
                shadow = _with_parent(
                    shadow,
                    parent_shadow_id,
                    parent,
                    reported_generation,
                )
            await uow.add(shadow)
            if parent is not None:
                parent = await _append_child(uow, parent, shadow.shadow_id)
            return shadow, True, parent

        shadow, created, parent = await self.write(op)
        if not created:
            logger.info(
                "event=shadow_exists original=%s shadow=%s",
                parsed.id,
                shadow.shadow_id,
            )
            return shadow

        logger.info(
            "event=shadow_created shadow=%s original=%s status=%s",
            shadow.shadow_id,
            shadow.original_id,
            shadow.status,
        )
        if self._audit is not None:
            self._audit.log_created(
                shadow.shadow_id,
                shadow.original_id,
                str(shadow.status),
                shadow.death.reason,
                parent_shadow_id=shadow.lineage.parent_shadow_id,
            )
            if parent is not None:
                self._audit.log_link(
                    parent.shadow_id,
                    shadow.shadow_id,
                    shadow.lineage.generation,
                )
        return shadow

    async def rebuild_index(self) -> int:
        """Repopulate the index from every record. Returns entry count."""
        async with self._write_lock:
            shadows = await self.list_shadows()
            count = await self._bounded(
                self._index.rebuild(
                    (s.shadow_id, s.dna.structural_hash, s.dna.pattern_hash)
                    for s in shadows
                ),
                "index rebuild",
            )
        logger.info(
            "event=index_rebuilt shadows=%d entries=%d", len(shadows), count
        )
        return count


def _with_parent(
    shadow: Shadow,
    parent_id: str,
    parent: Shadow | None,
    reported_generation: int = 0,
) -> Shadow:
    """Attach the primary parent. A missing parent is kept as given.

    A missing parent keeps the generation the atom reported, or 1.
    """
    if parent is None:
        logger.warning(
            "event=dangling_parent shadow=%s parent=%s",
            shadow.shadow_id,
            parent_id,
        )
        generation = max(1, reported_generation)
    else:
        generation = parent.lineage.generation + 1
    return replace(
        shadow,
        lineage=replace(
            shadow.lineage,
            parent_shadow_id=parent_id,
            generation=generation,
        ),
    )


async def _append_child(
    uow: ShadowUnitOfWork, parent: Shadow, child_id: str
) -> Shadow:
    if child_id in parent.lineage.child_shadow_ids:
        return parent
    updated = replace(
        parent,
        lineage=replace(
            parent.lineage,
            child_shadow_ids=(*parent.lineage.child_shadow_ids, child_id),
        ),
    )
    return await uow.save(updated)
