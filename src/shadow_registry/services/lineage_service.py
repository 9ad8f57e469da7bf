"""Lineage Manager: status transitions, parent/child links and ancestry.

Mutations run as single store transactions, so a transition and the
links it creates land together or not at all. Reads walk the primary
parent chain and report problems as IntegrityWarning values instead of
raising.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from shadow_registry.constants import (
    EvolutionType,
    IntegrityIssue,
    ShadowStatus,
)
from shadow_registry.domain.atom import Atom
from shadow_registry.domain.results import IntegrityWarning, LineageResult
from shadow_registry.domain.shadow import Shadow
from shadow_registry.logger import RegistryAuditLogger
from shadow_registry.resilience.errors import (
    StorageError,
    StorageUnavailable,
    ValidationError,
)
from shadow_registry.services.linking import LinkResult, link
from shadow_registry.services.shadow_store import (
    ShadowStore,
    ensure_transition,
)
from shadow_registry.services.unit_of_work import ShadowUnitOfWork

logger = logging.getLogger(__name__)


def lineage_overlap(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard index of two ancestor id sets.

    Two empty sets are identical (1.0); one empty set shares nothing
    with a non-empty one (0.0).
    """
    set_a, set_b = set(a), set(b)
    if not set_a and not set_b:
        return 1.0
    union = set_a | set_b
    return len(set_a & set_b) / len(union)


def ancestry_overlap(a: Atom, b: Atom) -> float:
    """Overlap of the ancestor ids two atoms report. No ancestry is empty."""
    return lineage_overlap(
        a.ancestry.lineage if a.ancestry else (),
        b.ancestry.lineage if b.ancestry else (),
    )


def _terminate(
    shadow: Shadow,
    status: ShadowStatus,
    successors: tuple[str, ...],
    evolution_type: EvolutionType | None,
) -> Shadow:
    primary = successors[0] if successors else None
    return replace(
        shadow,
        status=status,
        replaced_by=primary,
        death=replace(shadow.death, replacement_id=primary),
        lineage=replace(
            shadow.lineage,
            evolution_type=evolution_type or shadow.lineage.evolution_type,
            successor_ids=tuple(
                dict.fromkeys((*shadow.lineage.successor_ids, *successors))
            ),
        ),
    )


class LineageService:
    def __init__(
        self,
        store: ShadowStore,
        audit: RegistryAuditLogger | None = None,
    ) -> None:
        self._store = store
        self._audit = audit

    @property
    def _max_depth(self) -> int:
        return self._store.settings.max_lineage_depth

    async def _link_if_shadow(
        self,
        uow: ShadowUnitOfWork,
        parent: Shadow,
        replacement_id: str,
        evolution_type: EvolutionType | None,
        links: list[LinkResult],
    ) -> Shadow:
        child = await uow.get(replacement_id)
        if child is None:
            return parent
        result = await link(
            uow,
            parent,
            child,
            evolution_type=evolution_type,
            max_depth=self._max_depth,
        )
        links.append(result)
        return result.parent

    def _audit_changes(
        self,
        before: dict[str, ShadowStatus],
        after: Iterable[Shadow],
        links: list[LinkResult],
    ) -> None:
        for shadow in after:
            logger.info(
                "event=shadow_status_changed shadow=%s from=%s to=%s "
                "replaced_by=%s",
                shadow.shadow_id,
                before[shadow.shadow_id],
                shadow.status,
                shadow.replaced_by,
            )
            if self._audit is not None:
                self._audit.log_transition(
                    shadow.shadow_id,
                    str(before[shadow.shadow_id]),
                    str(shadow.status),
                    shadow.replaced_by,
                    evolution_type=(
                        str(shadow.lineage.evolution_type)
                        if shadow.lineage.evolution_type
                        else None
                    ),
                )
        for result in links:
            logger.info(
                "event=lineage_linked parent=%s child=%s generation=%d "
                "primary=%s",
                result.parent.shadow_id,
                result.child.shadow_id,
                result.child.lineage.generation,
                result.primary,
            )
            if self._audit is not None:
                self._audit.log_link(
                    result.parent.shadow_id,
                    result.child.shadow_id,
                    result.child.lineage.generation,
                    secondary=not result.primary,
                )

    # ── Transitions ─────────────────────────────────────────

    async def mark_replaced(
        self,
        shadow_id: str,
        replacement_id: str,
        evolution_type: EvolutionType | None = None,
    ) -> Shadow | None:
        """DELETED → REPLACED. A missing shadow_id is a logged no-op.

        Raises:
            InvalidStatusTransition: the Shadow is already terminal.
            ValidationError: linking the replacement would form a cycle.
        """
        if not replacement_id:
            raise ValidationError("replacement_id is required")
        links: list[LinkResult] = []

        async def op(uow: ShadowUnitOfWork) -> tuple[Shadow, Shadow] | None:
            links.clear()
            shadow = await uow.get(shadow_id)
            if shadow is None:
                return None
            ensure_transition(shadow, ShadowStatus.REPLACED)
            updated = await uow.save(
                _terminate(
                    shadow,
                    ShadowStatus.REPLACED,
                    (replacement_id,),
                    evolution_type,
                )
            )
            updated = await self._link_if_shadow(
                uow, updated, replacement_id, evolution_type, links
            )
            return shadow, updated

        outcome = await self._store.write(op)
        if outcome is None:
            logger.warning(
                "event=mark_replaced_missing shadow=%s replacement=%s",
                shadow_id,
                replacement_id,
            )
            return None
        before, after = outcome
        self._audit_changes({shadow_id: before.status}, [after], links)
        return after

    async def mark_split(
        self,
        shadow_id: str,
        replacement_ids: list[str],
        evolution_type: EvolutionType | None = EvolutionType.SPLIT,
    ) -> Shadow | None:
        """DELETED → SPLIT: one parent, several successors.

        Successors that are Shadows become children of this one.
        """
        successors = tuple(dict.fromkeys(r for r in replacement_ids if r))
        if not successors:
            raise ValidationError("mark_split needs at least one replacement")
        links: list[LinkResult] = []

        async def op(uow: ShadowUnitOfWork) -> tuple[Shadow, Shadow] | None:
            links.clear()
            shadow = await uow.get(shadow_id)
            if shadow is None:
                return None
            ensure_transition(shadow, ShadowStatus.SPLIT)
            updated = await uow.save(
                _terminate(
                    shadow, ShadowStatus.SPLIT, successors, evolution_type
                )
            )
            for successor in successors:
                updated = await self._link_if_shadow(
                    uow, updated, successor, evolution_type, links
                )
            return shadow, updated

        outcome = await self._store.write(op)
        if outcome is None:
            logger.warning("event=mark_split_missing shadow=%s", shadow_id)
            return None
        before, after = outcome
        self._audit_changes({shadow_id: before.status}, [after], links)
        return after

    async def mark_merged(
        self,
        shadow_ids: list[str],
        replacement_id: str,
        evolution_type: EvolutionType | None = EvolutionType.MERGED,
    ) -> list[Shadow]:
        """Every existing source → MERGED into ``replacement_id``.

        When the replacement is a Shadow, the first source becomes its
        primary parent and the rest are recorded as secondary parents.
        Unknown source ids are skipped.
        """
        if not replacement_id:
            raise ValidationError("replacement_id is required")
        sources = list(dict.fromkeys(s for s in shadow_ids if s))
        if not sources:
            raise ValidationError("mark_merged needs at least one source")
        if replacement_id in sources:
            raise ValidationError(
                f"Shadow {replacement_id} cannot be merged into itself"
            )
        links: list[LinkResult] = []
        before: dict[str, ShadowStatus] = {}

        async def op(uow: ShadowUnitOfWork) -> list[str]:
            links.clear()
            before.clear()
            merged: list[str] = []
            for source_id in sources:
                shadow = await uow.get(source_id)
                if shadow is None:
                    continue
                ensure_transition(shadow, ShadowStatus.MERGED)
                before[source_id] = shadow.status
                updated = await uow.save(
                    _terminate(
                        shadow,
                        ShadowStatus.MERGED,
                        (replacement_id,),
                        evolution_type,
                    )
                )
                await self._link_if_shadow(
                    uow, updated, replacement_id, evolution_type, links
                )
                merged.append(source_id)
            return merged

        merged_ids = await self._store.write(op)
        skipped = set(sources) - set(merged_ids)
        if skipped:
            logger.warning(
                "event=mark_merged_missing shadows=%s",
                ",".join(sorted(skipped)),
            )
        found = await self._store.get_many(merged_ids)
        after = [found[sid] for sid in merged_ids if sid in found]
        self._audit_changes(before, after, links)
        return after

    # ── Ancestry ────────────────────────────────────────────

    async def get_lineage(self, shadow_id: str) -> LineageResult:
        """Ancestor chain self → parent → … → genesis, plus warnings."""
        chain: list[Shadow] = []
        warnings: list[IntegrityWarning] = []
        seen: set[str] = set()
        current: str | None = shadow_id
        child_id: str | None = None

        while current is not None:
            if current in seen:
                warnings.append(
                    IntegrityWarning(
                        issue=IntegrityIssue.CYCLE,
                        shadow_id=child_id or current,
                        detail=f"Lineage revisits {current}",
                        related_id=current,
                    )
                )
                break
            if len(chain) >= self._max_depth:
                warnings.append(
                    IntegrityWarning(
                        issue=IntegrityIssue.DEPTH_EXCEEDED,
                        shadow_id=shadow_id,
                        detail=(
                            f"Lineage deeper than {self._max_depth}; "
                            "chain truncated"
                        ),
                        related_id=current,
                    )
                )
                break
            try:
                shadow = await self._store.get_shadow(current)
            except StorageUnavailable:
                raise
            except StorageError as exc:
                warnings.append(
                    IntegrityWarning(
                        issue=IntegrityIssue.CORRUPT_RECORD,
                        shadow_id=current,
                        detail=str(exc),
                        related_id=child_id,
                    )
                )
                break
            if shadow is None:
                if child_id is None:
                    warnings.append(
                        IntegrityWarning(
                            issue=IntegrityIssue.MISSING_SHADOW,
                            shadow_id=current,
                            detail=f"Shadow {current} does not exist",
                        )
                    )
                else:
                    warnings.append(
                        IntegrityWarning(
                            issue=IntegrityIssue.DANGLING_PARENT,
                            shadow_id=child_id,
                            detail=f"Parent {current} does not exist",
                            related_id=current,
                        )
                    )
                break
            seen.add(current)
            chain.append(shadow)
            child_id = current
            current = shadow.lineage.parent_shadow_id

        for warning in warnings:
            self._report(warning)
        return LineageResult(chain=tuple(chain), warnings=tuple(warnings))

    async def ancestor_ids(self, shadow_id: str) -> list[str]:
        result = await self.get_lineage(shadow_id)
        return result.shadow_ids[1:]

    async def compare_lineage(self, a_id: str, b_id: str) -> float:
        """Jaccard overlap of the two Shadows' ancestor sets."""
        return lineage_overlap(
            await self.ancestor_ids(a_id), await self.ancestor_ids(b_id)
        )

    # ── Audit ───────────────────────────────────────────────

    async def verify_integrity(self) -> list[IntegrityWarning]:
        """Whole-store lineage audit. Read-only; never raises on findings."""
        shadows = {s.shadow_id: s for s in await self._store.list_shadows()}
        corrupt = await self._store.corrupt_records()
        warnings: list[IntegrityWarning] = [
            IntegrityWarning(
                issue=IntegrityIssue.CORRUPT_RECORD,
                shadow_id=sid,
                detail=reason,
            )
            for sid, reason in corrupt.items()
        ]

        for sid, shadow in shadows.items():
            lin = shadow.lineage
            parent_id = lin.parent_shadow_id
            if parent_id is not None:
                parent = shadows.get(parent_id)
                if parent is None:
                    # Unreadable parents are already reported as corrupt
                    if parent_id not in corrupt:
                        warnings.append(
                            IntegrityWarning(
                                issue=IntegrityIssue.DANGLING_PARENT,
                                shadow_id=sid,
                                detail=f"Parent {parent_id} does not exist",
                                related_id=parent_id,
                            )
                        )
                elif lin.generation != parent.lineage.generation + 1:
                    warnings.append(
                        IntegrityWarning(
                            issue=IntegrityIssue.GENERATION_MISMATCH,
                            shadow_id=sid,
                            detail=(
                                f"Generation {lin.generation} but parent "
                                f"{parent_id} is {parent.lineage.generation}"
                            ),
                            related_id=parent_id,
                        )
                    )
            elif lin.generation != 0:
                warnings.append(
                    IntegrityWarning(
                        issue=IntegrityIssue.GENERATION_MISMATCH,
                        shadow_id=sid,
                        detail=f"Root has generation {lin.generation}",
                    )
                )

            for secondary in lin.secondary_parent_ids:
                if secondary not in shadows and secondary not in corrupt:
                    warnings.append(
                        IntegrityWarning(
                            issue=IntegrityIssue.DANGLING_PARENT,
                            shadow_id=sid,
                            detail=f"Secondary parent {secondary} does not exist",
                            related_id=secondary,
                        )
                    )

            for child_id in lin.child_shadow_ids:
                if child_id in corrupt:
                    continue
                child = shadows.get(child_id)
                if child is None or sid not in (
                    child.lineage.parent_shadow_id,
                    *child.lineage.secondary_parent_ids,
                ):
                    warnings.append(
                        IntegrityWarning(
                            issue=IntegrityIssue.ORPHANED_CHILD,
                            shadow_id=sid,
                            detail=f"Child {child_id} does not link back",
                            related_id=child_id,
                        )
                    )

        warnings.extend(self._find_cycles(shadows))
        for warning in warnings:
            self._report(warning)
        logger.info(
            "event=integrity_verified shadows=%d warnings=%d",
            len(shadows),
            len(warnings),
        )
        return warnings

    @staticmethod
    def _find_cycles(shadows: dict[str, Shadow]) -> list[IntegrityWarning]:
        warnings: list[IntegrityWarning] = []
        done: set[str] = set()
        for start in shadows:
            path: list[str] = []
            on_path: set[str] = set()
            current: str | None = start
            while current is not None and current in shadows:
                if current in done:
                    break
                if current in on_path:
                    cycle = path[path.index(current):]
                    warnings.append(
                        IntegrityWarning(
                            issue=IntegrityIssue.CYCLE,
                            shadow_id=current,
                            detail="Cycle: " + " -> ".join(cycle),
                        )
                    )
                    break
                path.append(current)
                on_path.add(current)
                current = shadows[current].lineage.parent_shadow_id
            done.update(path)
        return warnings

    def _report(self, warning: IntegrityWarning) -> None:
        logger.warning(
            "event=integrity_warning issue=%s shadow=%s detail=%s",
            warning.issue,
            warning.shadow_id,
            warning.detail,
        )
        if self._audit is not None:
            self._audit.log_integrity_warning(
                warning.shadow_id, str(warning.issue), warning.detail
            )
