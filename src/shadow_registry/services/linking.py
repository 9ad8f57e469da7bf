"""Parent/child linking primitives shared by the store and lineage service.

Every function here runs inside a write transaction and goes through a
ShadowUnitOfWork, so a failed link leaves no partial edits behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from shadow_registry.constants import EvolutionType
from shadow_registry.domain.shadow import Shadow
from shadow_registry.resilience.errors import ValidationError
from shadow_registry.services.unit_of_work import ShadowUnitOfWork

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkResult:
    parent: Shadow
    child: Shadow
    primary: bool


async def is_ancestor(
    uow: ShadowUnitOfWork,
    candidate_id: str,
    start_id: str,
    max_depth: int,
) -> bool:
    """True if ``candidate_id`` is ``start_id`` or one of its ancestors.

    An existing cycle or depth overrun on the walk also answers True, so
    callers never add an edge to an already broken chain.
    """
    current: str | None = start_id
    seen: set[str] = set()
    while current is not None:
        if current == candidate_id or current in seen:
            return True
        if len(seen) > max_depth:
            return True
        seen.add(current)
        node = await uow.get(current)
        if node is None:
            return False
        current = node.lineage.parent_shadow_id
    return False


async def link(
    uow: ShadowUnitOfWork,
    parent: Shadow,
    child: Shadow,
    *,
    evolution_type: EvolutionType | None,
    max_depth: int,
) -> LinkResult:
    """Make ``child`` a child of ``parent``.

    The link is primary when the child has no live primary parent yet,
    otherwise it is recorded in secondary_parent_ids.

    Raises:
        ValidationError: the link would create a cycle.
    """
    if parent.shadow_id == child.shadow_id:
        raise ValidationError(
            f"Shadow {child.shadow_id} cannot be its own parent"
        )
    if await is_ancestor(uow, child.shadow_id, parent.shadow_id, max_depth):
        raise ValidationError(
            f"Linking {parent.shadow_id} -> {child.shadow_id} "
            "would create a lineage cycle"
        )

    if child.shadow_id not in parent.lineage.child_shadow_ids:
        parent = replace(
            parent,
            lineage=replace(
                parent.lineage,
                child_shadow_ids=(
                    *parent.lineage.child_shadow_ids,
                    child.shadow_id,
                ),
            ),
        )
        await uow.save(parent)

    lineage = child.lineage
    current_parent = lineage.parent_shadow_id
    primary = current_parent is None or current_parent == parent.shadow_id
    if not primary and current_parent is not None:
        # A dangling primary parent gives way to a real one
        primary = await uow.get(current_parent) is None
        if primary:
            logger.info(
                "event=dangling_parent_replaced shadow=%s old_parent=%s",
                child.shadow_id,
                current_parent,
            )

    if primary:
        lineage = replace(
            lineage,
            parent_shadow_id=parent.shadow_id,
            generation=parent.lineage.generation + 1,
            evolution_type=lineage.evolution_type or evolution_type,
        )
    elif parent.shadow_id not in lineage.secondary_parent_ids:
        lineage = replace(
            lineage,
            secondary_parent_ids=(
                *lineage.secondary_parent_ids,
                parent.shadow_id,
            ),
        )
    if lineage != child.lineage:
        child = replace(child, lineage=lineage)
        await uow.save(child)

    if primary:
        await propagate_generation(uow, child, max_depth)
    return LinkResult(parent=parent, child=child, primary=primary)


async def propagate_generation(
    uow: ShadowUnitOfWork, root: Shadow, max_depth: int
) -> int:
    """Re-derive generation for every primary descendant of ``root``.

    Returns the number of descendants rewritten.
    """
    updated = 0
    frontier: list[tuple[Shadow, int]] = [(root, 0)]
    seen: set[str] = {root.shadow_id}
    while frontier:
        node, depth = frontier.pop()
        if depth >= max_depth:
            logger.warning(
                "event=generation_propagation_truncated shadow=%s depth=%d",
                node.shadow_id,
                depth,
            )
            continue
        for child_id in node.lineage.child_shadow_ids:
            if child_id in seen:
                continue
            seen.add(child_id)
            child = await uow.get(child_id)
            if child is None or child.lineage.parent_shadow_id != node.shadow_id:
                continue
            expected = node.lineage.generation + 1
            if child.lineage.generation != expected:
                child = replace(
                    child,
                    lineage=replace(child.lineage, generation=expected),
                )
                await uow.save(child)
                updated += 1
            frontier.append((child, depth + 1))
    return updated
