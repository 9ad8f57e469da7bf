"""Tests for the Lineage Manager: transitions, links and ancestry."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from sqlalchemy import update

from factories import make_atom, renamed_atom, side_effect_atom
from shadow_registry.config import Settings
from shadow_registry.constants import (
    EvolutionType,
    IntegrityIssue,
    ShadowStatus,
)
from shadow_registry.domain.shadow import Shadow
from shadow_registry.models.shadow import ShadowRecord
from shadow_registry.resilience.errors import (
    InvalidStatusTransition,
    StorageError,
    ValidationError,
)
from shadow_registry.services.lineage_service import lineage_overlap
from shadow_registry.services.registry import ShadowRegistry


async def _chain(registry: ShadowRegistry, length: int) -> list[Shadow]:
    """Create ``length`` Shadows, each replaced by the next."""
    shadows = [
        await registry.create_shadow(
            make_atom(id=f"src/gen{n}.js::fn", name=f"fn{n}")
        )
        for n in range(length)
    ]
    for older, newer in zip(shadows, shadows[1:], strict=False):
        await registry.mark_replaced(
            older.shadow_id, newer.shadow_id, EvolutionType.REFACTOR
        )
    return [
        s
        for s in [await registry.get_shadow(x.shadow_id) for x in shadows]
        if s is not None
    ]


async def _corrupt_lineage(
    registry: ShadowRegistry, shadow_id: str, **lineage: object
) -> None:
    """Rewrite stored lineage fields directly, bypassing the API."""
    shadow = await registry.get_shadow(shadow_id)
    assert shadow is not None
    record = shadow.to_dict()
    record["lineage"].update(lineage)
    async with registry.store._session_factory() as session, session.begin():  # noqa: SLF001
        await session.execute(
            update(ShadowRecord)
            .where(ShadowRecord.shadow_id == shadow_id)
            .values(record_json=json.dumps(record))
        )
    registry.store.cache.clear()


async def _corrupt_record(registry: ShadowRegistry, shadow_id: str) -> None:
    """Overwrite the stored JSON with bytes that do not decode."""
    async with registry.store._session_factory() as session, session.begin():  # noqa: SLF001
        await session.execute(
            update(ShadowRecord)
            .where(ShadowRecord.shadow_id == shadow_id)
            .values(record_json="{not json")
        )
    registry.store.cache.clear()


class TestLineageOverlap:
    def test_identical(self) -> None:
        assert lineage_overlap(["a", "b"], ["a", "b"]) == 1.0

    def test_disjoint(self) -> None:
        assert lineage_overlap(["x", "y"], ["a", "b"]) == 0.0

    def test_partial(self) -> None:
        assert lineage_overlap(["a", "b"], ["a", "c"]) == pytest.approx(
            1 / 3
        )

    def test_both_empty(self) -> None:
        assert lineage_overlap([], []) == 1.0

    def test_one_empty(self) -> None:
        assert lineage_overlap(["a"], []) == 0.0


class TestMarkReplaced:
    async def test_sets_status_and_replaced_by(
        self, registry: ShadowRegistry
    ) -> None:
        s1 = await registry.create_shadow(make_atom())
        updated = await registry.mark_replaced(
            s1.shadow_id, "src/new.js::fn", EvolutionType.REFACTOR
        )
        assert updated is not None
        assert updated.status == ShadowStatus.REPLACED
        assert updated.replaced_by == "src/new.js::fn"
        assert updated.death.replacement_id == "src/new.js::fn"
        assert updated.lineage.evolution_type == EvolutionType.REFACTOR

        stored = await registry.get_shadow(s1.shadow_id)
        assert stored == updated

    async def test_missing_shadow_is_noop(
        self, registry: ShadowRegistry
    ) -> None:
        assert await registry.mark_replaced("shadow_nope", "x::y") is None

    async def test_terminal_shadow_rejects_transition(
        self, registry: ShadowRegistry
    ) -> None:
        s1 = await registry.create_shadow(make_atom())
        await registry.mark_replaced(s1.shadow_id, "x::y")
        with pytest.raises(InvalidStatusTransition) as exc_info:
            await registry.mark_replaced(s1.shadow_id, "x::z")
        assert exc_info.value.current == "replaced"
        stored = await registry.get_shadow(s1.shadow_id)
        assert stored is not None
        assert stored.replaced_by == "x::y"

    async def test_empty_replacement_rejected(
        self, registry: ShadowRegistry
    ) -> None:
        s1 = await registry.create_shadow(make_atom())
        with pytest.raises(ValidationError):
            await registry.mark_replaced(s1.shadow_id, "")

    async def test_replacement_shadow_becomes_child(
        self, registry: ShadowRegistry
    ) -> None:
        parent, child = await _chain(registry, 2)
        assert parent.lineage.child_shadow_ids == (child.shadow_id,)
        assert child.lineage.parent_shadow_id == parent.shadow_id
        assert child.lineage.generation == parent.lineage.generation + 1
        assert child.lineage.evolution_type == EvolutionType.REFACTOR

    async def test_self_replacement_rejected(
        self, registry: ShadowRegistry
    ) -> None:
        s1 = await registry.create_shadow(make_atom())
        with pytest.raises(ValidationError, match="own parent"):
            await registry.mark_replaced(s1.shadow_id, s1.shadow_id)
        stored = await registry.get_shadow(s1.shadow_id)
        assert stored is not None
        assert stored.status == ShadowStatus.DELETED

    async def test_generation_propagates_to_descendants(
        self, registry: ShadowRegistry
    ) -> None:
        a, b, c = await _chain(registry, 3)
        root = await registry.create_shadow(side_effect_atom())
        await registry.mark_replaced(root.shadow_id, a.shadow_id)

        lineage = await registry.get_lineage(c.shadow_id)
        assert lineage.shadow_ids == [
            c.shadow_id,
            b.shadow_id,
            a.shadow_id,
            root.shadow_id,
        ]
        assert [s.lineage.generation for s in lineage.chain] == [3, 2, 1, 0]


class TestCycleRejection:
    async def test_linking_ancestor_as_child_raises(
        self, registry: ShadowRegistry
    ) -> None:
        a = await registry.create_shadow(make_atom())
        b = await registry.create_shadow(
            renamed_atom(), parent_shadow_id=a.shadow_id
        )
        # a is b's ancestor: replacing b with a would make a its own ancestor
        with pytest.raises(ValidationError, match="cycle"):
            await registry.mark_replaced(b.shadow_id, a.shadow_id)

        stored = await registry.get_shadow(b.shadow_id)
        assert stored is not None
        assert stored.status == ShadowStatus.DELETED


class TestSplit:
    async def test_split_branches_into_children(
        self, registry: ShadowRegistry
    ) -> None:
        parent = await registry.create_shadow(make_atom())
        left = await registry.create_shadow(renamed_atom("src/l.js::left"))
        right = await registry.create_shadow(side_effect_atom("src/r.js::right"))

        updated = await registry.mark_split(
            parent.shadow_id, [left.shadow_id, right.shadow_id, "src/x.js::ext"]
        )
        assert updated is not None
        assert updated.status == ShadowStatus.SPLIT
        assert updated.replaced_by == left.shadow_id
        assert updated.lineage.successor_ids == (
            left.shadow_id,
            right.shadow_id,
            "src/x.js::ext",
        )
        assert updated.lineage.child_shadow_ids == (
            left.shadow_id,
            right.shadow_id,
        )
        for child_id in (left.shadow_id, right.shadow_id):
            child = await registry.get_shadow(child_id)
            assert child is not None
            assert child.lineage.parent_shadow_id == parent.shadow_id
            assert child.lineage.generation == 1
            assert child.lineage.evolution_type == EvolutionType.SPLIT

    async def test_split_needs_replacements(
        self, registry: ShadowRegistry
    ) -> None:
        parent = await registry.create_shadow(make_atom())
        with pytest.raises(ValidationError):
            await registry.mark_split(parent.shadow_id, [])

    async def test_split_missing_shadow_is_noop(
        self, registry: ShadowRegistry
    ) -> None:
        assert await registry.mark_split("shadow_nope", ["a::b"]) is None


class TestMerge:
    async def test_first_source_primary_rest_secondary(
        self, registry: ShadowRegistry
    ) -> None:
        first = await registry.create_shadow(make_atom())
        second = await registry.create_shadow(renamed_atom())
        target = await registry.create_shadow(side_effect_atom())

        merged = await registry.mark_merged(
            [first.shadow_id, second.shadow_id], target.shadow_id
        )
        assert [s.status for s in merged] == [
            ShadowStatus.MERGED,
            ShadowStatus.MERGED,
        ]
        assert all(s.replaced_by == target.shadow_id for s in merged)

        stored = await registry.get_shadow(target.shadow_id)
        assert stored is not None
        assert stored.lineage.parent_shadow_id == first.shadow_id
        assert stored.lineage.secondary_parent_ids == (second.shadow_id,)
        assert stored.lineage.generation == 1

        lineage = await registry.get_lineage(target.shadow_id)
        assert lineage.shadow_ids == [target.shadow_id, first.shadow_id]

    async def test_unknown_sources_skipped(
        self, registry: ShadowRegistry
    ) -> None:
        first = await registry.create_shadow(make_atom())
        merged = await registry.mark_merged(
            ["shadow_nope", first.shadow_id], "src/all.js::fn"
        )
        assert [s.shadow_id for s in merged] == [first.shadow_id]

    async def test_terminal_source_aborts_whole_merge(
        self, registry: ShadowRegistry
    ) -> None:
        first = await registry.create_shadow(make_atom())
        second = await registry.create_shadow(renamed_atom())
        await registry.mark_replaced(second.shadow_id, "x::y")

        with pytest.raises(InvalidStatusTransition):
            await registry.mark_merged(
                [first.shadow_id, second.shadow_id], "src/all.js::fn"
            )
        untouched = await registry.get_shadow(first.shadow_id)
        assert untouched is not None
        assert untouched.status == ShadowStatus.DELETED

    async def test_merge_into_source_rejected(
        self, registry: ShadowRegistry
    ) -> None:
        first = await registry.create_shadow(make_atom())
        with pytest.raises(ValidationError, match="itself"):
            await registry.mark_merged([first.shadow_id], first.shadow_id)


class TestGetLineage:
    async def test_chain_order_self_to_genesis(
        self, registry: ShadowRegistry
    ) -> None:
        a, b, c = await _chain(registry, 3)
        result = await registry.get_lineage(c.shadow_id)
        assert result.shadow_ids == [c.shadow_id, b.shadow_id, a.shadow_id]
        assert result.warnings == ()
        assert result.complete

    async def test_missing_start(self, registry: ShadowRegistry) -> None:
        result = await registry.get_lineage("shadow_nope")
        assert result.chain == ()
        assert [w.issue for w in result.warnings] == [
            IntegrityIssue.MISSING_SHADOW
        ]

    async def test_dangling_parent_returns_partial_chain(
        self, registry: ShadowRegistry
    ) -> None:
        orphan = await registry.create_shadow(
            make_atom(), parent_shadow_id="shadow_gone"
        )
        result = await registry.get_lineage(orphan.shadow_id)
        assert result.shadow_ids == [orphan.shadow_id]
        assert len(result.warnings) == 1
        warning = result.warnings[0]
        assert warning.issue == IntegrityIssue.DANGLING_PARENT
        assert warning.related_id == "shadow_gone"

    async def test_cycle_reported_not_raised(
        self, registry: ShadowRegistry
    ) -> None:
        a, b = await _chain(registry, 2)
        await _corrupt_lineage(
            registry, a.shadow_id, parentShadowId=b.shadow_id
        )
        result = await registry.get_lineage(b.shadow_id)
        assert result.shadow_ids == [b.shadow_id, a.shadow_id]
        assert [w.issue for w in result.warnings] == [IntegrityIssue.CYCLE]

    async def test_depth_limit(
        self, tmp_path: Path, settings: Settings
    ) -> None:
        shallow = settings.model_copy(update={"max_lineage_depth": 2})
        async with ShadowRegistry(tmp_path / "deep", shallow) as registry:
            *_, last = await _chain(registry, 4)
            result = await registry.get_lineage(last.shadow_id)
        assert len(result.chain) == 2
        assert result.warnings[0].issue == IntegrityIssue.DEPTH_EXCEEDED


class TestCompareLineage:
    async def test_siblings_share_ancestors(
        self, registry: ShadowRegistry
    ) -> None:
        root = await registry.create_shadow(make_atom())
        left = await registry.create_shadow(
            renamed_atom("src/l.js::left"), parent_shadow_id=root.shadow_id
        )
        right = await registry.create_shadow(
            side_effect_atom(), parent_shadow_id=root.shadow_id
        )
        assert await registry.compare_lineage(
            left.shadow_id, right.shadow_id
        ) == 1.0

    async def test_roots_without_ancestors(
        self, registry: ShadowRegistry
    ) -> None:
        a = await registry.create_shadow(make_atom())
        b = await registry.create_shadow(renamed_atom())
        assert await registry.compare_lineage(a.shadow_id, b.shadow_id) == 1.0

    async def test_root_versus_descendant(
        self, registry: ShadowRegistry
    ) -> None:
        a, b = await _chain(registry, 2)
        assert await registry.compare_lineage(a.shadow_id, b.shadow_id) == 0.0


class TestVerifyIntegrity:
    async def test_clean_store_has_no_warnings(
        self, registry: ShadowRegistry
    ) -> None:
        await _chain(registry, 3)
        assert await registry.verify_integrity() == []

    async def test_reports_dangling_parent(
        self, registry: ShadowRegistry
    ) -> None:
        orphan = await registry.create_shadow(
            make_atom(), parent_shadow_id="shadow_gone"
        )
        warnings = await registry.verify_integrity()
        assert [(w.issue, w.shadow_id) for w in warnings] == [
            (IntegrityIssue.DANGLING_PARENT, orphan.shadow_id)
        ]

    async def test_reports_orphaned_child(
        self, registry: ShadowRegistry
    ) -> None:
        a = await registry.create_shadow(make_atom())
        await _corrupt_lineage(
            registry, a.shadow_id, childShadowIds=["shadow_ghost"]
        )
        warnings = await registry.verify_integrity()
        assert [w.issue for w in warnings] == [IntegrityIssue.ORPHANED_CHILD]
        assert warnings[0].related_id == "shadow_ghost"

    async def test_reports_generation_mismatch(
        self, registry: ShadowRegistry
    ) -> None:
        _, b = await _chain(registry, 2)
        await _corrupt_lineage(registry, b.shadow_id, generation=5)
        warnings = await registry.verify_integrity()
        assert [w.issue for w in warnings] == [
            IntegrityIssue.GENERATION_MISMATCH
        ]

    async def test_reports_cycle(self, registry: ShadowRegistry) -> None:
        a, b = await _chain(registry, 2)
        await _corrupt_lineage(
            registry, a.shadow_id, parentShadowId=b.shadow_id, generation=2
        )
        issues = {w.issue for w in await registry.verify_integrity()}
        assert IntegrityIssue.CYCLE in issues


class TestCorruptRecords:
    async def test_verify_reports_corrupt_record(
        self, registry: ShadowRegistry
    ) -> None:
        older, newer = await _chain(registry, 2)
        await _corrupt_record(registry, older.shadow_id)

        warnings = await registry.verify_integrity()
        assert [(w.issue, w.shadow_id) for w in warnings] == [
            (IntegrityIssue.CORRUPT_RECORD, older.shadow_id)
        ]
        assert "Corrupt" in warnings[0].detail

    async def test_lineage_stops_at_unreadable_parent(
        self, registry: ShadowRegistry
    ) -> None:
        older, newer = await _chain(registry, 2)
        await _corrupt_record(registry, older.shadow_id)

        lineage = await registry.get_lineage(newer.shadow_id)
        assert lineage.shadow_ids == [newer.shadow_id]
        assert not lineage.complete
        (warning,) = lineage.warnings
        assert warning.issue == IntegrityIssue.CORRUPT_RECORD
        assert warning.shadow_id == older.shadow_id
        assert warning.related_id == newer.shadow_id

    async def test_direct_read_still_raises(
        self, registry: ShadowRegistry
    ) -> None:
        shadow = await registry.create_shadow(make_atom())
        await _corrupt_record(registry, shadow.shadow_id)
        with pytest.raises(StorageError, match="Corrupt"):
            await registry.get_shadow(shadow.shadow_id)
