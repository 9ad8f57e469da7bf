"""Tests for the DNA fingerprinter."""

from __future__ import annotations

import pytest

from factories import make_atom, renamed_atom, side_effect_atom
from shadow_registry.analysis.fingerprint import (
    compute_dna,
    operation_sequence,
)
from shadow_registry.constants import DNA_ID_PREFIX, FlowType
from shadow_registry.domain.atom import Atom
from shadow_registry.resilience.errors import ValidationError


class TestDeterminism:
    def test_same_atom_same_dna(self) -> None:
        """Two calls on the same atom yield identical DNA."""
        assert compute_dna(make_atom()) == compute_dna(make_atom())

    def test_dict_and_model_inputs_agree(self) -> None:
        raw = make_atom()
        assert compute_dna(raw) == compute_dna(Atom.model_validate(raw))

    def test_dna_id_prefixed(self) -> None:
        assert compute_dna(make_atom()).id.startswith(DNA_ID_PREFIX)


class TestRenameStability:
    def test_structural_hash_survives_rename(self) -> None:
        """Renaming every identifier leaves the structural hash alone."""
        original = compute_dna(make_atom())
        renamed = compute_dna(renamed_atom())
        assert original.structural_hash == renamed.structural_hash
        assert original.pattern_hash == renamed.pattern_hash

    def test_file_move_does_not_change_dna(self) -> None:
        moved = make_atom(
            id="lib/tax.js::calculateTax", filePath="lib/tax.js"
        )
        assert compute_dna(moved) == compute_dna(make_atom())

    def test_different_shape_changes_hashes(self) -> None:
        a = compute_dna(make_atom())
        b = compute_dna(side_effect_atom())
        assert a.structural_hash != b.structural_hash
        assert a.pattern_hash != b.pattern_hash


class TestPatternHash:
    def test_order_matters(self) -> None:
        """Reordering transformations changes the pattern hash."""
        first = make_atom()
        first["dataFlow"]["transformations"] = [
            {"operation": "validation"},
            {"operation": "calculation"},
        ]
        second = make_atom()
        second["dataFlow"]["transformations"] = [
            {"operation": "calculation"},
            {"operation": "validation"},
        ]
        assert (
            compute_dna(first).pattern_hash
            != compute_dna(second).pattern_hash
        )

    def test_consecutive_duplicates_collapse(self) -> None:
        once = make_atom()
        twice = make_atom()
        twice["dataFlow"]["transformations"] = [
            {"operation": "calculation"},
            {"operation": "arithmetic"},
        ]
        assert (
            compute_dna(once).pattern_hash
            == compute_dna(twice).pattern_hash
        )


class TestOperationSequence:
    def test_sequence_order(self) -> None:
        atom = Atom.model_validate(side_effect_atom())
        assert operation_sequence(atom) == (
            "receive",
            "call",
            "network",
            "return",
        )

    def test_unknown_transformation_is_transform(self) -> None:
        raw = make_atom()
        raw["dataFlow"]["transformations"] = [{"operation": "frobnicate"}]
        seq = operation_sequence(Atom.model_validate(raw))
        assert "transform" in seq


class TestFlowTypeAndComplexity:
    def test_async_flow(self) -> None:
        assert compute_dna(side_effect_atom()).flow_type == FlowType.ASYNC

    def test_generator_wins_over_async(self) -> None:
        dna = compute_dna(make_atom(isAsync=True, isGenerator=True))
        assert dna.flow_type == FlowType.GENERATOR

    def test_derived_complexity(self) -> None:
        # 1 + 2 branches + 0.5 per transformation + 0.5 per side effect
        assert compute_dna(side_effect_atom()).complexity_score == 4.0

    def test_explicit_complexity_wins(self) -> None:
        assert compute_dna(make_atom(complexity=7)).complexity_score == 7.0


class TestValidation:
    def test_none_rejected(self) -> None:
        with pytest.raises(ValidationError):
            compute_dna(None)  # type: ignore[arg-type]

    def test_missing_id_rejected(self) -> None:
        raw = make_atom()
        del raw["id"]
        with pytest.raises(ValidationError):
            compute_dna(raw)

    def test_blank_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            compute_dna(make_atom(name="  "))

    def test_empty_data_flow_rejected(self) -> None:
        with pytest.raises(ValidationError, match="empty data flow"):
            compute_dna(make_atom(dataFlow={}))

    def test_non_mapping_rejected(self) -> None:
        with pytest.raises(ValidationError, match="mapping"):
            compute_dna("calculateTax")  # type: ignore[arg-type]
