"""Tests for the weighted DNA similarity metric."""

from __future__ import annotations

import pytest

from factories import make_dna
from shadow_registry.analysis.similarity import (
    complexity_closeness,
    dna_similarity,
)
from shadow_registry.constants import FlowType


def test_identical_dna_scores_exactly_one() -> None:
    dna = make_dna()
    assert dna_similarity(dna, dna) == 1.0


@pytest.mark.parametrize("complexity", [0.0, 1.5, 3.0, 42.0])
def test_identity_holds_for_any_complexity(complexity: float) -> None:
    dna = make_dna(complexity_score=complexity)
    assert dna_similarity(dna, dna) == 1.0


def test_structural_only_match() -> None:
    a = make_dna()
    b = make_dna(
        pattern_hash="different0000000",
        flow_type=FlowType.ASYNC,
        complexity_score=50.0,
    )
    assert dna_similarity(a, b) == 0.5


def test_nothing_in_common_scores_zero() -> None:
    a = make_dna()
    b = make_dna(
        structural_hash="x" * 16,
        pattern_hash="y" * 16,
        flow_type=FlowType.GENERATOR,
        complexity_score=99.0,
    )
    assert dna_similarity(a, b) == 0.0


def test_monotonic_in_complexity_delta() -> None:
    """Similarity never increases as |Δcomplexity| grows."""
    base = make_dna(complexity_score=5.0)
    scores = [
        dna_similarity(base, make_dna(complexity_score=5.0 + delta))
        for delta in (0.0, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0)
    ]
    assert scores == sorted(scores, reverse=True)
    assert scores[-1] == 0.9


def test_symmetric() -> None:
    a = make_dna(complexity_score=1.0)
    b = make_dna(complexity_score=4.0, flow_type=FlowType.ASYNC)
    assert dna_similarity(a, b) == dna_similarity(b, a)


def test_closeness_saturates_at_zero() -> None:
    assert complexity_closeness(0.0, 100.0) == 0.0
    assert complexity_closeness(2.0, 2.0) == 1.0
    assert complexity_closeness(0.0, 5.0) == pytest.approx(0.5)


def test_custom_saturation() -> None:
    a = make_dna(complexity_score=0.0)
    b = make_dna(complexity_score=2.0)
    assert dna_similarity(a, b, complexity_saturation=4.0) == 0.95
