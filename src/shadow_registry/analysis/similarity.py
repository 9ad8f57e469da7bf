"""Weighted DNA similarity metric."""

from shadow_registry.constants import SIMILARITY_PRECISION, SimilarityWeight
from shadow_registry.domain.dna import DNA

DEFAULT_COMPLEXITY_SATURATION = 10.0


def complexity_closeness(
    a: float, b: float, saturation: float = DEFAULT_COMPLEXITY_SATURATION
) -> float:
    """1.0 for equal complexity, falling linearly to 0 at ``saturation``."""
    return max(0.0, 1.0 - abs(a - b) / saturation)


def dna_similarity(
    a: DNA,
    b: DNA,
    *,
    complexity_saturation: float = DEFAULT_COMPLEXITY_SATURATION,
) -> float:
    """Score in [0, 1]. Identical DNA scores exactly 1.0.

    structural 0.5 + pattern 0.3 + flow type 0.1 + complexity 0.1.
    """
    score = 0.0
    if a.structural_hash == b.structural_hash:
        score += SimilarityWeight.STRUCTURAL
    if a.pattern_hash == b.pattern_hash:
        score += SimilarityWeight.PATTERN
    if a.flow_type == b.flow_type:
        score += SimilarityWeight.FLOW_TYPE
    score += SimilarityWeight.COMPLEXITY * complexity_closeness(
        a.complexity_score, b.complexity_score, complexity_saturation
    )
    return min(1.0, max(0.0, round(score, SIMILARITY_PRECISION)))
