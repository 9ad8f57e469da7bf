"""Similarity search over Shadows.

Candidates come from the bucket index (shared structural or pattern
hash). When the index fails, or points at ids with no record, the
search falls back to a capped scan of the most recent Shadows.
"""

from __future__ import annotations

import logging

from shadow_registry.analysis.similarity import dna_similarity
from shadow_registry.constants import ERROR_TRUNCATION_CHARS
from shadow_registry.domain.dna import DNA
from shadow_registry.domain.results import SimilarityMatch
from shadow_registry.domain.shadow import Shadow
from shadow_registry.resilience.errors import ValidationError
from shadow_registry.services.shadow_store import ShadowStore

logger = logging.getLogger(__name__)


def _rank_key(match: SimilarityMatch) -> tuple[float, float, str]:
    """Similarity desc, then most recent death, then shadow id."""
    return (
        -match.similarity,
        -match.shadow.died_at.timestamp(),
        match.shadow.shadow_id,
    )


class SimilarityService:
    def __init__(self, store: ShadowStore) -> None:
        self._store = store

    async def _indexed_candidates(self, dna: DNA) -> list[Shadow] | None:
        """Shadows sharing a bucket with ``dna``; None means fall back."""
        try:
            ids = await self._store.index_candidates(
                dna.structural_hash, dna.pattern_hash
            )
        except Exception as exc:
            logger.warning(
                "event=index_lookup_failed error=%s fallback=scan",
                str(exc)[:ERROR_TRUNCATION_CHARS],
            )
            return None
        if not ids:
            return []
        found = await self._store.get_many(ids)
        if len(found) < len(set(ids)):
            logger.warning(
                "event=index_stale missing=%d fallback=scan",
                len(set(ids)) - len(found),
            )
            return None
        return list(found.values())

    async def find_similar(
        self,
        dna: DNA,
        top_k: int | None = None,
        min_similarity: float | None = None,
        *,
        include_replaced: bool = False,
    ) -> list[SimilarityMatch]:
        """Top ``top_k`` Shadows scoring at least ``min_similarity``.

        Shadows that already have a replacement are skipped unless
        ``include_replaced`` is set.
        """
        settings = self._store.settings
        top_k = settings.similarity_top_k if top_k is None else top_k
        if min_similarity is None:
            min_similarity = settings.similarity_min
        if top_k <= 0:
            raise ValidationError("top_k must be greater than zero")
        if not 0.0 <= min_similarity <= 1.0:
            raise ValidationError("min_similarity must lie in [0, 1]")
        dna.validate()

        def eligible(shadow: Shadow) -> bool:
            return include_replaced or shadow.is_live

        pool: dict[str, Shadow] = {}
        indexed = await self._indexed_candidates(dna)
        for shadow in indexed or ():
            if eligible(shadow):
                pool[shadow.shadow_id] = shadow
        scan_needed = indexed is None or len(pool) < top_k
        if scan_needed:
            recent = await self._store.list_shadows(
                limit=settings.similarity_scan_cap
            )
            for shadow in recent:
                if eligible(shadow):
                    pool.setdefault(shadow.shadow_id, shadow)

        matches: list[SimilarityMatch] = []
        for shadow in pool.values():
            score = dna_similarity(
                dna,
                shadow.dna,
                complexity_saturation=settings.complexity_saturation,
            )
            if score >= min_similarity:
                matches.append(SimilarityMatch(shadow=shadow, similarity=score))

        matches.sort(key=_rank_key)
        logger.debug(
            "event=similarity_search candidates=%d matches=%d scanned=%s",
            len(pool),
            len(matches),
            scan_needed,
        )
        return matches[:top_k]

    async def find_best_match(
        self,
        dna: DNA,
        min_similarity: float | None = None,
        *,
        include_replaced: bool = False,
    ) -> SimilarityMatch | None:
        if min_similarity is None:
            min_similarity = self._store.settings.best_match_min_similarity
        matches = await self.find_similar(
            dna,
            top_k=1,
            min_similarity=min_similarity,
            include_replaced=include_replaced,
        )
        return matches[0] if matches else None
