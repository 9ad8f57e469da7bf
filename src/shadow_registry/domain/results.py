"""Read-only result types handed to the verification layer."""

from dataclasses import dataclass, field

from shadow_registry.constants import IntegrityIssue
from shadow_registry.domain.shadow import Shadow


@dataclass(frozen=True)
class SimilarityMatch:
    shadow: Shadow
    similarity: float  # 0.0 to 1.0


@dataclass(frozen=True)
class IntegrityWarning:
    """A lineage problem found while reading. Reported, never raised."""

    issue: IntegrityIssue
    shadow_id: str
    detail: str
    related_id: str | None = None


@dataclass(frozen=True)
class LineageResult:
    """Ancestor chain ordered self → parent → … → genesis."""

    chain: tuple[Shadow, ...] = ()
    warnings: tuple[IntegrityWarning, ...] = field(default=())

    @property
    def complete(self) -> bool:
        return not self.warnings and bool(self.chain)

    @property
    def shadow_ids(self) -> list[str]:
        return [s.shadow_id for s in self.chain]
