"""DNA: the identifier-free content fingerprint of an atom."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from shadow_registry.constants import FlowType
from shadow_registry.resilience.errors import ValidationError


@dataclass(frozen=True)
class DNA:
    """Structural, pattern and complexity fingerprint.

    Two atoms that differ only in identifier names share the same
    structural_hash and pattern_hash.
    """

    id: str
    structural_hash: str
    pattern_hash: str
    flow_type: FlowType
    operation_sequence: tuple[str, ...]
    complexity_score: float
    semantic_fingerprint: str

    def validate(self) -> None:
        """Raise ValidationError unless the DNA is fit to persist."""
        if not self.structural_hash or not self.pattern_hash:
            raise ValidationError(
                "DNA requires structural_hash and pattern_hash"
            )
        if self.complexity_score < 0:
            raise ValidationError("DNA complexity_score must be >= 0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "structuralHash": self.structural_hash,
            "patternHash": self.pattern_hash,
            "flowType": str(self.flow_type),
            "operationSequence": list(self.operation_sequence),
            "complexityScore": self.complexity_score,
            "semanticFingerprint": self.semantic_fingerprint,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DNA:
        try:
            return cls(
                id=str(data["id"]),
                structural_hash=str(data["structuralHash"]),
                pattern_hash=str(data["patternHash"]),
                flow_type=FlowType(data["flowType"]),
                operation_sequence=tuple(
                    str(op) for op in data.get("operationSequence", [])
                ),
                complexity_score=float(data.get("complexityScore", 0.0)),
                semantic_fingerprint=str(
                    data.get("semanticFingerprint", "")
                ),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed DNA: {exc}") from exc
