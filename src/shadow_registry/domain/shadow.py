"""Frozen Shadow record types and their persisted (camelCase) layout.

A Shadow is never mutated in place: updates build a new value with
dataclasses.replace, so a cached or in-flight read can never observe a
half-applied change.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from shadow_registry.constants import (
    SCHEMA_VERSION,
    EvolutionType,
    ShadowStatus,
)
from shadow_registry.domain.dna import DNA


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class Connection:
    """A live reference to a dead atom's former name/location."""

    target: str
    strength: float

    def to_dict(self) -> dict[str, Any]:
        return {"target": self.target, "strength": self.strength}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Connection:
        return cls(
            target=str(data["target"]), strength=float(data["strength"])
        )


@dataclass(frozen=True)
class ShadowMetadata:
    name: str
    file_path: str
    line_number: int
    is_exported: bool
    data_flow: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "filePath": self.file_path,
            "lineNumber": self.line_number,
            "isExported": self.is_exported,
            "dataFlow": self.data_flow,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShadowMetadata:
        return cls(
            name=str(data["name"]),
            file_path=str(data["filePath"]),
            line_number=int(data.get("lineNumber", 0)),
            is_exported=bool(data.get("isExported", False)),
            data_flow=dict(data.get("dataFlow") or {}),
        )


@dataclass(frozen=True)
class Lineage:
    """Tree position of a Shadow plus merge/split annotations.

    parent_shadow_id is the single primary parent used for ancestor
    walks. secondary_parent_ids records the other sources of a merge.
    """

    parent_shadow_id: str | None = None
    child_shadow_ids: tuple[str, ...] = ()
    evolution_type: EvolutionType | None = None
    generation: int = 0
    secondary_parent_ids: tuple[str, ...] = ()
    successor_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "parentShadowId": self.parent_shadow_id,
            "childShadowIds": list(self.child_shadow_ids),
            "evolutionType": (
                str(self.evolution_type) if self.evolution_type else None
            ),
            "generation": self.generation,
            "secondaryParentIds": list(self.secondary_parent_ids),
            "successorIds": list(self.successor_ids),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Lineage:
        evo = data.get("evolutionType")
        return cls(
            parent_shadow_id=data.get("parentShadowId"),
            child_shadow_ids=tuple(data.get("childShadowIds") or ()),
            evolution_type=EvolutionType(evo) if evo else None,
            generation=int(data.get("generation", 0)),
            secondary_parent_ids=tuple(
                data.get("secondaryParentIds") or ()
            ),
            successor_ids=tuple(data.get("successorIds") or ()),
        )


@dataclass(frozen=True)
class Inheritance:
    """Residual influence of a dead atom, re-derived on demand."""

    connections: tuple[Connection, ...] = ()
    connection_count: int = 0
    vibration_score: float = 0.0
    ruptured_connections: tuple[Connection, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "connections": [c.to_dict() for c in self.connections],
            "connectionCount": self.connection_count,
            "vibrationScore": self.vibration_score,
            "rupturedConnections": [
                c.to_dict() for c in self.ruptured_connections
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Inheritance:
        return cls(
            connections=tuple(
                Connection.from_dict(c)
                for c in data.get("connections") or ()
            ),
            connection_count=int(data.get("connectionCount", 0)),
            vibration_score=float(data.get("vibrationScore", 0.0)),
            ruptured_connections=tuple(
                Connection.from_dict(c)
                for c in data.get("rupturedConnections") or ()
            ),
        )


@dataclass(frozen=True)
class Death:
    reason: str
    commits_involved: tuple[str, ...] = ()
    risk_introduced: float = 0.0
    replacement_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "commitsInvolved": list(self.commits_involved),
            "riskIntroduced": self.risk_introduced,
            "replacementId": self.replacement_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Death:
        return cls(
            reason=str(data["reason"]),
            commits_involved=tuple(data.get("commitsInvolved") or ()),
            risk_introduced=float(data.get("riskIntroduced", 0.0)),
            replacement_id=data.get("replacementId"),
        )


@dataclass(frozen=True)
class Shadow:
    """Permanent record of an atom that left the live set."""

    shadow_id: str
    original_id: str
    status: ShadowStatus
    replaced_by: str | None
    born_at: datetime | None
    died_at: datetime
    lifespan: int
    dna: DNA
    metadata: ShadowMetadata
    lineage: Lineage = field(default_factory=Lineage)
    inheritance: Inheritance = field(default_factory=Inheritance)
    death: Death = field(default_factory=lambda: Death(reason="unknown"))

    @property
    def is_live(self) -> bool:
        """True while no replacement has been recorded."""
        return self.status == ShadowStatus.DELETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "shadowId": self.shadow_id,
            "originalId": self.original_id,
            "status": str(self.status),
            "replacedBy": self.replaced_by,
            "bornAt": _iso(self.born_at),
            "diedAt": _iso(self.died_at),
            "lifespan": self.lifespan,
            "dna": self.dna.to_dict(),
            "metadata": self.metadata.to_dict(),
            "lineage": self.lineage.to_dict(),
            "inheritance": self.inheritance.to_dict(),
            "death": self.death.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Shadow:
        died_at = _parse_iso(data.get("diedAt"))
        if died_at is None:
            raise ValueError("diedAt is required")
        return cls(
            shadow_id=str(data["shadowId"]),
            original_id=str(data["originalId"]),
            status=ShadowStatus(data["status"]),
            replaced_by=data.get("replacedBy"),
            born_at=_parse_iso(data.get("bornAt")),
            died_at=died_at,
            lifespan=int(data.get("lifespan", 0)),
            dna=DNA.from_dict(data["dna"]),
            metadata=ShadowMetadata.from_dict(data["metadata"]),
            lineage=Lineage.from_dict(data.get("lineage") or {}),
            inheritance=Inheritance.from_dict(
                data.get("inheritance") or {}
            ),
            death=Death.from_dict(data["death"]),
        )
