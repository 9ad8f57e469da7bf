"""Shadow Registry: permanent records of deleted code atoms."""

from shadow_registry.analysis.fingerprint import compute_dna
from shadow_registry.analysis.similarity import dna_similarity
from shadow_registry.analysis.vibration import compute_vibration, is_zombie
from shadow_registry.config import Settings
from shadow_registry.constants import (
    EvolutionType,
    FlowType,
    IntegrityIssue,
    ShadowStatus,
)
from shadow_registry.domain.atom import Atom
from shadow_registry.domain.dna import DNA
from shadow_registry.domain.results import (
    IntegrityWarning,
    LineageResult,
    SimilarityMatch,
)
from shadow_registry.domain.shadow import (
    Connection,
    Death,
    Inheritance,
    Lineage,
    Shadow,
    ShadowMetadata,
)
from shadow_registry.resilience.errors import (
    InvalidStatusTransition,
    ShadowRegistryError,
    StorageError,
    StorageUnavailable,
    ValidationError,
)
from shadow_registry.services.registry import ShadowRegistry

__all__ = [
    "DNA",
    "Atom",
    "Connection",
    "Death",
    "EvolutionType",
    "FlowType",
    "Inheritance",
    "IntegrityIssue",
    "IntegrityWarning",
    "InvalidStatusTransition",
    "Lineage",
    "LineageResult",
    "Settings",
    "Shadow",
    "ShadowMetadata",
    "ShadowRegistry",
    "ShadowRegistryError",
    "ShadowStatus",
    "SimilarityMatch",
    "StorageError",
    "StorageUnavailable",
    "ValidationError",
    "compute_dna",
    "compute_vibration",
    "dna_similarity",
    "is_zombie",
]
