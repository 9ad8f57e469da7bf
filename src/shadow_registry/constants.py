"""Shared constants: single source of truth for cross-module values.

All magic strings and numbers that appear in 2+ files belong here.
StrEnum members are str-compatible, so downstream code (JSON records,
SQL columns, log lines) works unchanged.
"""

from __future__ import annotations

from enum import StrEnum

# ── String Enums ─────────────────────────────────────────


class ShadowStatus(StrEnum):
    """Shadow lifecycle status.

    DELETED is the only initial state. The other three are terminal.
    """

    DELETED = "deleted"
    REPLACED = "replaced"
    MERGED = "merged"
    SPLIT = "split"


TERMINAL_STATUSES = frozenset({
    ShadowStatus.REPLACED,
    ShadowStatus.MERGED,
    ShadowStatus.SPLIT,
})


class EvolutionType(StrEnum):
    """Caller-supplied classification of why an atom changed."""

    REFACTOR = "refactor"
    RENAMED = "renamed"
    DOMAIN_CHANGE = "domain_change"
    MOVED = "moved"
    SPLIT = "split"
    MERGED = "merged"


class FlowType(StrEnum):
    """Execution flavour of an atom."""

    SYNC = "sync"
    ASYNC = "async"
    GENERATOR = "generator"


class OperationCategory(StrEnum):
    """Identifier-free tags making up a DNA operation sequence."""

    RECEIVE = "receive"
    READ = "read"
    TRANSFORM = "transform"
    VALIDATE = "validate"
    CALL = "call"
    WRITE = "write"
    EMIT = "emit"
    NETWORK = "network"
    RETURN = "return"
    THROW = "throw"


class IntegrityIssue(StrEnum):
    """Kinds of lineage problems reported as IntegrityWarning."""

    MISSING_SHADOW = "missing_shadow"
    DANGLING_PARENT = "dangling_parent"
    ORPHANED_CHILD = "orphaned_child"
    CYCLE = "cycle"
    DEPTH_EXCEEDED = "depth_exceeded"
    GENERATION_MISMATCH = "generation_mismatch"
    CORRUPT_RECORD = "corrupt_record"


class IndexBackend(StrEnum):
    """Where the similarity bucket index lives."""

    SQL = "sql"
    MEMORY = "memory"


# ── Identifiers and Schema ───────────────────────────────

SHADOW_ID_PREFIX = "shadow_"
DNA_ID_PREFIX = "dna_"
HASH_HEX_LENGTH = 16
SCHEMA_VERSION = 1
SCHEMA_VERSION_KEY = "schema_version"

# Bucket key prefixes in the similarity index
BUCKET_STRUCTURAL = "s"
BUCKET_PATTERN = "p"

# ── Similarity Weights ───────────────────────────────────


class SimilarityWeight:
    """Fixed weights of the DNA similarity metric (sum to 1.0)."""

    STRUCTURAL = 0.5
    PATTERN = 0.3
    FLOW_TYPE = 0.1
    COMPLEXITY = 0.1


SIMILARITY_PRECISION = 6
VIBRATION_PRECISION = 2
VIBRATION_SCALE = 100.0

# ── Transformation → Category Mapping ────────────────────

TRANSFORM_CATEGORIES: dict[str, OperationCategory] = {
    "calculation": OperationCategory.TRANSFORM,
    "arithmetic": OperationCategory.TRANSFORM,
    "concatenation": OperationCategory.TRANSFORM,
    "mapping": OperationCategory.TRANSFORM,
    "merge": OperationCategory.TRANSFORM,
    "spread": OperationCategory.TRANSFORM,
    "property_access": OperationCategory.READ,
    "destructuring": OperationCategory.READ,
    "read": OperationCategory.READ,
    "filter": OperationCategory.VALIDATE,
    "validation": OperationCategory.VALIDATE,
    "condition": OperationCategory.VALIDATE,
    "comparison": OperationCategory.VALIDATE,
    "function_call": OperationCategory.CALL,
    "method_call": OperationCategory.CALL,
    "await": OperationCategory.CALL,
    "assignment": OperationCategory.WRITE,
    "mutation": OperationCategory.WRITE,
}

SIDE_EFFECT_CATEGORIES: dict[str, OperationCategory] = {
    "network": OperationCategory.NETWORK,
    "http": OperationCategory.NETWORK,
    "fetch": OperationCategory.NETWORK,
    "event": OperationCategory.EMIT,
    "emit": OperationCategory.EMIT,
    "log": OperationCategory.EMIT,
    "console": OperationCategory.EMIT,
}

OUTPUT_CATEGORIES: dict[str, OperationCategory] = {
    "return": OperationCategory.RETURN,
    "throw": OperationCategory.THROW,
    "side_effect": OperationCategory.WRITE,
    "mutation": OperationCategory.WRITE,
    "emit": OperationCategory.EMIT,
}

# ── Circuit Breaker Configuration ────────────────────────

CB_STORAGE_FAILURE_THRESHOLD = 5
CB_STORAGE_RECOVERY_TIMEOUT = 30

# ── Retry Strategy ───────────────────────────────────────

RETRY_MAX_ATTEMPTS = 3
RETRY_INITIAL_WAIT = 0.05
RETRY_MAX_WAIT = 1.0

# ── Misc ─────────────────────────────────────────────────

UNKNOWN_DEATH_REASON = "unknown"
CONNECTION_TARGET_SEPARATOR = "::"
ERROR_TRUNCATION_CHARS = 200
