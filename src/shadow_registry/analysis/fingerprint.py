"""DNA fingerprinter: reduce an atom to identifier-free hashes.

The structural hash covers counts and kinds (how many inputs, which
transformation categories, which side effects, branch/loop/call
counts, flow type). The pattern hash covers the ordered operation
sequence. Neither ever sees a variable, function or file name.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from shadow_registry.constants import (
    DNA_ID_PREFIX,
    HASH_HEX_LENGTH,
    OUTPUT_CATEGORIES,
    SIDE_EFFECT_CATEGORIES,
    TRANSFORM_CATEGORIES,
    FlowType,
    OperationCategory,
)
from shadow_registry.domain.atom import Atom
from shadow_registry.domain.dna import DNA
from shadow_registry.resilience.errors import ValidationError

logger = logging.getLogger(__name__)


def _digest(payload: Any) -> str:
    """Stable short sha256 of a JSON-serializable payload."""
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(raw.encode()).hexdigest()[:HASH_HEX_LENGTH]


def _norm(kind: str | None) -> str:
    return (kind or "").strip().lower()


def _transform_category(operation: str) -> OperationCategory:
    return TRANSFORM_CATEGORIES.get(
        _norm(operation), OperationCategory.TRANSFORM
    )


def _side_effect_category(kind: str) -> OperationCategory:
    return SIDE_EFFECT_CATEGORIES.get(
        _norm(kind), OperationCategory.WRITE
    )


def _output_category(kind: str) -> OperationCategory:
    return OUTPUT_CATEGORIES.get(_norm(kind), OperationCategory.RETURN)


def _flow_type(atom: Atom) -> FlowType:
    if atom.is_generator:
        return FlowType.GENERATOR
    if atom.is_async:
        return FlowType.ASYNC
    return FlowType.SYNC


def operation_sequence(atom: Atom) -> tuple[str, ...]:
    """Ordered category tags: receive, reads, transforms, effects, outputs."""
    flow = atom.data_flow
    ops: list[str] = []
    if flow.inputs:
        ops.append(OperationCategory.RECEIVE)
    for inp in flow.inputs:
        for usage in inp.usages:
            ops.append(
                TRANSFORM_CATEGORIES.get(
                    _norm(usage.type), OperationCategory.READ
                )
            )
    ops.extend(_transform_category(t.operation) for t in flow.transformations)
    ops.extend(_side_effect_category(s.type) for s in flow.side_effects)
    ops.extend(_output_category(o.type) for o in flow.outputs)
    return tuple(str(op) for op in ops)


def _collapse(sequence: tuple[str, ...]) -> list[str]:
    """Drop consecutive duplicates: read,read,call → read,call."""
    collapsed: list[str] = []
    for op in sequence:
        if not collapsed or collapsed[-1] != op:
            collapsed.append(op)
    return collapsed


def _structural_skeleton(atom: Atom, flow_type: FlowType) -> dict[str, Any]:
    flow = atom.data_flow
    cf = atom.control_flow
    return {
        "inputs": [
            [_norm(i.type), sorted(_norm(u.type) for u in i.usages)]
            for i in flow.inputs
        ],
        "transforms": [
            str(_transform_category(t.operation))
            for t in flow.transformations
        ],
        "outputs": [_norm(o.type) for o in flow.outputs],
        "sideEffects": sorted(
            str(_side_effect_category(s.type)) for s in flow.side_effects
        ),
        "control": [cf.branches, cf.loops, cf.calls, cf.max_depth],
        "flow": str(flow_type),
    }


def _complexity(atom: Atom) -> float:
    if atom.complexity is not None:
        return float(atom.complexity)
    flow = atom.data_flow
    cf = atom.control_flow
    return round(
        1
        + cf.branches
        + cf.loops
        + 0.5 * len(flow.transformations)
        + 0.5 * len(flow.side_effects),
        2,
    )


def _semantic_fingerprint(atom: Atom) -> str:
    tag = atom.semantic
    verb = tag.verb if tag else ""
    domain = tag.domain if tag else ""
    entity = tag.entity if tag else ""
    roles = {
        "in": sorted(_norm(i.type) for i in atom.data_flow.inputs),
        "out": sorted(_norm(o.type) for o in atom.data_flow.outputs),
    }
    return _digest([f"{verb}:{domain}:{entity}".lower(), roles])


def coerce_atom(atom: Atom | dict[str, Any]) -> Atom:
    """Accept an Atom or a raw extraction-layer dict."""
    if atom is None:
        raise ValidationError("atom is required")
    if isinstance(atom, Atom):
        return atom
    if not isinstance(atom, dict):
        raise ValidationError(
            f"atom must be a mapping, got {type(atom).__name__}"
        )
    try:
        return Atom.model_validate(atom)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid atom: {exc}") from exc


def compute_dna(atom: Atom | dict[str, Any]) -> DNA:
    """Compute the DNA of an atom. Pure and deterministic.

    Raises:
        ValidationError: the atom is missing, malformed, or has no data
            flow at all.
    """
    parsed = coerce_atom(atom)
    if parsed.data_flow.is_empty():
        raise ValidationError(
            f"Atom {parsed.id} has an empty data flow; nothing to fingerprint"
        )

    flow_type = _flow_type(parsed)
    sequence = operation_sequence(parsed)
    structural_hash = _digest(_structural_skeleton(parsed, flow_type))
    pattern_hash = _digest("->".join(_collapse(sequence)))
    complexity = _complexity(parsed)
    semantic = _semantic_fingerprint(parsed)
    dna_id = DNA_ID_PREFIX + _digest(
        [structural_hash, pattern_hash, str(flow_type), complexity, semantic]
    )

    dna = DNA(
        id=dna_id,
        structural_hash=structural_hash,
        pattern_hash=pattern_hash,
        flow_type=flow_type,
        operation_sequence=sequence,
        complexity_score=complexity,
        semantic_fingerprint=semantic,
    )
    logger.debug(
        "event=dna_computed atom=%s structural=%s pattern=%s",
        parsed.id,
        structural_hash,
        pattern_hash,
    )
    return dna
