"""Vibration scoring: how strongly live code still references a dead atom."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from shadow_registry.constants import (
    CONNECTION_TARGET_SEPARATOR,
    VIBRATION_PRECISION,
    VIBRATION_SCALE,
)
from shadow_registry.domain.shadow import Connection, Inheritance, Shadow
from shadow_registry.resilience.errors import ValidationError

logger = logging.getLogger(__name__)

# Returns True when the file exists in the live codebase.
FileResolver = Callable[[str], bool]


def target_file(target: str) -> str:
    """File part of a connection target (``src/a.js::fn`` → ``src/a.js``)."""
    return target.split(CONNECTION_TARGET_SEPARATOR, 1)[0]


def coerce_connection(raw: Connection | Mapping[str, Any]) -> Connection:
    if isinstance(raw, Connection):
        conn = raw
    else:
        try:
            conn = Connection(
                target=str(raw["target"]), strength=float(raw["strength"])
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed connection: {exc}") from exc
    if not conn.target:
        raise ValidationError("Connection target must be non-empty")
    if not 0.0 <= conn.strength <= 1.0:
        raise ValidationError(
            f"Connection strength {conn.strength} outside [0, 1] "
            f"for target {conn.target}"
        )
    return conn


def compute_vibration(
    shadow: Shadow,
    connections: Iterable[Connection | Mapping[str, Any]],
    resolver: FileResolver | None = None,
) -> Inheritance:
    """Derive the Inheritance of ``shadow`` from its live connections.

    vibration_score = round(100 * sum(strength), 2). A connection is
    ruptured when the resolver reports its target file as missing.
    Without a resolver nothing is considered ruptured.
    """
    conns = tuple(coerce_connection(c) for c in connections)
    total = sum(c.strength for c in conns)
    score = round(VIBRATION_SCALE * total, VIBRATION_PRECISION)

    ruptured: tuple[Connection, ...] = ()
    if resolver is not None:
        ruptured = tuple(
            c for c in conns if not resolver(target_file(c.target))
        )

    logger.debug(
        "event=vibration_computed shadow=%s connections=%d score=%s ruptured=%d",
        shadow.shadow_id,
        len(conns),
        score,
        len(ruptured),
    )
    return Inheritance(
        connections=conns,
        connection_count=len(conns),
        vibration_score=max(0.0, score),
        ruptured_connections=ruptured,
    )


def is_zombie(shadow: Shadow, threshold: float) -> bool:
    """A still-deleted Shadow whose live references reach ``threshold``."""
    return (
        shadow.is_live
        and shadow.inheritance.vibration_score >= threshold
    )
