"""Structured JSON audit logger for Shadow lifecycle events."""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from shadow_registry.constants import ERROR_TRUNCATION_CHARS
from shadow_registry.logging_config import LOG_DATEFMT, LOG_FORMAT

__all__ = ["RegistryAuditLogger", "LOG_FORMAT", "LOG_DATEFMT"]


class RegistryAuditLogger:
    """Append-only JSON lines, one per lifecycle event, keyed by shadow_id."""

    def __init__(self, log_dir: Path, level: str = "INFO") -> None:
        self._log_dir = log_dir
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._path = log_dir / "registry.log"
        self._logger = logging.getLogger(
            f"shadow_registry.audit.{self._path.resolve()}"
        )
        self._logger.setLevel(getattr(logging, level.upper()))
        self._logger.propagate = False

        if not self._logger.handlers:
            handler = logging.FileHandler(self._path, encoding="utf-8")
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(handler)

    @property
    def path(self) -> Path:
        return self._path

    def _emit(self, level: int, payload: dict[str, Any]) -> None:
        payload["timestamp"] = datetime.now(UTC).isoformat()
        self._logger.log(level, json.dumps(payload))

    def log_created(
        self,
        shadow_id: str,
        original_id: str,
        status: str,
        reason: str,
        parent_shadow_id: str | None = None,
    ) -> None:
        self._emit(
            logging.INFO,
            {
                "type": "shadow_created",
                "shadow_id": shadow_id,
                "original_id": original_id,
                "status": status,
                "reason": reason[:ERROR_TRUNCATION_CHARS],
                "parent_shadow_id": parent_shadow_id,
            },
        )

    def log_transition(
        self,
        shadow_id: str,
        previous: str,
        status: str,
        replaced_by: str | None,
        evolution_type: str | None = None,
    ) -> None:
        self._emit(
            logging.INFO,
            {
                "type": "status_changed",
                "shadow_id": shadow_id,
                "from": previous,
                "to": status,
                "replaced_by": replaced_by,
                "evolution_type": evolution_type,
            },
        )

    def log_link(
        self,
        parent_shadow_id: str,
        child_shadow_id: str,
        generation: int,
        secondary: bool = False,
    ) -> None:
        self._emit(
            logging.INFO,
            {
                "type": "lineage_linked",
                "parent_shadow_id": parent_shadow_id,
                "child_shadow_id": child_shadow_id,
                "generation": generation,
                "secondary": secondary,
            },
        )

    def log_integrity_warning(
        self,
        shadow_id: str,
        issue: str,
        detail: str,
    ) -> None:
        self._emit(
            logging.WARNING,
            {
                "type": "integrity_warning",
                "shadow_id": shadow_id,
                "issue": issue,
                "detail": detail[:ERROR_TRUNCATION_CHARS],
            },
        )

    def close(self) -> None:
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)
