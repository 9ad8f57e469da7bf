"""Environment-based configuration and engine construction."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from shadow_registry.constants import IndexBackend

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Reads from .env file and SHADOW_REGISTRY_* environment variables."""

    # Storage
    data_dir: Path = Path("data/shadows")
    database_name: str = "shadows.db"
    database_url: str = ""  # overrides data_dir/database_name when set
    storage_timeout_seconds: float = 5.0
    index_backend: IndexBackend = IndexBackend.SQL
    cache_size: int = 100

    # Similarity search
    similarity_top_k: int = 5
    similarity_min: float = 0.75
    best_match_min_similarity: float = 0.85
    similarity_scan_cap: int = 500
    complexity_saturation: float = 10.0

    # Lineage
    max_lineage_depth: int = 100

    # Vibration
    zombie_threshold: float = 100.0

    # Logging
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    audit_log_enabled: bool = False

    @field_validator(
        "storage_timeout_seconds",
        "similarity_scan_cap",
        "similarity_top_k",
        "complexity_saturation",
        "max_lineage_depth",
        "cache_size",
    )
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("similarity_min", "best_match_min_similarity")
    @classmethod
    def _unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("similarity thresholds must lie in [0, 1]")
        return v

    @field_validator("zombie_threshold")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("zombie_threshold must be >= 0")
        return v

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {v}")
        return level

    def resolved_database_url(self, location: Path | None = None) -> str:
        """SQLite URL for the registry stored at ``location`` (or data_dir)."""
        if self.database_url and location is None:
            return self.database_url
        base = location if location is not None else self.data_dir
        return f"sqlite:///{base / self.database_name}"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SHADOW_REGISTRY_",
        extra="ignore",
    )


def create_app_engine(
    url: str, *, echo: bool = False
) -> AsyncEngine:
    """Create async SQLite engine with WAL journal mode.

    Handles URL conversion (sqlite:/// → sqlite+aiosqlite:///)
    and sets WAL mode via a pool-connect event listener so it
    fires once per raw DBAPI connection, not per ORM session.
    """
    if url.startswith("sqlite:///"):
        db_url = "sqlite+aiosqlite:///" + url[len("sqlite:///"):]
    else:
        db_url = url
    engine = create_async_engine(db_url, echo=echo)

    @event.listens_for(engine.sync_engine, "connect")
    def _set_wal_mode(
        dbapi_conn: object,
        _connection_record: object,
    ) -> None:
        cursor = dbapi_conn.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=2000")
        cursor.close()

    return engine
