"""SQLAlchemy ORM models."""

from shadow_registry.models.base import Base
from shadow_registry.models.shadow import (
    RegistryMeta,
    ShadowIndexEntry,
    ShadowRecord,
)

__all__ = [
    "Base",
    "RegistryMeta",
    "ShadowIndexEntry",
    "ShadowRecord",
]
