"""Shadow ORM models: records, bucket index and registry metadata."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shadow_registry.constants import SCHEMA_VERSION, ShadowStatus
from shadow_registry.models.base import Base


class ShadowRecord(Base):
    """One row per Shadow.

    record_json holds the full camelCase record. The other columns are
    copies of the fields queries filter or sort on.
    """

    __tablename__ = "shadows"

    shadow_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    original_id: Mapped[str] = mapped_column(String(500), index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=ShadowStatus.DELETED, index=True
    )
    replaced_by: Mapped[str | None] = mapped_column(
        String(500), nullable=True
    )
    died_at: Mapped[datetime] = mapped_column(index=True)
    schema_version: Mapped[int] = mapped_column(
        Integer, default=SCHEMA_VERSION
    )
    record_json: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        default=lambda: datetime.now(UTC),
        server_default=func.now(),
        onupdate=lambda: datetime.now(UTC),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "shadow_id": self.shadow_id,
            "original_id": self.original_id,
            "status": self.status,
            "replaced_by": self.replaced_by,
            "died_at": self.died_at.isoformat(),
            "schema_version": self.schema_version,
        }


class ShadowIndexEntry(Base):
    """Bucket key → shadow id. Derived data, rebuildable from shadows."""

    __tablename__ = "shadow_index"

    bucket_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    shadow_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    schema_version: Mapped[int] = mapped_column(
        Integer, default=SCHEMA_VERSION
    )


class RegistryMeta(Base):
    __tablename__ = "registry_meta"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text)
