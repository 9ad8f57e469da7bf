"""SQL implementation of ShadowRepository."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shadow_registry.constants import SCHEMA_VERSION, ShadowStatus
from shadow_registry.domain.shadow import Shadow
from shadow_registry.models.shadow import ShadowRecord
from shadow_registry.resilience.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)


def decode_record(record: ShadowRecord) -> Shadow:
    """Rebuild a Shadow from its row, or raise StorageError."""
    if record.schema_version > SCHEMA_VERSION:
        raise StorageError(
            f"Shadow {record.shadow_id} has schema version "
            f"{record.schema_version}; this build reads {SCHEMA_VERSION}"
        )
    try:
        return Shadow.from_dict(json.loads(record.record_json))
    except (
        json.JSONDecodeError,
        KeyError,
        TypeError,
        ValueError,
        ValidationError,
    ) as exc:
        raise StorageError(
            f"Corrupt shadow record {record.shadow_id}: {exc}"
        ) from exc


def decode_rows(records: Sequence[ShadowRecord]) -> list[Shadow]:
    """Decode a batch, skipping rows that cannot be read."""
    shadows: list[Shadow] = []
    for record in records:
        try:
            shadows.append(decode_record(record))
        except StorageError as exc:
            logger.warning(
                "event=shadow_record_skipped shadow=%s error=%s",
                record.shadow_id,
                exc,
            )
    return shadows


def _apply(record: ShadowRecord, shadow: Shadow) -> ShadowRecord:
    record.original_id = shadow.original_id
    record.status = str(shadow.status)
    record.replaced_by = shadow.replaced_by
    record.died_at = shadow.died_at
    record.schema_version = SCHEMA_VERSION
    record.record_json = json.dumps(shadow.to_dict(), sort_keys=True)
    return record


class SqlShadowRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, shadow_id: str) -> Shadow | None:
        record = await self._session.get(ShadowRecord, shadow_id)
        return decode_record(record) if record is not None else None

    async def get_many(
        self, shadow_ids: Iterable[str]
    ) -> dict[str, Shadow]:
        ids = list(dict.fromkeys(shadow_ids))
        if not ids:
            return {}
        result = await self._session.execute(
            select(ShadowRecord).where(ShadowRecord.shadow_id.in_(ids))
        )
        return {
            s.shadow_id: s for s in decode_rows(result.scalars().all())
        }

    async def exists(self, shadow_id: str) -> bool:
        result = await self._session.execute(
            select(func.count()).where(ShadowRecord.shadow_id == shadow_id)
        )
        return result.scalar_one() > 0

    async def add(self, shadow: Shadow) -> Shadow:
        record = _apply(ShadowRecord(shadow_id=shadow.shadow_id), shadow)
        self._session.add(record)
        await self._session.flush()
        return shadow

    async def update(self, shadow: Shadow) -> Shadow:
        record = await self._session.get(ShadowRecord, shadow.shadow_id)
        if record is None:
            raise StorageError(f"Shadow {shadow.shadow_id} does not exist")
        _apply(record, shadow)
        await self._session.flush()
        return shadow

    async def find_live(self, original_id: str) -> Shadow | None:
        result = await self._session.execute(
            select(ShadowRecord)
            .where(
                ShadowRecord.original_id == original_id,
                ShadowRecord.status == ShadowStatus.DELETED,
            )
            .order_by(ShadowRecord.died_at.desc())
            .limit(1)
        )
        record = result.scalar_one_or_none()
        return decode_record(record) if record is not None else None

    async def list_shadows(
        self,
        status: ShadowStatus | None = None,
        limit: int | None = None,
    ) -> list[Shadow]:
        """Newest first."""
        stmt = select(ShadowRecord).order_by(
            ShadowRecord.died_at.desc(), ShadowRecord.shadow_id
        )
        if status is not None:
            stmt = stmt.where(ShadowRecord.status == status)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return decode_rows(result.scalars().all())

    async def count(self) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(ShadowRecord)
        )
        return result.scalar_one()

    async def corrupt_records(self) -> dict[str, str]:
        """Ids of rows that fail to decode, with the reason."""
        result = await self._session.execute(select(ShadowRecord))
        corrupt: dict[str, str] = {}
        for record in result.scalars().all():
            try:
                decode_record(record)
            except StorageError as exc:
                corrupt[record.shadow_id] = str(exc)
        return corrupt
