from __future__ import annotations

from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from chat_markers.db.models import StorageEntry
from chat_markers.utils.time_utils import utc_now


class StorageEntryRepo:
    """Repository for key-value document persistence."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_many(self, keys: Optional[list[str]] = None) -> list[StorageEntry]:
        """Fetch entries by key, or every entry when ``keys`` is None."""

        stmt = select(StorageEntry).order_by(StorageEntry.key.asc())
        if keys is not None:
            if not keys:
                return []
            stmt = stmt.where(StorageEntry.key.in_(keys))
        result = await self._db.execute(stmt)
        return list(result.scalars())

    async def total_size(self, exclude_keys: Optional[list[str]] = None) -> int:
        """Sum of stored payload sizes, optionally ignoring entries about to be replaced."""

        stmt = select(func.coalesce(func.sum(StorageEntry.size_bytes), 0))
        if exclude_keys:
            stmt = stmt.where(StorageEntry.key.not_in(exclude_keys))
        result = await self._db.execute(stmt)
        return int(result.scalar_one() or 0)

    async def upsert(self, key: str, value_json: str, size_bytes: int) -> StorageEntry:
        """Insert or replace one entry."""

        existing = await self._db.get(StorageEntry, key)
        now = utc_now()
        if existing:
            existing.value_json = value_json
            existing.size_bytes = size_bytes
            existing.updated_at = now
            await self._db.flush()
            return existing

        entry = StorageEntry(
            key=key,
            value_json=value_json,
            size_bytes=size_bytes,
            updated_at=now,
        )
        self._db.add(entry)
        await self._db.flush()
        return entry

    async def delete_many(self, keys: list[str]) -> int:
        """Delete entries by key and return the number of rows removed."""

        if not keys:
            return 0
        result = await self._db.execute(delete(StorageEntry).where(StorageEntry.key.in_(keys)))
        await self._db.flush()
        return int(result.rowcount or 0)
