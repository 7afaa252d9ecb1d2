from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chat_markers.repos.storage_repo import StorageEntryRepo
from chat_markers.storage.base import (
    KeyValueStore,
    StorageError,
    StorageQuotaExceededError,
    as_key_list,
)

logger = logging.getLogger(__name__)


class SQLiteKeyValueStore(KeyValueStore):
    """Durable store keeping one JSON document per row, with a total-size quota."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        quota_bytes: int = 0,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._quota_bytes = max(0, quota_bytes)

    async def get(self, keys: Optional[Union[str, Iterable[str]]] = None) -> dict[str, Any]:
        key_list = None if keys is None else as_key_list(keys)
        try:
            async with self._sessionmaker() as db:
                entries = await StorageEntryRepo(db).get_many(key_list)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to read storage: {exc}") from exc

        values: dict[str, Any] = {}
        for entry in entries:
            try:
                values[entry.key] = json.loads(entry.value_json)
            except json.JSONDecodeError:
                logger.warning("Skipping undecodable storage entry %s", entry.key)
        return values

    async def set(self, items: Mapping[str, Any]) -> None:
        if not items:
            return
        encoded: dict[str, str] = {
            key: json.dumps(value, ensure_ascii=False, separators=(",", ":"))
            for key, value in items.items()
        }
        sizes = {key: len(raw.encode("utf-8")) for key, raw in encoded.items()}
        try:
            async with self._sessionmaker() as db:
                repo = StorageEntryRepo(db)
                async with db.begin():
                    if self._quota_bytes:
                        total = await repo.total_size(exclude_keys=list(encoded))
                        total += sum(sizes.values())
                        if total > self._quota_bytes:
                            raise StorageQuotaExceededError(
                                f"QUOTA_BYTES quota exceeded ({total} > {self._quota_bytes})",
                                required_bytes=total,
                                quota_bytes=self._quota_bytes,
                            )
                    for key, raw in encoded.items():
                        await repo.upsert(key, raw, sizes[key])
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to write storage: {exc}") from exc

    async def remove(self, keys: Union[str, Iterable[str]]) -> None:
        key_list = as_key_list(keys)
        if not key_list:
            return
        try:
            async with self._sessionmaker() as db:
                async with db.begin():
                    await StorageEntryRepo(db).delete_many(key_list)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to delete storage entries: {exc}") from exc
