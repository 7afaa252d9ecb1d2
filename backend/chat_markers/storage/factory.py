from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chat_markers.core.config import Settings
from chat_markers.storage.base import KeyValueStore
from chat_markers.storage.memory_store import InMemoryKeyValueStore
from chat_markers.storage.sqlite_store import SQLiteKeyValueStore

logger = logging.getLogger(__name__)


def create_key_value_store(
    *,
    settings: Settings,
    sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None,
) -> KeyValueStore:
    """Factory for runtime storage backend selection."""

    backend = settings.store_backend.strip().lower()
    if backend == "memory":
        return InMemoryKeyValueStore(quota_bytes=settings.storage_quota_bytes)
    if backend != "sqlite":
        logger.warning("Unknown STORE_BACKEND=%s; fallback to sqlite", backend)
    if sessionmaker is None:
        logger.warning("No database sessionmaker available; fallback to memory store")
        return InMemoryKeyValueStore(quota_bytes=settings.storage_quota_bytes)
    return SQLiteKeyValueStore(sessionmaker, quota_bytes=settings.storage_quota_bytes)
