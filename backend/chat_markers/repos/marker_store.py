from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from chat_markers.anchoring.chat_key import is_chat_key
from chat_markers.anchoring.migration import migrate, normalize_collection
from chat_markers.schemas.marker import SCHEMA_VERSION, Marker, MarkerCollection
from chat_markers.storage.base import KeyValueStore, serialized_size

logger = logging.getLogger(__name__)

DEFAULT_SOFT_LIMIT_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True)
class SaveReport:
    """Result of a successful write."""

    chat_key: str
    size_bytes: int
    near_limit: bool


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class MarkerStore:
    """Versioned read/write of marker collections on a key-value store."""

    def __init__(
        self, store: KeyValueStore, soft_limit_bytes: int = DEFAULT_SOFT_LIMIT_BYTES
    ) -> None:
        self._store = store
        self._soft_limit_bytes = soft_limit_bytes
        # Entries exist only while a writer holds or waits on the key.
        self._locks: dict[str, _KeyLock] = {}
        # Store-wide clock: a key deleted and written again never repeats a revision.
        self._clock = itertools.count(1)
        self._floor = 0
        self._revisions: dict[str, int] = {}

    @property
    def store(self) -> KeyValueStore:
        return self._store

    @asynccontextmanager
    async def lock(self, chat_key: str) -> AsyncIterator[None]:
        """Writer lock for one chat key; read-modify-write sequences must hold it."""

        entry = self._locks.get(chat_key)
        if entry is None:
            entry = self._locks[chat_key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if not entry.users and self._locks.get(chat_key) is entry:
                del self._locks[chat_key]

    def revision(self, chat_key: str) -> int:
        """Changes whenever a write or delete is issued through this store."""

        return self._revisions.get(chat_key, self._floor)

    def _bump(self, chat_key: str) -> None:
        self._revisions[chat_key] = next(self._clock)

    def _forget(self, chat_keys: Iterable[str]) -> None:
        for key in chat_keys:
            self._revisions.pop(key, None)
        self._floor = next(self._clock)

    async def load(self, chat_key: str) -> MarkerCollection:
        """Load and migrate a collection; absent keys yield an empty collection."""

        result = await self._store.get(chat_key)
        return migrate(normalize_collection(result.get(chat_key)))

    async def save(self, chat_key: str, markers: Sequence[Marker]) -> SaveReport:
        """Write markers in the current envelope.

        Raises ``StorageQuotaExceededError`` when the store rejects the write for
        size and ``StorageError`` for other failures.
        """

        payload = MarkerCollection(schema_version=SCHEMA_VERSION, markers=list(markers)).to_wire()
        size_bytes = serialized_size(payload)
        near_limit = bool(self._soft_limit_bytes) and size_bytes > self._soft_limit_bytes
        if near_limit:
            logger.warning(
                "Marker collection %s is %d bytes, above the %d byte soft limit",
                chat_key,
                size_bytes,
                self._soft_limit_bytes,
            )
        try:
            await self._store.set({chat_key: payload})
        finally:
            self._bump(chat_key)
        return SaveReport(chat_key=chat_key, size_bytes=size_bytes, near_limit=near_limit)

    async def delete(self, chat_key: str) -> None:
        await self._store.remove(chat_key)
        self._forget([chat_key])

    async def delete_many(self, chat_keys: Iterable[str]) -> None:
        keys = list(chat_keys)
        if keys:
            await self._store.remove(keys)
            self._forget(keys)

    async def enumerate(self) -> list[tuple[str, MarkerCollection]]:
        """Every namespaced collection, normalized in memory and sorted by key."""

        everything = await self._store.get(None)
        return [
            (key, migrate(normalize_collection(everything[key])))
            for key in sorted(key for key in everything if is_chat_key(key))
        ]
