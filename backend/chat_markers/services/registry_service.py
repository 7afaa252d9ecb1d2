from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Request

from chat_markers.anchoring.chat_key import is_chat_key, short_chat_id
from chat_markers.anchoring.merge import filter_valid, merge_markers
from chat_markers.api.websocket import ChangeNotifier
from chat_markers.repos.marker_store import MarkerStore
from chat_markers.schemas.marker import (
    SCHEMA_VERSION,
    BundleExport,
    CollectionExport,
    ConversationEntry,
)
from chat_markers.services.errors import MarkerOperationError, storage_failure
from chat_markers.storage.base import StorageError
from chat_markers.utils.time_utils import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionSummary:
    key: str
    short_id: str
    marker_count: int


@dataclass(frozen=True)
class ImportSummary:
    """Totals reported after an import."""

    added_count: int
    skipped_count: int
    chat_keys: tuple[str, ...]


@dataclass(frozen=True)
class ClearSummary:
    cleared: bool
    removed_keys: tuple[str, ...]


def _malformed(message: str) -> MarkerOperationError:
    return MarkerOperationError("MALFORMED_INPUT", message)


def parse_import_payload(
    raw: Any, target_key: Optional[str] = None
) -> list[tuple[str, list[Any]]]:
    """Split an export document into ``(chat_key, raw marker records)`` pairs.

    Accepts JSON text, bytes, or a decoded mapping in either the bundle or the
    single-conversation layout. ``target_key`` overrides the key named by a
    single-conversation file. Raises ``MALFORMED_INPUT`` before anything is written.
    """

    data = raw
    if isinstance(data, (bytes, bytearray)):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise _malformed("Import file is not UTF-8 text") from exc
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as exc:
            raise _malformed(f"Import file is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise _malformed("Unrecognized format")

    if "conversations" in data:
        conversations = data["conversations"]
        if not isinstance(conversations, list):
            raise _malformed("Unrecognized format")
        entries: list[tuple[str, list[Any]]] = []
        for conversation in conversations:
            if not isinstance(conversation, dict):
                continue
            key = conversation.get("key")
            records = conversation.get("markers")
            if not isinstance(key, str) or not is_chat_key(key) or not isinstance(records, list):
                logger.warning("Skipping unusable conversation entry %r", key)
                continue
            entries.append((key, records))
        return entries

    records = data.get("markers")
    if isinstance(records, list):
        key = target_key or data.get("chatKey")
        if not isinstance(key, str) or not is_chat_key(key):
            raise _malformed("Import file does not name a conversation")
        return [(key, records)]

    raise _malformed("Unrecognized format")


class CollectionRegistry:
    """Operations spanning every stored marker collection."""

    def __init__(self, marker_store: MarkerStore, notifier: Optional[ChangeNotifier] = None) -> None:
        self._marker_store = marker_store
        self._notifier = notifier

    async def list_collections(self) -> list[CollectionSummary]:
        """Return stored collections sorted by key."""

        return [
            CollectionSummary(key=key, short_id=short_chat_id(key), marker_count=len(collection.markers))
            for key, collection in await self._marker_store.enumerate()
        ]

    async def export_collection(self, chat_key: str) -> CollectionExport:
        """Build the single-conversation export document."""

        collection = await self._marker_store.load(chat_key)
        return CollectionExport(
            chat_key=chat_key,
            exported_at=utc_now_iso(),
            schema_version=SCHEMA_VERSION,
            markers=collection.markers,
        )

    async def export_all(self) -> BundleExport:
        """Build one bundle holding every collection."""

        entries = await self._marker_store.enumerate()
        if not entries:
            raise MarkerOperationError("NOTHING_TO_EXPORT", "Nothing to export.")
        conversations = [
            ConversationEntry(key=key, markers=merge_markers([], collection.markers).merged)
            for key, collection in entries
        ]
        return BundleExport(
            exported_at=utc_now_iso(),
            schema_version=SCHEMA_VERSION,
            conversations=conversations,
        )

    async def import_payload(self, raw: Any, target_key: Optional[str] = None) -> ImportSummary:
        """Merge an export document into storage. Existing markers always win."""

        prepared = [
            (key, *filter_valid(records)) for key, records in parse_import_payload(raw, target_key)
        ]

        added_total = 0
        skipped_total = 0
        touched: list[str] = []
        for key, valid, skipped in prepared:
            skipped_total += skipped
            async with self._marker_store.lock(key):
                current = await self._marker_store.load(key)
                result = merge_markers(current.markers, valid)
                if not result.added_count:
                    continue
                try:
                    await self._marker_store.save(key, result.merged)
                except StorageError as exc:
                    raise storage_failure(exc, key) from exc
            added_total += result.added_count
            touched.append(key)
            await self._notify(key, "imported", len(result.merged))

        if skipped_total:
            logger.warning("Import skipped %d invalid marker record(s)", skipped_total)
        logger.info("Imported %d marker(s) into %d collection(s)", added_total, len(touched))
        return ImportSummary(
            added_count=added_total,
            skipped_count=skipped_total,
            chat_keys=tuple(touched),
        )

    async def delete_collection(self, chat_key: str) -> None:
        if not is_chat_key(chat_key):
            raise MarkerOperationError("INVALID_KEY", "Not a marker collection key")
        async with self._marker_store.lock(chat_key):
            await self._marker_store.delete(chat_key)
        await self._notify(chat_key, "deleted", 0)

    async def clear_all(self) -> ClearSummary:
        """Delete every stored collection; reports ``cleared=False`` when there was nothing."""

        keys = [key for key, _ in await self._marker_store.enumerate()]
        if not keys:
            return ClearSummary(cleared=False, removed_keys=())
        await self._marker_store.delete_many(keys)
        for key in keys:
            await self._notify(key, "deleted", 0)
        logger.info("Cleared %d marker collection(s)", len(keys))
        return ClearSummary(cleared=True, removed_keys=tuple(keys))

    async def _notify(self, chat_key: str, reason: str, marker_count: int) -> None:
        if self._notifier is not None:
            await self._notifier.markers_changed(chat_key, reason, marker_count)


def get_collection_registry(request: Request) -> CollectionRegistry:
    """Dependency to access the collection registry from app state."""

    return request.app.state.collection_registry
