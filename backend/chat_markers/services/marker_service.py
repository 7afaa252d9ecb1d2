from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar, Union

from fastapi import Request

from chat_markers.anchoring.chat_key import derive_chat_key
from chat_markers.anchoring.resolver import resolve
from chat_markers.anchoring.types import ChatItem, ResolvedMarker, build_items, make_reference
from chat_markers.api.websocket import ChangeNotifier
from chat_markers.repos.marker_store import MarkerStore, SaveReport
from chat_markers.schemas.marker import MARKER_COLORS, CollectionExport, Marker, MessageRef
from chat_markers.services.errors import MarkerOperationError, storage_failure
from chat_markers.services.registry_service import CollectionRegistry, ImportSummary
from chat_markers.storage.base import StorageError
from chat_markers.utils.ids import new_marker_id
from chat_markers.utils.time_utils import utc_now_iso

logger = logging.getLogger(__name__)

T = TypeVar("T")
Target = Union[ChatItem, MessageRef]


@dataclass(frozen=True)
class ChatContext:
    """Markers of the active conversation.

    Immutable: every operation returns a replacement, and the host swaps the
    whole context when the conversation changes.
    """

    chat_key: str
    markers: tuple[Marker, ...] = ()
    revision: int = 0

    def find(self, marker_id: str) -> Optional[Marker]:
        for marker in self.markers:
            if marker.id == marker_id:
                return marker
        return None


class MarkerService:
    """Create, edit, delete, relink and resolve markers of one conversation at a time."""

    def __init__(
        self,
        marker_store: MarkerStore,
        registry: CollectionRegistry,
        notifier: Optional[ChangeNotifier] = None,
    ) -> None:
        self._marker_store = marker_store
        self._registry = registry
        self._notifier = notifier

    async def open_context(self, host_path: str) -> ChatContext:
        """Load the context for the conversation identified by a host path."""

        return await self.load_context(derive_chat_key(host_path))

    async def load_context(self, chat_key: str) -> ChatContext:
        collection = await self._marker_store.load(chat_key)
        return ChatContext(
            chat_key=chat_key,
            markers=tuple(collection.markers),
            revision=self._marker_store.revision(chat_key),
        )

    def resolve(self, context: ChatContext, items: Sequence[Any]) -> list[ResolvedMarker]:
        """Match the context's markers against the current scan."""

        scan = [item for item in items if isinstance(item, ChatItem)]
        if len(scan) != len(items):
            scan = build_items(items)
        return resolve(context.markers, scan)

    def search(self, context: ChatContext, query: str) -> list[Marker]:
        """Markers whose note or tag contains ``query``, case-insensitively."""

        needle = query.strip().lower()
        if not needle:
            return list(context.markers)
        return [
            marker
            for marker in context.markers
            if needle in marker.note.lower() or (marker.tag and needle in marker.tag.lower())
        ]

    async def create_marker(
        self,
        context: ChatContext,
        target: Target,
        note: str,
        tag: Optional[str] = None,
        color: Optional[str] = None,
    ) -> tuple[ChatContext, Marker, SaveReport]:
        """Attach a new note to a message."""

        cleaned_note = _require_note(note)
        cleaned_color = _require_color(color)
        reference = _reference_for(target)
        now = utc_now_iso()
        marker = Marker(
            id=new_marker_id(),
            reference=reference,
            note=cleaned_note,
            tag=_clean_tag(tag),
            color=cleaned_color,
            created_at=now,
            updated_at=now,
        )

        def change(markers: list[Marker]) -> tuple[list[Marker], Marker]:
            return markers + [marker], marker

        return await self._mutate(context, change, "created")

    async def update_marker(
        self,
        context: ChatContext,
        marker_id: str,
        *,
        note: Optional[str] = None,
        tag: Optional[str] = None,
        color: Optional[str] = None,
    ) -> tuple[ChatContext, Marker, SaveReport]:
        """Edit note, tag or color; ``None`` leaves a field as it is and ``""`` clears the tag."""

        updates: dict[str, Any] = {}
        if note is not None:
            updates["note"] = _require_note(note)
        if tag is not None:
            updates["tag"] = _clean_tag(tag)
        if color is not None:
            updates["color"] = _require_color(color)

        def change(markers: list[Marker]) -> tuple[list[Marker], Marker]:
            index = _index_of(markers, marker_id)
            edited = markers[index].model_copy(update={**updates, "updated_at": utc_now_iso()})
            markers[index] = edited
            return markers, edited

        return await self._mutate(context, change, "updated")

    async def delete_marker(
        self, context: ChatContext, marker_id: str
    ) -> tuple[ChatContext, Marker, SaveReport]:
        def change(markers: list[Marker]) -> tuple[list[Marker], Marker]:
            index = _index_of(markers, marker_id)
            removed = markers.pop(index)
            return markers, removed

        return await self._mutate(context, change, "deleted")

    async def relink(
        self, context: ChatContext, marker_id: str, target: Target
    ) -> tuple[ChatContext, Marker, SaveReport]:
        """Point a marker at another message. The new reference is trusted as given."""

        reference = _reference_for(target)

        def change(markers: list[Marker]) -> tuple[list[Marker], Marker]:
            index = _index_of(markers, marker_id)
            relinked = markers[index].model_copy(
                update={"reference": reference, "updated_at": utc_now_iso()}
            )
            markers[index] = relinked
            return markers, relinked

        return await self._mutate(context, change, "relinked")

    def export_collection(self, context: ChatContext) -> CollectionExport:
        return CollectionExport(
            chat_key=context.chat_key,
            exported_at=utc_now_iso(),
            markers=list(context.markers),
        )

    async def import_into(
        self, context: ChatContext, raw: Any
    ) -> tuple[ChatContext, ImportSummary]:
        """Import a file into the active conversation; single-conversation files land here."""

        summary = await self._registry.import_payload(raw, target_key=context.chat_key)
        return await self.load_context(context.chat_key), summary

    async def _mutate(
        self,
        context: ChatContext,
        change: Callable[[list[Marker]], tuple[list[Marker], T]],
        reason: str,
    ) -> tuple[ChatContext, T, SaveReport]:
        chat_key = context.chat_key
        async with self._marker_store.lock(chat_key):
            if context.revision == self._marker_store.revision(chat_key):
                markers = list(context.markers)
            else:
                # Another writer saved since this context was read.
                markers = list((await self._marker_store.load(chat_key)).markers)
            updated, result = change(markers)
            try:
                report = await self._marker_store.save(chat_key, updated)
            except StorageError as exc:
                failed_context = ChatContext(
                    chat_key=chat_key,
                    markers=tuple(updated),
                    revision=self._marker_store.revision(chat_key),
                )
                raise storage_failure(exc, chat_key, failed_context) from exc
            new_context = ChatContext(
                chat_key=chat_key,
                markers=tuple(updated),
                revision=self._marker_store.revision(chat_key),
            )

        logger.info("Marker %s in %s (%d total)", reason, chat_key, len(updated))
        if self._notifier is not None:
            await self._notifier.markers_changed(chat_key, reason, len(updated))
        return new_context, result, report


def _require_note(note: str) -> str:
    cleaned = (note or "").strip()
    if not cleaned:
        raise MarkerOperationError("EMPTY_NOTE", "Note must not be empty")
    return cleaned


def _require_color(color: Optional[str]) -> str:
    if color is None or color == "":
        return MARKER_COLORS[0]
    if color not in MARKER_COLORS:
        raise MarkerOperationError(
            "INVALID_COLOR", f"Color must be one of: {', '.join(MARKER_COLORS)}"
        )
    return color


def _clean_tag(tag: Optional[str]) -> Optional[str]:
    if tag is None:
        return None
    cleaned = tag.strip()
    return cleaned or None


def _reference_for(target: Target) -> MessageRef:
    if isinstance(target, ChatItem):
        try:
            return make_reference(target)
        except ValueError as exc:
            raise MarkerOperationError("INVALID_REFERENCE", str(exc)) from exc
    if not target.role or not target.fingerprint:
        raise MarkerOperationError(
            "INVALID_REFERENCE", "A message reference needs a role and a fingerprint"
        )
    return target


def _index_of(markers: list[Marker], marker_id: str) -> int:
    for index, marker in enumerate(markers):
        if marker.id == marker_id:
            return index
    raise MarkerOperationError("MARKER_NOT_FOUND", "Marker not found")


def get_marker_service(request: Request) -> MarkerService:
    """Dependency to access the marker service from app state."""

    return request.app.state.marker_service
