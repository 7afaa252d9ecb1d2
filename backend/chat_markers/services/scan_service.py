from __future__ import annotations

import inspect
import logging
from collections.abc import Sequence
from typing import Any, Awaitable, Callable, Optional, Union

from chat_markers.anchoring.types import ChatItem, ResolvedMarker, build_items
from chat_markers.core.config import get_settings
from chat_markers.services.marker_service import ChatContext, MarkerService
from chat_markers.services.relink import RelinkSession
from chat_markers.utils.debounce import Debouncer

logger = logging.getLogger(__name__)

ItemSource = Callable[[], Awaitable[Sequence[Any]]]
ResolvedCallback = Callable[[list[ResolvedMarker]], Union[Awaitable[None], None]]


class ScanCoordinator:
    """Drive resolve passes for the active conversation of one host view.

    The host reports content changes; bursts are debounced into one pass that
    pulls fresh items from ``item_source`` and hands results to ``on_resolved``.
    """

    def __init__(
        self,
        marker_service: MarkerService,
        item_source: ItemSource,
        on_resolved: ResolvedCallback,
        *,
        delay_sec: Optional[float] = None,
    ) -> None:
        self._marker_service = marker_service
        self._item_source = item_source
        self._on_resolved = on_resolved
        if delay_sec is None:
            delay_sec = get_settings().debounce_delay_ms / 1000
        self._debouncer = Debouncer(delay_sec, self.rescan)
        self._context: Optional[ChatContext] = None
        self._relink: Optional[RelinkSession[ChatContext]] = None
        self.last_items: list[ChatItem] = []

    @property
    def context(self) -> Optional[ChatContext]:
        return self._context

    @property
    def relink_session(self) -> Optional[RelinkSession[ChatContext]]:
        if self._relink is not None and not self._relink.active:
            self._relink = None
        return self._relink

    async def open(self, host_path: str) -> ChatContext:
        """Switch to another conversation; pending relinks and rescans are dropped."""

        self.cancel_relink()
        self._debouncer.cancel()
        self._context = await self._marker_service.open_context(host_path)
        await self.rescan()
        return self._context

    def set_context(self, context: ChatContext) -> None:
        """Replace the context after an operation performed elsewhere returned a new one."""

        self._context = context
        self.notify_content_changed()

    def notify_content_changed(self) -> None:
        self._debouncer.trigger()

    async def on_collection_changed(self, chat_key: str, payload: dict) -> None:
        """Change-notifier listener: reload when another writer touched our collection."""

        if self._context is None or chat_key != self._context.chat_key:
            return
        self._context = await self._marker_service.load_context(chat_key)
        self.notify_content_changed()

    async def rescan(self) -> list[ResolvedMarker]:
        if self._context is None:
            return []
        self.last_items = build_items(await self._item_source())
        results = self._marker_service.resolve(self._context, self.last_items)
        missing = sum(1 for result in results if result.missing)
        logger.debug(
            "Resolved %d marker(s) in %s, %d missing",
            len(results),
            self._context.chat_key,
            missing,
        )
        outcome = self._on_resolved(results)
        if inspect.isawaitable(outcome):
            await outcome
        return results

    def start_relink(self, marker_id: str) -> RelinkSession[ChatContext]:
        """Begin waiting for the message a marker should be re-attached to."""

        self.cancel_relink()
        self._relink = RelinkSession(marker_id, self._complete_relink)
        return self._relink

    def cancel_relink(self) -> None:
        if self._relink is not None:
            self._relink.cancel()
            self._relink = None

    async def _complete_relink(self, marker_id: str, item: ChatItem) -> ChatContext:
        if self._context is None:
            raise RuntimeError("No active conversation to relink in")
        context, _, _ = await self._marker_service.relink(self._context, marker_id, item)
        self._context = context
        self._relink = None
        await self.rescan()
        return context

    async def wait_idle(self) -> None:
        await self._debouncer.wait_idle()

    async def aclose(self) -> None:
        self.cancel_relink()
        await self._debouncer.aclose()
