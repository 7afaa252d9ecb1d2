from __future__ import annotations

import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from chat_markers.anchoring.types import ChatItem

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RelinkSession(Generic[T]):
    """Waits for the user to pick the message a missing marker should point at.

    Completes at most once: the first offered item wins, and after completion
    or ``cancel()`` further offers are ignored.
    """

    def __init__(
        self, marker_id: str, on_complete: Callable[[str, ChatItem], Awaitable[T]]
    ) -> None:
        self.marker_id = marker_id
        self._on_complete = on_complete
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    async def offer(self, item: ChatItem) -> Optional[T]:
        if not self._active:
            return None
        self._active = False
        logger.info("Relinking marker %s to %s message #%d", self.marker_id, item.role, item.ordinal)
        return await self._on_complete(self.marker_id, item)

    def cancel(self) -> None:
        if self._active:
            logger.info("Relink of marker %s cancelled", self.marker_id)
        self._active = False
