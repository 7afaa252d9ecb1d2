from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from chat_markers.storage.base import StorageError, StorageQuotaExceededError

if TYPE_CHECKING:
    from chat_markers.services.marker_service import ChatContext

logger = logging.getLogger(__name__)


@dataclass
class MarkerOperationError(RuntimeError):
    """Domain error for marker and collection operations.

    ``context`` is set when a write failed after the edit was applied in
    memory, so callers can keep the user's change and retry or export it.
    """

    code: str
    message: str
    context: Optional["ChatContext"] = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


def storage_failure(
    exc: StorageError, chat_key: str, context: Optional["ChatContext"] = None
) -> MarkerOperationError:
    """Translate a substrate failure into the error surfaced to callers."""

    if isinstance(exc, StorageQuotaExceededError):
        logger.warning("Storage quota exceeded while saving %s: %s", chat_key, exc)
        return MarkerOperationError(
            "STORAGE_QUOTA_EXCEEDED",
            "Storage quota exceeded. Export your notes and delete some.",
            context,
        )
    logger.error("Storage write failed for %s: %s", chat_key, exc)
    return MarkerOperationError("STORAGE_FAILED", "Failed to save markers.", context)
