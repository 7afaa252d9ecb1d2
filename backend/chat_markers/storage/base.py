from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any, Optional, Union


class StorageError(RuntimeError):
    """Raised when the key-value substrate fails to read or write."""


class StorageQuotaExceededError(StorageError):
    """Raised when a write is rejected because the store is out of capacity."""

    def __init__(self, message: str, *, required_bytes: int = 0, quota_bytes: int = 0) -> None:
        super().__init__(message)
        self.required_bytes = required_bytes
        self.quota_bytes = quota_bytes


def serialized_size(value: Any) -> int:
    """Size in bytes of a value as the store serializes it."""

    return len(json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8"))


class KeyValueStore(ABC):
    """Async key-value substrate holding JSON-serializable documents."""

    @abstractmethod
    async def get(self, keys: Optional[Union[str, Iterable[str]]] = None) -> dict[str, Any]:
        """Return stored values for ``keys``; ``None`` returns every entry. Absent keys are omitted."""

    @abstractmethod
    async def set(self, items: Mapping[str, Any]) -> None:
        """Write all ``items`` atomically, or raise ``StorageQuotaExceededError``."""

    @abstractmethod
    async def remove(self, keys: Union[str, Iterable[str]]) -> None:
        """Delete ``keys``; missing keys are ignored."""

    async def close(self) -> None:
        return None


def as_key_list(keys: Union[str, Iterable[str]]) -> list[str]:
    if isinstance(keys, str):
        return [keys]
    return list(keys)
