from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from typing import Any, Optional, Union

from chat_markers.storage.base import (
    KeyValueStore,
    StorageQuotaExceededError,
    as_key_list,
    serialized_size,
)


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store, used for tests and hosts that persist elsewhere."""

    def __init__(self, quota_bytes: int = 0) -> None:
        self._data: dict[str, Any] = {}
        self._quota_bytes = max(0, quota_bytes)

    async def get(self, keys: Optional[Union[str, Iterable[str]]] = None) -> dict[str, Any]:
        if keys is None:
            return copy.deepcopy(self._data)
        return {
            key: copy.deepcopy(self._data[key]) for key in as_key_list(keys) if key in self._data
        }

    async def set(self, items: Mapping[str, Any]) -> None:
        staged = {key: copy.deepcopy(value) for key, value in items.items()}
        if self._quota_bytes:
            total = sum(
                serialized_size(value)
                for key, value in self._data.items()
                if key not in staged
            ) + sum(serialized_size(value) for value in staged.values())
            if total > self._quota_bytes:
                raise StorageQuotaExceededError(
                    f"QUOTA_BYTES quota exceeded ({total} > {self._quota_bytes})",
                    required_bytes=total,
                    quota_bytes=self._quota_bytes,
                )
        self._data.update(staged)

    async def remove(self, keys: Union[str, Iterable[str]]) -> None:
        for key in as_key_list(keys):
            self._data.pop(key, None)
