"""In-process key-value store used for tests and local runs."""

from __future__ import annotations

import copy
from typing import Any


class InMemoryKeyValueStore:
    """Dictionary-backed store; values are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        if key not in self._data:
            return None
        return copy.deepcopy(self._data[key])

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def has(self, key: str) -> bool:
        return key in self._data

    async def keys(self, prefix: str | None = None) -> list[str]:
        return [key for key in self._data if prefix is None or key.startswith(prefix)]

    def clear(self) -> None:
        self._data.clear()
