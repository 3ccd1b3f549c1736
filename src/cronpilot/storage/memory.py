"""
storage/memory.py — In-process key-value store

Backs tests and `storage.backend: memory`. Values are deep-copied on the
way in and out so callers mutating what they read never touch the stored
copy, matching the isolation a real serialising store gives.
"""

from __future__ import annotations

import copy
from typing import Any, Optional

from cronpilot.storage.base import KeyValueStore


class InMemoryStore(KeyValueStore):

    def __init__(self, initial: Optional[dict[str, Any]] = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def read(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._data.get(key))

    async def write(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self) -> list[str]:
        return sorted(self._data)

    @property
    def data(self) -> dict[str, Any]:
        """Direct view of the backing dict (tests only)."""
        return self._data
