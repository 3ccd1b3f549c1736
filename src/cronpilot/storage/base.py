"""
storage/base.py — Key-value store contract

The scheduler persists opaque JSON-compatible blobs under two key shapes:

    "automations"          → list of Automation dicts
    "runs:{automationId}"  → list of RunRecord dicts (newest first, ≤ 50)

Stores are last-write-wins per key. No transactions span keys.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional


class KeyValueStore(ABC):
    """Async key-value store holding JSON-compatible values."""

    @abstractmethod
    async def read(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    async def write(self, key: str, value: Any) -> None:
        """Replace the value stored under `key`."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove `key`. Deleting an absent key is not an error."""

    @abstractmethod
    async def keys(self) -> list[str]:
        """All keys currently stored, sorted."""

    async def init(self) -> None:
        """Open underlying resources. No-op for stores that need none."""

    async def close(self) -> None:
        """Release underlying resources. No-op for stores that hold none."""
