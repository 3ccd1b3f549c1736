"""Key-value persistence for automations and run history."""

from cronpilot.storage.base import KeyValueStore
from cronpilot.storage.memory import InMemoryStore
from cronpilot.storage.repository import AutomationRepository
from cronpilot.storage.sqlite import SqliteStore

__all__ = ["KeyValueStore", "InMemoryStore", "SqliteStore", "AutomationRepository"]
