"""
exceptions.py — cronpilot Unified Error Hierarchy

All cronpilot-specific exceptions live here. Management operations
(repository edits, CLI commands) raise typed subclasses of CronPilotError.
The scheduling path itself never raises them to its caller: it logs and
recovers with a safe default.

Import from here, not from individual modules:
    from cronpilot.exceptions import InvalidCronExpressionError

Hierarchy:
    CronPilotError
    ├── CronError
    │   └── InvalidCronExpressionError
    ├── AutomationError
    │   └── AutomationNotFoundError
    ├── RunnerError
    │   └── SpawnError
    ├── StorageError
    │   └── StoreNotInitializedError
    └── CommandError
        └── CommandNotFoundError
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class CronPilotError(Exception):
    """Base class for all cronpilot exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Cron layer
# ─────────────────────────────────────────────────────────────────────────────

class CronError(CronPilotError):
    """Base for cron expression errors."""


class InvalidCronExpressionError(CronError):
    """A cron expression failed validation at edit time."""

    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid cron expression '{expression}': {reason}")


# ─────────────────────────────────────────────────────────────────────────────
# Automation layer
# ─────────────────────────────────────────────────────────────────────────────

class AutomationError(CronPilotError):
    """Base for automation management errors."""


class AutomationNotFoundError(AutomationError):
    """No automation with the given id exists in the store."""

    def __init__(self, automation_id: str) -> None:
        self.automation_id = automation_id
        super().__init__(f"Automation not found: '{automation_id}'")


# ─────────────────────────────────────────────────────────────────────────────
# Runner layer
# ─────────────────────────────────────────────────────────────────────────────

class RunnerError(CronPilotError):
    """Base for agent runner errors."""


class SpawnError(RunnerError):
    """The agent runner could not start a task."""


# ─────────────────────────────────────────────────────────────────────────────
# Storage layer
# ─────────────────────────────────────────────────────────────────────────────

class StorageError(CronPilotError):
    """Base for key-value store errors."""


class StoreNotInitializedError(StorageError):
    """init() has not been called (or close() has) before first use."""


# ─────────────────────────────────────────────────────────────────────────────
# Command layer
# ─────────────────────────────────────────────────────────────────────────────

class CommandError(CronPilotError):
    """Base for command surface errors."""


class CommandNotFoundError(CommandError):
    """No handler is registered under the requested command name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"No command registered as '{name}'")


__all__ = [
    "CronPilotError",
    "CronError",
    "InvalidCronExpressionError",
    "AutomationError",
    "AutomationNotFoundError",
    "RunnerError",
    "SpawnError",
    "StorageError",
    "StoreNotInitializedError",
    "CommandError",
    "CommandNotFoundError",
]
