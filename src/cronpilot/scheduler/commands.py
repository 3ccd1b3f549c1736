"""
scheduler/commands.py — Named, externally invokable actions

The host (CLI, UI, IPC bridge) triggers scheduler actions by name:

    create            add a default (disabled) automation
    refresh           tell listeners to reload their view
    run-now <id>      fire one automation immediately

Handlers may be plain functions or coroutines; execute() awaits the latter.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable

from cronpilot.exceptions import CommandNotFoundError
from cronpilot.observability.logger import get_logger
from cronpilot.runner.base import Subscription

log = get_logger(__name__)

CommandHandler = Callable[..., Any]


class CommandRegistry:

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}

    def register(self, name: str, handler: CommandHandler) -> Subscription:
        """Register `handler` under `name`, replacing any previous handler."""
        self._handlers[name] = handler

        def _unregister() -> None:
            if self._handlers.get(name) is handler:
                del self._handlers[name]

        return Subscription(_unregister)

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    async def execute(self, name: str, *args: Any, **kwargs: Any) -> Any:
        handler = self._handlers.get(name)
        if handler is None:
            raise CommandNotFoundError(name)
        log.debug("command.execute", command=name)
        result = handler(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result
