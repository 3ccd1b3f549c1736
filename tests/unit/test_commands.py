"""
tests/unit/test_commands.py — CommandRegistry and Subscription
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from cronpilot.exceptions import CommandNotFoundError
from cronpilot.runner.base import Subscription
from cronpilot.scheduler.commands import CommandRegistry


class TestSubscription:

    def test_dispose_is_idempotent(self):
        fn = MagicMock()
        sub = Subscription(fn)
        assert not sub.disposed
        sub.dispose()
        sub.dispose()
        fn.assert_called_once()
        assert sub.disposed


class TestCommandRegistry:

    @pytest.mark.asyncio
    async def test_sync_handler(self):
        registry = CommandRegistry()
        registry.register("add", lambda a, b: a + b)
        assert await registry.execute("add", 2, 3) == 5

    @pytest.mark.asyncio
    async def test_async_handler(self):
        registry = CommandRegistry()
        handler = AsyncMock(return_value="ok")
        registry.register("go", handler)
        assert await registry.execute("go", key="v") == "ok"
        handler.assert_awaited_once_with(key="v")

    @pytest.mark.asyncio
    async def test_unknown_command(self):
        with pytest.raises(CommandNotFoundError) as exc:
            await CommandRegistry().execute("nope")
        assert exc.value.name == "nope"

    def test_names_and_contains(self):
        registry = CommandRegistry()
        registry.register("refresh", MagicMock())
        registry.register("create", MagicMock())
        assert registry.names() == ["create", "refresh"]
        assert "create" in registry
        assert "run-now" not in registry

    def test_dispose_unregisters(self):
        registry = CommandRegistry()
        sub = registry.register("create", MagicMock())
        sub.dispose()
        assert "create" not in registry

    def test_stale_subscription_keeps_replacement(self):
        registry = CommandRegistry()
        old = registry.register("create", MagicMock())
        registry.register("create", MagicMock())
        old.dispose()
        assert "create" in registry
