"""
runner/base.py — AgentRunner contract

An AgentRunner spawns long-running agent tasks and reports their status
changes through a subscription. The scheduler only depends on this
interface; SubprocessAgentRunner is the bundled implementation.

Status vocabulary:
    running   the task is executing
    sleeping  the task finished normally
    error     the task finished abnormally (non-zero exit, crash, killed)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class AgentStatus(str, Enum):
    RUNNING = "running"
    SLEEPING = "sleeping"
    ERROR = "error"


@dataclass(frozen=True)
class CompletedAgentInfo:
    id: str
    summary: Optional[str] = None
    exit_code: Optional[int] = None


# callback(run_id, new_status, prev_status)
StatusChangeCallback = Callable[[str, str, Optional[str]], None]


class Subscription:
    """Disposable handle. dispose() is idempotent."""

    def __init__(self, dispose: Callable[[], None]) -> None:
        self._dispose: Optional[Callable[[], None]] = dispose

    @property
    def disposed(self) -> bool:
        return self._dispose is None

    def dispose(self) -> None:
        fn, self._dispose = self._dispose, None
        if fn is not None:
            fn()


class AgentRunner(ABC):

    def __init__(self) -> None:
        self._listeners: list[StatusChangeCallback] = []

    @abstractmethod
    async def spawn(
        self,
        prompt: str,
        *,
        model: Optional[str] = None,
        orchestrator: Optional[str] = None,
        free_agent_mode: Optional[bool] = None,
    ) -> str:
        """Start a task and return its run id. None options mean "use default"."""

    @abstractmethod
    async def kill(self, run_id: str) -> None:
        """Stop a running task. Unknown ids are ignored."""

    @abstractmethod
    def list_completed(self) -> list[CompletedAgentInfo]:
        """Best-effort snapshot of recently completed tasks."""

    def on_status_change(self, callback: StatusChangeCallback) -> Subscription:
        self._listeners.append(callback)

        def _remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return Subscription(_remove)

    def _emit(self, run_id: str, status: AgentStatus, prev: Optional[AgentStatus]) -> None:
        for callback in list(self._listeners):
            callback(run_id, status.value, prev.value if prev else None)
