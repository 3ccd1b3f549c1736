"""
scheduler/tracker.py — RunTracker

Fires automations through the AgentRunner, records a RunRecord per spawned
task, and correlates the runner's asynchronous status changes back to the
right record.

Pending index
-------------
`_pending` maps spawned run id → automation id for runs whose completion
has not been observed yet. It lives only as long as this tracker: after a
process restart, runs spawned by the previous process are no longer
completion-tracked and stay "running" in their history.

Completion is exactly-once per run id: the id is removed from the index
before any persistence happens, so a duplicate event finds nothing.

Consistency
-----------
A completion performs two independent read-modify-write round trips, one
on "runs:{id}" and one on "automations". Neither is atomic with the other
nor with writes made concurrently by a tick; the store is last-write-wins.
A crash between the two leaves last_run_at behind the run record.
"""

from __future__ import annotations

import asyncio
from types import MappingProxyType
from typing import Callable, Mapping, Optional

from cronpilot.observability.logger import get_logger
from cronpilot.runner.base import AgentRunner, AgentStatus, Subscription
from cronpilot.scheduler.models import Automation, RunRecord, RunStatus, now_ms
from cronpilot.storage.repository import AutomationRepository

log = get_logger(__name__)

_COMPLETION_STATUS = {
    AgentStatus.SLEEPING.value: RunStatus.COMPLETED,
    AgentStatus.ERROR.value: RunStatus.FAILED,
}


class RunTracker:

    def __init__(
        self,
        runner: AgentRunner,
        repository: AutomationRepository,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._runner = runner
        self._repo = repository
        self._clock = clock or now_ms
        self._pending: dict[str, str] = {}
        self._completion_tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> Mapping[str, str]:
        """Read-only view of run id → automation id for runs in flight."""
        return MappingProxyType(self._pending)

    def attach(self) -> Subscription:
        """Subscribe to the runner's status changes."""
        return self._runner.on_status_change(self.handle_status_change)

    # ── Firing ────────────────────────────────────────────────────────────────

    async def fire(self, automation: Automation) -> Optional[str]:
        """
        Spawn one run of `automation` and record it. Never raises.

        Returns the run id, or None when the spawn failed (nothing is
        recorded in that case).
        """
        try:
            agent_id = await self._runner.spawn(
                automation.prompt,
                model=automation.model or None,
                orchestrator=automation.orchestrator or None,
                free_agent_mode=automation.free_agent_mode or None,
            )
        except Exception as e:
            log.warning(
                "tracker.spawn_failed",
                automation_id=automation.id,
                error=f"{type(e).__name__}: {e}",
            )
            return None

        self._pending[agent_id] = automation.id
        started_at = self._clock()
        run = RunRecord(agent_id=agent_id, automation_id=automation.id, started_at=started_at)

        try:
            await self._repo.record_run(run)
            automation.mark_run(started_at)
            await self._repo.mark_run(automation.id, started_at)
        except Exception as e:
            log.error(
                "tracker.persist_failed",
                automation_id=automation.id,
                agent_id=agent_id,
                error=f"{type(e).__name__}: {e}",
                exc_info=True,
            )
            return agent_id

        log.info("tracker.run_started", automation_id=automation.id, agent_id=agent_id)
        return agent_id

    # ── Completion ────────────────────────────────────────────────────────────

    def handle_status_change(
        self, agent_id: str, new_status: str, prev_status: Optional[str],
    ) -> None:
        """Runner callback: schedule on_completion() for runs we are tracking."""
        if agent_id not in self._pending:
            return
        task = asyncio.ensure_future(self._complete_safely(agent_id, new_status, prev_status))
        self._completion_tasks.add(task)
        task.add_done_callback(self._completion_tasks.discard)

    async def _complete_safely(
        self, agent_id: str, new_status: str, prev_status: Optional[str],
    ) -> None:
        try:
            await self.on_completion(agent_id, new_status, prev_status)
        except Exception as e:
            log.error(
                "tracker.completion_failed",
                agent_id=agent_id,
                error=f"{type(e).__name__}: {e}",
                exc_info=True,
            )

    async def on_completion(
        self, agent_id: str, new_status: str, prev_status: Optional[str],
    ) -> bool:
        """
        Apply a status change to the run history.

        Only running → sleeping (completed) and running → error (failed)
        count. Returns True when the event was consumed.
        """
        automation_id = self._pending.get(agent_id)
        if automation_id is None:
            return False
        if prev_status != AgentStatus.RUNNING.value or new_status not in _COMPLETION_STATUS:
            return False

        del self._pending[agent_id]

        info = next((c for c in self._runner.list_completed() if c.id == agent_id), None)
        status = _COMPLETION_STATUS[new_status]
        completed_at = self._clock()

        runs = await self._repo.list_runs(automation_id)
        record = next((r for r in runs if r.agent_id == agent_id), None)
        if record is not None:
            record.complete(
                status,
                summary=info.summary if info else None,
                exit_code=info.exit_code if info else None,
                at_ms=completed_at,
            )
        else:
            log.warning("tracker.run_record_missing", automation_id=automation_id, agent_id=agent_id)
        await self._repo.save_runs(automation_id, runs)

        await self._repo.mark_run(automation_id, completed_at)

        log.info(
            "tracker.run_completed",
            automation_id=automation_id,
            agent_id=agent_id,
            status=status.value,
            exit_code=info.exit_code if info else None,
        )
        return True

    async def drain(self) -> None:
        """Wait for every scheduled completion handler to finish."""
        while self._completion_tasks:
            await asyncio.gather(*list(self._completion_tasks), return_exceptions=True)
