"""
storage/repository.py — Typed access to automations and run history

Wraps a KeyValueStore with the Automation/RunRecord model. Reads coerce
whatever is stored into typed lists (wrong shapes read as empty); writes
serialise back to the camelCase blob schema.

The management operations (create / update / enable / delete) are the
editor actions. They raise AutomationNotFoundError and
InvalidCronExpressionError; the scheduling path only uses the plain
load/save calls and never sees those.
"""

from __future__ import annotations

from typing import Any, Optional

from cronpilot.exceptions import AutomationNotFoundError, InvalidCronExpressionError
from cronpilot.observability.logger import get_logger
from cronpilot.scheduler.cron import validate_cron_expression
from cronpilot.scheduler.models import (
    AUTOMATIONS_KEY,
    Automation,
    MissedRunPolicy,
    RunRecord,
    RunStatus,
    coerce_automations,
    coerce_runs,
    generate_automation_id,
    now_ms,
    runs_key,
)
from cronpilot.storage.base import KeyValueStore

log = get_logger(__name__)

MAX_RUNS = 50

_EDITABLE_FIELDS = {
    "name",
    "cron_expression",
    "orchestrator",
    "model",
    "free_agent_mode",
    "prompt",
    "enabled",
    "missed_run_policy",
}


class AutomationRepository:
    """Automation list + per-automation run history over a KeyValueStore."""

    def __init__(self, store: KeyValueStore, max_runs: int = MAX_RUNS) -> None:
        self.store = store
        self.max_runs = max_runs

    # ── Automations ───────────────────────────────────────────────────────────

    async def list_automations(self) -> list[Automation]:
        return coerce_automations(await self.store.read(AUTOMATIONS_KEY))

    async def save_automations(self, automations: list[Automation]) -> None:
        await self.store.write(AUTOMATIONS_KEY, [a.to_dict() for a in automations])

    async def get_automation(self, automation_id: str) -> Optional[Automation]:
        for auto in await self.list_automations():
            if auto.id == automation_id:
                return auto
        return None

    async def require_automation(self, automation_id: str) -> Automation:
        auto = await self.get_automation(automation_id)
        if auto is None:
            raise AutomationNotFoundError(automation_id)
        return auto

    async def create_automation(self, **overrides: Any) -> Automation:
        """
        Append a new automation. Defaults: disabled, hourly, policy ignore.

        Overrides take the same names as Automation fields; a cron
        expression given here is validated like an edit.
        """
        _check_fields(overrides)
        if "cron_expression" in overrides:
            _check_cron(overrides["cron_expression"])
        if "missed_run_policy" in overrides:
            overrides["missed_run_policy"] = MissedRunPolicy.parse(overrides["missed_run_policy"])
        auto = Automation(id=generate_automation_id(), created_at=now_ms(), **overrides)
        automations = await self.list_automations()
        automations.append(auto)
        await self.save_automations(automations)
        log.info("automation.created", automation_id=auto.id, name=auto.name)
        return auto

    async def update_automation(self, automation_id: str, **changes: Any) -> Automation:
        """Apply editor changes to one automation and persist the list."""
        _check_fields(changes)
        if "cron_expression" in changes:
            _check_cron(changes["cron_expression"])
        if "missed_run_policy" in changes:
            changes["missed_run_policy"] = MissedRunPolicy.parse(changes["missed_run_policy"])

        automations = await self.list_automations()
        for auto in automations:
            if auto.id == automation_id:
                for name, value in changes.items():
                    setattr(auto, name, value)
                await self.save_automations(automations)
                log.info("automation.updated", automation_id=automation_id, fields=sorted(changes))
                return auto
        raise AutomationNotFoundError(automation_id)

    async def set_enabled(self, automation_id: str, enabled: bool) -> Automation:
        return await self.update_automation(automation_id, enabled=enabled)

    async def toggle_enabled(self, automation_id: str) -> Automation:
        auto = await self.require_automation(automation_id)
        return await self.set_enabled(automation_id, not auto.enabled)

    async def delete_automation(self, automation_id: str) -> None:
        """Remove the automation together with its run history."""
        automations = await self.list_automations()
        remaining = [a for a in automations if a.id != automation_id]
        if len(remaining) == len(automations):
            raise AutomationNotFoundError(automation_id)
        await self.save_automations(remaining)
        await self.store.delete(runs_key(automation_id))
        log.info("automation.deleted", automation_id=automation_id)

    async def mark_run(self, automation_id: str, at_ms: int) -> bool:
        """
        Reload the automation list, advance one automation's last_run_at and
        persist it. Returns False (writing nothing) when the id is gone.
        """
        automations = await self.list_automations()
        for auto in automations:
            if auto.id == automation_id:
                auto.mark_run(at_ms)
                await self.save_automations(automations)
                return True
        return False

    # ── Runs ──────────────────────────────────────────────────────────────────

    async def list_runs(self, automation_id: str) -> list[RunRecord]:
        return coerce_runs(await self.store.read(runs_key(automation_id)))

    async def save_runs(self, automation_id: str, runs: list[RunRecord]) -> None:
        await self.store.write(runs_key(automation_id), [r.to_dict() for r in runs])

    async def record_run(self, run: RunRecord) -> list[RunRecord]:
        """Prepend `run` to its automation's history, keeping the newest max_runs."""
        runs = await self.list_runs(run.automation_id)
        runs.insert(0, run)
        del runs[self.max_runs:]
        await self.save_runs(run.automation_id, runs)
        return runs

    async def delete_run(self, automation_id: str, agent_id: str) -> list[RunRecord]:
        runs = [r for r in await self.list_runs(automation_id) if r.agent_id != agent_id]
        await self.save_runs(automation_id, runs)
        return runs

    async def has_running_run(self, automation_id: str) -> bool:
        return any(r.status is RunStatus.RUNNING for r in await self.list_runs(automation_id))


def _check_fields(values: dict[str, Any]) -> None:
    unknown = set(values) - _EDITABLE_FIELDS
    if unknown:
        raise TypeError(f"Not editable automation field(s): {sorted(unknown)}")


def _check_cron(expression: str) -> None:
    error = validate_cron_expression(expression)
    if error:
        raise InvalidCronExpressionError(expression, error)
