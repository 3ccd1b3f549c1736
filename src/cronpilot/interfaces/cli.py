"""
interfaces/cli.py — cronpilot management CLI

Renders the argparse subcommands built in main.py with rich.

  - serve              run the scheduler until Ctrl+C / SIGTERM
  - list / runs        tables of automations and run history
  - add / edit         create or change an automation (cron validated)
  - remove / enable / disable / toggle
  - delete-run         drop one entry from a run history
  - run-now            fire once, optionally waiting for the outcome
  - describe / validate / presets   cron helpers, no storage needed

Errors from the repository (unknown id, bad cron) are printed in red and
turn into exit code 1; nothing here lets them escape as a traceback.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
from datetime import datetime, tzinfo
from typing import Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from cronpilot.exceptions import CronPilotError
from cronpilot.observability.logger import get_logger
from cronpilot.runner.base import AgentRunner
from cronpilot.runner.subprocess_runner import SubprocessAgentRunner
from cronpilot.scheduler.cron import (
    PRESETS,
    describe_schedule,
    next_fire_after,
    validate_cron_expression,
)
from cronpilot.scheduler.models import Automation, RunStatus
from cronpilot.scheduler.scheduler import AutomationScheduler
from cronpilot.storage.base import KeyValueStore
from cronpilot.storage.repository import AutomationRepository

log = get_logger(__name__)

_STATUS_STYLE = {
    RunStatus.RUNNING: "[yellow]● running[/]",
    RunStatus.COMPLETED: "[green]✓ completed[/]",
    RunStatus.FAILED: "[red]✗ failed[/]",
}


def _format_ms(ms: Optional[int], tz: Optional[tzinfo]) -> str:
    if ms is None:
        return "[dim]never[/]"
    return datetime.fromtimestamp(ms / 1000, tz=tz).strftime("%Y-%m-%d %H:%M")


# ─────────────────────────────────────────────────────────────────────────────
# Pure commands
# ─────────────────────────────────────────────────────────────────────────────

def run_pure_command(args: argparse.Namespace, console: Optional[Console] = None) -> int:
    """describe / validate / presets. Returns the process exit code."""
    console = console or Console()

    if args.command == "describe":
        error = validate_cron_expression(args.expression)
        if error:
            console.print(f"[red]✗ {error}[/]")
            return 1
        console.print(describe_schedule(args.expression))
        nxt = next_fire_after(args.expression, datetime.now())
        if nxt is not None:
            console.print(f"[dim]Next: {nxt:%Y-%m-%d %H:%M}[/]")
        return 0

    if args.command == "validate":
        error = validate_cron_expression(args.expression)
        if error:
            console.print(f"[red]✗ {error}[/]")
            return 1
        console.print(f"[green]✓ valid[/] [dim]({describe_schedule(args.expression)})[/]")
        return 0

    if args.command == "presets":
        table = Table(title="Schedule Presets", box=box.ROUNDED, border_style="dim")
        table.add_column("Label", style="cyan", no_wrap=True)
        table.add_column("Expression", no_wrap=True)
        for preset in PRESETS:
            table.add_row(preset.label, preset.value)
        console.print(table)
        return 0

    raise ValueError(f"Not a pure command: {args.command}")


# ─────────────────────────────────────────────────────────────────────────────
# Store-backed commands
# ─────────────────────────────────────────────────────────────────────────────

class AutomationCli:
    """
    Subcommand handlers over one AutomationRepository.

    The runner is only built for serve / run-now; pass one in to replace
    the configured SubprocessAgentRunner.
    """

    def __init__(
        self,
        settings,
        repository: AutomationRepository,
        runner: Optional[AgentRunner] = None,
        console: Optional[Console] = None,
    ) -> None:
        self._settings = settings
        self._repo = repository
        self._runner = runner
        self.console = console or Console()
        self._tz = settings.tzinfo

    async def dispatch(self, args: argparse.Namespace) -> int:
        handler = getattr(self, f"cmd_{args.command.replace('-', '_')}", None)
        if handler is None:
            self.console.print(f"[red]Unknown command: {args.command}[/]")
            return 1
        try:
            return await handler(args)
        except CronPilotError as e:
            log.warning("cli.command_failed", command=args.command, error=str(e))
            self.console.print(f"[red]✗ {e}[/]")
            return 1

    def _get_runner(self) -> AgentRunner:
        if self._runner is None:
            self._runner = SubprocessAgentRunner.from_settings(self._settings)
        return self._runner

    def _build_scheduler(self) -> AutomationScheduler:
        return AutomationScheduler.from_settings(self._settings, self._repo, self._get_runner())

    # ── Listing ───────────────────────────────────────────────────────────────

    async def cmd_list(self, args: argparse.Namespace) -> int:
        automations = await self._repo.list_automations()
        if not automations:
            self.console.print("[dim]No automations yet. Use `cronpilot add` to create one.[/]")
            return 0

        now = datetime.now(tz=self._tz)
        table = Table(title="Automations", box=box.ROUNDED, border_style="dim")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name")
        table.add_column("Schedule")
        table.add_column("Enabled", no_wrap=True)
        table.add_column("Status", no_wrap=True)
        table.add_column("Missed", no_wrap=True)
        table.add_column("Last run", no_wrap=True)
        table.add_column("Next run", no_wrap=True)

        for auto in automations:
            nxt = next_fire_after(auto.cron_expression, now) if auto.enabled else None
            running = await self._repo.has_running_run(auto.id)
            table.add_row(
                auto.id,
                auto.name,
                f"{describe_schedule(auto.cron_expression)}\n[dim]{auto.cron_expression}[/]",
                "[green]✓[/]" if auto.enabled else "[dim]—[/]",
                _STATUS_STYLE[RunStatus.RUNNING] if running else "",
                auto.missed_run_policy.value,
                _format_ms(auto.last_run_at, self._tz),
                f"{nxt:%Y-%m-%d %H:%M}" if nxt else "[dim]—[/]",
            )
        self.console.print(table)
        return 0

    async def cmd_runs(self, args: argparse.Namespace) -> int:
        auto = await self._repo.require_automation(args.automation_id)
        runs = (await self._repo.list_runs(auto.id))[: max(args.limit, 0)]
        if not runs:
            self.console.print(f"[dim]{auto.name} has not run yet.[/]")
            return 0

        table = Table(title=f"Runs — {auto.name}", box=box.ROUNDED, border_style="dim")
        table.add_column("Run", style="cyan", no_wrap=True)
        table.add_column("Started", no_wrap=True)
        table.add_column("Status", no_wrap=True)
        table.add_column("Exit", justify="right")
        table.add_column("Summary")
        for run in runs:
            table.add_row(
                run.agent_id,
                _format_ms(run.started_at, self._tz),
                _STATUS_STYLE[run.status],
                "" if run.exit_code is None else str(run.exit_code),
                run.summary or "",
            )
        self.console.print(table)
        return 0

    # ── Editing ───────────────────────────────────────────────────────────────

    @staticmethod
    def _field_changes(args: argparse.Namespace) -> dict:
        mapping = {
            "name": args.name,
            "cron_expression": args.cron,
            "prompt": args.prompt,
            "model": args.model,
            "orchestrator": args.orchestrator,
            "missed_run_policy": args.policy,
            "free_agent_mode": args.free_agent,
        }
        return {k: v for k, v in mapping.items() if v is not None}

    def _print_automation(self, auto: Automation, verb: str) -> None:
        self.console.print(Panel(
            f"[bold]{auto.name}[/]  [dim]{auto.id}[/]\n"
            f"{describe_schedule(auto.cron_expression)}  [dim]({auto.cron_expression})[/]\n"
            f"Enabled: {'yes' if auto.enabled else 'no'}   "
            f"Missed runs: {auto.missed_run_policy.value}",
            title=verb,
            border_style="green",
        ))

    async def cmd_add(self, args: argparse.Namespace) -> int:
        changes = self._field_changes(args)
        if args.enable:
            changes["enabled"] = True
        auto = await self._repo.create_automation(**changes)
        self._print_automation(auto, "Created")
        return 0

    async def cmd_edit(self, args: argparse.Namespace) -> int:
        changes = self._field_changes(args)
        if not changes:
            self.console.print("[yellow]Nothing to change.[/]")
            return 1
        auto = await self._repo.update_automation(args.automation_id, **changes)
        self._print_automation(auto, "Updated")
        return 0

    async def cmd_remove(self, args: argparse.Namespace) -> int:
        await self._repo.delete_automation(args.automation_id)
        self.console.print(f"[red]✓ Removed {args.automation_id}[/]")
        return 0

    async def cmd_enable(self, args: argparse.Namespace) -> int:
        auto = await self._repo.set_enabled(args.automation_id, True)
        self.console.print(f"[green]✓ {auto.name} enabled[/]")
        return 0

    async def cmd_disable(self, args: argparse.Namespace) -> int:
        auto = await self._repo.set_enabled(args.automation_id, False)
        self.console.print(f"[yellow]✓ {auto.name} disabled[/]")
        return 0

    async def cmd_toggle(self, args: argparse.Namespace) -> int:
        auto = await self._repo.toggle_enabled(args.automation_id)
        state = "[green]enabled[/]" if auto.enabled else "[yellow]disabled[/]"
        self.console.print(f"✓ {auto.name} {state}")
        return 0

    async def cmd_delete_run(self, args: argparse.Namespace) -> int:
        auto = await self._repo.require_automation(args.automation_id)
        before = await self._repo.list_runs(auto.id)
        if not any(r.agent_id == args.agent_id for r in before):
            self.console.print(f"[red]✗ {auto.name} has no run {args.agent_id}[/]")
            return 1
        await self._repo.delete_run(auto.id, args.agent_id)
        self.console.print(f"[red]✓ Removed run {args.agent_id}[/] [dim]from {auto.name}[/]")
        return 0

    # ── Running ───────────────────────────────────────────────────────────────

    async def cmd_run_now(self, args: argparse.Namespace) -> int:
        auto = await self._repo.require_automation(args.automation_id)
        scheduler = self._build_scheduler()
        scheduler.activate()
        try:
            run_id = await scheduler.run_now(auto.id)
            if run_id is None:
                self.console.print(f"[red]✗ Failed to start {auto.name}. See the log for details.[/]")
                return 1
            self.console.print(f"[cyan]▶ {auto.name}[/] started as [bold]{run_id}[/]")
            if args.no_wait:
                return 0

            runner = self._get_runner()
            if isinstance(runner, SubprocessAgentRunner):
                with self.console.status("Waiting for the agent to finish…"):
                    await runner.wait(run_id)
            await scheduler.tracker.drain()
        finally:
            await scheduler.stop()

        run = next((r for r in await self._repo.list_runs(auto.id) if r.agent_id == run_id), None)
        if run is None or run.status is RunStatus.RUNNING:
            self.console.print("[yellow]Run is still in progress.[/]")
            return 0
        self.console.print(f"{_STATUS_STYLE[run.status]}  {run.summary or ''}")
        return 0 if run.status is RunStatus.COMPLETED else 1

    async def cmd_serve(self, args: argparse.Namespace) -> int:
        scheduler = self._build_scheduler()
        stop = asyncio.Event()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no signal handlers; Ctrl+C still
                # raises KeyboardInterrupt out of asyncio.run().
                pass

        await scheduler.start()
        automations = await self._repo.list_automations()
        self.console.print(
            f"[green]cronpilot serving[/] — {sum(a.enabled for a in automations)} of "
            f"{len(automations)} automation(s) enabled, tick every "
            f"{self._settings.scheduler.tick_interval_seconds:g}s. Ctrl+C to stop."
        )
        try:
            await stop.wait()
        finally:
            await scheduler.stop()
            runner = self._get_runner()
            if isinstance(runner, SubprocessAgentRunner):
                await runner.shutdown()
            await scheduler.wait_idle()
            self.console.print("[dim]cronpilot stopped.[/]")
        return 0


async def run_command(
    args: argparse.Namespace,
    settings,
    store: KeyValueStore,
    *,
    runner: Optional[AgentRunner] = None,
    console: Optional[Console] = None,
) -> int:
    """Run one store-backed subcommand against an initialised store."""
    repository = AutomationRepository(store, max_runs=settings.scheduler.max_runs_per_automation)
    cli = AutomationCli(settings, repository, runner=runner, console=console)
    return await cli.dispatch(args)
