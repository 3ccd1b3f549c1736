"""
scheduler/scheduler.py — AutomationScheduler

Drives persisted automations from a single recurring tick (default 30 s).

Design
------
* Pure asyncio — one ticker task, no threads, no external cron daemon.
* Every tick reloads the automation list from the store, so edits made by
  other processes (CLI, UI) are picked up without a restart.
* Within a tick, enabled automations are processed one after another. A
  slow or failing spawn delays the rest of that tick but never cancels it.
* Missed-run catch-up: an automation whose policy is run-once / run-all and
  whose last run is older than one or more scheduled fires gets a catch-up
  burst instead of the normal current-minute check that tick.
* Same-minute guard: a cron match is skipped when the automation already
  ran during the current calendar minute, so ticks finer than a minute
  fire at most once per matching minute.
* run_now() bypasses both the cron match and the guard, and ignores
  `enabled`.

Ticks are launched as independent tasks so the timer keeps its cadence.
Nothing prevents a tick that outlives tick_interval from overlapping the
next one; both would then read the same last_run_at. stop() halts future
ticks only: a tick already in flight runs to completion and may write
after stop() returns.

Usage::

    scheduler = AutomationScheduler.from_settings(settings, repository, runner)
    await scheduler.start()   # non-blocking
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
from datetime import datetime, tzinfo
from typing import Any, Callable, Optional

from cronpilot.observability.logger import bind_automation, clear_automation, get_logger
from cronpilot.runner.base import AgentRunner, Subscription
from cronpilot.scheduler.commands import CommandRegistry
from cronpilot.scheduler.cron import matches_cron
from cronpilot.scheduler.missed import count_missed_fire_times
from cronpilot.scheduler.models import Automation, MissedRunPolicy, now_ms
from cronpilot.scheduler.tracker import RunTracker
from cronpilot.storage.repository import AutomationRepository

log = get_logger(__name__)

DEFAULT_TICK_INTERVAL = 30.0
MAX_CATCH_UP_RUNS = 10


def same_minute(a: datetime, b: datetime) -> bool:
    return (a.year, a.month, a.day, a.hour, a.minute) == (b.year, b.month, b.day, b.hour, b.minute)


class AutomationScheduler:
    """
    Tick-driven scheduler for persisted automations.

    Introspection::

        scheduler.tracker.pending   # run id → automation id, in flight
        scheduler.commands.names()  # ['create', 'refresh', 'run-now']
    """

    def __init__(
        self,
        repository: AutomationRepository,
        runner: AgentRunner,
        *,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        tz: Optional[tzinfo] = None,
        max_catch_up_runs: int = MAX_CATCH_UP_RUNS,
        clock: Optional[Callable[[], int]] = None,
        commands: Optional[CommandRegistry] = None,
    ) -> None:
        """
        Args:
            repository:        Typed access to automations and run history.
            runner:            Spawns agent tasks and reports their status.
            tick_interval:     Seconds between ticks.
            tz:                Timezone cron expressions are evaluated in.
                               None = the host's local time.
            max_catch_up_runs: Hard cap on fires in one run-all burst.
            clock:             Epoch-ms clock; injectable for tests.
            commands:          Registry to publish create/refresh/run-now on.
        """
        self._repo = repository
        self._runner = runner
        self._tick_interval = tick_interval
        self._tz = tz
        self._max_catch_up_runs = max_catch_up_runs
        self._clock = clock or now_ms

        self.tracker = RunTracker(runner, repository, clock=self._clock)
        self.commands = commands or CommandRegistry()

        self._ticker: Optional[asyncio.Task] = None
        self._tick_tasks: set[asyncio.Task] = set()
        self._subscriptions: list[Subscription] = []
        self._refresh_listeners: list[Callable[[], Any]] = []

    # ── Factory ───────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(
        cls, settings, repository: AutomationRepository, runner: AgentRunner,
    ) -> "AutomationScheduler":
        return cls(
            repository,
            runner,
            tick_interval=settings.scheduler.tick_interval_seconds,
            tz=settings.tzinfo,
            max_catch_up_runs=settings.scheduler.max_catch_up_runs,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    def activate(self) -> list[Subscription]:
        """
        Subscribe to runner status changes and register the command surface.
        Idempotent; start() calls it.
        """
        if self._subscriptions:
            return list(self._subscriptions)
        self._subscriptions = [
            self.tracker.attach(),
            self.commands.register("create", self._cmd_create),
            self.commands.register("refresh", self._cmd_refresh),
            self.commands.register("run-now", self.run_now),
        ]
        return list(self._subscriptions)

    async def start(self) -> None:
        """Start the tick loop. Non-blocking; a second call is a no-op."""
        if self.running:
            log.warning("scheduler.already_running")
            return
        self.activate()
        self._ticker = asyncio.create_task(self._tick_loop(), name="scheduler:ticker")
        log.info("scheduler.started", tick_interval=self._tick_interval)

    async def stop(self) -> None:
        """Stop future ticks and dispose subscriptions. In-flight ticks continue."""
        if self._ticker is not None:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None
        for sub in self._subscriptions:
            sub.dispose()
        self._subscriptions = []
        log.info("scheduler.stopped", in_flight_ticks=len(self._tick_tasks))

    async def wait_idle(self) -> None:
        """Wait for in-flight ticks and completion handlers to finish."""
        while self._tick_tasks:
            await asyncio.gather(*list(self._tick_tasks), return_exceptions=True)
        await self.tracker.drain()

    # ── Tick loop ─────────────────────────────────────────────────────────────

    async def _tick_loop(self) -> None:
        log.info("scheduler.tick_loop.started")
        while True:
            await asyncio.sleep(self._tick_interval)
            task = asyncio.create_task(self._tick_safely(), name="scheduler:tick")
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)

    async def _tick_safely(self) -> None:
        try:
            await self.tick()
        except Exception as e:
            log.error("scheduler.tick.error", error=f"{type(e).__name__}: {e}", exc_info=True)

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._clock() / 1000, tz=self._tz)

    async def tick(self, now: Optional[datetime] = None) -> int:
        """
        Evaluate every enabled automation once against `now`.

        Returns the number of runs actually spawned.
        """
        now = now or self.now()
        automations = await self._repo.list_automations()
        log.debug("scheduler.tick.start", automations=len(automations), now=now.isoformat())

        fired = 0
        for auto in automations:
            if not auto.enabled:
                continue
            bind_automation(auto.id)
            try:
                fired += await self._evaluate(auto, now)
            except Exception as e:
                log.error(
                    "scheduler.automation_error",
                    error=f"{type(e).__name__}: {e}",
                    exc_info=True,
                )
            finally:
                clear_automation()

        if fired:
            log.info("scheduler.tick.fired", runs=fired)
        return fired

    async def _evaluate(self, auto: Automation, now: datetime) -> int:
        policy = auto.missed_run_policy or MissedRunPolicy.IGNORE

        if policy is not MissedRunPolicy.IGNORE and auto.last_run_at is not None:
            last = self._as_datetime(auto.last_run_at, now)
            missed = count_missed_fire_times(auto.cron_expression, last, now)
            if missed > 0:
                burst = 1 if policy is MissedRunPolicy.RUN_ONCE else min(missed, self._max_catch_up_runs)
                log.info("scheduler.catch_up", policy=policy.value, missed=missed, runs=burst)
                fired = 0
                for _ in range(burst):
                    if await self.tracker.fire(auto):
                        fired += 1
                return fired

        if not matches_cron(auto.cron_expression, now):
            return 0

        if auto.last_run_at is not None and same_minute(self._as_datetime(auto.last_run_at, now), now):
            log.debug("scheduler.same_minute_skip")
            return 0

        return 1 if await self.tracker.fire(auto) else 0

    @staticmethod
    def _as_datetime(ms: int, like: datetime) -> datetime:
        """Epoch ms in the same timezone (or naive local time) as `like`."""
        return datetime.fromtimestamp(ms / 1000, tz=like.tzinfo)

    # ── Manual fire ───────────────────────────────────────────────────────────

    async def run_now(self, automation_id: Optional[str] = None) -> Optional[str]:
        """
        Fire one automation immediately, whether or not it is enabled.

        Bypasses the cron match and the same-minute guard. Returns the run
        id, or None if the id is missing/unknown or the spawn failed.
        """
        if not automation_id:
            return None
        auto = await self._repo.get_automation(automation_id)
        if auto is None:
            log.warning("scheduler.run_now.not_found", automation_id=automation_id)
            return None
        log.info("scheduler.run_now", automation_id=automation_id, enabled=auto.enabled)
        return await self.tracker.fire(auto)

    # ── Commands ──────────────────────────────────────────────────────────────

    def add_refresh_listener(self, listener: Callable[[], Any]) -> Subscription:
        self._refresh_listeners.append(listener)

        def _remove() -> None:
            if listener in self._refresh_listeners:
                self._refresh_listeners.remove(listener)

        return Subscription(_remove)

    async def _cmd_create(self) -> Automation:
        return await self._repo.create_automation()

    async def _cmd_refresh(self) -> None:
        for listener in list(self._refresh_listeners):
            result = listener()
            if asyncio.iscoroutine(result):
                await result
