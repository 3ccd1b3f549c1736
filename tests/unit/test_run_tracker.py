"""
tests/unit/test_run_tracker.py — RunTracker

Covers:
  - fire(): spawn, pending index, run record, last_run_at
  - fire(): spawn failure records nothing and never raises
  - on_completion(): completed / failed mapping, summary + exit code
  - completion is exactly-once per run id
  - transitions other than running → sleeping/error are ignored
  - runner callback path via attach() + drain()
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from cronpilot.runner.base import CompletedAgentInfo
from cronpilot.scheduler.models import RunStatus
from cronpilot.scheduler.tracker import RunTracker
from tests.unit.fakes import FixedClock, to_ms, utc

START = utc(2024, 6, 10, 9, 0)
END = START + timedelta(minutes=5)


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def tracker(runner, repo, clock):
    return RunTracker(runner, repo, clock=clock)


async def _create(repo, **fields):
    return await repo.create_automation(prompt="summarise inbox", **fields)


class TestFire:

    @pytest.mark.asyncio
    async def test_records_pending_run(self, tracker, repo, runner):
        auto = await _create(repo)

        run_id = await tracker.fire(auto)

        assert run_id == "agent_1"
        assert dict(tracker.pending) == {"agent_1": auto.id}
        runs = await repo.list_runs(auto.id)
        assert len(runs) == 1
        assert runs[0].status is RunStatus.RUNNING
        assert runs[0].started_at == to_ms(START)
        assert auto.last_run_at == to_ms(START)
        assert (await repo.get_automation(auto.id)).last_run_at == to_ms(START)

    @pytest.mark.asyncio
    async def test_empty_options_become_defaults(self, tracker, repo, runner):
        auto = await _create(repo)
        await tracker.fire(auto)
        assert runner.spawned[0] == {
            "id": "agent_1",
            "prompt": "summarise inbox",
            "model": None,
            "orchestrator": None,
            "free_agent_mode": None,
        }

    @pytest.mark.asyncio
    async def test_spawn_failure_records_nothing(self, tracker, repo, runner):
        auto = await _create(repo)
        runner.fail = True

        assert await tracker.fire(auto) is None

        assert dict(tracker.pending) == {}
        assert await repo.list_runs(auto.id) == []
        assert (await repo.get_automation(auto.id)).last_run_at is None

    @pytest.mark.asyncio
    async def test_persist_failure_keeps_run_pending(self, runner, clock):
        repo = MagicMock()
        repo.record_run = AsyncMock(side_effect=OSError("read-only"))
        repo.mark_run = AsyncMock()
        tracker = RunTracker(runner, repo, clock=clock)
        auto = MagicMock(id="auto_x", prompt="p", model="", orchestrator="", free_agent_mode=False)

        assert await tracker.fire(auto) == "agent_1"
        assert "agent_1" in tracker.pending
        repo.mark_run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pending_view_is_read_only(self, tracker, repo):
        auto = await _create(repo)
        await tracker.fire(auto)
        with pytest.raises(TypeError):
            tracker.pending["x"] = "y"


class TestOnCompletion:

    @pytest.mark.asyncio
    async def test_sleeping_marks_completed(self, tracker, repo, runner, clock):
        auto = await _create(repo)
        run_id = await tracker.fire(auto)
        runner.completed.append(CompletedAgentInfo(id=run_id, summary="3 new mails", exit_code=0))
        clock.set(END)

        assert await tracker.on_completion(run_id, "sleeping", "running") is True

        run = (await repo.list_runs(auto.id))[0]
        assert run.status is RunStatus.COMPLETED
        assert run.summary == "3 new mails"
        assert run.exit_code == 0
        assert run.completed_at == to_ms(END)
        assert (await repo.get_automation(auto.id)).last_run_at == to_ms(END)
        assert run_id not in tracker.pending

    @pytest.mark.asyncio
    async def test_error_marks_failed(self, tracker, repo, runner):
        auto = await _create(repo)
        run_id = await tracker.fire(auto)
        runner.completed.append(CompletedAgentInfo(id=run_id, summary="Traceback ...", exit_code=1))

        assert await tracker.on_completion(run_id, "error", "running") is True

        run = (await repo.list_runs(auto.id))[0]
        assert run.status is RunStatus.FAILED
        assert run.exit_code == 1

    @pytest.mark.asyncio
    async def test_missing_completed_info(self, tracker, repo):
        auto = await _create(repo)
        run_id = await tracker.fire(auto)

        assert await tracker.on_completion(run_id, "sleeping", "running") is True

        run = (await repo.list_runs(auto.id))[0]
        assert run.status is RunStatus.COMPLETED
        assert run.summary is None
        assert run.exit_code is None

    @pytest.mark.asyncio
    async def test_second_delivery_is_noop(self, tracker, repo, runner, clock):
        auto = await _create(repo)
        run_id = await tracker.fire(auto)
        clock.set(END)
        assert await tracker.on_completion(run_id, "sleeping", "running") is True

        clock.set(END + timedelta(minutes=10))
        assert await tracker.on_completion(run_id, "sleeping", "running") is False

        runs = await repo.list_runs(auto.id)
        assert len(runs) == 1
        assert runs[0].completed_at == to_ms(END)
        assert (await repo.get_automation(auto.id)).last_run_at == to_ms(END)

    @pytest.mark.asyncio
    async def test_other_transitions_are_ignored(self, tracker, repo):
        auto = await _create(repo)
        run_id = await tracker.fire(auto)

        assert await tracker.on_completion(run_id, "running", None) is False
        assert await tracker.on_completion(run_id, "sleeping", None) is False
        assert await tracker.on_completion(run_id, "error", "sleeping") is False

        assert run_id in tracker.pending
        assert (await repo.list_runs(auto.id))[0].status is RunStatus.RUNNING

    @pytest.mark.asyncio
    async def test_unknown_id_is_ignored(self, tracker):
        assert await tracker.on_completion("agent_other", "sleeping", "running") is False

    @pytest.mark.asyncio
    async def test_deleted_history_still_consumes_event(self, tracker, repo):
        auto = await _create(repo)
        run_id = await tracker.fire(auto)
        await repo.save_runs(auto.id, [])

        assert await tracker.on_completion(run_id, "sleeping", "running") is True
        assert await repo.list_runs(auto.id) == []

    @pytest.mark.asyncio
    async def test_deleted_automation_keeps_list_untouched(self, tracker, repo, store):
        auto = await _create(repo)
        run_id = await tracker.fire(auto)
        await repo.delete_automation(auto.id)

        assert await tracker.on_completion(run_id, "sleeping", "running") is True
        assert await repo.list_automations() == []


class TestRunnerCallback:

    @pytest.mark.asyncio
    async def test_attach_drives_completion(self, tracker, repo, runner):
        sub = tracker.attach()
        auto = await _create(repo)
        run_id = await tracker.fire(auto)

        runner.finish(run_id, exit_code=2, summary="boom")
        runner.finish(run_id, exit_code=2, summary="boom")
        await tracker.drain()

        runs = await repo.list_runs(auto.id)
        assert runs[0].status is RunStatus.FAILED
        assert runs[0].summary == "boom"
        assert dict(tracker.pending) == {}
        sub.dispose()
        assert runner._listeners == []

    @pytest.mark.asyncio
    async def test_untracked_ids_schedule_nothing(self, tracker, runner):
        tracker.attach()
        runner.finish("agent_foreign")
        assert tracker._completion_tasks == set()
