"""
tests/unit/test_repository.py — AutomationRepository + data model

Covers:
  - create / update / enable / toggle / delete
  - cron validation on create and edit
  - storage-boundary coercion of malformed blobs
  - camelCase persistence schema
  - run history prepend + cap, delete_run, has_running_run
  - mark_run monotonicity
"""

from __future__ import annotations

import re

import pytest

from cronpilot.exceptions import AutomationNotFoundError, InvalidCronExpressionError
from cronpilot.scheduler.models import (
    Automation,
    MissedRunPolicy,
    RunRecord,
    RunStatus,
    coerce_automations,
    coerce_runs,
    generate_automation_id,
)
from cronpilot.storage.memory import InMemoryStore
from cronpilot.storage.repository import AutomationRepository


class TestModels:

    def test_automation_id_shape(self):
        assert re.fullmatch(r"auto_[0-9a-z]+_[0-9a-z]{6}", generate_automation_id())

    def test_defaults(self):
        auto = Automation(id="a1")
        assert auto.name == "New Automation"
        assert auto.cron_expression == "0 * * * *"
        assert auto.enabled is False
        assert auto.missed_run_policy is MissedRunPolicy.IGNORE
        assert auto.last_run_at is None

    def test_camel_case_round_trip(self):
        auto = Automation(id="a1", cron_expression="*/5 * * * *", free_agent_mode=True,
                          missed_run_policy=MissedRunPolicy.RUN_ALL, created_at=1, last_run_at=2)
        data = auto.to_dict()
        assert data["cronExpression"] == "*/5 * * * *"
        assert data["freeAgentMode"] is True
        assert data["missedRunPolicy"] == "run-all"
        assert data["lastRunAt"] == 2
        assert Automation.from_dict(data) == auto

    def test_unknown_policy_reads_as_ignore(self):
        auto = Automation.from_dict({"id": "a1", "missedRunPolicy": "sometimes"})
        assert auto.missed_run_policy is MissedRunPolicy.IGNORE

    def test_mark_run_never_moves_backwards(self):
        auto = Automation(id="a1")
        auto.mark_run(200)
        auto.mark_run(100)
        assert auto.last_run_at == 200

    def test_run_record_round_trip(self):
        run = RunRecord(agent_id="r1", automation_id="a1", started_at=10)
        run.complete(RunStatus.FAILED, summary="bad", exit_code=3, at_ms=20)
        data = run.to_dict()
        assert data == {
            "agentId": "r1",
            "automationId": "a1",
            "startedAt": 10,
            "status": "failed",
            "summary": "bad",
            "exitCode": 3,
            "completedAt": 20,
        }
        assert RunRecord.from_dict(data) == run

    @pytest.mark.parametrize("raw", [None, {}, "automations", 42])
    def test_wrong_shape_reads_as_empty(self, raw):
        assert coerce_automations(raw) == []
        assert coerce_runs(raw) == []

    def test_bad_entries_are_dropped(self):
        autos = coerce_automations([{"id": "a1"}, {"name": "no id"}, "junk", None])
        assert [a.id for a in autos] == ["a1"]
        runs = coerce_runs([{"agentId": "r1"}, {"status": "running"}, 7])
        assert [r.agent_id for r in runs] == ["r1"]

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf"), "12", True])
    def test_unusable_timestamps_read_as_none(self, value):
        auto = Automation.from_dict({"id": "a1", "lastRunAt": value, "createdAt": value})
        assert auto.last_run_at is None
        assert auto.created_at == 0
        run = RunRecord.from_dict({"agentId": "r1", "exitCode": value, "completedAt": value})
        assert run.exit_code is None
        assert run.completed_at is None

    def test_large_finite_timestamp_is_kept(self):
        assert Automation.from_dict({"id": "a1", "lastRunAt": 1e300}).last_run_at == int(1e300)

    def test_entry_that_fails_to_load_does_not_drop_the_rest(self, monkeypatch):
        original = Automation.from_dict.__func__

        def flaky(cls, data):
            if data["id"] == "bad":
                raise OverflowError("cannot convert float infinity to integer")
            return original(cls, data)

        monkeypatch.setattr(Automation, "from_dict", classmethod(flaky))
        autos = coerce_automations([{"id": "bad"}, {"id": "good"}])
        assert [a.id for a in autos] == ["good"]


class TestAutomationCrud:

    @pytest.mark.asyncio
    async def test_create_defaults(self, repo, store):
        auto = await repo.create_automation()
        assert auto.enabled is False
        assert store.data["automations"][0]["id"] == auto.id

    @pytest.mark.asyncio
    async def test_create_with_fields(self, repo):
        auto = await repo.create_automation(
            name="Digest", cron_expression="0 9 * * 1-5", missed_run_policy="run-once",
        )
        assert auto.missed_run_policy is MissedRunPolicy.RUN_ONCE
        assert (await repo.get_automation(auto.id)).name == "Digest"

    @pytest.mark.asyncio
    async def test_create_rejects_invalid_cron(self, repo):
        with pytest.raises(InvalidCronExpressionError) as exc:
            await repo.create_automation(cron_expression="61 * * * *")
        assert "out of range" in str(exc.value)
        assert await repo.list_automations() == []

    @pytest.mark.asyncio
    async def test_create_rejects_unknown_field(self, repo):
        with pytest.raises(TypeError):
            await repo.create_automation(last_run_at=5)

    @pytest.mark.asyncio
    async def test_update(self, repo):
        auto = await repo.create_automation()
        updated = await repo.update_automation(auto.id, prompt="new", cron_expression="*/10 * * * *")
        assert updated.prompt == "new"
        stored = await repo.get_automation(auto.id)
        assert stored.cron_expression == "*/10 * * * *"

    @pytest.mark.asyncio
    async def test_update_unknown_id(self, repo):
        with pytest.raises(AutomationNotFoundError):
            await repo.update_automation("auto_missing", name="x")

    @pytest.mark.asyncio
    async def test_update_rejects_invalid_cron(self, repo):
        auto = await repo.create_automation()
        with pytest.raises(InvalidCronExpressionError):
            await repo.update_automation(auto.id, cron_expression="* * *")
        assert (await repo.get_automation(auto.id)).cron_expression == "0 * * * *"

    @pytest.mark.asyncio
    async def test_enable_disable_toggle(self, repo):
        auto = await repo.create_automation()
        assert (await repo.set_enabled(auto.id, True)).enabled is True
        assert (await repo.toggle_enabled(auto.id)).enabled is False
        assert (await repo.toggle_enabled(auto.id)).enabled is True

    @pytest.mark.asyncio
    async def test_delete_removes_history(self, repo, store):
        auto = await repo.create_automation()
        await repo.record_run(RunRecord(agent_id="r1", automation_id=auto.id, started_at=1))

        await repo.delete_automation(auto.id)

        assert await repo.list_automations() == []
        assert f"runs:{auto.id}" not in store.data

    @pytest.mark.asyncio
    async def test_delete_unknown_id(self, repo):
        with pytest.raises(AutomationNotFoundError):
            await repo.delete_automation("auto_missing")

    @pytest.mark.asyncio
    async def test_require_automation(self, repo):
        with pytest.raises(AutomationNotFoundError) as exc:
            await repo.require_automation("auto_missing")
        assert exc.value.automation_id == "auto_missing"

    @pytest.mark.asyncio
    async def test_mark_run(self, repo):
        auto = await repo.create_automation()
        assert await repo.mark_run(auto.id, 500) is True
        assert await repo.mark_run(auto.id, 300) is True
        assert (await repo.get_automation(auto.id)).last_run_at == 500
        assert await repo.mark_run("auto_missing", 1) is False

    @pytest.mark.asyncio
    async def test_corrupt_blob_reads_as_empty(self):
        repo = AutomationRepository(InMemoryStore({"automations": {"not": "a list"}}))
        assert await repo.list_automations() == []

    @pytest.mark.asyncio
    async def test_non_finite_numbers_in_store(self, repo, store):
        await store.write("automations", [
            {"id": "nan", "lastRunAt": float("nan"), "createdAt": 5},
            {"id": "big", "lastRunAt": float("inf")},
            {"id": "ok", "lastRunAt": 1000},
        ])
        autos = await repo.list_automations()
        assert [(a.id, a.last_run_at) for a in autos] == [("nan", None), ("big", None), ("ok", 1000)]


class TestRunHistory:

    @pytest.mark.asyncio
    async def test_record_run_prepends(self, repo):
        for i in range(3):
            await repo.record_run(RunRecord(agent_id=f"r{i}", automation_id="a1", started_at=i))
        assert [r.agent_id for r in await repo.list_runs("a1")] == ["r2", "r1", "r0"]

    @pytest.mark.asyncio
    async def test_record_run_caps_history(self, store):
        repo = AutomationRepository(store, max_runs=3)
        for i in range(5):
            await repo.record_run(RunRecord(agent_id=f"r{i}", automation_id="a1", started_at=i))
        assert [r.agent_id for r in await repo.list_runs("a1")] == ["r4", "r3", "r2"]

    @pytest.mark.asyncio
    async def test_delete_run(self, repo):
        await repo.record_run(RunRecord(agent_id="r1", automation_id="a1", started_at=1))
        await repo.record_run(RunRecord(agent_id="r2", automation_id="a1", started_at=2))
        remaining = await repo.delete_run("a1", "r1")
        assert [r.agent_id for r in remaining] == ["r2"]

    @pytest.mark.asyncio
    async def test_has_running_run(self, repo):
        assert await repo.has_running_run("a1") is False
        run = RunRecord(agent_id="r1", automation_id="a1", started_at=1)
        await repo.record_run(run)
        assert await repo.has_running_run("a1") is True
        run.complete(RunStatus.COMPLETED, summary=None, exit_code=0, at_ms=2)
        await repo.save_runs("a1", [run])
        assert await repo.has_running_run("a1") is False
