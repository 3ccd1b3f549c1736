"""
runner/subprocess_runner.py — Run agent tasks as local subprocesses

Each spawn starts the configured command line with the prompt as its last
argument:

    <command...> [--model M] [--orchestrator O] [--free-agent] <prompt>

Status changes are emitted as the process starts (running) and exits
(sleeping on exit code 0, error otherwise). The summary recorded for a
completed run is the last non-empty line the process printed to stdout,
falling back to stderr, truncated to summary_max_chars.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from pathlib import Path
from typing import Optional

from cronpilot.exceptions import SpawnError
from cronpilot.observability.logger import get_logger
from cronpilot.runner.base import AgentRunner, AgentStatus, CompletedAgentInfo

log = get_logger(__name__)


def _last_line(data: bytes) -> Optional[str]:
    text = data.decode("utf-8", errors="replace")
    for line in reversed(text.splitlines()):
        if line.strip():
            return line.strip()
    return None


class SubprocessAgentRunner(AgentRunner):
    """AgentRunner backed by asyncio subprocesses."""

    def __init__(
        self,
        command: list[str],
        working_dir: str = "./data/agent_files",
        summary_max_chars: int = 500,
        completed_history: int = 100,
    ) -> None:
        super().__init__()
        if not command:
            raise ValueError("SubprocessAgentRunner needs a non-empty command")
        self._command = list(command)
        self._working_dir = Path(working_dir).expanduser()
        self._summary_max_chars = summary_max_chars
        self._completed: deque[CompletedAgentInfo] = deque(maxlen=completed_history)
        self._procs: dict[str, asyncio.subprocess.Process] = {}
        self._watchers: dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(cls, settings) -> "SubprocessAgentRunner":
        cfg = settings.runner
        return cls(
            command=cfg.command,
            working_dir=cfg.working_dir,
            summary_max_chars=cfg.summary_max_chars,
            completed_history=cfg.completed_history,
        )

    def build_argv(
        self,
        prompt: str,
        *,
        model: Optional[str] = None,
        orchestrator: Optional[str] = None,
        free_agent_mode: Optional[bool] = None,
    ) -> list[str]:
        argv = list(self._command)
        if model:
            argv += ["--model", model]
        if orchestrator:
            argv += ["--orchestrator", orchestrator]
        if free_agent_mode:
            argv.append("--free-agent")
        argv.append(prompt)
        return argv

    # ── AgentRunner ───────────────────────────────────────────────────────────

    async def spawn(
        self,
        prompt: str,
        *,
        model: Optional[str] = None,
        orchestrator: Optional[str] = None,
        free_agent_mode: Optional[bool] = None,
    ) -> str:
        argv = self.build_argv(
            prompt, model=model, orchestrator=orchestrator, free_agent_mode=free_agent_mode,
        )
        self._working_dir.mkdir(parents=True, exist_ok=True)
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._working_dir),
            )
        except OSError as exc:
            raise SpawnError(f"Failed to start {argv[0]!r}: {exc}") from exc

        run_id = f"agent_{uuid.uuid4().hex[:12]}"
        self._procs[run_id] = proc
        log.info("runner.spawned", run_id=run_id, pid=proc.pid, model=model)
        self._emit(run_id, AgentStatus.RUNNING, None)
        self._watchers[run_id] = asyncio.create_task(
            self._watch(run_id, proc), name=f"runner:watch:{run_id}",
        )
        return run_id

    async def kill(self, run_id: str) -> None:
        proc = self._procs.get(run_id)
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        log.info("runner.killed", run_id=run_id)

    def list_completed(self) -> list[CompletedAgentInfo]:
        return list(self._completed)

    # ── Introspection ─────────────────────────────────────────────────────────

    def running_ids(self) -> list[str]:
        return list(self._procs)

    async def wait(self, run_id: str) -> Optional[CompletedAgentInfo]:
        """Wait for one run to finish and return its completed info."""
        watcher = self._watchers.get(run_id)
        if watcher is not None:
            await asyncio.shield(watcher)
        return next((c for c in self._completed if c.id == run_id), None)

    async def shutdown(self) -> None:
        """Terminate every running process and wait for the watchers to settle."""
        for run_id in list(self._procs):
            await self.kill(run_id)
        if self._watchers:
            await asyncio.gather(*self._watchers.values(), return_exceptions=True)

    # ── Watcher ───────────────────────────────────────────────────────────────

    async def _watch(self, run_id: str, proc: asyncio.subprocess.Process) -> None:
        try:
            stdout, stderr = await proc.communicate()
        except Exception as e:
            log.error("runner.watch_failed", run_id=run_id, error=str(e))
            stdout, stderr = b"", str(e).encode()
        finally:
            self._procs.pop(run_id, None)
            self._watchers.pop(run_id, None)

        exit_code = proc.returncode
        summary = _last_line(stdout) or _last_line(stderr)
        if summary and len(summary) > self._summary_max_chars:
            summary = summary[: self._summary_max_chars]

        self._completed.append(CompletedAgentInfo(id=run_id, summary=summary, exit_code=exit_code))
        status = AgentStatus.SLEEPING if exit_code == 0 else AgentStatus.ERROR
        log.info("runner.exited", run_id=run_id, exit_code=exit_code, status=status.value)
        self._emit(run_id, status, AgentStatus.RUNNING)
