"""
scheduler/models.py — Automation and RunRecord data model

Typed views over the JSON blobs kept in the key-value store. Everything
read from storage passes through the coerce_* helpers at the boundary:
a value of the wrong shape becomes an empty list, an entry of the wrong
shape is dropped, a missing or unknown missedRunPolicy becomes IGNORE, and
a timestamp that is not a finite number reads as missing.
The persisted form keeps the camelCase keys of the stored schema.
"""

from __future__ import annotations

import math
import secrets
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, TypeVar

from cronpilot.observability.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

AUTOMATIONS_KEY = "automations"
DEFAULT_CRON = "0 * * * *"
DEFAULT_NAME = "New Automation"


def runs_key(automation_id: str) -> str:
    """Storage key holding the run history of one automation."""
    return f"runs:{automation_id}"


def now_ms() -> int:
    return int(time.time() * 1000)


class MissedRunPolicy(str, Enum):
    IGNORE = "ignore"
    RUN_ONCE = "run-once"
    RUN_ALL = "run-all"

    @classmethod
    def parse(cls, value: Any) -> "MissedRunPolicy":
        """Legacy records have no policy; anything unrecognised is IGNORE."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.IGNORE


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_ALPHABET = string.digits + string.ascii_lowercase


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def generate_automation_id() -> str:
    """auto_<ms since epoch, base36>_<6 random chars>"""
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    return f"auto_{_base36(now_ms())}_{suffix}"


def _opt_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return None


def _str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


# ─────────────────────────────────────────────────────────────────────────────
# Automation
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class Automation:
    """
    A user-defined scheduled task.

    id                Stable opaque identifier.
    cron_expression   5 space-separated fields: minute hour dom month dow.
    orchestrator      Runner-specific orchestrator name ("" = default).
    model             Model name handed to the runner ("" = default).
    free_agent_mode   Let the spawned agent act without confirmations.
    prompt            Mission text handed to the spawned task.
    missed_run_policy What to do about fires missed while not ticking.
    created_at        Epoch ms.
    last_run_at       Epoch ms of the latest fire or completion, or None.
    """
    id: str
    name: str = DEFAULT_NAME
    cron_expression: str = DEFAULT_CRON
    orchestrator: str = ""
    model: str = ""
    free_agent_mode: bool = False
    prompt: str = ""
    enabled: bool = False
    missed_run_policy: MissedRunPolicy = MissedRunPolicy.IGNORE
    created_at: int = field(default_factory=now_ms)
    last_run_at: Optional[int] = None

    def mark_run(self, at_ms: int) -> None:
        """Advance last_run_at, never moving it backwards."""
        if self.last_run_at is None or at_ms > self.last_run_at:
            self.last_run_at = at_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "cronExpression": self.cron_expression,
            "orchestrator": self.orchestrator,
            "model": self.model,
            "freeAgentMode": self.free_agent_mode,
            "prompt": self.prompt,
            "enabled": self.enabled,
            "missedRunPolicy": self.missed_run_policy.value,
            "createdAt": self.created_at,
            "lastRunAt": self.last_run_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Automation":
        return cls(
            id=str(data["id"]),
            name=_str(data.get("name"), DEFAULT_NAME),
            cron_expression=_str(data.get("cronExpression"), DEFAULT_CRON),
            orchestrator=_str(data.get("orchestrator")),
            model=_str(data.get("model")),
            free_agent_mode=bool(data.get("freeAgentMode", False)),
            prompt=_str(data.get("prompt")),
            enabled=bool(data.get("enabled", False)),
            missed_run_policy=MissedRunPolicy.parse(data.get("missedRunPolicy")),
            created_at=_opt_int(data.get("createdAt")) or 0,
            last_run_at=_opt_int(data.get("lastRunAt")),
        )


# ─────────────────────────────────────────────────────────────────────────────
# RunRecord
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class RunRecord:
    """One invocation of an Automation. agent_id is the key within its list."""
    agent_id: str
    automation_id: str
    started_at: int
    status: RunStatus = RunStatus.RUNNING
    summary: Optional[str] = None
    exit_code: Optional[int] = None
    completed_at: Optional[int] = None

    def complete(
        self,
        status: RunStatus,
        *,
        summary: Optional[str],
        exit_code: Optional[int],
        at_ms: int,
    ) -> None:
        self.status = status
        self.summary = summary
        self.exit_code = exit_code
        self.completed_at = at_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "automationId": self.automation_id,
            "startedAt": self.started_at,
            "status": self.status.value,
            "summary": self.summary,
            "exitCode": self.exit_code,
            "completedAt": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunRecord":
        try:
            status = RunStatus(data.get("status"))
        except ValueError:
            status = RunStatus.RUNNING
        summary = data.get("summary")
        return cls(
            agent_id=str(data["agentId"]),
            automation_id=_str(data.get("automationId")),
            started_at=_opt_int(data.get("startedAt")) or 0,
            status=status,
            summary=summary if isinstance(summary, str) else None,
            exit_code=_opt_int(data.get("exitCode")),
            completed_at=_opt_int(data.get("completedAt")),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Storage boundary
# ─────────────────────────────────────────────────────────────────────────────

def _coerce_list(raw: Any, key: str, build: Callable[[dict[str, Any]], T]) -> list[T]:
    if not isinstance(raw, list):
        return []
    items: list[T] = []
    for item in raw:
        if not isinstance(item, dict) or not item.get(key):
            continue
        try:
            items.append(build(item))
        except (TypeError, ValueError, OverflowError) as e:
            log.warning("storage.entry_dropped", key=key, entry_id=str(item.get(key)), error=str(e))
    return items


def coerce_automations(raw: Any) -> list[Automation]:
    return _coerce_list(raw, "id", Automation.from_dict)


def coerce_runs(raw: Any) -> list[RunRecord]:
    return _coerce_list(raw, "agentId", RunRecord.from_dict)
