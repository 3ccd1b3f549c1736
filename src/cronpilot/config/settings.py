"""
config/settings.py — cronpilot Runtime Settings

Merges config.yaml (defaults/structure) with environment variables and .env.
Pydantic-powered — all fields are validated and typed.

  - Field validators reject bad values at parse time (non-positive tick
    interval, unknown log level, unknown storage backend, empty runner command)
  - validate_all() performs full startup validation and raises ConfigError
    with a clear, human-readable message listing every problem found
  - load_settings() respects CRONPILOT_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from datetime import tzinfo
from pathlib import Path
from typing import Any, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_BACKENDS = {"sqlite", "memory"}
LOCAL_TIMEZONE = "local"


def resolve_timezone(name: str) -> Optional[tzinfo]:
    """
    Map a configured timezone name to a tzinfo.

    "local" (any case) returns None, meaning naive datetimes in the host's
    local time. Raises ZoneInfoNotFoundError for unknown IANA names.
    """
    if name.strip().lower() == LOCAL_TIMEZONE:
        return None
    return ZoneInfo(name.strip())


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class SchedulerConfig(BaseModel):
    tick_interval_seconds: float = 30.0
    timezone: str = LOCAL_TIMEZONE
    max_catch_up_runs: int = 10
    max_runs_per_automation: int = 50

    @field_validator("tick_interval_seconds")
    @classmethod
    def _positive_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("scheduler.tick_interval_seconds must be > 0")
        return v

    @field_validator("max_catch_up_runs")
    @classmethod
    def _positive_catch_up(cls, v: int) -> int:
        if v < 1:
            raise ValueError("scheduler.max_catch_up_runs must be >= 1")
        return v

    @field_validator("max_runs_per_automation")
    @classmethod
    def _positive_history(cls, v: int) -> int:
        if v < 1:
            raise ValueError("scheduler.max_runs_per_automation must be >= 1")
        return v


class StorageConfig(BaseModel):
    backend: str = "sqlite"
    sqlite_path: str = "./data/sqlite/cronpilot.db"

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, v: str) -> str:
        if v not in _VALID_BACKENDS:
            raise ValueError(
                f"storage.backend '{v}' is not supported. "
                f"Supported: {sorted(_VALID_BACKENDS)}"
            )
        return v


class RunnerConfig(BaseModel):
    command: List[str] = Field(default_factory=lambda: ["agent", "run"])
    working_dir: str = "./data/agent_files"
    summary_max_chars: int = 500
    completed_history: int = 100

    @field_validator("command")
    @classmethod
    def _non_empty_command(cls, v: list[str]) -> list[str]:
        if not v or not v[0].strip():
            raise ValueError(
                "runner.command must name an executable, e.g. ['agent', 'run']"
            )
        return v

    @field_validator("summary_max_chars", "completed_history")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("runner limits must be >= 1")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = True
    json_format: Optional[bool] = None

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    cronpilot runtime settings.

    Priority (highest to lowest):
      1. config.yaml sections (passed as init kwargs)
      2. Environment variables (CRONPILOT_SCHEDULER__TICK_INTERVAL_SECONDS=…)
      3. .env file
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="CRONPILOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("scheduler", mode="before")
    @classmethod
    def _coerce_scheduler(cls, v: Any) -> Any:
        return SchedulerConfig(**v) if isinstance(v, dict) else v

    @field_validator("storage", mode="before")
    @classmethod
    def _coerce_storage(cls, v: Any) -> Any:
        return StorageConfig(**v) if isinstance(v, dict) else v

    @field_validator("runner", mode="before")
    @classmethod
    def _coerce_runner(cls, v: Any) -> Any:
        return RunnerConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def tzinfo(self) -> Optional[tzinfo]:
        return resolve_timezone(self.scheduler.timezone)

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches problems that only show up against the running host
        (unknown timezone database entries, paths that resolve to directories).
        """
        errors: list[str] = []

        # ── Scheduler timezone ───────────────────────────────────────────────
        tz_name = self.scheduler.timezone
        if not tz_name.strip():
            errors.append(
                "scheduler.timezone must not be empty. Use 'local' or a tz name."
            )
        else:
            try:
                resolve_timezone(tz_name)
            except (ZoneInfoNotFoundError, ValueError):
                errors.append(
                    f"scheduler.timezone '{tz_name}' is not a known timezone. "
                    f"Use 'local' or an IANA name such as 'Europe/London'."
                )

        # ── SQLite path must be a file ───────────────────────────────────────
        if self.storage.backend == "sqlite":
            db_path = Path(self.storage.sqlite_path).expanduser()
            if db_path.is_dir():
                errors.append(
                    f"storage.sqlite_path '{self.storage.sqlite_path}' is a "
                    f"directory. Point it at a database file."
                )

        # ── Runner working dir must not be a file ────────────────────────────
        wd = Path(self.runner.working_dir).expanduser()
        if wd.exists() and not wd.is_dir():
            errors.append(
                f"runner.working_dir '{self.runner.working_dir}' exists but is "
                f"not a directory."
            )

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\ncronpilot startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"scheduler", "storage", "runner", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. CRONPILOT_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("CRONPILOT_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    resolved_path = _resolve_config_path(config_path)
    yaml_data = _load_yaml(resolved_path)

    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default config
    path on first use. Guarded by _singleton_lock against double
    initialisation.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            resolved_path = _resolve_config_path(None)
            yaml_data = _load_yaml(resolved_path)
            init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
            _singleton = Settings(**init_kwargs)
        return _singleton
