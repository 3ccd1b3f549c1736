"""
Root conftest — isolate CRONPILOT_* environment variables so that Settings
tests are not affected by the developer's shell or CI environment.
"""
import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_cronpilot_env(monkeypatch):
    """Remove CRONPILOT_* env vars for every test and disable .env loading
    so a local developer .env never leaks into Settings()."""
    for var in list(os.environ):
        if var.upper().startswith("CRONPILOT_"):
            monkeypatch.delenv(var, raising=False)

    import cronpilot.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_prefix="CRONPILOT_",
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
