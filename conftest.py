"""
Root conftest — isolate VOXLEDGER_* environment variables and .env loading
so Settings() in tests sees only what the test itself provides.
"""
import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Remove VOXLEDGER_* env vars for every test, disable .env file loading,
    and drop any cached Settings singleton."""
    for var in [k for k in os.environ if k.startswith("VOXLEDGER_")]:
        monkeypatch.delenv(var, raising=False)

    import voxledger.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_prefix="VOXLEDGER_",
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    settings_module.reset_settings()
    yield
    settings_module.reset_settings()
