"""
Test conftest — isolate configuration environment variables so Settings()
tests are not affected by a developer's shell or CI environment.
"""
import pytest

_CONFIG_ENV_PREFIXES = (
    "UPSTREAM__",
    "GATEWAY__",
    "THROTTLE__",
    "BUS__",
    "LOGGING__",
)
_CONFIG_ENV_VARS = ["CLIENT_ID", "BRIDGE_CONFIG"]


@pytest.fixture(autouse=True)
def _clear_config_from_env(monkeypatch):
    """Remove bridge config env vars for every test so Settings() behaves
    as if only defaults are present unless the test explicitly provides them.
    Also disables .env file loading so local .env files don't leak in."""
    import os

    for var in list(os.environ):
        if var.upper().startswith(_CONFIG_ENV_PREFIXES) or var.upper() in _CONFIG_ENV_VARS:
            monkeypatch.delenv(var, raising=False)

    import config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
