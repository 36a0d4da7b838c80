"""
Root conftest — isolate gateway environment variables so settings tests are
not affected by a real token or URL in the developer's or CI environment.
"""
import pytest

_GATEWAY_ENV_VARS = [
    "CHAT_GATEWAY_TOKEN",
    "CHAT_GATEWAY_URL",
    "OVERLAY_CHAT_CONFIG",
]


@pytest.fixture(autouse=True)
def _clear_gateway_env(monkeypatch):
    """Remove gateway env vars for every test so Settings() behaves as if
    nothing is configured unless the test provides it. Also disables .env
    file loading so a local .env never leaks a real token into tests."""
    for var in _GATEWAY_ENV_VARS:
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
