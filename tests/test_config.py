from __future__ import annotations

import pytest
from pydantic import ValidationError

from vscode_test_web.config import RunnerSettings, load_settings


def test_environment_overrides_defaults(monkeypatch) -> None:
    monkeypatch.setenv("VSCODE_TEST_WEB_PORT", "4100")
    monkeypatch.setenv("VSCODE_TEST_WEB_DEBUGGER_READY_TIMEOUT", "30")

    settings = RunnerSettings()

    assert settings.port == 4100
    assert settings.host == "localhost"
    assert settings.debugger_ready_timeout == 30.0


def test_update_url_is_normalised() -> None:
    settings = RunnerSettings(update_url="https://mirror.example.com/vscode/")

    assert settings.update_url == "https://mirror.example.com/vscode"


@pytest.mark.parametrize(
    "overrides",
    [
        {"update_url": "ftp://mirror.example.com"},
        {"port": 70000},
        {"download_timeout": 0},
    ],
)
def test_invalid_settings_are_rejected(overrides) -> None:
    with pytest.raises(ValidationError):
        RunnerSettings(**overrides)


def test_load_settings_is_cached(monkeypatch) -> None:
    load_settings.cache_clear()
    monkeypatch.setenv("VSCODE_TEST_WEB_HOST", "127.0.0.1")
    try:
        first = load_settings()
        monkeypatch.setenv("VSCODE_TEST_WEB_HOST", "0.0.0.0")
        assert load_settings() is first
        assert first.host == "127.0.0.1"
    finally:
        load_settings.cache_clear()
