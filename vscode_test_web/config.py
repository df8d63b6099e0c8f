"""Configuration helpers for the web test runner."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RunnerSettings(BaseSettings):
    """Runtime settings, overridable through ``VSCODE_TEST_WEB_*`` variables."""

    model_config = SettingsConfigDict(env_prefix="VSCODE_TEST_WEB_", env_file=".env", extra="ignore")

    host: str = "localhost"
    port: Annotated[int, Field(ge=0, le=65535)] = 3000
    cache_dir: str = ".vscode-test-web"
    update_url: str = "https://update.code.visualstudio.com"
    download_timeout: Annotated[float, Field(gt=0.0)] = 120.0
    # ``None`` waits for an attached debugger indefinitely.
    debugger_ready_timeout: Annotated[float | None, Field(gt=0.0)] = None

    @model_validator(mode="after")
    def _validate_update_url(self) -> "RunnerSettings":
        if not self.update_url.startswith(("http://", "https://")):
            raise ValueError("update_url must be an http(s) URL")
        self.update_url = self.update_url.rstrip("/")
        return self


@lru_cache
def load_settings() -> RunnerSettings:
    """Return cached settings instance."""

    return RunnerSettings()


__all__ = ["RunnerSettings", "load_settings"]
