"""Pydantic models describing a browser test session."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

BrowserType = Literal["chromium", "firefox", "webkit"]
Quality = Literal["insiders", "stable"]

SUPPORTED_BROWSERS: tuple[str, ...] = ("chromium", "firefox", "webkit")

MOUNT_FOLDER_URI = "vscode-test-web://mount"


class RunOptions(BaseModel):
    """User-facing options for running tests or opening the editor.

    ``headless`` and ``hide_server_log`` stay ``None`` unless set explicitly so
    the defaults can depend on whether ``extension_tests_path`` is given.
    ``version`` is the deprecated spelling of ``quality``.
    """

    browser_type: BrowserType = "chromium"
    extension_development_path: str | None = None
    extension_tests_path: str | None = None
    quality: Quality | None = None
    version: str | None = None
    dev_tools: bool = False
    headless: bool | None = None
    hide_server_log: bool | None = None
    wait_for_debugger: Annotated[int | None, Field(ge=0, le=65535)] = None
    folder_path: str | None = None
    folder_uri: str | None = None
    permissions: list[str] | None = None
    extension_paths: list[str] | None = None
    vscode_dev_path: str | None = None
    verbose: bool = False
    host: str | None = None
    port: Annotated[int | None, Field(ge=0, le=65535)] = None

    def effective_headless(self) -> bool:
        if self.headless is not None:
            return self.headless
        return self.extension_tests_path is not None


class StaticBuild(BaseModel):
    """A packaged editor build downloaded for a quality channel."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["packaged"] = "packaged"
    location: str
    quality: str | None = None
    version: str | None = None


class SourcesBuild(BaseModel):
    """An editor build served straight from a source checkout."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["sources"] = "sources"
    location: str


BuildDescriptor = Annotated[Union[StaticBuild, SourcesBuild], Field(discriminator="kind")]


class SessionConfig(BaseModel):
    """Everything the session server needs to serve the workbench."""

    model_config = ConfigDict(frozen=True)

    build: BuildDescriptor
    extension_development_path: str | None = None
    extension_tests_path: str | None = None
    folder_uri: str | None = None
    folder_mount_path: str | None = None
    hide_server_log: bool = True
    extension_paths: tuple[str, ...] = ()

    def workbench_folder_uri(self) -> str | None:
        if self.folder_mount_path:
            return MOUNT_FOLDER_URI
        return self.folder_uri


class BrowserLaunchOptions(BaseModel):
    """Concrete launch parameters handed to the browser driver."""

    model_config = ConfigDict(frozen=True)

    engine: str
    headless: bool
    devtools: bool = False
    extra_args: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()


__all__ = [
    "BrowserLaunchOptions",
    "BrowserType",
    "BuildDescriptor",
    "MOUNT_FOLDER_URI",
    "Quality",
    "RunOptions",
    "SUPPORTED_BROWSERS",
    "SessionConfig",
    "SourcesBuild",
    "StaticBuild",
]
