from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from vscode_test_web.browser import BrowserLauncher
from vscode_test_web.config import RunnerSettings
from vscode_test_web.models import SessionConfig, StaticBuild


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _StubEmitter:
    def __init__(self) -> None:
        self._handlers: dict[str, list[tuple[Callable[..., Any], bool]]] = {}

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers.setdefault(event, []).append((handler, False))

    def once(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers.setdefault(event, []).append((handler, True))

    def emit(self, event: str, *args: Any) -> None:
        handlers = self._handlers.get(event, [])
        self._handlers[event] = [entry for entry in handlers if not entry[1]]
        for handler, _ in handlers:
            handler(*args)


class StubPage(_StubEmitter):
    def __init__(self, context: StubContext) -> None:
        super().__init__()
        self.context = context
        self.closed = False
        self.viewport: dict[str, int] | None = None
        self.waited: list[tuple[str, float | None]] = []

    async def set_viewport_size(self, size: dict[str, int]) -> None:
        self.context.events.append("viewport")
        self.viewport = size

    async def wait_for_function(self, expression: str, timeout: float | None = None) -> None:
        self.context.events.append("wait_for_function")
        self.waited.append((expression, timeout))

    async def goto(self, url: str) -> None:
        self.context.events.append(("goto", url))
        if self.context.navigate_error is not None:
            raise self.context.navigate_error
        if self.context.page_script is not None:
            result = self.context.page_script(self.context)
            if asyncio.iscoroutine(result):
                await result

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.context.pages.remove(self)
        self.emit("close", self)


class StubContext(_StubEmitter):
    def __init__(self, browser: StubBrowser) -> None:
        super().__init__()
        self.browser = browser
        self.events = browser.events
        self.page_script = browser.page_script
        self.navigate_error = browser.navigate_error
        self.pages: list[StubPage] = []
        self.bindings: dict[str, Callable[..., Any]] = {}
        self.granted: list[list[str]] = []
        self.closed = False

    async def expose_function(self, name: str, handler: Callable[..., Any]) -> None:
        self.events.append(("expose", name))
        self.bindings[name] = handler

    async def grant_permissions(self, permissions: list[str]) -> None:
        self.granted.append(permissions)

    async def new_page(self) -> StubPage:
        page = StubPage(self)
        self.pages.append(page)
        self.emit("page", page)
        return page

    def call(self, name: str, *args: Any) -> Any:
        return self.bindings[name](*args)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for page in list(self.pages):
            await page.close()
        self.emit("close", self)


class StubBrowser:
    def __init__(self, playwright: StubPlaywright) -> None:
        self.events = playwright.events
        self.page_script = playwright.page_script
        self.navigate_error = playwright.navigate_error
        self.fail_close = playwright.fail_close
        self.fail_new_context = playwright.fail_new_context
        self.contexts: list[StubContext] = []
        self.close_calls = 0

    async def new_context(self) -> StubContext:
        if self.fail_new_context:
            raise RuntimeError("context creation failed")
        context = StubContext(self)
        self.contexts.append(context)
        return context

    async def close(self) -> None:
        self.close_calls += 1
        for context in self.contexts:
            await context.close()
        if self.fail_close:
            raise RuntimeError("browser refused to close")


class StubBrowserType:
    def __init__(self, name: str, playwright: StubPlaywright) -> None:
        self.name = name
        self._playwright = playwright

    async def launch(self, *, headless: bool, args: list[str]) -> StubBrowser:
        self._playwright.launches.append({"engine": self.name, "headless": headless, "args": args})
        if self._playwright.fail_launch:
            raise RuntimeError("executable not found")
        browser = StubBrowser(self._playwright)
        self._playwright.browsers.append(browser)
        return browser


class StubPlaywright:
    def __init__(self) -> None:
        self.events: list[Any] = []
        self.launches: list[dict[str, Any]] = []
        self.browsers: list[StubBrowser] = []
        self.page_script: Callable[[StubContext], Any] | None = None
        self.navigate_error: Exception | None = None
        self.fail_launch = False
        self.fail_close = False
        self.fail_new_context = False
        self.started = 0
        self.stopped = 0
        self.chromium = StubBrowserType("chromium", self)
        self.firefox = StubBrowserType("firefox", self)
        self.webkit = StubBrowserType("webkit", self)

    @property
    def browser(self) -> StubBrowser:
        return self.browsers[-1]

    @property
    def context(self) -> StubContext:
        return self.browser.contexts[-1]

    async def start(self) -> StubPlaywright:
        self.started += 1
        return self

    async def stop(self) -> None:
        self.stopped += 1


class StubServer:
    def __init__(self, host: str, port: int, config: SessionConfig) -> None:
        self.host = host
        self.port = port
        self.config = config
        self.close_calls = 0

    @property
    def endpoint(self) -> str:
        return f"http://{self.host}:{self.port}"

    async def close(self) -> None:
        self.close_calls += 1


class StubServerFactory:
    def __init__(self) -> None:
        self.servers: list[StubServer] = []
        self.error: Exception | None = None

    async def __call__(self, host: str, port: int, config: SessionConfig) -> StubServer:
        if self.error is not None:
            raise self.error
        server = StubServer(host, port, config)
        self.servers.append(server)
        return server

    @property
    def server(self) -> StubServer:
        return self.servers[-1]


@pytest.fixture
def playwright() -> StubPlaywright:
    return StubPlaywright()


@pytest.fixture
def launcher(playwright: StubPlaywright) -> BrowserLauncher:
    return BrowserLauncher(playwright_factory=lambda: playwright)


@pytest.fixture
def server_factory() -> StubServerFactory:
    return StubServerFactory()


@pytest.fixture
def settings(tmp_path) -> RunnerSettings:
    return RunnerSettings(host="localhost", port=3000, cache_dir=str(tmp_path / "cache"))


@pytest.fixture
def build_resolver(tmp_path):
    async def _resolve(options, settings) -> StaticBuild:
        return StaticBuild(location=str(tmp_path), quality="stable", version="1.0.0")

    return _resolve
