"""Orchestration of one browser test session."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from .bridge import PAGE_LOGGER, CompletionSignal, PageTracker, SignalingBridge, outcome_for_exit_code
from .browser import VIEWPORT_HEIGHT, VIEWPORT_WIDTH, BrowserLauncher, BrowserSession, build_launch_options
from .build import resolve_build
from .config import RunnerSettings, load_settings
from .errors import BrowserClosedError, BrowserCloseError, SessionError, SessionStartError
from .models import RunOptions, SessionConfig, SourcesBuild, StaticBuild
from .server import SessionServer, start_server

LOGGER = logging.getLogger(__name__)

DEBUGGER_READY_EXPRESSION = "() => '__jsDebugIsReady' in globalThis"

ServerFactory = Callable[[str, int, SessionConfig], Awaitable[SessionServer]]
BuildResolver = Callable[[RunOptions, RunnerSettings], Awaitable[StaticBuild | SourcesBuild]]


class SessionHandle:
    """The live server, browser context and page bookkeeping of one session.

    Teardown runs at most once no matter which trigger starts it: an exit
    signal from the page, the last page being closed, the context going away,
    or an explicit :meth:`dispose`.
    """

    def __init__(
        self,
        *,
        server: SessionServer,
        browser: BrowserSession,
        completion: CompletionSignal | None = None,
    ) -> None:
        self.server = server
        self.browser = browser
        self.completion = completion
        self.bridge = SignalingBridge(on_exit=self._on_exit)
        self.pages = PageTracker(self._on_last_page_closed)
        self._tasks: set[asyncio.Task[None]] = set()
        self._dispose_task: asyncio.Task[None] | None = None
        self._disposed = asyncio.Event()

    @property
    def endpoint(self) -> str:
        return self.server.endpoint

    @property
    def disposed(self) -> bool:
        return self._disposed.is_set()

    async def attach(self) -> None:
        """Install the bridge and lifecycle listeners on the context."""

        context = self.browser.context
        await self.bridge.install(context)
        self.pages.attach(context)
        context.once("close", self._on_context_closed)

    async def close_browser(self) -> None:
        try:
            await self.browser.close()
        except BrowserCloseError as exc:
            LOGGER.error("%s", exc)

    async def dispose(self) -> None:
        """Close browser and server. Repeated calls are no-ops."""

        if self._dispose_task is None:
            self._dispose_task = asyncio.create_task(self._teardown(), name="session-dispose")
        await asyncio.shield(self._dispose_task)

    async def wait_closed(self) -> None:
        """Wait until the session has been torn down by any trigger."""

        await self._disposed.wait()

    async def _teardown(self) -> None:
        try:
            await self.close_browser()
        finally:
            await self.server.close()
            self._disposed.set()
            LOGGER.debug("Session on %s disposed", self.endpoint)

    def _on_exit(self, code: int) -> None:
        LOGGER.info("Tests finished with exit code %s", code)
        self._spawn(self._finish(code), name="session-exit")

    async def _finish(self, code: int) -> None:
        try:
            await self.dispose()
        finally:
            if self.completion is not None:
                outcome_for_exit_code(code, self.completion)

    def _on_last_page_closed(self) -> None:
        self._spawn(self.close_browser(), name="session-last-page-closed")

    def _on_context_closed(self, _context: Any = None) -> None:
        self._spawn(self._after_context_closed(), name="session-context-closed")

    async def _after_context_closed(self) -> None:
        await self.dispose()
        if self.completion is not None and not self.bridge.exited:
            self.completion.fail(BrowserClosedError("Browser closed before the tests reported a result"))

    def _spawn(self, coro: Coroutine[Any, Any, None], *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        if exc := task.exception():
            LOGGER.error("Session task %s failed: %s", task.get_name(), exc)


class SessionOrchestrator:
    """Bring up server and browser for a session and drive it to its end."""

    def __init__(
        self,
        settings: RunnerSettings | None = None,
        *,
        launcher: BrowserLauncher | None = None,
        server_factory: ServerFactory = start_server,
        build_resolver: BuildResolver = resolve_build,
        platform: str | None = None,
    ) -> None:
        self._settings = settings or load_settings()
        self._launcher = launcher or BrowserLauncher()
        self._server_factory = server_factory
        self._build_resolver = build_resolver
        self._platform = platform or sys.platform

    async def session_config(self, options: RunOptions) -> SessionConfig:
        build = await self._build_resolver(options, self._settings)
        hide_server_log = True if options.hide_server_log is None else options.hide_server_log
        return SessionConfig(
            build=build,
            extension_development_path=options.extension_development_path,
            extension_tests_path=options.extension_tests_path,
            folder_uri=options.folder_uri,
            folder_mount_path=options.folder_path,
            hide_server_log=hide_server_log,
            extension_paths=tuple(options.extension_paths or ()),
        )

    async def run_to_completion(self, options: RunOptions) -> None:
        """Run the configured tests; raises :class:`TestFailure` on a non-zero exit."""

        if not options.extension_tests_path:
            raise ValueError("extension_tests_path is required to run tests")
        handle = await self._start(options, completion=True)
        try:
            await handle.completion.wait()
        except asyncio.CancelledError:
            await handle.dispose()
            raise

    async def open_interactive(self, options: RunOptions) -> SessionHandle:
        """Open the workbench and hand the running session to the caller."""

        return await self._start(options, completion=False)

    async def _start(self, options: RunOptions, *, completion: bool) -> SessionHandle:
        config = await self.session_config(options)
        host = options.host or self._settings.host
        port = self._settings.port if options.port is None else options.port

        server = await self._server_factory(host, port, config)
        try:
            browser = await self._launcher.launch(build_launch_options(options, platform=self._platform))
        except BaseException:
            await server.close()
            raise

        handle = SessionHandle(
            server=server,
            browser=browser,
            completion=CompletionSignal() if completion else None,
        )
        try:
            await handle.attach()
            await self._open_workbench(handle, options)
        except asyncio.CancelledError:
            await handle.dispose()
            raise
        except Exception as exc:
            await handle.dispose()
            if handle.bridge.exited:
                # Teardown after the exit signal closed the page under navigation.
                LOGGER.debug("Ignoring navigation error after exit: %s", exc)
                return handle
            if isinstance(exc, SessionError):
                raise
            raise SessionStartError(f"Failed to open {handle.endpoint}: {exc}") from exc
        return handle

    async def _open_workbench(self, handle: SessionHandle, options: RunOptions) -> None:
        context = handle.browser.context
        if context.pages:
            page = context.pages[0]
            handle.pages.track(page)
        else:
            page = await context.new_page()

        if options.wait_for_debugger:
            timeout = self._settings.debugger_ready_timeout
            LOGGER.info("Waiting for a debugger to attach on port %s", options.wait_for_debugger)
            await page.wait_for_function(
                DEBUGGER_READY_EXPRESSION,
                timeout=timeout * 1000 if timeout else 0,
            )
        if options.verbose:
            page.on("console", _forward_console)

        await page.set_viewport_size({"width": VIEWPORT_WIDTH, "height": VIEWPORT_HEIGHT})
        await page.goto(handle.endpoint)


def _forward_console(message: Any) -> None:
    PAGE_LOGGER.info("%s", message.text)


async def run_tests(options: RunOptions, settings: RunnerSettings | None = None) -> None:
    """Run the extension tests described by *options* in a browser."""

    await SessionOrchestrator(settings).run_to_completion(options)


async def open_session(options: RunOptions, settings: RunnerSettings | None = None) -> SessionHandle:
    """Open the workbench in a browser without running tests."""

    return await SessionOrchestrator(settings).open_interactive(options)


__all__ = ["SessionHandle", "SessionOrchestrator", "open_session", "run_tests"]
