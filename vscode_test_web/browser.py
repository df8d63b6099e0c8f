"""Launching Playwright browsers for a test session."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import async_playwright

from .errors import BrowserCloseError, BrowserLaunchError
from .models import SUPPORTED_BROWSERS, BrowserLaunchOptions, RunOptions

LOGGER = logging.getLogger(__name__)

VIEWPORT_WIDTH = 1200
VIEWPORT_HEIGHT = 800


def build_launch_options(options: RunOptions, *, platform: str | None = None) -> BrowserLaunchOptions:
    """Derive the launch parameters for *options* on *platform*."""

    platform = platform or sys.platform
    args: list[str] = []
    if platform.startswith("linux") and options.browser_type == "chromium":
        args.append("--no-sandbox")
    if options.wait_for_debugger:
        args.append(f"--remote-debugging-port={options.wait_for_debugger}")
    return BrowserLaunchOptions(
        engine=options.browser_type,
        headless=options.effective_headless(),
        devtools=options.dev_tools,
        extra_args=tuple(args),
        permissions=tuple(options.permissions or ()),
    )


def _devtools_args(engine: str) -> list[str]:
    if engine == "chromium":
        return ["--auto-open-devtools-for-tabs"]
    if engine == "firefox":
        return ["-devtools"]
    LOGGER.warning("Developer tools cannot be opened automatically in %s", engine)
    return []


@dataclass(slots=True)
class BrowserSession:
    """A running browser together with the single context used by a session."""

    playwright: Any
    browser: Any
    context: Any
    _close_task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def closed(self) -> bool:
        return self._close_task is not None and self._close_task.done()

    @property
    def closing(self) -> bool:
        return self._close_task is not None

    async def close(self) -> None:
        """Close context, browser and driver once.

        Concurrent and repeated callers all wait for the same shutdown. A
        failure to close the browser is reported as :class:`BrowserCloseError`
        to every caller.
        """

        if self._close_task is None:
            self._close_task = asyncio.create_task(self._close(), name="browser-close")
        await asyncio.shield(self._close_task)

    async def _close(self) -> None:
        failure: Exception | None = None
        with contextlib.suppress(Exception):
            await self.context.close()
        try:
            await self.browser.close()
        except Exception as exc:
            failure = exc
        try:
            await self.playwright.stop()
        except Exception as exc:
            LOGGER.debug("Failed to stop Playwright driver: %s", exc)
        if failure is not None:
            raise BrowserCloseError(f"Error when closing browser: {failure}") from failure


class BrowserLauncher:
    """Start Playwright and open one browser context."""

    def __init__(self, *, playwright_factory: Callable[[], Any] = async_playwright) -> None:
        self._playwright_factory = playwright_factory

    async def launch(self, options: BrowserLaunchOptions) -> BrowserSession:
        if options.engine not in SUPPORTED_BROWSERS:
            raise BrowserLaunchError(f"Unsupported browser type {options.engine!r}")

        try:
            playwright = await self._playwright_factory().start()
        except Exception as exc:
            raise BrowserLaunchError(f"Failed to start Playwright: {exc}") from exc

        args = list(options.extra_args)
        if options.devtools:
            args.extend(_devtools_args(options.engine))
        try:
            browser_type = getattr(playwright, options.engine)
            browser = await browser_type.launch(headless=options.headless, args=args)
        except Exception as exc:
            await _stop_playwright(playwright)
            raise BrowserLaunchError(f"Failed to launch {options.engine}: {exc}") from exc
        LOGGER.debug("Launched %s (headless=%s) with args %s", options.engine, options.headless, args)

        try:
            context = await browser.new_context()
            if options.permissions:
                await context.grant_permissions(list(options.permissions))
        except Exception as exc:
            with contextlib.suppress(Exception):
                await browser.close()
            await _stop_playwright(playwright)
            raise BrowserLaunchError(f"Failed to create a browser context: {exc}") from exc
        return BrowserSession(playwright=playwright, browser=browser, context=context)


async def _stop_playwright(playwright: Any) -> None:
    try:
        await playwright.stop()
    except Exception as exc:
        LOGGER.debug("Failed to stop Playwright driver: %s", exc)


__all__ = [
    "BrowserLauncher",
    "BrowserSession",
    "VIEWPORT_HEIGHT",
    "VIEWPORT_WIDTH",
    "build_launch_options",
]
