"""Host side of the page-to-host signaling channel.

The workbench's test runner reports through two functions exposed on the
browser context: ``codeAutomationLog(level, args)`` for console output and
``codeAutomationExit(code)`` once the test suite has finished. Page lifecycle
events are tracked alongside so a session whose last window was closed by the
user can be shut down.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .errors import SessionError, TestFailure

LOGGER = logging.getLogger(__name__)
PAGE_LOGGER = logging.getLogger("vscode_test_web.page")

LOG_BINDING = "codeAutomationLog"
EXIT_BINDING = "codeAutomationExit"

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "log": logging.INFO,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class CompletionSignal:
    """Single-fire outcome of a session."""

    def __init__(self) -> None:
        self._future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        # A failure nobody waits for (e.g. after disposal) must not be reported
        # as an unretrieved exception.
        self._future.add_done_callback(_mark_retrieved)

    @property
    def resolved(self) -> bool:
        return self._future.done()

    def succeed(self) -> bool:
        """Resolve with success. Returns ``False`` if already resolved."""

        if self._future.done():
            return False
        self._future.set_result(None)
        return True

    def fail(self, error: SessionError) -> bool:
        """Resolve with *error*. Returns ``False`` if already resolved."""

        if self._future.done():
            return False
        self._future.set_exception(error)
        return True

    def outcome(self) -> SessionError | None:
        if not self._future.done():
            raise RuntimeError("Completion signal has not been resolved yet")
        return self._future.exception()  # type: ignore[return-value]

    async def wait(self) -> None:
        """Wait for the outcome; raises the failure if there was one."""

        await asyncio.shield(self._future)


def _mark_retrieved(future: asyncio.Future[None]) -> None:
    if not future.cancelled():
        future.exception()


def outcome_for_exit_code(code: int, signal: CompletionSignal) -> bool:
    if code == 0:
        return signal.succeed()
    return signal.fail(TestFailure(code))


class SignalingBridge:
    """Handler table for the functions exposed to the page."""

    def __init__(
        self,
        *,
        on_exit: Callable[[int], None],
        page_logger: logging.Logger | None = None,
    ) -> None:
        self._on_exit = on_exit
        self._page_logger = page_logger or PAGE_LOGGER
        self.exit_code: int | None = None

    @property
    def exited(self) -> bool:
        return self.exit_code is not None

    @property
    def handlers(self) -> dict[str, Callable[..., Any]]:
        return {LOG_BINDING: self.log, EXIT_BINDING: self.exit}

    async def install(self, context: Any) -> None:
        """Expose every handler on *context*; must finish before navigation."""

        for name, handler in self.handlers.items():
            await context.expose_function(name, handler)

    def log(self, level: str, args: Any = None) -> None:
        if args is None:
            values: list[Any] = []
        elif isinstance(args, (list, tuple)):
            values = list(args)
        else:
            values = [args]
        message = " ".join(value if isinstance(value, str) else repr(value) for value in values)
        self._page_logger.log(_LOG_LEVELS.get(str(level).lower(), logging.INFO), message)

    def exit(self, code: Any) -> None:
        if self.exit_code is not None:
            LOGGER.debug("Ignoring repeated exit signal %r", code)
            return
        try:
            self.exit_code = int(code)
        except (TypeError, ValueError):
            LOGGER.error("Page reported a non-numeric exit code %r", code)
            self.exit_code = 1
        self._on_exit(self.exit_code)


class PageTracker:
    """Count the open pages of a context and report when none are left."""

    def __init__(self, on_last_page_closed: Callable[[], None]) -> None:
        self._on_last_page_closed = on_last_page_closed
        self.open_pages = 0

    def attach(self, context: Any) -> None:
        context.on("page", self._on_page)

    def track(self, page: Any) -> None:
        self.open_pages += 1
        page.once("close", self._on_page_closed)

    def _on_page(self, page: Any) -> None:
        self.track(page)

    def _on_page_closed(self, _page: Any = None) -> None:
        self.open_pages -= 1
        if self.open_pages == 0:
            LOGGER.debug("Last page closed")
            self._on_last_page_closed()


__all__ = [
    "CompletionSignal",
    "EXIT_BINDING",
    "LOG_BINDING",
    "PageTracker",
    "SignalingBridge",
    "outcome_for_exit_code",
]
