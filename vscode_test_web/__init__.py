"""Run VS Code for the Web extension tests in a Playwright-driven browser."""

from __future__ import annotations

from typing import Any


async def run_tests(*args: Any, **kwargs: Any) -> None:  # pragma: no cover - thin wrapper
    """Import and invoke :func:`vscode_test_web.sessions.run_tests` lazily."""

    from .sessions import run_tests as _run_tests

    await _run_tests(*args, **kwargs)


async def open_session(*args: Any, **kwargs: Any):  # pragma: no cover - thin wrapper
    """Import and invoke :func:`vscode_test_web.sessions.open_session` lazily."""

    from .sessions import open_session as _open_session

    return await _open_session(*args, **kwargs)


__all__ = ["open_session", "run_tests"]
