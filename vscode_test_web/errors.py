"""Exception hierarchy for browser test sessions."""

from __future__ import annotations


class SessionError(Exception):
    """Base class for every error raised by a test session."""


class SessionStartError(SessionError):
    """Raised when a session could not be brought up."""


class ServerStartError(SessionStartError):
    """Raised when the session server cannot bind to the requested address."""


class BrowserLaunchError(SessionStartError):
    """Raised when the browser or its context cannot be created."""


class BuildResolutionError(SessionStartError):
    """Raised when the editor build cannot be located or downloaded."""


class BrowserCloseError(SessionError):
    """Raised by the driver when closing the browser fails."""


class BrowserClosedError(SessionError):
    """Raised when the browser goes away before the page reports an exit code."""


class TestFailure(SessionError):
    """The in-page test runner finished with a non-zero exit code."""

    __test__ = False

    def __init__(self, code: int) -> None:
        super().__init__(f"Test failed with exit code {code}")
        self.code = code


__all__ = [
    "BrowserCloseError",
    "BrowserClosedError",
    "BrowserLaunchError",
    "BuildResolutionError",
    "ServerStartError",
    "SessionError",
    "SessionStartError",
    "TestFailure",
]
