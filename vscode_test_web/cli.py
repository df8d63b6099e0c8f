"""Command line interface: validate arguments and run or open a session."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Sequence

from .config import RunnerSettings, load_settings
from .errors import SessionError
from .models import SUPPORTED_BROWSERS, RunOptions
from .sessions import SessionOrchestrator
from .version import __version__

LOGGER = logging.getLogger(__name__)

PACKAGE_NAME = "vscode-test-web"
QUALITIES = ("insiders", "stable")


class UsageError(Exception):
    """Raised for invalid command line input."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PACKAGE_NAME,
        description="Run VS Code for the Web extension tests in a browser.",
    )
    parser.add_argument(
        "--browserType",
        help="The browser to launch: 'chromium' | 'firefox' | 'webkit' (default: chromium)",
    )
    parser.add_argument(
        "--extensionDevelopmentPath",
        help="A path pointing to an extension under development to include",
    )
    parser.add_argument("--extensionTestsPath", help="A path to a test module to run")
    parser.add_argument(
        "--quality",
        help="'insiders' | 'stable' (default: insiders, ignored when running from sources)",
    )
    parser.add_argument("--version", help=argparse.SUPPRESS)
    parser.add_argument(
        "--sourcesPath",
        help="If provided, running from VS Code sources at the given location",
    )
    parser.add_argument("--open-devtools", action="store_true", help="Open the dev tools")
    parser.add_argument(
        "--headless",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Hide the browser. Defaults to true when an extensionTestsPath is provided",
    )
    parser.add_argument(
        "--hideServerLog",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Hide the server log. Defaults to true when an extensionTestsPath is provided",
    )
    parser.add_argument(
        "--permission",
        action="append",
        help="Permission granted in the opened browser, e.g. 'clipboard-read' (repeatable)",
    )
    parser.add_argument(
        "--folder-uri",
        help="Workspace to open VS Code on. Ignored when folderPath is provided",
    )
    parser.add_argument(
        "--extensionPath",
        action="append",
        help="A folder containing additional extensions to include (repeatable)",
    )
    parser.add_argument("--host", help="The host name the server is opened on (default: localhost)")
    parser.add_argument("--port", help="The port the server is opened on (default: 3000)")
    parser.add_argument(
        "--waitForDebugger",
        help="Expose browser debugging on this port and wait for a debugger before running tests",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print out more information, e.g. the console output of the browser",
    )
    parser.add_argument(
        "folderPath",
        nargs="?",
        help="A local folder to open VS Code on, served as a virtual file system",
    )
    return parser


def _validate_path(location: str, *, is_file: bool = False) -> str:
    resolved = os.path.abspath(location)
    if is_file:
        if not os.path.isfile(resolved):
            raise UsageError(f"'{resolved}' must be an existing file.")
    elif not os.path.isdir(resolved):
        raise UsageError(f"'{resolved}' must be an existing folder.")
    return resolved


def _validate_optional_path(location: str | None, *, is_file: bool = False) -> str | None:
    return _validate_path(location, is_file=is_file) if location else None


def _validate_browser_type(value: str | None) -> str:
    if value is None:
        return "chromium"
    if value in SUPPORTED_BROWSERS:
        return value
    raise UsageError("Invalid browser type.")


def _validate_quality(quality: str | None, version: str | None, sources_path: str | None) -> str | None:
    if version:
        LOGGER.warning("--version has been replaced by --quality")
        quality = quality or version
    if sources_path and quality:
        LOGGER.warning("Sources folder is provided as input, quality is ignored.")
        return None
    if quality is None or quality in QUALITIES:
        return quality
    if version == "sources":
        raise UsageError(
            "Instead of version=sources use 'sourcesPath' with the location of the VS Code repository."
        )
    raise UsageError("Invalid quality.")


def _validate_port(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        number = int(value)
    except ValueError:
        return None
    return number if 0 <= number <= 65535 else None


def parse_options(argv: Sequence[str] | None = None) -> RunOptions:
    """Parse and validate *argv* into :class:`RunOptions`."""

    args = build_parser().parse_args(argv)

    browser_type = _validate_browser_type(args.browserType)
    extension_tests_path = _validate_optional_path(args.extensionTestsPath, is_file=True)
    extension_development_path = _validate_optional_path(args.extensionDevelopmentPath)
    extension_paths = [_validate_path(path) for path in args.extensionPath or []] or None
    sources_path = _validate_optional_path(args.sourcesPath)
    quality = _validate_quality(args.quality, args.version, sources_path)

    folder_uri = args.folder_uri
    folder_path = None
    if args.folderPath:
        folder_path = _validate_path(args.folderPath)
        if folder_uri:
            LOGGER.warning("Local folder provided as input, ignoring 'folder-uri'")
            folder_uri = None

    hide_server_log = args.hideServerLog
    if hide_server_log is None:
        hide_server_log = extension_tests_path is not None

    return RunOptions(
        browser_type=browser_type,
        extension_development_path=extension_development_path,
        extension_tests_path=extension_tests_path,
        quality=quality,
        dev_tools=args.open_devtools,
        headless=args.headless,
        hide_server_log=hide_server_log,
        wait_for_debugger=_validate_port(args.waitForDebugger),
        folder_path=folder_path,
        folder_uri=folder_uri,
        permissions=args.permission,
        extension_paths=extension_paths,
        vscode_dev_path=sources_path,
        verbose=args.verbose,
        host=args.host,
        port=_validate_port(args.port),
    )


async def run(options: RunOptions, settings: RunnerSettings) -> int:
    """Run or open a session and return the process exit status."""

    orchestrator = SessionOrchestrator(settings)
    if options.extension_tests_path:
        try:
            await orchestrator.run_to_completion(options)
        except SessionError as exc:
            LOGGER.error("%s", exc)
            return 1
        return 0

    try:
        handle = await orchestrator.open_interactive(options)
    except SessionError as exc:
        LOGGER.error("%s", exc)
        return 1
    LOGGER.info("Opened %s, close the browser window to exit", handle.endpoint)
    try:
        await handle.wait_closed()
    finally:
        await handle.dispose()
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    print(f"{PACKAGE_NAME}: {__version__}")
    try:
        options = parse_options(argv)
    except UsageError as exc:
        print(exc)
        build_parser().print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if options.verbose else logging.INFO,
        format="%(message)s",
    )
    try:
        status = asyncio.run(run(options, load_settings()))
    except KeyboardInterrupt:
        status = 130
    sys.exit(status)


__all__ = ["UsageError", "build_parser", "main", "parse_options", "run"]
