from __future__ import annotations

import asyncio

import pytest

from vscode_test_web.browser import BrowserLauncher, build_launch_options
from vscode_test_web.errors import BrowserCloseError, BrowserLaunchError
from vscode_test_web.models import BrowserLaunchOptions, RunOptions


def test_linux_chromium_disables_sandbox() -> None:
    options = build_launch_options(RunOptions(browser_type="chromium"), platform="linux")

    assert options.extra_args == ("--no-sandbox",)


@pytest.mark.parametrize(
    ("browser_type", "platform"),
    [("chromium", "darwin"), ("chromium", "win32"), ("firefox", "linux"), ("webkit", "linux")],
)
def test_sandbox_flag_only_for_linux_chromium(browser_type, platform) -> None:
    options = build_launch_options(RunOptions(browser_type=browser_type), platform=platform)

    assert "--no-sandbox" not in options.extra_args


def test_debugger_port_is_exposed() -> None:
    options = build_launch_options(RunOptions(browser_type="firefox", wait_for_debugger=9222), platform="linux")

    assert options.extra_args == ("--remote-debugging-port=9222",)


@pytest.mark.parametrize(
    ("tests_path", "headless", "expected"),
    [
        ("/tmp/suite/index.js", None, True),
        (None, None, False),
        ("/tmp/suite/index.js", False, False),
        (None, True, True),
    ],
)
def test_headless_defaults_follow_mode(tests_path, headless, expected) -> None:
    options = build_launch_options(
        RunOptions(extension_tests_path=tests_path, headless=headless), platform="linux"
    )

    assert options.headless is expected


@pytest.mark.anyio
async def test_unknown_engine_is_rejected_before_starting_playwright(playwright, launcher) -> None:
    with pytest.raises(BrowserLaunchError, match="opera"):
        await launcher.launch(BrowserLaunchOptions(engine="opera", headless=True))

    assert playwright.started == 0


@pytest.mark.anyio
async def test_launch_creates_context_and_grants_permissions(playwright, launcher) -> None:
    session = await launcher.launch(
        BrowserLaunchOptions(
            engine="webkit",
            headless=True,
            extra_args=("--foo",),
            permissions=("clipboard-read", "clipboard-write"),
        )
    )

    assert playwright.launches == [{"engine": "webkit", "headless": True, "args": ["--foo"]}]
    assert session.context is playwright.context
    assert playwright.context.granted == [["clipboard-read", "clipboard-write"]]
    await session.close()


@pytest.mark.parametrize(
    ("engine", "expected"),
    [("chromium", ["--auto-open-devtools-for-tabs"]), ("firefox", ["-devtools"]), ("webkit", [])],
)
@pytest.mark.anyio
async def test_devtools_flag_per_engine(playwright, launcher, engine, expected) -> None:
    session = await launcher.launch(BrowserLaunchOptions(engine=engine, headless=False, devtools=True))

    assert playwright.launches[0]["args"] == expected
    await session.close()


@pytest.mark.anyio
async def test_context_failure_closes_browser_and_driver(playwright, launcher) -> None:
    playwright.fail_new_context = True

    with pytest.raises(BrowserLaunchError):
        await launcher.launch(BrowserLaunchOptions(engine="chromium", headless=True))

    assert playwright.browser.close_calls == 1
    assert playwright.stopped == 1


@pytest.mark.anyio
async def test_launch_failure_stops_driver(playwright, launcher) -> None:
    playwright.fail_launch = True

    with pytest.raises(BrowserLaunchError, match="executable not found"):
        await launcher.launch(BrowserLaunchOptions(engine="firefox", headless=True))

    assert playwright.browsers == []
    assert playwright.stopped == 1


@pytest.mark.anyio
async def test_concurrent_close_runs_once(playwright, launcher) -> None:
    session = await launcher.launch(BrowserLaunchOptions(engine="chromium", headless=True))

    await asyncio.gather(session.close(), session.close())
    await session.close()

    assert session.closed
    assert playwright.browser.close_calls == 1
    assert playwright.stopped == 1


@pytest.mark.anyio
async def test_close_failure_is_reported_to_every_caller(playwright, launcher) -> None:
    playwright.fail_close = True
    session = await launcher.launch(BrowserLaunchOptions(engine="chromium", headless=True))

    results = await asyncio.gather(session.close(), session.close(), return_exceptions=True)

    assert all(isinstance(result, BrowserCloseError) for result in results)
    assert playwright.browser.close_calls == 1
    assert playwright.stopped == 1
