"""HTTP server exposing the editor build and extensions to the browser."""

from __future__ import annotations

import asyncio
import contextlib
import html
import json
import logging
import socket
from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlsplit

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from .errors import ServerStartError
from .models import SessionConfig
from .version import __version__

LOGGER = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).resolve().parent
TEMPLATE_DIR = PACKAGE_ROOT / "templates"

BUILD_ROUTE = "/static/build"
DEV_EXTENSIONS_ROUTE = "/static/devextensions"
EXTENSIONS_ROUTE = "/static/extensions"
TESTS_ROUTE = "/static/tests"
MOUNT_ROUTE = "/static/mount"

SERVER_STARTUP_POLL_INTERVAL = 0.01


class MountStat(BaseModel):
    """Stat information for an entry of the mounted folder."""

    type: Literal["file", "directory"]
    ctime: float
    mtime: float
    size: int
    entries: list[tuple[str, Literal["file", "directory"]]] | None = None


class HealthResponse(BaseModel):
    status: str
    version: str


def _render_template(name: str, replacements: dict[str, str]) -> str:
    template_path = TEMPLATE_DIR / name
    template = template_path.read_text(encoding="utf-8")
    for key, value in replacements.items():
        template = template.replace(f"{{{{{key}}}}}", value)
    return template


def scan_extensions(folder: str) -> list[dict[str, Any]]:
    """Return the extensions found in the direct subfolders of *folder*."""

    extensions: list[dict[str, Any]] = []
    root = Path(folder)
    for child in sorted(root.iterdir()):
        manifest = child / "package.json"
        if not manifest.is_file():
            continue
        try:
            package_json = json.loads(manifest.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring extension %s: %s", child, exc)
            continue
        extensions.append({"extensionPath": child.name, "packageJSON": package_json})
    return extensions


def _uri(request: Request, path: str) -> dict[str, str]:
    return {"scheme": request.url.scheme, "authority": request.url.netloc, "path": path}


def _folder_uri_components(folder_uri: str) -> dict[str, str]:
    parts = urlsplit(folder_uri)
    return {"scheme": parts.scheme, "authority": parts.netloc, "path": parts.path or "/"}


def _tests_route(config: SessionConfig) -> tuple[str, str | None]:
    """Return the URL path of the tests module and the folder to mount for it, if any."""

    tests = Path(config.extension_tests_path or "")
    if config.extension_development_path:
        dev_root = Path(config.extension_development_path)
        with contextlib.suppress(ValueError):
            relative = tests.relative_to(dev_root)
            return f"{DEV_EXTENSIONS_ROUTE}/{relative.as_posix()}", None
    return f"{TESTS_ROUTE}/{tests.name}", str(tests.parent)


def workbench_configuration(config: SessionConfig, request: Request) -> dict[str, Any]:
    """Build the configuration object read by the workbench on startup."""

    payload: dict[str, Any] = {}
    folder_uri = config.workbench_folder_uri()
    if folder_uri:
        payload["folderUri"] = _folder_uri_components(folder_uri)

    additional: list[dict[str, str]] = []
    if config.extension_development_path:
        additional.append(_uri(request, DEV_EXTENSIONS_ROUTE))
    for index, folder in enumerate(config.extension_paths):
        for extension in scan_extensions(folder):
            additional.append(
                _uri(request, f"{EXTENSIONS_ROUTE}/{index}/{extension['extensionPath']}")
            )
    payload["additionalBuiltinExtensions"] = additional

    if config.extension_tests_path:
        tests_path, _ = _tests_route(config)
        payload["developmentOptions"] = {"extensionTestsPath": _uri(request, tests_path)}
    return payload


def _resolve_mount_path(root: Path, relative: str) -> Path:
    candidate = (root / relative).resolve()
    if candidate != root and root not in candidate.parents:
        raise HTTPException(status_code=404, detail="Entry not found")
    if not candidate.exists():
        raise HTTPException(status_code=404, detail="Entry not found")
    return candidate


def _stat_entry(path: Path) -> MountStat:
    info = path.stat()
    if path.is_dir():
        entries = [
            (child.name, "directory" if child.is_dir() else "file")
            for child in sorted(path.iterdir())
        ]
        return MountStat(
            type="directory",
            ctime=info.st_ctime,
            mtime=info.st_mtime,
            size=info.st_size,
            entries=entries,
        )
    return MountStat(type="file", ctime=info.st_ctime, mtime=info.st_mtime, size=info.st_size)


def create_app(config: SessionConfig) -> FastAPI:
    """Create the FastAPI application serving one session."""

    app = FastAPI(title="VS Code Test Web", version=__version__, docs_url=None, redoc_url=None)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", version=app.version)

    @app.get("/", response_class=HTMLResponse)
    async def workbench(request: Request) -> HTMLResponse:
        configuration = workbench_configuration(config, request)
        page = _render_template(
            "workbench.html",
            {
                "WORKBENCH_WEB_CONFIGURATION": html.escape(json.dumps(configuration)),
                "WORKBENCH_BUILTIN_EXTENSIONS": html.escape(json.dumps([])),
                "WORKBENCH_WEB_BASE_URL": BUILD_ROUTE,
            },
        )
        return HTMLResponse(page)

    if config.folder_mount_path:
        mount_root = Path(config.folder_mount_path).resolve()

        @app.get(MOUNT_ROUTE + "-stat/{path:path}", response_model=MountStat)
        async def mount_stat(path: str = "") -> MountStat:
            target = _resolve_mount_path(mount_root, path)
            return await asyncio.to_thread(_stat_entry, target)

        app.mount(MOUNT_ROUTE, StaticFiles(directory=str(mount_root)), name="mount")

    if config.extension_tests_path:
        _, tests_folder = _tests_route(config)
        if tests_folder is not None:
            app.mount(TESTS_ROUTE, StaticFiles(directory=tests_folder), name="tests")

    if config.extension_development_path:
        app.mount(
            DEV_EXTENSIONS_ROUTE,
            StaticFiles(directory=config.extension_development_path),
            name="devextensions",
        )
    for index, folder in enumerate(config.extension_paths):
        app.mount(
            f"{EXTENSIONS_ROUTE}/{index}",
            StaticFiles(directory=folder),
            name=f"extensions-{index}",
        )

    app.mount(BUILD_ROUTE, StaticFiles(directory=config.build.location), name="build")
    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def _bind_socket(host: str, port: int) -> socket.socket:
    try:
        family, kind, proto, _, address = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)[0]
        sock = socket.socket(family, kind, proto)
    except OSError as exc:
        raise ServerStartError(f"Cannot resolve {host}:{port}: {exc}") from exc
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(address)
    except OSError as exc:
        sock.close()
        raise ServerStartError(f"Cannot listen on {host}:{port}: {exc}") from exc
    return sock


class SessionServer:
    """A uvicorn server running as a background task of the current loop."""

    def __init__(self, app: FastAPI, *, host: str, port: int, hide_server_log: bool = True) -> None:
        self._app = app
        self.host = host
        self.port = port
        self._hide_server_log = hide_server_log
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task[None] | None = None
        self._close_task: asyncio.Task[None] | None = None

    @property
    def endpoint(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def closed(self) -> bool:
        return self._close_task is not None and self._close_task.done()

    async def start(self) -> None:
        """Bind the socket and wait until uvicorn accepts connections."""

        sock = _bind_socket(self.host, self.port)
        self._socket = sock
        self.port = sock.getsockname()[1]
        config = uvicorn.Config(
            self._app,
            log_level="warning" if self._hide_server_log else "info",
            access_log=not self._hide_server_log,
            lifespan="off",
        )
        server = _EmbeddedServer(config)
        self._server = server
        self._task = asyncio.create_task(server.serve(sockets=[sock]), name="session-server")
        while not server.started:
            if self._task.done():
                sock.close()
                exc = None if self._task.cancelled() else self._task.exception()
                raise ServerStartError(f"Server on {self.endpoint} stopped during startup: {exc}")
            await asyncio.sleep(SERVER_STARTUP_POLL_INTERVAL)
        LOGGER.info("Listening on %s", self.endpoint)

    async def close(self) -> None:
        """Stop serving. Safe to call repeatedly and concurrently."""

        if self._close_task is None:
            self._close_task = asyncio.create_task(self._shutdown(), name="session-server-close")
        await asyncio.shield(self._close_task)

    async def _shutdown(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._task is not None:
            try:
                await self._task
            except Exception as exc:
                LOGGER.warning("Server on %s exited with an error: %s", self.endpoint, exc)
        if self._socket is not None:
            self._socket.close()
        LOGGER.debug("Server on %s closed", self.endpoint)


async def start_server(host: str, port: int, config: SessionConfig) -> SessionServer:
    """Create and start the server for *config* on ``host:port``."""

    try:
        app = create_app(config)
    except RuntimeError as exc:
        raise ServerStartError(f"Cannot serve session content: {exc}") from exc
    server = SessionServer(app, host=host, port=port, hide_server_log=config.hide_server_log)
    await server.start()
    return server


__all__ = ["SessionServer", "create_app", "scan_extensions", "start_server", "workbench_configuration"]
