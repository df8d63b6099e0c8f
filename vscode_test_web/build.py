"""Resolution of the editor build served to the browser."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import tarfile
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

import httpx

from .config import RunnerSettings
from .errors import BuildResolutionError
from .models import RunOptions, SourcesBuild, StaticBuild

LOGGER = logging.getLogger(__name__)

COMPLETE_MARKER = ".complete"
DOWNLOAD_CHUNK_SIZE = 64 * 1024


@dataclass(slots=True, frozen=True)
class BuildInfo:
    """Latest build as advertised by the update service."""

    url: str
    version: str


async def resolve_build(
    options: RunOptions,
    settings: RunnerSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> StaticBuild | SourcesBuild:
    """Return the build to serve, downloading a packaged one when needed."""

    if options.vscode_dev_path:
        return SourcesBuild(location=options.vscode_dev_path)
    quality = options.quality or options.version
    return await download_and_unzip(
        "stable" if quality == "stable" else "insider",
        settings=settings,
        transport=transport,
    )


async def download_and_unzip(
    quality: str,
    *,
    settings: RunnerSettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> StaticBuild:
    """Download the latest web build of *quality* into the cache folder.

    A previously extracted build of the same version is reused as long as its
    completion marker exists; older versions of the same quality are removed
    once a newer one was extracted.
    """

    cache_dir = Path(settings.cache_dir).resolve()
    async with httpx.AsyncClient(
        timeout=settings.download_timeout,
        follow_redirects=True,
        transport=transport,
    ) as client:
        info = await _fetch_build_info(client, settings.update_url, quality)
        target = cache_dir / f"vscode-web-{quality}-{info.version}"
        if (target / COMPLETE_MARKER).exists():
            LOGGER.info("Found existing install in %s", target)
            return StaticBuild(location=str(target), quality=quality, version=info.version)

        try:
            await asyncio.to_thread(cache_dir.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise BuildResolutionError(f"Cannot create cache folder {cache_dir}: {exc}") from exc
        LOGGER.info("Downloading VS Code %s (%s) from %s", quality, info.version, info.url)
        archive = await _download(client, info.url, cache_dir)

    try:
        await asyncio.to_thread(_extract_archive, archive, target, info.url)
    except (OSError, tarfile.TarError, zipfile.BadZipFile) as exc:
        raise BuildResolutionError(f"Failed to extract {info.url}: {exc}") from exc
    finally:
        await asyncio.to_thread(_remove_file, archive)

    await asyncio.to_thread(_prune_stale_builds, cache_dir, quality, target)
    LOGGER.info("Extracted VS Code %s to %s", info.version, target)
    return StaticBuild(location=str(target), quality=quality, version=info.version)


async def _fetch_build_info(client: httpx.AsyncClient, update_url: str, quality: str) -> BuildInfo:
    url = f"{update_url}/api/update/web-standalone/{quality}/latest"
    try:
        response = await client.get(url)
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise BuildResolutionError(f"Failed to look up the latest {quality} build: {exc}") from exc
    download_url = payload.get("url")
    version = payload.get("version") or payload.get("productVersion")
    if not download_url or not version:
        raise BuildResolutionError(f"Update service returned an incomplete response for {quality}")
    return BuildInfo(url=download_url, version=str(version))


async def _download(client: httpx.AsyncClient, url: str, directory: Path) -> str:
    suffix = ".zip" if _is_zip(url) else ".tar.gz"
    try:
        fd, path = tempfile.mkstemp(prefix="vscode-web-", suffix=suffix, dir=directory)
    except OSError as exc:
        raise BuildResolutionError(f"Cannot create a download file in {directory}: {exc}") from exc
    os.close(fd)
    try:
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            with open(path, "wb") as fh:
                async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                    fh.write(chunk)
    except (httpx.HTTPError, OSError) as exc:
        await asyncio.to_thread(_remove_file, path)
        raise BuildResolutionError(f"Failed to download {url}: {exc}") from exc
    return path


def _is_zip(url: str) -> bool:
    return PurePosixPath(httpx.URL(url).path).suffix == ".zip"


def _strip_first_component(name: str) -> str | None:
    parts = PurePosixPath(name).parts[1:]
    if not parts or ".." in parts:
        return None
    return str(PurePosixPath(*parts))


def _extract_archive(archive: str, target: Path, url: str) -> None:
    if target.exists():
        shutil.rmtree(target)
    target.mkdir(parents=True)
    if _is_zip(url):
        with zipfile.ZipFile(archive) as zf:
            for info in zf.infolist():
                stripped = _strip_first_component(info.filename)
                if stripped is None:
                    continue
                destination = target / stripped
                if info.is_dir():
                    destination.mkdir(parents=True, exist_ok=True)
                    continue
                destination.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, open(destination, "wb") as dst:
                    shutil.copyfileobj(src, dst)
    else:
        with tarfile.open(archive, "r:*") as tf:
            members = []
            for member in tf.getmembers():
                stripped = _strip_first_component(member.name)
                if stripped is None:
                    continue
                member.name = stripped
                members.append(member)
            tf.extractall(target, members=members, filter="data")
    (target / COMPLETE_MARKER).write_text("", encoding="utf-8")


def _prune_stale_builds(cache_dir: Path, quality: str, keep: Path) -> None:
    for candidate in cache_dir.glob(f"vscode-web-{quality}-*"):
        if candidate == keep or not candidate.is_dir():
            continue
        LOGGER.debug("Removing outdated build %s", candidate)
        shutil.rmtree(candidate, ignore_errors=True)


def _remove_file(path: str) -> None:
    with contextlib.suppress(FileNotFoundError):
        os.remove(path)


__all__ = ["BuildInfo", "download_and_unzip", "resolve_build"]
