"""Download, extract and link functions for manually installed tools."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

import requests
from packaging.version import InvalidVersion, Version

from .errors import DownloadError, ExtractError, SymlinkError
from .extract import extract_archive
from .utils import log

if TYPE_CHECKING:
    from .utils import CommandRunner

logger = logging.getLogger(__name__)


def fetch_bytes(url: str, timeout: float = 30) -> bytes:
    """Fetch a small resource (signing key, release feed) into memory."""
    log(f"Fetching {url}", "debug", "🔍")
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        msg = f"Failed to fetch {url}: {e}"
        raise DownloadError(msg) from e
    return response.content


def fetch_json(url: str, timeout: float = 30) -> Any:
    """Fetch and decode a JSON document."""
    log(f"Fetching {url}", "debug", "🔍")
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        return response.json()
    except (requests.RequestException, ValueError) as e:
        msg = f"Failed to fetch {url}: {e}"
        raise DownloadError(msg) from e


def download_file(url: str, destination: str, timeout: float = 30) -> str:
    """Download a file from a URL to a destination path."""
    log(f"Downloading from {url}", "info", "📥")
    try:
        response = requests.get(url, stream=True, timeout=timeout)
        response.raise_for_status()

        with open(destination, "wb") as f:
            for chunk in response.iter_content(chunk_size=8192):
                f.write(chunk)
    except (requests.RequestException, OSError) as e:
        Path(destination).unlink(missing_ok=True)
        msg = f"Failed to download {url}: {e}"
        raise DownloadError(msg) from e

    if Path(destination).stat().st_size == 0:
        Path(destination).unlink()
        msg = f"Downloaded file from {url} is empty"
        raise DownloadError(msg)
    return destination


def select_latest_version(releases: list[dict]) -> str:
    """Return the highest non-prerelease version in a release feed.

    Entries look like ``{"version": "1.6.6", "is_prerelease": false}``;
    versions that do not parse are ignored.
    """
    candidates = []
    for release in releases:
        if release.get("is_prerelease", False):
            continue
        try:
            candidates.append((Version(str(release["version"])), str(release["version"])))
        except (KeyError, InvalidVersion):
            logger.debug("skipping release entry %r", release)
    if not candidates:
        msg = "No stable release found in release feed"
        raise DownloadError(msg)
    return max(candidates)[1]


def latest_version(releases_url: str, timeout: float = 30) -> str:
    """Resolve the latest stable version from a releases API."""
    releases = fetch_json(releases_url, timeout=timeout)
    if not isinstance(releases, list):
        msg = f"Unexpected release feed format from {releases_url}"
        raise DownloadError(msg)
    version = select_latest_version(releases)
    log(f"Latest version identified: {version}", "info", "🏷️")
    return version


def download_and_extract(
    url: str,
    dest_dir: Path,
    runner: CommandRunner,
    download_dir: Path | None = None,
    timeout: float = 30,
) -> None:
    """Download an archive and extract its contents into ``dest_dir``.

    The archive is unpacked into a staging directory first and copied into
    place only once extraction succeeded; temporary files are always removed.
    """
    try:
        if download_dir is not None:
            download_dir.mkdir(parents=True, exist_ok=True)
        temp_dir = Path(tempfile.mkdtemp(prefix="provision-", dir=download_dir))
    except OSError as e:
        msg = f"Cannot create a temporary directory in {download_dir}: {e}"
        raise DownloadError(msg) from e
    try:
        archive = temp_dir / (url.rstrip("/").split("/")[-1] or "download")
        download_file(url, str(archive), timeout=timeout)
        staging = temp_dir / "staging"
        extract_archive(archive, staging)
        install_tree(staging, dest_dir, runner)
        log(f"Extracted {archive.name} to {dest_dir}", "success", "📦")
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def install_tree(source: Path, dest_dir: Path, runner: CommandRunner) -> None:
    """Copy the contents of ``source`` into ``dest_dir``, using sudo if needed."""
    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        shutil.copytree(source, dest_dir, symlinks=True, dirs_exist_ok=True)
    except PermissionError:
        for argv in (["mkdir", "-p", str(dest_dir)], ["cp", "-a", f"{source}/.", str(dest_dir)]):
            result = runner.run(argv, privileged=True)
            if not result.ok:
                msg = f"Failed to install files into {dest_dir}"
                raise ExtractError(msg, result.command, result.returncode) from None
    except (shutil.Error, OSError) as e:
        msg = f"Failed to install files into {dest_dir}: {e}"
        raise ExtractError(msg) from e


def replace_symlink(src: Path, dst: Path, runner: CommandRunner) -> None:
    """Point ``dst`` at ``src``, replacing any previous link.

    Refuses to create a dangling link and will not replace a real
    file or directory.
    """
    if not src.exists():
        msg = f"Cannot link {dst} to missing {src}"
        raise SymlinkError(msg)
    if dst.exists() and not dst.is_symlink():
        msg = f"{dst} exists and is not a symlink"
        raise SymlinkError(msg)

    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        if dst.is_symlink():
            dst.unlink()
        os.symlink(src, dst)
    except PermissionError:
        for argv in (["rm", "-f", str(dst)], ["ln", "-s", str(src), str(dst)]):
            result = runner.run(argv, privileged=True)
            if not result.ok:
                msg = f"Failed to link {dst} to {src}"
                raise SymlinkError(msg, result.command, result.returncode) from None
    except OSError as e:
        msg = f"Failed to link {dst} to {src}: {e}"
        raise SymlinkError(msg) from e
    log(f"Linked {dst} -> {src}", "success", "🔗")
