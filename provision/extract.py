"""Extract archives."""

from __future__ import annotations

import os
import tarfile
import zipfile
from pathlib import Path
from typing import Literal

from .errors import ExtractError

ArchiveType = Literal["tar", "tar.gz", "tar.bz2", "tar.xz", "zip"]

# Magic numbers for the supported archive types
_HEADERS: list[tuple[bytes, ArchiveType]] = [
    (b"\x1f\x8b", "tar.gz"),
    (b"BZh", "tar.bz2"),
    (b"\xfd7zXZ\x00", "tar.xz"),
    (b"PK\x03\x04", "zip"),
]

_SUFFIXES: list[tuple[tuple[str, ...], ArchiveType]] = [
    ((".tar.gz", ".tgz"), "tar.gz"),
    ((".tar.bz2", ".tbz2", ".tbz"), "tar.bz2"),
    ((".tar.xz", ".txz"), "tar.xz"),
    ((".zip",), "zip"),
    ((".tar",), "tar"),
]


def detect_archive_type(archive_path: Path) -> ArchiveType:
    """Determine the archive type from its header, then from its name."""
    with open(archive_path, "rb") as f:
        header = f.read(6)
    for magic, archive_type in _HEADERS:
        if header.startswith(magic):
            return archive_type

    name = archive_path.name.lower()
    for suffixes, archive_type in _SUFFIXES:
        if name.endswith(suffixes):
            return archive_type

    msg = f"Unsupported archive format: {archive_path}"
    raise ExtractError(msg)


def _is_within(directory: Path, target: Path) -> bool:
    directory = directory.resolve()
    return os.path.commonpath([directory, target.resolve()]) == str(directory)


def _extract_tar(archive_path: Path, dest_dir: Path, mode: str) -> None:
    with tarfile.open(archive_path, mode=mode) as tar:
        for member in tar.getmembers():
            if not _is_within(dest_dir, dest_dir / member.name):
                msg = f"Refusing to extract {member.name} outside {dest_dir}"
                raise ExtractError(msg)
        if hasattr(tarfile, "data_filter"):
            tar.extractall(path=dest_dir, filter="tar")
        else:  # pragma: no cover
            tar.extractall(path=dest_dir)  # noqa: S202


def _extract_zip(archive_path: Path, dest_dir: Path) -> None:
    with zipfile.ZipFile(archive_path) as zip_file:
        for info in zip_file.infolist():
            target = dest_dir / info.filename
            if not _is_within(dest_dir, target):
                msg = f"Refusing to extract {info.filename} outside {dest_dir}"
                raise ExtractError(msg)
            zip_file.extract(info, path=dest_dir)
            # zipfile drops permission bits; restore them from the external attributes
            mode = (info.external_attr >> 16) & 0o777
            if mode and not info.is_dir():
                target.chmod(mode)


def extract_archive(archive_path: Path, dest_dir: Path) -> None:
    """Extract every member of an archive into ``dest_dir``."""
    archive_type = detect_archive_type(archive_path)
    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        if archive_type == "zip":
            _extract_zip(archive_path, dest_dir)
        else:
            mode = {"tar": "r:", "tar.gz": "r:gz", "tar.bz2": "r:bz2", "tar.xz": "r:xz"}[archive_type]
            _extract_tar(archive_path, dest_dir, mode)
    except (tarfile.TarError, zipfile.BadZipFile, EOFError, OSError) as e:
        msg = f"Failed to extract {archive_path.name}: {e}"
        raise ExtractError(msg) from e
