"""Detect the running operating system and distribution."""

from __future__ import annotations

import dataclasses
import os
import shlex
from dataclasses import dataclass
from pathlib import Path

from .utils import CommandRunner, command_exists, log

OS_RELEASE = Path("/etc/os-release")

# Kernel names that map onto a distribution id.
_KERNEL_ALIASES = {"darwin": "macos"}


@dataclass(frozen=True)
class OsProfile:
    """Normalized identity of the host operating system."""

    id: str
    version_id: str = ""
    codename: str = ""
    id_like: tuple[str, ...] = ()

    def with_override(self, os_id: str) -> OsProfile:
        """Return a copy of this profile with a different id."""
        return dataclasses.replace(self, id=os_id.lower(), id_like=())

    def __str__(self) -> str:
        """Return a human readable description."""
        details = ", ".join(
            f"{label}: {value}"
            for label, value in (("version", self.version_id), ("codename", self.codename))
            if value
        )
        return f"{self.id} ({details})" if details else self.id


def parse_os_release(text: str) -> dict[str, str]:
    """Parse the KEY=value lines of an os-release file."""
    fields = {}
    for line in text.splitlines():
        line = line.strip()  # noqa: PLW2901
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            parts = shlex.split(value)
        except ValueError:
            parts = [value.strip("\"'")]
        fields[key.strip()] = " ".join(parts)
    return fields


def _from_os_release(path: Path) -> OsProfile | None:
    try:
        fields = parse_os_release(path.read_text())
    except OSError:
        return None
    os_id = fields.get("ID", "").lower()
    if not os_id:
        return None
    return OsProfile(
        id=os_id,
        version_id=fields.get("VERSION_ID", ""),
        codename=fields.get("VERSION_CODENAME") or fields.get("UBUNTU_CODENAME", ""),
        id_like=tuple(fields.get("ID_LIKE", "").lower().split()),
    )


def _from_lsb_release(runner: CommandRunner) -> OsProfile | None:
    if not command_exists("lsb_release"):
        return None
    values = []
    for flag in ("-is", "-rs", "-cs"):
        result = runner.run(["lsb_release", flag], timeout=10)
        values.append(result.stdout.strip() if result.ok else "")
    os_id, version_id, codename = values
    if not os_id:
        return None
    return OsProfile(id=os_id.lower(), version_id=version_id, codename=codename.lower())


def _from_kernel_name() -> OsProfile:
    try:
        kernel = os.uname().sysname.lower()
    except AttributeError:  # pragma: no cover
        kernel = ""
    return OsProfile(id=_KERNEL_ALIASES.get(kernel, kernel) or "unknown")


def resolve(
    os_release: Path = OS_RELEASE,
    runner: CommandRunner | None = None,
) -> OsProfile:
    """Detect the host OS.

    The first source that yields an id wins:

    1. ``/etc/os-release``
    2. ``lsb_release``
    3. the kernel name (``uname -s``), with no version or codename

    Never raises; the worst case is a profile with id ``unknown``.
    """
    runner = runner or CommandRunner(timeout=10)
    profile = _from_os_release(os_release) or _from_lsb_release(runner) or _from_kernel_name()
    log(f"Detected OS: {profile}", "debug", "🔍")
    return profile
