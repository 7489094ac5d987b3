"""Utility functions for provision."""

from __future__ import annotations

import getpass
import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import NamedTuple

from rich.console import Console
from rich.markup import escape

# Initialize rich console
console = Console()
logger = logging.getLogger(__name__)

_VERBOSE = False

_LEVEL_STYLES = {
    "debug": "dim",
    "info": "blue",
    "success": "green",
    "warning": "yellow",
    "error": "bold red",
}


def setup_logging(verbose: bool = False) -> None:  # noqa: FBT001, FBT002
    """Configure logging level based on verbosity."""
    global _VERBOSE
    _VERBOSE = verbose
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


def is_verbose() -> bool:
    """Return whether verbose output was requested."""
    return _VERBOSE


def log(message: str, level: str = "info", emoji: str = "") -> None:
    """Print a styled message to the console."""
    if level == "debug" and not _VERBOSE:
        return
    style = _LEVEL_STYLES.get(level, "")
    prefix = f"{emoji} " if emoji else ""
    message = escape(message)
    console.print(f"{prefix}[{style}]{message}[/{style}]" if style else f"{prefix}{message}")


class CommandResult(NamedTuple):
    """Outcome of an external command."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command(self) -> str:
        return " ".join(self.argv)

    def output(self) -> str:
        """Return stdout, or stderr when stdout is empty."""
        return self.stdout.strip() or self.stderr.strip()


class CommandRunner:
    """Run external commands synchronously, adding sudo where needed.

    Missing executables report exit code 127 and timeouts report 124,
    the same codes a shell would use, so callers only ever look at
    ``returncode``.
    """

    def __init__(
        self,
        *,
        timeout: float | None = 1800,
        use_sudo: bool | None = None,
    ) -> None:
        self.timeout = timeout
        self.use_sudo = needs_sudo() if use_sudo is None else use_sudo

    def run(
        self,
        argv: list[str] | tuple[str, ...],
        *,
        privileged: bool = False,
        input: str | bytes | None = None,  # noqa: A002
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run ``argv`` and wait for it to exit."""
        cmd = list(argv)
        if privileged and self.use_sudo:
            cmd = ["sudo", *cmd]
        log(f"$ {' '.join(cmd)}", "debug")
        text = not isinstance(input, bytes)
        try:
            proc = subprocess.run(  # noqa: S603
                cmd,
                input=input,
                capture_output=True,
                text=text,
                env=env,
                timeout=timeout or self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            return CommandResult(tuple(cmd), 127, "", str(e))
        except subprocess.TimeoutExpired:
            return CommandResult(tuple(cmd), 124, "", f"timed out: {' '.join(cmd)}")

        stdout, stderr = proc.stdout or "", proc.stderr or ""
        if not text:
            stdout = stdout.decode(errors="replace")
            stderr = stderr.decode(errors="replace")
        return CommandResult(tuple(cmd), proc.returncode, stdout, stderr)


def needs_sudo() -> bool:
    """Return True when privileged commands must go through sudo."""
    if not hasattr(os, "geteuid"):  # pragma: no cover
        return False
    return os.geteuid() != 0 and shutil.which("sudo") is not None


def command_exists(name: str, path: str | None = None) -> bool:
    """Check whether ``name`` resolves to an executable on ``path``."""
    return shutil.which(name, path=path) is not None


def current_platform() -> tuple[str, str]:
    """Detect the current platform and architecture."""
    platform = "linux"
    if sys.platform == "darwin":
        platform = "macos"

    arch = "amd64"
    machine = os.uname().machine.lower()
    if machine in ["arm64", "aarch64"]:
        arch = "arm64"

    return platform, arch


def current_user() -> str:
    """Return the invoking user, looking through sudo."""
    return os.environ.get("SUDO_USER") or getpass.getuser()


def write_file(
    path: Path,
    content: str,
    runner: CommandRunner,
    mode: int | None = None,
) -> None:
    """Write ``content`` to ``path``, going through sudo if the directory is not writable."""
    parent = path.parent
    if _writable_dir(parent):
        parent.mkdir(parents=True, exist_ok=True)
        tmp = parent / f".{path.name}.tmp"
        tmp.write_text(content)
        if mode is not None:
            tmp.chmod(mode)
        os.replace(tmp, path)
        return

    for argv, stdin in (
        (["mkdir", "-p", str(parent)], None),
        (["tee", str(path)], content),
        *([(["chmod", f"{mode:o}", str(path)], None)] if mode is not None else []),
    ):
        result = runner.run(argv, privileged=True, input=stdin)
        if not result.ok:
            msg = f"Failed to write {path}: {result.output()}"
            raise OSError(msg)


def _writable_dir(directory: Path) -> bool:
    """Return True if ``directory`` (or its nearest existing parent) is writable."""
    probe = directory
    while not probe.exists():
        if probe.parent == probe:
            return False
        probe = probe.parent
    return os.access(probe, os.W_OK)
