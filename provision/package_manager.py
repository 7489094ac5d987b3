"""Adapters over the host package managers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from .download import fetch_bytes
from .errors import (
    DownloadError,
    PackageInstallError,
    RefreshError,
    RepositoryAddError,
    UnsupportedOsError,
)
from .utils import CommandResult, CommandRunner, command_exists, log, write_file

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .os_profile import OsProfile

logger = logging.getLogger(__name__)


class PackageManagerKind(Enum):
    """Package manager families."""

    APT = "apt"
    YUM_DNF = "yum_dnf"
    PACMAN = "pacman"
    BREW = "brew"
    MANUAL = "manual"
    UNSUPPORTED = "unsupported"


DISPATCH_TABLE: dict[str, PackageManagerKind] = {
    "ubuntu": PackageManagerKind.APT,
    "debian": PackageManagerKind.APT,
    "centos": PackageManagerKind.YUM_DNF,
    "rhel": PackageManagerKind.YUM_DNF,
    "fedora": PackageManagerKind.YUM_DNF,
    "arch": PackageManagerKind.PACMAN,
    "macos": PackageManagerKind.BREW,
}


@dataclass(frozen=True)
class RepositorySpec:
    """A vendor package repository.

    Each adapter reads the fields it understands: apt uses ``key_url``,
    ``keyring`` and ``source``; yum/dnf uses ``key_url`` plus either
    ``repo_url`` or ``repo_content``; brew uses ``tap``.
    """

    name: str
    key_url: str = ""
    keyring: str = ""
    source: str = ""
    repo_url: str = ""
    repo_content: str = ""
    tap: str = ""


def kind_for_profile(profile: OsProfile) -> PackageManagerKind:
    """Map an OS profile onto a package manager kind."""
    for os_id in (profile.id, *profile.id_like):
        if os_id in DISPATCH_TABLE:
            return DISPATCH_TABLE[os_id]
    return PackageManagerKind.UNSUPPORTED


class PackageManagerAdapter:
    """Common behaviour of all package manager adapters."""

    kind: ClassVar[PackageManagerKind]
    privileged: ClassVar[bool] = True

    def __init__(self, runner: CommandRunner, network_timeout: float = 30) -> None:
        self.runner = runner
        self.network_timeout = network_timeout

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    # Manager specific commands

    def install_command(self, name: str) -> list[str]:
        raise NotImplementedError

    def query_command(self, name: str) -> list[str] | None:
        return None

    def refresh_command(self) -> list[str]:
        raise NotImplementedError

    def refresh_ok(self, result: CommandResult) -> bool:
        return result.ok

    # Operations

    def is_present(self, name: str) -> bool:
        """Return True if ``name`` is an available command or an installed package."""
        if command_exists(name):
            return True
        query = self.query_command(name)
        if query is None:
            return False
        return self.runner.run(query).ok

    def ensure_installed(self, names: Iterable[str]) -> list[str]:
        """Install every name that is not already present.

        Returns the names that were actually installed.
        """
        installed = []
        for name in names:
            if self.is_present(name):
                log(f"{name} is already installed", "debug", "✅")
                continue
            log(f"Installing {name}...", "info", "📦")
            result = self.runner.run(self.install_command(name), privileged=self.privileged)
            if not result.ok:
                logger.debug("install of %s failed: %s", name, result.stderr)
                raise PackageInstallError(name, result.returncode, result.command)
            installed.append(name)
        return installed

    def refresh(self) -> None:
        """Update the package index."""
        log(f"Refreshing {self.kind.value} package index...", "info", "🔄")
        result = self.runner.run(self.refresh_command(), privileged=self.privileged)
        if not self.refresh_ok(result):
            msg = f"Failed to refresh the {self.kind.value} package index"
            raise RefreshError(msg, result.command, result.returncode)

    def add_repository(self, spec: RepositorySpec) -> None:
        msg = f"{self.kind.value} does not support adding repository {spec.name}"
        raise RepositoryAddError(msg)

    def _checked(self, argv: list[str], what: str, *, input: str | bytes | None = None) -> None:  # noqa: A002
        result = self.runner.run(argv, privileged=self.privileged, input=input)
        if not result.ok:
            msg = f"Failed to {what}"
            raise RepositoryAddError(msg, result.command, result.returncode)

    def _fetch_key(self, spec: RepositorySpec) -> bytes:
        try:
            return fetch_bytes(spec.key_url, timeout=self.network_timeout)
        except DownloadError as e:
            msg = f"Failed to fetch signing key for {spec.name}: {e}"
            raise RepositoryAddError(msg) from e

    def _write(self, path: str, content: str, what: str) -> None:
        try:
            write_file(Path(path), content, self.runner, mode=0o644)
        except OSError as e:
            msg = f"Failed to {what}: {e}"
            raise RepositoryAddError(msg) from e


class AptAdapter(PackageManagerAdapter):
    """Debian and Ubuntu."""

    kind = PackageManagerKind.APT
    sources_dir = "/etc/apt/sources.list.d"

    def install_command(self, name: str) -> list[str]:
        return ["apt-get", "install", "-y", name]

    def query_command(self, name: str) -> list[str]:
        return ["dpkg", "-s", name]

    def refresh_command(self) -> list[str]:
        return ["apt-get", "update"]

    def add_repository(self, spec: RepositorySpec) -> None:
        """Import the signing key, write the source list and refresh."""
        log(f"Configuring APT repository {spec.name}...", "info", "🔑")
        if spec.key_url:
            key = self._fetch_key(spec)
            keyring = spec.keyring or f"/usr/share/keyrings/{spec.name}.gpg"
            self._checked(["install", "-m", "0755", "-d", str(Path(keyring).parent)], "create keyring directory")
            self._checked(["gpg", "--dearmor", "--yes", "-o", keyring], f"import key for {spec.name}", input=key)
        if not spec.source:
            msg = f"APT repository {spec.name} has no source line"
            raise RepositoryAddError(msg)
        self._write(f"{self.sources_dir}/{spec.name}.list", spec.source.strip() + "\n", f"write {spec.name} source list")
        try:
            self.refresh()
        except RefreshError as e:
            raise RepositoryAddError(e.message, e.command, e.exit_code) from e


class YumDnfAdapter(PackageManagerAdapter):
    """CentOS, RHEL and Fedora; uses dnf when available, yum otherwise."""

    kind = PackageManagerKind.YUM_DNF
    repos_dir = "/etc/yum.repos.d"

    def __init__(self, runner: CommandRunner, network_timeout: float = 30) -> None:
        super().__init__(runner, network_timeout)
        # Probed once per run.
        self.manager = "dnf" if command_exists("dnf") else "yum"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(manager={self.manager!r})"

    def install_command(self, name: str) -> list[str]:
        return [self.manager, "install", "-y", name]

    def query_command(self, name: str) -> list[str]:
        return ["rpm", "-q", name]

    def refresh_command(self) -> list[str]:
        return [self.manager, "check-update"]

    def refresh_ok(self, result: CommandResult) -> bool:
        # check-update exits 100 when updates are available
        return result.returncode in (0, 100)

    def add_repository(self, spec: RepositorySpec) -> None:
        """Import the key, then add the repository by URL or by writing a .repo file."""
        log(f"Configuring {self.manager.upper()} repository {spec.name}...", "info", "🔑")
        if spec.key_url:
            self._checked(["rpm", "--import", spec.key_url], f"import key for {spec.name}")
        if spec.repo_url:
            if self.manager == "dnf":
                argv = ["dnf", "config-manager", "--add-repo", spec.repo_url]
            else:
                argv = ["yum-config-manager", "--add-repo", spec.repo_url]
            self._checked(argv, f"add repository {spec.name}")
        elif spec.repo_content:
            self._write(f"{self.repos_dir}/{spec.name}.repo", spec.repo_content.strip() + "\n", f"write {spec.name}.repo")
        else:
            msg = f"Repository {spec.name} needs repo_url or repo_content"
            raise RepositoryAddError(msg)


class PacmanAdapter(PackageManagerAdapter):
    """Arch Linux."""

    kind = PackageManagerKind.PACMAN

    def install_command(self, name: str) -> list[str]:
        return ["pacman", "-S", "--noconfirm", "--needed", name]

    def query_command(self, name: str) -> list[str]:
        return ["pacman", "-Q", name]

    def refresh_command(self) -> list[str]:
        return ["pacman", "-Sy"]


class BrewAdapter(PackageManagerAdapter):
    """Homebrew on macOS; never runs under sudo."""

    kind = PackageManagerKind.BREW
    privileged = False

    def install_command(self, name: str) -> list[str]:
        return ["brew", "install", name]

    def query_command(self, name: str) -> list[str]:
        return ["brew", "list", "--versions", name]

    def refresh_command(self) -> list[str]:
        return ["brew", "update"]

    def add_repository(self, spec: RepositorySpec) -> None:
        if not spec.tap:
            msg = f"Homebrew repository {spec.name} needs a tap"
            raise RepositoryAddError(msg)
        self._checked(["brew", "tap", spec.tap], f"tap {spec.tap}")


class ManualAdapter(PackageManagerAdapter):
    """No package manager: prerequisites must already be on PATH."""

    kind = PackageManagerKind.MANUAL
    privileged = False

    def is_present(self, name: str) -> bool:
        return command_exists(name)

    def ensure_installed(self, names: Iterable[str]) -> list[str]:
        for name in names:
            if not self.is_present(name):
                msg = f"{name} is not installed and no package manager is available; install it manually"
                raise PackageInstallError(name, 127, f"command -v {name}", msg)
        return []

    def refresh(self) -> None:
        log("No package index to refresh", "debug")


ADAPTERS: dict[PackageManagerKind, type[PackageManagerAdapter]] = {
    PackageManagerKind.APT: AptAdapter,
    PackageManagerKind.YUM_DNF: YumDnfAdapter,
    PackageManagerKind.PACMAN: PacmanAdapter,
    PackageManagerKind.BREW: BrewAdapter,
    PackageManagerKind.MANUAL: ManualAdapter,
}


def for_profile(
    profile: OsProfile,
    runner: CommandRunner,
    network_timeout: float = 30,
) -> PackageManagerAdapter:
    """Select the adapter for ``profile``.

    Raises UnsupportedOsError when the OS has no package manager adapter;
    the caller may fall back to :func:`manual_adapter`.
    """
    kind = kind_for_profile(profile)
    if kind is PackageManagerKind.UNSUPPORTED:
        raise UnsupportedOsError(profile.id)
    return ADAPTERS[kind](runner, network_timeout)


def manual_adapter(runner: CommandRunner, network_timeout: float = 30) -> ManualAdapter:
    """Return the adapter used when no package manager is supported."""
    return ManualAdapter(runner, network_timeout)
