"""Errors raised while provisioning tools."""

from __future__ import annotations


class ProvisionError(Exception):
    """Base error; carries the failing external command and its exit code."""

    def __init__(
        self,
        message: str,
        command: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        """Initialize the ProvisionError."""
        self.message = message
        self.command = command
        self.exit_code = exit_code
        super().__init__(message)

    def __str__(self) -> str:
        """Return the message with the failing command appended."""
        if self.command is None:
            return self.message
        return f"{self.message} (command: {self.command!r}, exit code {self.exit_code})"


class ConfigError(ProvisionError):
    """Invalid configuration or recipe definition."""


class UnsupportedOsError(ProvisionError):
    """No package manager adapter exists for the detected OS."""

    def __init__(self, os_id: str, message: str | None = None) -> None:
        """Initialize the UnsupportedOsError."""
        self.os_id = os_id
        super().__init__(message or f"Unsupported operating system: {os_id or 'unknown'}")


class PackageInstallError(ProvisionError):
    """The package manager failed to install a package."""

    def __init__(
        self,
        name: str,
        exit_code: int,
        command: str | None = None,
        message: str | None = None,
    ) -> None:
        """Initialize the PackageInstallError."""
        self.name = name
        super().__init__(message or f"Failed to install {name}", command, exit_code)


class RepositoryAddError(ProvisionError):
    """A package repository or signing key could not be configured."""


class RefreshError(ProvisionError):
    """The package index update failed."""


class DownloadError(ProvisionError):
    """A download failed or produced an empty file."""


class ExtractError(ProvisionError):
    """An archive could not be extracted."""


class SymlinkError(ProvisionError):
    """A stable symlink could not be replaced."""


class VerificationMissing(ProvisionError):
    """The verification command is missing or failed."""


class CommandError(ProvisionError):
    """A recipe command exited non-zero."""
