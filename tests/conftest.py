"""Configuration for pytest fixtures used in provision tests."""

from __future__ import annotations

import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, NamedTuple

import pytest

from provision.config import ProvisionConfig
from provision.utils import CommandResult


class Call(NamedTuple):
    argv: tuple[str, ...]
    privileged: bool
    input: str | bytes | None


class FakeRunner:
    """Records commands instead of running them.

    ``responses`` maps an argv prefix to ``(returncode, stdout)``; the
    longest matching prefix wins and anything unmatched succeeds.
    """

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self.responses: dict[tuple[str, ...], tuple[int, str]] = {}
        self.use_sudo = False
        self.timeout = None

    def run(
        self,
        argv: list[str] | tuple[str, ...],
        *,
        privileged: bool = False,
        input: str | bytes | None = None,  # noqa: A002
        env: dict[str, str] | None = None,  # noqa: ARG002
        timeout: float | None = None,  # noqa: ARG002
    ) -> CommandResult:
        argv = tuple(argv)
        self.calls.append(Call(argv, privileged, input))
        for prefix in sorted(self.responses, key=len, reverse=True):
            if argv[: len(prefix)] == prefix:
                returncode, stdout = self.responses[prefix]
                return CommandResult(argv, returncode, stdout, "")
        return CommandResult(argv, 0, "", "")

    @property
    def commands(self) -> list[str]:
        return [" ".join(call.argv) for call in self.calls]


@pytest.fixture
def fake_runner() -> FakeRunner:
    """A command runner that never executes anything."""
    return FakeRunner()


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., ProvisionConfig]:
    """Build a ProvisionConfig whose directories live under ``tmp_path``."""

    def _make_config(recipes: dict | None = None, **options: object) -> ProvisionConfig:
        data = {
            "profile_dir": str(tmp_path / "profile.d"),
            "opt_dir": str(tmp_path / "opt"),
            "download_dir": str(tmp_path / "downloads"),
            "use_sudo": False,
            "command_timeout": 60,
            **options,
        }
        if recipes:
            data["recipes"] = recipes
        return ProvisionConfig.from_dict(data)

    return _make_config


@pytest.fixture
def create_dummy_archive() -> Callable:
    r"""Create an archive file with executable files for testing.

    Returns a function that creates archive files with specified binaries.

    Usage:
        archive_path = create_dummy_archive(
            dest_path=tmp_path / "test.tar.gz",
            binary_names=["mybinary", "otherbinary"],
            archive_type="tar.gz",
            binary_content="#!/bin/sh\necho test",
            nested_dir="tool-1.0/bin",
        )
    """

    def _create_archive(
        dest_path: Path,
        binary_names: str | list[str],
        archive_type: str = "tar.gz",
        binary_content: str = "#!/usr/bin/env echo\n",
        nested_dir: str | None = None,
    ) -> Path:
        if isinstance(binary_names, str):
            binary_names = [binary_names]

        with tempfile.TemporaryDirectory() as tmp_dir:
            tmp_path = Path(tmp_dir)

            # Create nested directory if requested
            if nested_dir:
                bin_dir = tmp_path / nested_dir
                bin_dir.mkdir(exist_ok=True, parents=True)
            else:
                bin_dir = tmp_path

            created_files = []
            for binary in binary_names:
                bin_file = bin_dir / binary
                bin_file.write_text(binary_content)
                bin_file.chmod(0o755)
                created_files.append(bin_file)

            # Create the archive
            if archive_type == "tar.gz":
                with tarfile.open(dest_path, "w:gz") as tar:
                    for file_path in created_files:
                        archive_path = file_path.relative_to(tmp_path)
                        tar.add(file_path, arcname=str(archive_path))
            elif archive_type == "zip":
                with zipfile.ZipFile(dest_path, "w") as zipf:
                    for file_path in created_files:
                        archive_path = file_path.relative_to(tmp_path)
                        zipf.write(file_path, arcname=str(archive_path))
            else:  # pragma: no cover
                msg = f"Unsupported archive type: {archive_type}"
                raise ValueError(msg)

            return dest_path

    return _create_archive
