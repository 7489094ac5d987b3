"""Tests for provision.installer."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Callable
from unittest.mock import patch

import pytest

from provision import download, package_manager
from provision.config import ProvisionConfig
from provision.errors import (
    CommandError,
    DownloadError,
    PackageInstallError,
    ProvisionError,
    RefreshError,
    UnsupportedOsError,
)
from provision.installer import Installer, RecipeState
from provision.os_profile import OsProfile
from provision.package_manager import AptAdapter
from provision.utils import CommandRunner

UNKNOWN_OS = OsProfile("unknown")

FAKE_MAVEN = {
    "description": "Maven lookalike shipped as a tarball",
    "version": "3.9.6",
    "steps": {
        "any": [
            {
                "download_extract": {
                    "url": "https://example.com/apache-maven-{version}-bin.tar.gz",
                    "dest": "{opt_dir}",
                    "creates": "{opt_dir}/apache-maven-{version}",
                },
            },
            {"symlink": {"src": "{opt_dir}/apache-maven-{version}", "dst": "{opt_dir}/maven"}},
        ],
    },
    "env": [
        {
            "path": "{profile_dir}/fake-maven.sh",
            "exports": {"MAVEN_HOME": "{opt_dir}/maven", "PATH": "$MAVEN_HOME/bin:$PATH"},
        },
    ],
    "verify": "fakemvn -version",
}


def script_recipe(name: str, *, fail: bool = False) -> dict:
    """A recipe that installs a shell script printing its version."""
    steps: list[dict] = [
        {
            "write_file": {
                "path": f"{{opt_dir}}/bin/{name}",
                "content": f"#!/bin/sh\necho '{name} 1.0'\n",
                "mode": "0755",
            },
        },
    ]
    if fail:
        steps.append({"run": ["false"]})
    return {
        "steps": steps,
        "env": [{"path": f"{{profile_dir}}/{name}.sh", "exports": {"PATH": "{opt_dir}/bin:$PATH"}}],
        "verify": f"{name} --version",
    }


@pytest.fixture
def runner() -> CommandRunner:
    return CommandRunner(timeout=60, use_sudo=False)


@pytest.fixture
def fake_maven_download(create_dummy_archive) -> Callable:  # noqa: ANN001
    def _download(url: str, destination: str, timeout: float = 30) -> str:  # noqa: ARG001
        create_dummy_archive(
            Path(destination),
            "fakemvn",
            binary_content="#!/bin/sh\necho 'Apache Maven 3.9.6'\n",
            nested_dir="apache-maven-3.9.6/bin",
        )
        return destination

    return _download


def test_manual_install_then_rerun_is_idempotent(
    tmp_path: Path,
    make_config: Callable[..., ProvisionConfig],
    runner: CommandRunner,
    fake_maven_download: Callable,
) -> None:
    config = make_config({"fake-maven": FAKE_MAVEN})
    recipe = config.recipe("fake-maven")

    with patch.object(download, "download_file", side_effect=fake_maven_download) as mock_download:
        result = Installer(config, UNKNOWN_OS, None, runner).install(recipe)

    assert result.ok, result.error
    assert result.state is RecipeState.VERIFIED
    assert result.verified == "Apache Maven 3.9.6"
    assert not result.already_installed
    mock_download.assert_called_once()
    assert (tmp_path / "opt" / "maven").resolve() == (tmp_path / "opt" / "apache-maven-3.9.6").resolve()

    with patch.object(download, "download_file", side_effect=fake_maven_download) as mock_download:
        second = Installer(config, UNKNOWN_OS, None, runner).install(recipe)

    assert second.ok
    assert second.already_installed
    mock_download.assert_not_called()

    fragment = (tmp_path / "profile.d" / "fake-maven.sh").read_text()
    assert fragment.count("export PATH=") == 1
    assert f'export MAVEN_HOME="{tmp_path / "opt" / "maven"}"' in fragment
    assert os.access(tmp_path / "profile.d" / "fake-maven.sh", os.X_OK)


def test_failed_download_leaves_no_link(
    tmp_path: Path,
    make_config: Callable[..., ProvisionConfig],
    runner: CommandRunner,
) -> None:
    config = make_config({"fake-maven": FAKE_MAVEN})

    with patch.object(download, "download_file", side_effect=DownloadError("Failed to download: 404")):
        result = Installer(config, UNKNOWN_OS, None, runner).install(config.recipe("fake-maven"))

    assert result.state is RecipeState.FAILED
    assert result.failed_in is RecipeState.PREREQUISITES_CHECKED
    assert isinstance(result.error, DownloadError)
    assert not (tmp_path / "opt" / "maven").is_symlink()
    assert not (tmp_path / "profile.d" / "fake-maven.sh").exists()
    assert list((tmp_path / "downloads").iterdir()) == []


def test_batch_continues_after_failure(
    tmp_path: Path,
    make_config: Callable[..., ProvisionConfig],
    runner: CommandRunner,
) -> None:
    config = make_config(
        {
            "tool-a": script_recipe("tool-a"),
            "tool-b": script_recipe("tool-b", fail=True),
            "tool-c": script_recipe("tool-c"),
        },
    )
    installer = Installer(config, UNKNOWN_OS, None, runner)

    results = installer.install_all(config.recipe(name) for name in ("tool-a", "tool-b", "tool-c"))

    assert [result.status for result in results] == ["ok", "failed", "ok"]
    assert results[0].verified == "tool-a 1.0"
    assert results[2].verified == "tool-c 1.0"
    error = results[1].error
    assert isinstance(error, CommandError)
    assert error.exit_code == 1
    assert not (tmp_path / "profile.d" / "tool-b.sh").exists()
    assert (tmp_path / "profile.d" / "tool-c.sh").exists()


def test_missing_verification_is_a_warning(
    make_config: Callable[..., ProvisionConfig],
    runner: CommandRunner,
) -> None:
    recipe = {"steps": [{"write_file": {"path": "{opt_dir}/marker", "content": "x"}}], "verify": "provision-test-absent --version"}
    config = make_config({"absent": recipe})

    result = Installer(config, UNKNOWN_OS, None, runner).install(config.recipe("absent"))

    assert result.ok
    assert result.status == "warn"
    assert "provision-test-absent command not found" in result.warnings[0]


def test_recipe_without_verify_command(
    make_config: Callable[..., ProvisionConfig],
    runner: CommandRunner,
) -> None:
    config = make_config({"silent": {"steps": [{"write_file": {"path": "{opt_dir}/silent", "content": ""}}]}})

    result = Installer(config, UNKNOWN_OS, None, runner).install(config.recipe("silent"))

    assert result.status == "warn"
    assert result.warnings == ["silent has no verification command"]


def test_unsupported_os_without_manual_steps(make_config: Callable[..., ProvisionConfig], fake_runner) -> None:  # noqa: ANN001
    config = make_config({"apt-only": {"steps": {"apt": [{"install": ["apt-only"]}]}, "verify": "apt-only"}})

    installer = Installer.for_profile(config, OsProfile("solaris"), fake_runner)
    result = installer.install(config.recipe("apt-only"))

    assert installer.adapter is None
    assert isinstance(result.error, UnsupportedOsError)
    assert fake_runner.calls == []


def test_recipe_without_steps_for_package_manager(make_config: Callable[..., ProvisionConfig], fake_runner) -> None:  # noqa: ANN001
    config = make_config({"apt-only": {"steps": {"apt": [{"install": ["apt-only"]}]}, "verify": "apt-only"}})

    result = Installer.for_profile(config, OsProfile("arch"), fake_runner).install(config.recipe("apt-only"))

    assert isinstance(result.error, UnsupportedOsError)
    assert "pacman" in str(result.error)
    assert fake_runner.calls == []


def test_manual_prerequisite_missing(make_config: Callable[..., ProvisionConfig], runner: CommandRunner) -> None:
    config = make_config(
        {"needs-prereq": {"prerequisites": ["provision-test-missing-prereq"], "steps": [], "verify": "x"}},
    )

    result = Installer(config, UNKNOWN_OS, None, runner).install(config.recipe("needs-prereq"))

    assert isinstance(result.error, PackageInstallError)
    assert result.failed_in is RecipeState.PENDING


@pytest.fixture
def apt_installer(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    make_config: Callable[..., ProvisionConfig],
    fake_runner,  # noqa: ANN001
) -> Callable[[dict], Installer]:
    monkeypatch.setattr(package_manager, "command_exists", lambda _name, path=None: False)  # noqa: ARG005
    monkeypatch.setattr(package_manager, "fetch_bytes", lambda _url, timeout=30: b"KEY")  # noqa: ARG005
    fake_runner.responses[("dpkg", "-s")] = (1, "")

    def _installer(recipes: dict) -> Installer:
        adapter = AptAdapter(fake_runner)
        adapter.sources_dir = str(tmp_path / "sources.list.d")
        return Installer(make_config(recipes), OsProfile("ubuntu", "22.04", "jammy"), adapter, fake_runner)

    return _installer


def test_apt_recipe_flow(tmp_path: Path, apt_installer: Callable[[dict], Installer], fake_runner) -> None:  # noqa: ANN001
    recipe = {
        "prerequisites": {"apt": ["gnupg"]},
        "refresh": True,
        "steps": {
            "apt": [
                {
                    "add_repository": {
                        "name": "vendor",
                        "key_url": "https://vendor.example.com/gpg",
                        "keyring": str(tmp_path / "keyrings" / "vendor.gpg"),
                        "source": "deb https://vendor.example.com {codename} main",
                    },
                },
                {"install": ["vendor-tool"]},
            ],
        },
        "env": [{"path": "{profile_dir}/vendor.sh", "exports": {"VENDOR_HOME": "/usr/lib/vendor"}}],
        "verify": "provision-test-vendor-tool --version",
    }
    installer = apt_installer({"vendor-tool": recipe})

    result = installer.install(installer.config.recipe("vendor-tool"))

    assert result.ok, result.error
    assert [command.split()[0] for command in fake_runner.commands] == [
        "dpkg",
        "apt-get",  # install gnupg
        "apt-get",  # update
        "install",
        "gpg",
        "apt-get",  # update after adding the source
        "dpkg",
        "apt-get",  # install vendor-tool
    ]
    assert fake_runner.commands[-1] == "apt-get install -y vendor-tool"
    assert (tmp_path / "sources.list.d" / "vendor.list").read_text() == "deb https://vendor.example.com jammy main\n"
    assert (tmp_path / "profile.d" / "vendor.sh").exists()


def test_refresh_failure_is_a_warning(apt_installer: Callable[[dict], Installer], fake_runner) -> None:  # noqa: ANN001
    fake_runner.responses[("apt-get", "update")] = (100, "")
    installer = apt_installer({"tool": {"refresh": True, "steps": {"apt": [{"install": ["tool"]}]}, "verify": ""}})

    result = installer.install(installer.config.recipe("tool"))

    assert result.ok
    assert any("refresh" in warning for warning in result.warnings)
    assert "apt-get install -y tool" in fake_runner.commands


def test_fatal_refresh_failure(apt_installer: Callable[[dict], Installer], fake_runner) -> None:  # noqa: ANN001
    fake_runner.responses[("apt-get", "update")] = (100, "")
    installer = apt_installer(
        {"tool": {"refresh": True, "refresh_is_fatal": True, "steps": {"apt": [{"install": ["tool"]}]}, "verify": ""}},
    )

    result = installer.install(installer.config.recipe("tool"))

    assert isinstance(result.error, RefreshError)
    assert "apt-get install -y tool" not in fake_runner.commands


def test_latest_version_is_resolved_and_pinned(
    tmp_path: Path,
    make_config: Callable[..., ProvisionConfig],
    runner: CommandRunner,
) -> None:
    recipe = {
        "version": "latest",
        "releases_url": "https://api.example.com/releases/tool",
        "steps": [{"write_file": {"path": "{opt_dir}/tool-{version}/VERSION", "content": "{version}"}}],
    }
    config = make_config({"tool": recipe})
    releases = [{"version": "1.7.0-beta1", "is_prerelease": True}, {"version": "1.6.6"}, {"version": "1.6.5"}]

    with patch.object(download, "fetch_json", return_value=releases) as mock_fetch:
        result = Installer(config, UNKNOWN_OS, None, runner).install(config.recipe("tool"))

    mock_fetch.assert_called_once()
    assert result.version == "1.6.6"
    assert (tmp_path / "opt" / "tool-1.6.6" / "VERSION").read_text() == "1.6.6"


def test_version_pin_overrides_recipe(
    tmp_path: Path,
    make_config: Callable[..., ProvisionConfig],
    runner: CommandRunner,
) -> None:
    recipe = {"version": "1.0", "steps": [{"write_file": {"path": "{opt_dir}/tool-{version}", "content": ""}}]}
    config = make_config({"tool": recipe}, versions={"tool": "2.0"})

    result = Installer(config, UNKNOWN_OS, None, runner).install(config.recipe("tool"))

    assert result.version == "2.0"
    assert (tmp_path / "opt" / "tool-2.0").exists()


def test_tool_home_from_command_path(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    make_config: Callable[..., ProvisionConfig],
    runner: CommandRunner,
) -> None:
    java = tmp_path / "jdk-17" / "bin" / "fakejava"
    java.parent.mkdir(parents=True)
    java.write_text("#!/bin/sh\necho 'openjdk 17.0.10'\n")
    java.chmod(0o755)
    link_dir = tmp_path / "usr-bin"
    link_dir.mkdir()
    (link_dir / "fakejava").symlink_to(java)
    monkeypatch.setenv("PATH", f"{link_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    recipe = {
        "steps": [],
        "home_of": "fakejava",
        "env": [{"path": "{profile_dir}/java.sh", "exports": {"JAVA_HOME": "{tool_home}"}}],
        "verify": "fakejava --version",
    }
    config = make_config({"fake-java": recipe})

    result = Installer(config, UNKNOWN_OS, None, runner).install(config.recipe("fake-java"))

    assert result.already_installed
    assert result.verified == "openjdk 17.0.10"
    fragment = (tmp_path / "profile.d" / "java.sh").read_text()
    assert f'export JAVA_HOME="{(tmp_path / "jdk-17").resolve()}"' in fragment


def test_tool_home_fallback(
    tmp_path: Path,
    make_config: Callable[..., ProvisionConfig],
    runner: CommandRunner,
) -> None:
    recipe = {
        "steps": [],
        "home_of": "provision-test-nojava",
        "home_fallback": {"manual": "{opt_dir}/jdk"},
        "env": [{"path": "{profile_dir}/java.sh", "exports": {"JAVA_HOME": "{tool_home}"}}],
        "verify": "",
    }
    config = make_config({"fake-java": recipe})

    Installer(config, UNKNOWN_OS, None, runner).install(config.recipe("fake-java"))

    fragment = (tmp_path / "profile.d" / "java.sh").read_text()
    assert f'export JAVA_HOME="{tmp_path / "opt" / "jdk"}"' in fragment


def test_batch_continues_after_filesystem_error(
    tmp_path: Path,
    make_config: Callable[..., ProvisionConfig],
    runner: CommandRunner,
) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    config = make_config(
        {
            "tool-a": {"steps": [{"download": {"url": "https://example.com/a.sh", "dest": f"{blocker}/sub/a.sh"}}]},
            "tool-b": {"steps": [{"write_file": {"path": "{opt_dir}/b", "content": "b"}}]},
        },
    )
    installer = Installer(config, UNKNOWN_OS, None, runner)

    results = installer.install_all([config.recipe("tool-a"), config.recipe("tool-b")])

    assert [result.status for result in results] == ["failed", "warn"]
    assert isinstance(results[0].error, DownloadError)
    assert (tmp_path / "opt" / "b").read_text() == "b"


def test_unexpected_os_error_fails_only_its_recipe(
    tmp_path: Path,
    make_config: Callable[..., ProvisionConfig],
    runner: CommandRunner,
) -> None:
    config = make_config(
        {
            "archive": {"steps": [{"download_extract": {"url": "https://example.com/a.tar.gz", "dest": "{opt_dir}"}}]},
            "plain": {"steps": [{"write_file": {"path": "{opt_dir}/plain", "content": ""}}]},
        },
    )
    installer = Installer(config, UNKNOWN_OS, None, runner)

    with patch.object(download, "download_and_extract", side_effect=shutil.Error("copy failed")):
        results = installer.install_all([config.recipe("archive"), config.recipe("plain")])

    assert results[0].state is RecipeState.FAILED
    assert type(results[0].error) is ProvisionError
    assert "copy failed" in str(results[0].error)
    assert results[1].ok
    assert (tmp_path / "opt" / "plain").exists()
